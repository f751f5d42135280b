from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

import structlog

from satellite_checks.models import Location
from satellite_checks.transport import LocationResponse, TransportError


logger = structlog.get_logger(__name__)

CallFn = Callable[[Location, Any], Awaitable[LocationResponse]]
Outcome = LocationResponse | TransportError


async def call_safely(call: CallFn, location: Location, command: Any) -> Outcome:
    """Run one transport call; every failure comes back as a TransportError value."""
    try:
        return await call(location, command)
    except TransportError as exc:
        logger.warning("satellite call failed", hostname=location.hostname, error=exc.cause)
        return exc
    except Exception as exc:
        logger.exception("satellite call crashed", hostname=location.hostname)
        return TransportError(location.hostname, f"{type(exc).__name__}: {exc}")


async def dispatch_all(
    call: CallFn,
    locations: Sequence[Location],
    command: Any,
    *,
    concurrency: int = 3,
) -> list[tuple[Location, Outcome]]:
    """
    Call every location exactly once with at most `concurrency` calls in flight.

    Returns only after all outcomes are collected, in the order of `locations`.
    """
    items = list(locations)
    if not items:
        return []

    queue: asyncio.Queue[tuple[int, Location]] = asyncio.Queue()
    for idx, loc in enumerate(items):
        queue.put_nowait((idx, loc))

    collected: list[tuple[Location, Outcome] | None] = [None] * len(items)

    async def _worker() -> None:
        while True:
            try:
                idx, loc = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            collected[idx] = (loc, await call_safely(call, loc, command))

    size = max(1, min(int(concurrency), len(items)))
    await asyncio.gather(*(_worker() for _ in range(size)))

    out = [c for c in collected if c is not None]
    if len(out) != len(items):
        raise RuntimeError(f"dispatch collected {len(out)} of {len(items)} results")
    return out
