from __future__ import annotations

import asyncio
import fcntl
import json
import os
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import structlog

from satellite_checks.models import Location, RotationState


logger = structlog.get_logger(__name__)


class PersistenceError(Exception):
    """The rotation cache could not be read or written."""


def initial_state(service: str, configured: Iterable[Location]) -> RotationState:
    locations = sorted((replace(loc, last=False) for loc in configured), key=lambda loc: loc.hostname)
    return RotationState(service=service, locations=tuple(locations))


def reconcile_locations(service: str, configured: Iterable[Location], cached: list[Location] | None) -> RotationState:
    """
    Merge the configured locations into the cached rotation order.

    Hostname is the identity; ipaddr and authkey always come from the
    configuration. Any added or removed hostname rebuilds the list sorted by
    hostname (surviving locations keep their `last` flag), otherwise the
    cached order is kept as is.
    """
    configured = list(configured)
    if cached is None:
        return initial_state(service, configured)

    by_host = {loc.hostname: loc for loc in configured}
    cached_by_host = {loc.hostname: loc for loc in cached}

    if set(by_host) != set(cached_by_host) or len(cached_by_host) != len(cached):
        rebuilt = sorted(
            (
                replace(loc, last=bool(cached_by_host[loc.hostname].last) if loc.hostname in cached_by_host else False)
                for loc in by_host.values()
            ),
            key=lambda loc: loc.hostname,
        )
        return RotationState(service=service, locations=tuple(_single_last(rebuilt)))

    merged = [
        replace(by_host[loc.hostname], last=bool(loc.last))
        for loc in cached
    ]
    return RotationState(service=service, locations=tuple(_single_last(merged)))


def _single_last(locations: list[Location]) -> list[Location]:
    seen = False
    out: list[Location] = []
    for loc in locations:
        if loc.last and seen:
            loc = replace(loc, last=False)
        seen = seen or loc.last
        out.append(loc)
    return out


def load_cache(cache_file: Path, service: str) -> list[Location] | None:
    """
    Returns the cached locations of `service`, or None if nothing was cached yet.
    Raises PersistenceError when the file exists but cannot be used.
    """
    try:
        raw = cache_file.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise PersistenceError(f"cannot read {cache_file}: {exc}") from exc

    try:
        doc: Any = json.loads(raw)
    except ValueError as exc:
        raise PersistenceError(f"invalid JSON in {cache_file}: {exc}") from exc
    if not isinstance(doc, dict):
        raise PersistenceError(f"{cache_file} is not a JSON object")

    items = doc.get(service)
    if items is None:
        return None
    if not isinstance(items, list):
        raise PersistenceError(f"{cache_file}: entry for {service!r} is not a list")

    out: list[Location] = []
    for item in items:
        loc = Location.from_dict(item)
        if loc is not None:
            out.append(loc)
    return out


def reconcile(configured: Iterable[Location], cache_file: Path, service: str) -> RotationState:
    try:
        cached = load_cache(cache_file, service)
    except PersistenceError as exc:
        logger.warning("rotation cache unusable, starting from configured order", service=service, error=str(exc))
        cached = None
    return reconcile_locations(service, configured, cached)


def write_cache(state: RotationState, cache_file: Path) -> None:
    payload = {state.service: [loc.to_dict() for loc in state.locations]}
    tmp = cache_file.with_name(f"{cache_file.name}.tmp")
    try:
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(payload, ensure_ascii=False, sort_keys=True), encoding="utf-8")
        tmp.replace(cache_file)
    except OSError as exc:
        raise PersistenceError(f"cannot write {cache_file}: {exc}") from exc


def persist(state: RotationState, cache_file: Path) -> bool:
    try:
        write_cache(state, cache_file)
    except PersistenceError as exc:
        logger.warning("rotation cache not saved, rotation restarts next run", service=state.service, error=str(exc))
        return False
    return True


@asynccontextmanager
async def locked_cache(cache_file: Path) -> AsyncIterator[bool]:
    """
    Exclusive lock on `<cache>.lock` for one read-modify-write cycle.
    Yields False if the lock cannot be taken; the run continues unlocked.
    """
    lock_path = cache_file.with_name(f"{cache_file.name}.lock")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as exc:
        logger.warning("rotation cache lock unavailable", path=str(lock_path), error=str(exc))
        yield False
        return

    locked = False
    try:
        try:
            await asyncio.to_thread(fcntl.flock, fd, fcntl.LOCK_EX)
            locked = True
        except OSError as exc:
            logger.warning("rotation cache lock failed, continuing unlocked", path=str(lock_path), error=str(exc))
        yield locked
    finally:
        try:
            if locked:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
