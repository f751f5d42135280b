from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import structlog

from satellite_checks.config import DispatcherConfig
from satellite_checks.locations import locked_cache, persist, reconcile
from satellite_checks.models import Location, LocationResult, RotationState, Status, Strategy, Verdict
from satellite_checks.pool import CallFn, Outcome, call_safely, dispatch_all
from satellite_checks.transport import SatelliteClient, TransportError


logger = structlog.get_logger(__name__)

NO_LOCATIONS_MESSAGE = "there are no locations configured"

# Escalate `multiple` once this many locations report WARNING or CRITICAL.
ESCALATION_THRESHOLD = 3


def is_failure(outcome: Outcome) -> bool:
    return isinstance(outcome, TransportError) or not outcome.ok


def result_from_outcome(location: Location, outcome: Outcome) -> LocationResult:
    if isinstance(outcome, TransportError):
        return LocationResult.unknown(location.hostname, f"{location.hostname}: {outcome.cause}")
    if not outcome.ok:
        reason = outcome.message or outcome.status
        return LocationResult.unknown(location.hostname, f"{location.hostname}: satellite error: {reason}")
    return LocationResult.from_payload(outcome.data, hostname=location.hostname)


def _debug_entries(results: Sequence[LocationResult]) -> list[dict[str, Any]]:
    return [{"hostname": r.hostname, "debug": r.debug} for r in results if r.debug is not None]


@dataclass(frozen=True)
class OrderedOutcome:
    verdict: Verdict
    attempted: list[Location]

    @property
    def last(self) -> Location | None:
        return self.attempted[-1] if self.attempted else None


async def evaluate_ordered(call: CallFn, locations: Sequence[Location], command: Any) -> OrderedOutcome:
    """
    Try locations one after another until one answers exactly OK.

    The verdict takes the best result seen (by severity), with a note listing
    every location that was checked.
    """
    attempted: list[Location] = []
    results: list[LocationResult] = []
    best: LocationResult | None = None

    for loc in locations:
        outcome = await call_safely(call, loc, command)
        result = result_from_outcome(loc, outcome)
        attempted.append(loc)
        results.append(result)
        if best is None or result.status < best.status:
            best = result
        if result.status == Status.OK:
            break

    if best is None:
        return OrderedOutcome(verdict=Verdict(status=Status.UNKNOWN, message=NO_LOCATIONS_MESSAGE), attempted=[])

    checked = ", ".join(loc.hostname for loc in attempted)
    logger.info("locations checked", hosts=[loc.hostname for loc in attempted], best=best.status.name)
    message = f"{best.message} (checked from {checked})" if best.message else f"(checked from {checked})"
    detail = list(results) if len(results) > 1 or best.status != Status.OK else None
    verdict = Verdict(
        status=best.status,
        message=message,
        stats=best.stats,
        debug=_debug_entries(results) or None,
        result=detail,
    )
    return OrderedOutcome(verdict=verdict, attempted=attempted)


async def failover(call: CallFn, locations: Sequence[Location], command: Any) -> Verdict:
    return (await evaluate_ordered(call, locations, command)).verdict


def rotation_window(state: RotationState, size: int = 3) -> list[Location]:
    locations = list(state.locations)
    if not locations:
        return []
    last = state.last_index()
    start = last + 1 if last is not None else 0
    if start >= len(locations):
        start = 0
    count = min(max(1, int(size)), len(locations))
    return [locations[(start + i) % len(locations)] for i in range(count)]


async def rotate(
    call: CallFn,
    state: RotationState,
    command: Any,
    *,
    window_size: int = 3,
) -> tuple[Verdict, RotationState]:
    """Evaluate the next rotation window; returns the verdict and the state to persist."""
    window = rotation_window(state, window_size)
    logger.info("rotation window selected", service=state.service, hosts=[loc.hostname for loc in window])

    cleared = state.with_last(None)
    outcome = await evaluate_ordered(call, window, command)
    if outcome.last is None:
        return outcome.verdict, cleared
    return outcome.verdict, cleared.with_last(outcome.last.hostname)


def escalate(status: Status, counts: dict[Status, int]) -> Status:
    warning = counts.get(Status.WARNING, 0)
    critical = counts.get(Status.CRITICAL, 0)
    if critical + warning < ESCALATION_THRESHOLD:
        return status
    if critical > warning or warning == 0:
        return Status.CRITICAL
    return Status.WARNING


def summarize_counts(total: int, counts: dict[Status, int]) -> str:
    clauses = [f"{counts[s]} {s.name}" for s in Status if counts.get(s)]
    head = f"{total} location(s) checked"
    return f"{head}: {', '.join(clauses)}" if clauses else head


async def multiple(call: CallFn, locations: Sequence[Location], command: Any, *, concurrency: int = 3) -> Verdict:
    """Ask every location at once and combine all answers into one verdict."""
    if not locations:
        return Verdict(status=Status.UNKNOWN, message=NO_LOCATIONS_MESSAGE)

    collected = await dispatch_all(call, locations, command, concurrency=concurrency)

    counts: dict[Status, int] = {s: 0 for s in Status}
    status = Status.UNKNOWN
    results: list[LocationResult] = []
    for loc, outcome in collected:
        result = result_from_outcome(loc, outcome)
        results.append(result)
        counts[result.status] += 1
        if not is_failure(outcome) and result.status < status:
            status = result.status

    status = escalate(status, counts)

    stats = {r.hostname: r.stats for r in results if r.stats is not None}
    abnormal = [r for r in results if r.status != Status.OK]
    return Verdict(
        status=status,
        message=summarize_counts(len(results), counts),
        stats=stats or None,
        debug={r.hostname: r.debug for r in results if r.debug is not None} or None,
        result=abnormal or None,
    )


async def run_rotate(call: CallFn, config: DispatcherConfig, command: Any) -> Verdict:
    service = str(config.service or "").strip()
    cache_file = config.cache_file()
    async with locked_cache(cache_file):
        state = reconcile(config.configured_locations(), cache_file, service)
        verdict, new_state = await rotate(call, state, command, window_size=config.window_size)
        persist(new_state, cache_file)
    return verdict


async def run_strategy(config: DispatcherConfig, command: Any, call: CallFn | None = None) -> Verdict:
    if call is None:
        call = SatelliteClient(config).call

    if config.strategy == Strategy.ROTATE:
        verdict = await run_rotate(call, config, command)
    elif config.strategy == Strategy.MULTIPLE:
        verdict = await multiple(call, config.configured_locations(), command, concurrency=config.concurrency)
    else:
        verdict = await failover(call, config.configured_locations(), command)

    logger.info("dispatch finished", strategy=config.strategy.value, status=verdict.status.name)
    return verdict
