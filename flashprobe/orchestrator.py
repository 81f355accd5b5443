"""
Orchestrator for running a phase timeline against the service and persisting results.

Usage (example from CLI):
    import asyncio
    from flashprobe.config import get_settings
    from flashprobe.orchestrator import run_probe

    summary = asyncio.run(run_probe(get_settings()))
    print(summary.passed)

Outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)

Every phase runs as its own coroutine on one event loop and sleeps until its
start offset, so overlapping phases interleave naturally. Within a phase a
controller ticks every `tick` seconds, spawning actors up to the target count
and retiring the newest ones when the target drops. When the phase ends all
actors are told to stop, get `graceful_stop` seconds to finish the activation
in flight, and are cancelled after that. Validation phases are only started once
every load phase has returned.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import httpx

from flashprobe.config import Settings
from flashprobe.infrastructure.http_client import ServiceClient, wait_until_ready
from flashprobe.metrics import Metrics, ThresholdResult
from flashprobe.oracle import ConsistencyOracle, OracleReport
from flashprobe.timeline import Phase, PhaseTimeline, default_timeline
from flashprobe.utils.logging import get_logger
from flashprobe.utils.profiler import PhaseProfile, profile_phase
from flashprobe.workload.abstract import Activation, ActorBehavior, BehaviorContext
from flashprobe.workload.behaviors import ValidationBehavior, resolve_behavior

log = get_logger(__name__)

DEFAULT_TICK_SECONDS = 0.1

# A run that includes one of these behaviors must bump its counter at least once.
REQUIRED_COUNTS = {
    "flash_sale": "orders_created",
    "idempotency": "idempotent_replays_correct",
}


@dataclass
class PhaseResult:
    name: str
    behavior: str
    actors_spawned: int = 0
    activations: int = 0
    actor_errors: int = 0
    actors_cancelled: int = 0
    profile: Optional[PhaseProfile] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "behavior": self.behavior,
            "actors_spawned": self.actors_spawned,
            "activations": self.activations,
            "actor_errors": self.actor_errors,
            "actors_cancelled": self.actors_cancelled,
            "profile": self.profile.to_dict() if self.profile else None,
        }


@dataclass
class RunSummary:
    started_at: str
    timeline: List[Dict[str, Any]]
    phases: List[PhaseResult]
    metrics: Dict[str, Any]
    thresholds: List[ThresholdResult]
    report: Optional[OracleReport] = None

    @property
    def thresholds_passed(self) -> bool:
        return all(threshold.passed for threshold in self.thresholds)

    @property
    def passed(self) -> bool:
        return self.thresholds_passed and (self.report is None or self.report.passed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "passed": self.passed,
            "timeline": self.timeline,
            "phases": [phase.to_dict() for phase in self.phases],
            "metrics": self.metrics,
            "thresholds": [
                {
                    "name": t.name,
                    "expression": t.expression,
                    "observed": t.observed,
                    "passed": t.passed,
                }
                for t in self.thresholds
            ],
            "validation": self.report.to_dict() if self.report else None,
        }


@dataclass
class _ActorHandle:
    actor_id: int
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional["asyncio.Task[None]"] = None


class PhaseRunner:
    """
    Drive the actors of one phase.

    Parameters
    ----------
    phase : Phase
        Offsets and actor profile, already scaled.
    behavior : ActorBehavior
        What each actor executes.
    metrics : Metrics
        Receives `actor_errors`.
    actor_ids : Iterator[int]
        Run-wide actor numbering shared across phases.
    tick : float
        Controller resolution in seconds for ramping phases.
    """

    def __init__(
        self,
        phase: Phase,
        behavior: ActorBehavior,
        metrics: Metrics,
        actor_ids: Iterator[int],
        tick: float = DEFAULT_TICK_SECONDS,
    ) -> None:
        self.phase = phase
        self.behavior = behavior
        self.metrics = metrics
        self._actor_ids = actor_ids
        self.tick = tick
        self.result = PhaseResult(name=phase.name, behavior=phase.behavior)

    async def run(self, run_start: float) -> PhaseResult:
        loop = asyncio.get_running_loop()
        delay = self.phase.start_offset - (loop.time() - run_start)
        if delay > 0:
            await asyncio.sleep(delay)

        log.info(f"[PHASE START] {self.phase.name}", extra={"phase": self.phase.name})
        with profile_phase(self.phase.name) as profile:
            if self.phase.iterations is not None:
                await self._run_iterations()
            else:
                await self._run_profile()
        self.result.profile = profile
        log.info(
            f"[PHASE COMPLETE] {self.phase.name}",
            extra={
                "phase": self.phase.name,
                "actors": self.result.actors_spawned,
                "activations": self.result.activations,
                "actor_errors": self.result.actor_errors,
                "duration": round(profile.duration_seconds, 2),
            },
        )
        return self.result

    def _actor_error(self, actor_id: int) -> None:
        self.result.actor_errors += 1
        self.metrics.incr("actor_errors")
        log.exception(
            f"[ACTOR ERROR] {self.phase.name}",
            extra={"phase": self.phase.name, "actor_id": actor_id},
        )

    def _spawn_activation(self, actor_id: int) -> Optional[Activation]:
        try:
            return self.behavior.spawn(actor_id)
        except Exception:  # noqa: BLE001 - a failed spawn ends this actor only
            self._actor_error(actor_id)
            return None

    async def _activate_once(self, actor_id: int, activation: Activation) -> None:
        try:
            await activation()
        except Exception:  # noqa: BLE001 - one broken activation must not kill the actor
            self._actor_error(actor_id)
        else:
            self.result.activations += 1

    async def _actor_loop(self, handle: _ActorHandle) -> None:
        try:
            activation = self._spawn_activation(handle.actor_id)
            while activation is not None and not handle.stop.is_set():
                await self._activate_once(handle.actor_id, activation)
                pause = self.behavior.next_pause()
                if pause > 0 and not handle.stop.is_set():
                    try:
                        await asyncio.wait_for(handle.stop.wait(), timeout=pause)
                    except asyncio.TimeoutError:
                        pass
        finally:
            self.behavior.retire(handle.actor_id)

    def _spawn(self) -> _ActorHandle:
        handle = _ActorHandle(actor_id=next(self._actor_ids))
        handle.task = asyncio.create_task(
            self._actor_loop(handle), name=f"{self.phase.name}-actor-{handle.actor_id}"
        )
        self.result.actors_spawned += 1
        return handle

    async def _run_profile(self) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()
        duration = self.phase.active_duration
        handles: List[_ActorHandle] = []

        while True:
            elapsed = loop.time() - start
            if elapsed >= duration:
                break
            target = self.phase.target_actors(elapsed)
            handles = [h for h in handles if h.task is not None and not h.task.done()]
            live = [h for h in handles if not h.stop.is_set()]
            while len(live) < target:
                handle = self._spawn()
                handles.append(handle)
                live.append(handle)
            # ramp-down retires the newest actors; they finish their current activation
            for handle in live[target:]:
                handle.stop.set()
            await asyncio.sleep(min(self.tick, duration - elapsed))

        await self._drain(handles)

    async def _run_iterations(self) -> None:
        remaining = {"count": self.phase.iterations or 0}

        async def worker(actor_id: int) -> None:
            try:
                activation = self._spawn_activation(actor_id)
                while activation is not None and remaining["count"] > 0:
                    remaining["count"] -= 1
                    await self._activate_once(actor_id, activation)
            finally:
                self.behavior.retire(actor_id)

        handles = []
        for _ in range(max(self.phase.actors, 1)):
            handle = _ActorHandle(actor_id=next(self._actor_ids))
            handle.task = asyncio.create_task(worker(handle.actor_id))
            self.result.actors_spawned += 1
            handles.append(handle)

        tasks = [h.task for h in handles if h.task is not None]
        _, pending = await asyncio.wait(tasks, timeout=self.phase.max_duration)
        if pending:
            log.warning(
                f"[PHASE TIMEOUT] {self.phase.name} exceeded max duration",
                extra={"phase": self.phase.name, "max_duration": self.phase.max_duration},
            )
        await self._drain(handles)

    async def _drain(self, handles: Sequence[_ActorHandle]) -> None:
        for handle in handles:
            handle.stop.set()
        pending = {h.task for h in handles if h.task is not None and not h.task.done()}
        if pending:
            _, pending = await asyncio.wait(pending, timeout=self.phase.graceful_stop)
        for task in pending:
            task.cancel()
        if pending:
            self.result.actors_cancelled += len(pending)
            log.warning(
                f"[PHASE GRACE EXPIRED] {self.phase.name}: cancelled {len(pending)} actor(s)",
                extra={"phase": self.phase.name},
            )
            await asyncio.gather(*pending, return_exceptions=True)


async def run_timeline(
    timeline: PhaseTimeline,
    context: BehaviorContext,
    tick: float = DEFAULT_TICK_SECONDS,
) -> Tuple[List[PhaseResult], Optional[OracleReport]]:
    """
    Run every phase of `timeline` and return per-phase results plus the oracle report.

    Raises
    ------
    TimelineError
        If the timeline is malformed or schedules validation before quiescence.
    """
    timeline.validate()
    actor_ids = itertools.count(1)
    runners = [
        PhaseRunner(
            phase,
            resolve_behavior(phase.behavior, context),
            context.metrics,
            actor_ids,
            tick=tick,
        )
        for phase in timeline.phases
    ]

    run_start = asyncio.get_running_loop().time()
    load = [runner for runner in runners if not runner.phase.is_validation]
    await asyncio.gather(*(runner.run(run_start) for runner in load))
    # offsets still apply; awaiting the load runners guarantees their drain finished
    await asyncio.gather(
        *(runner.run(run_start) for runner in runners if runner.phase.is_validation)
    )

    report: Optional[OracleReport] = None
    for runner in runners:
        if isinstance(runner.behavior, ValidationBehavior) and runner.behavior.report is not None:
            report = runner.behavior.report
    return [runner.result for runner in runners], report


def _required_counts(timeline: PhaseTimeline) -> List[str]:
    """Counters that must be non-zero, for the behaviors this timeline actually runs."""
    behaviors = {phase.behavior for phase in timeline.load_phases}
    return [counter for behavior, counter in REQUIRED_COUNTS.items() if behavior in behaviors]


def _persist_results(payload: dict, results_dir: Path) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    for path in (latest_path, archive_path):
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})


async def run_probe(
    settings: Settings,
    timeline: Optional[PhaseTimeline] = None,
    persist: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rng: Optional[random.Random] = None,
    tick: float = DEFAULT_TICK_SECONDS,
) -> RunSummary:
    """
    Full run: readiness wait, every phase of the timeline, thresholds, persistence.

    Parameters
    ----------
    settings : Settings
        Target, catalog, oracle policy and thresholds.
    timeline : PhaseTimeline | None
        Phases to run before scaling. Defaults to `default_timeline()`.
    persist : bool
        Whether to write the summary to `settings.results_dir`.
    transport : httpx.AsyncBaseTransport | None
        Transport override for the HTTP client.
    rng : random.Random | None
        Random source shared by the behaviors (seed it for reproducible runs).

    Returns
    -------
    RunSummary
        Phase results, metric snapshot, threshold evaluation and oracle report.
    """
    metrics = Metrics()
    catalog = settings.catalog()
    scaled = (timeline or default_timeline()).scaled(settings.time_scale).validate()
    started_at = datetime.now(timezone.utc).isoformat()
    log.info(
        f"[RUN START] {len(scaled.phases)} phase(s) against {settings.base_url}",
        extra={"time_scale": settings.time_scale, "total_seconds": round(scaled.total_duration, 2)},
    )

    async with ServiceClient(settings, metrics, transport=transport) as client:
        await wait_until_ready(client, catalog.products[0].id, settings.readiness_attempts)
        context = BehaviorContext(
            client=client,
            catalog=catalog,
            metrics=metrics,
            settings=settings,
            rng=rng or random.Random(),
        )
        phases, report = await run_timeline(scaled, context, tick=tick)

    summary = RunSummary(
        started_at=started_at,
        timeline=[phase.describe() for phase in scaled.phases],
        phases=phases,
        metrics=metrics.snapshot(),
        thresholds=metrics.evaluate_thresholds(
            settings.threshold_p99_ms,
            settings.threshold_failed_rate,
            checks_rate=settings.threshold_checks_rate,
            max_violations=settings.threshold_max_idempotency_violations,
            required_counts=_required_counts(scaled),
        ),
        report=report,
    )
    if persist:
        _persist_results(summary.to_dict(), Path(settings.results_dir))

    log.info(
        f"[RUN COMPLETE] {'PASS' if summary.passed else 'FAIL'}",
        extra={"thresholds_passed": summary.thresholds_passed},
    )
    return summary


async def run_validation(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OracleReport:
    """
    Run only the consistency oracle against the service's current state.
    """
    metrics = Metrics()
    async with ServiceClient(settings, metrics, transport=transport) as client:
        oracle = ConsistencyOracle(
            client,
            settings.catalog(),
            listing_cap=settings.listing_cap,
            stock_field=settings.stock_field,
            metrics=metrics,
        )
        return await oracle.run()


__all__ = [
    "PhaseResult",
    "PhaseRunner",
    "RunSummary",
    "run_probe",
    "run_timeline",
    "run_validation",
]
