"""
Declarative phase timeline of a probe run.

A phase names the behavior its actors execute, when it starts relative to the
run, how many actors it wants over time and how long in-flight activations
get to finish once it ends. Phases may overlap; the only ordering rule is that
a validation (oracle) phase starts after every load phase has fully drained.

The default timeline is the standard flash-sale schedule:

    t=0s    warmup               1 actor, 10s
    t=15s   flash_sale           0->50 (5s), hold 50 (45s), 50->0 (10s)
    t=15s   idempotency_retries  0->10 (1s), hold 10 (54s), 10->0 (1s)
    t=85s   cancel_wave          0->30 (5s), hold 30 (20s), 30->0 (5s)
    t=88s   post_cancel_orders   0->10 (1s), hold 10 (24s), 10->0 (1s)
    t=88s   get_order            0->5 (1s), hold 5 (24s), 5->0 (1s)
    t=125s  validation           1 actor, 1 iteration, at most 60s
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

VALIDATION_BEHAVIOR = "validation"


class TimelineError(ValueError):
    """The timeline violates an ordering or shape rule."""


@dataclass(frozen=True)
class Stage:
    """Move linearly to `target` actors over `duration` seconds."""

    duration: float
    target: int


@dataclass(frozen=True)
class Phase:
    """
    One load (or validation) phase.

    Either `stages` (ramping profile starting from `start_actors`) or
    `actors` + `duration` (constant profile) describes the actor count.
    `iterations` switches the phase to a fixed number of activations shared
    by its actors, bounded by `max_duration`; the validation phase uses this.
    """

    name: str
    behavior: str
    start_offset: float = 0.0
    stages: Tuple[Stage, ...] = field(default_factory=tuple)
    start_actors: int = 0
    actors: int = 0
    duration: float = 0.0
    graceful_stop: float = 5.0
    iterations: Optional[int] = None
    max_duration: Optional[float] = None

    @property
    def is_validation(self) -> bool:
        return self.behavior == VALIDATION_BEHAVIOR

    @property
    def active_duration(self) -> float:
        if self.iterations is not None:
            return self.max_duration or 0.0
        if self.stages:
            return sum(stage.duration for stage in self.stages)
        return self.duration

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.active_duration

    @property
    def drained_offset(self) -> float:
        """Latest moment an actor of this phase can still be running."""
        return self.end_offset + self.graceful_stop

    @property
    def peak_actors(self) -> int:
        if self.stages:
            return max([self.start_actors] + [stage.target for stage in self.stages])
        return self.actors

    def target_actors(self, elapsed: float) -> int:
        """
        Actor count wanted `elapsed` seconds after the phase started.

        Ramping stages interpolate linearly from the previous stage's target.
        """
        if elapsed < 0 or elapsed >= self.active_duration:
            return 0
        if self.iterations is not None:
            return self.actors or 1
        if not self.stages:
            return self.actors

        previous = self.start_actors
        stage_start = 0.0
        for stage in self.stages:
            stage_end = stage_start + stage.duration
            if elapsed < stage_end:
                if stage.duration <= 0:
                    return stage.target
                progress = (elapsed - stage_start) / stage.duration
                return int(round(previous + (stage.target - previous) * progress))
            previous = stage.target
            stage_start = stage_end
        return previous

    def validate(self) -> None:
        if self.start_offset < 0 or self.graceful_stop < 0:
            raise TimelineError(f"phase {self.name!r}: offsets must be non-negative")
        if self.iterations is not None:
            if self.iterations < 1 or not self.max_duration or self.max_duration <= 0:
                raise TimelineError(
                    f"phase {self.name!r}: iteration phases need iterations>=1 and max_duration>0"
                )
            return
        if self.stages and (self.actors or self.duration):
            raise TimelineError(f"phase {self.name!r}: use either stages or actors+duration")
        if not self.stages and (self.actors < 1 or self.duration <= 0):
            raise TimelineError(f"phase {self.name!r}: constant phases need actors>=1 and duration>0")
        for stage in self.stages:
            if stage.duration < 0 or stage.target < 0:
                raise TimelineError(f"phase {self.name!r}: stage values must be non-negative")

    def scaled(self, factor: float) -> "Phase":
        return replace(
            self,
            start_offset=self.start_offset * factor,
            stages=tuple(Stage(stage.duration * factor, stage.target) for stage in self.stages),
            duration=self.duration * factor,
            graceful_stop=self.graceful_stop * factor,
            max_duration=self.max_duration * factor if self.max_duration is not None else None,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "behavior": self.behavior,
            "start": round(self.start_offset, 3),
            "end": round(self.end_offset, 3),
            "graceful_stop": round(self.graceful_stop, 3),
            "peak_actors": self.peak_actors,
            "iterations": self.iterations,
        }


@dataclass(frozen=True)
class PhaseTimeline:
    phases: Tuple[Phase, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "phases", tuple(self.phases))

    @property
    def load_phases(self) -> List[Phase]:
        return [phase for phase in self.phases if not phase.is_validation]

    @property
    def validation_phases(self) -> List[Phase]:
        return [phase for phase in self.phases if phase.is_validation]

    @property
    def total_duration(self) -> float:
        return max((phase.drained_offset for phase in self.phases), default=0.0)

    def validate(self) -> "PhaseTimeline":
        """
        Check phase shapes and the quiescence rule.

        Raises
        ------
        TimelineError
            On duplicate names, malformed phases, or a validation phase that
            starts before some load phase (including its grace period) drained.
        """
        names = [phase.name for phase in self.phases]
        if len(names) != len(set(names)):
            raise TimelineError(f"duplicate phase names: {names}")
        for phase in self.phases:
            phase.validate()
        load = self.load_phases
        if not load:
            return self
        drained = max(phase.drained_offset for phase in load)
        for phase in self.validation_phases:
            # tolerate float noise from scaling
            if phase.start_offset + 1e-9 < drained:
                raise TimelineError(
                    f"validation phase {phase.name!r} starts at {phase.start_offset:g}s "
                    f"but load phases drain at {drained:g}s"
                )
        return self

    def scaled(self, factor: float) -> "PhaseTimeline":
        if factor <= 0:
            raise TimelineError(f"time scale must be positive, got {factor}")
        return PhaseTimeline(tuple(phase.scaled(factor) for phase in self.phases))

    def only(self, names: Sequence[str]) -> "PhaseTimeline":
        unknown = set(names) - {phase.name for phase in self.phases}
        if unknown:
            raise TimelineError(f"unknown phases: {sorted(unknown)}")
        return PhaseTimeline(tuple(phase for phase in self.phases if phase.name in names))


def _ramp(up: float, hold: float, down: float, target: int) -> Tuple[Stage, ...]:
    return (Stage(up, target), Stage(hold, target), Stage(down, 0))


def default_timeline() -> PhaseTimeline:
    return PhaseTimeline(
        (
            Phase("warmup", "warmup", start_offset=0, actors=1, duration=10, graceful_stop=5),
            Phase("flash_sale", "flash_sale", start_offset=15, stages=_ramp(5, 45, 10, 50)),
            Phase("idempotency_retries", "idempotency", start_offset=15, stages=_ramp(1, 54, 1, 10)),
            Phase("cancel_wave", "cancel_wave", start_offset=85, stages=_ramp(5, 20, 5, 30)),
            Phase("post_cancel_orders", "flash_sale", start_offset=88, stages=_ramp(1, 24, 1, 10)),
            Phase("get_order", "get_order", start_offset=88, stages=_ramp(1, 24, 1, 5)),
            Phase(
                "validation",
                VALIDATION_BEHAVIOR,
                start_offset=125,
                actors=1,
                iterations=1,
                max_duration=60,
                graceful_stop=10,
            ),
        )
    )


__all__ = [
    "Phase",
    "PhaseTimeline",
    "Stage",
    "TimelineError",
    "VALIDATION_BEHAVIOR",
    "default_timeline",
]
