from __future__ import annotations

import pytest

from flashprobe.timeline import (
    VALIDATION_BEHAVIOR,
    Phase,
    PhaseTimeline,
    Stage,
    TimelineError,
    default_timeline,
)

RAMP = (Stage(10, 50), Stage(20, 50), Stage(10, 0))


def _validation(start: float) -> Phase:
    return Phase(
        "validation", VALIDATION_BEHAVIOR, start_offset=start, actors=1, iterations=1, max_duration=60
    )


def test_default_timeline_is_valid_and_ordered():
    timeline = default_timeline().validate()

    names = [phase.name for phase in timeline.phases]
    assert names == [
        "warmup",
        "flash_sale",
        "idempotency_retries",
        "cancel_wave",
        "post_cancel_orders",
        "get_order",
        "validation",
    ]
    validation = timeline.validation_phases[0]
    assert validation.start_offset >= max(p.drained_offset for p in timeline.load_phases)


def test_default_timeline_overlaps_burst_with_retries():
    phases = {phase.name: phase for phase in default_timeline().phases}

    assert phases["flash_sale"].start_offset == phases["idempotency_retries"].start_offset
    assert phases["flash_sale"].end_offset == 75
    assert phases["idempotency_retries"].end_offset == 71


def test_ramping_profile_interpolates_between_stages():
    phase = Phase("burst", "flash_sale", stages=RAMP)

    assert phase.target_actors(0) == 0
    assert phase.target_actors(5) == 25
    assert phase.target_actors(15) == 50
    assert phase.target_actors(35) == 25
    assert phase.target_actors(40) == 0
    assert phase.peak_actors == 50


def test_constant_profile_holds_until_end():
    phase = Phase("warmup", "warmup", actors=2, duration=10)

    assert phase.target_actors(0) == 2
    assert phase.target_actors(9.9) == 2
    assert phase.target_actors(10) == 0


def test_validation_before_drain_is_rejected():
    # load ends at 40s and drains at 45s
    timeline = PhaseTimeline(
        (Phase("burst", "flash_sale", stages=RAMP, graceful_stop=5), _validation(44))
    )

    with pytest.raises(TimelineError, match="drain"):
        timeline.validate()


def test_validation_right_at_drain_is_accepted():
    timeline = PhaseTimeline(
        (Phase("burst", "flash_sale", stages=RAMP, graceful_stop=5), _validation(45))
    )

    assert timeline.validate() is timeline


@pytest.mark.parametrize(
    "phase",
    [
        Phase("mixed", "flash_sale", stages=RAMP, actors=3, duration=5),
        Phase("empty", "flash_sale"),
        Phase("negative", "flash_sale", stages=(Stage(-1, 5),)),
        Phase("iter", VALIDATION_BEHAVIOR, iterations=0, max_duration=10),
        Phase("late", "warmup", start_offset=-1, actors=1, duration=1),
    ],
)
def test_malformed_phases_are_rejected(phase):
    with pytest.raises(TimelineError):
        PhaseTimeline((phase,)).validate()


def test_duplicate_phase_names_are_rejected():
    phase = Phase("warmup", "warmup", actors=1, duration=1)

    with pytest.raises(TimelineError, match="duplicate"):
        PhaseTimeline((phase, phase)).validate()


def test_scaling_keeps_the_ordering_contract():
    scaled = default_timeline().scaled(0.01).validate()
    phases = {phase.name: phase for phase in scaled.phases}

    assert phases["validation"].start_offset == pytest.approx(1.25)
    assert phases["flash_sale"].active_duration == pytest.approx(0.6)
    assert phases["flash_sale"].peak_actors == 50
    assert scaled.total_duration == pytest.approx(default_timeline().total_duration * 0.01)


def test_non_positive_scale_is_rejected():
    with pytest.raises(TimelineError):
        default_timeline().scaled(0)


def test_only_selects_named_phases():
    subset = default_timeline().only(["warmup", "validation"])

    assert [phase.name for phase in subset.phases] == ["warmup", "validation"]
    with pytest.raises(TimelineError, match="unknown"):
        default_timeline().only(["nope"])
