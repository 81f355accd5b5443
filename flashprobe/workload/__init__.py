"""
Workload package for flashprobe.

Re-exports the behavior interfaces, the concrete phase behaviors and the pure
building blocks (sampler, key factory, request builder, idempotency actor) so
downstream code can import from `flashprobe.workload` directly.
"""

from flashprobe.workload.abstract import (
    AbstractActorBehavior,
    Activation,
    ActorBehavior,
    BehaviorContext,
)
from flashprobe.workload.behaviors import (
    BEHAVIORS,
    CancelWaveBehavior,
    FlashSaleBehavior,
    GetOrderBehavior,
    IdempotencyBehavior,
    ValidationBehavior,
    WarmupBehavior,
    available_behaviors,
    resolve_behavior,
)
from flashprobe.workload.idempotency import (
    ActorMemory,
    ActorState,
    IdempotencyActor,
    ReplayOutcome,
)
from flashprobe.workload.requests import OrderRequestBuilder
from flashprobe.workload.sampling import WeightedSampler, new_idempotency_key, pick_weighted

__all__ = [
    # Abstracts
    "AbstractActorBehavior",
    "Activation",
    "ActorBehavior",
    "BehaviorContext",
    # Concrete behaviors
    "BEHAVIORS",
    "CancelWaveBehavior",
    "FlashSaleBehavior",
    "GetOrderBehavior",
    "IdempotencyBehavior",
    "ValidationBehavior",
    "WarmupBehavior",
    "available_behaviors",
    "resolve_behavior",
    # Building blocks
    "ActorMemory",
    "ActorState",
    "IdempotencyActor",
    "OrderRequestBuilder",
    "ReplayOutcome",
    "WeightedSampler",
    "new_idempotency_key",
    "pick_weighted",
]
