"""
Abstract behavior interfaces for flashprobe load phases.

A behavior is what the actors of one phase execute. The scheduling side only
knows the `ActorBehavior` protocol: it spawns one activation callable per
actor and keeps invoking it, pausing `next_pause()` seconds between calls,
until the phase ends. Any per-actor state lives in whatever object `spawn`
closes over, never in module globals.
"""

from __future__ import annotations

import abc
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple, runtime_checkable

from flashprobe.config import Settings
from flashprobe.domain.models import Catalog
from flashprobe.infrastructure.http_client import ServiceClient
from flashprobe.metrics import Metrics

# One actor activation: a zero-argument coroutine function.
Activation = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class BehaviorContext:
    """
    Read-only collaborators shared by every actor of a run.
    """

    client: ServiceClient
    catalog: Catalog
    metrics: Metrics
    settings: Settings
    rng: random.Random


@runtime_checkable
class ActorBehavior(Protocol):
    """
    Common interface all phase behaviors must implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier, referenced by timeline phases.
    description : str
        A human-friendly summary of what an activation does.
    """

    name: str
    description: str

    def spawn(self, actor_id: int) -> Activation:
        """
        Create the activation callable for one new actor.

        Parameters
        ----------
        actor_id : int
            Run-unique actor number; behaviors derive customer ids from it.
        """
        ...

    def next_pause(self) -> float:
        """Seconds the actor idles between two activations."""
        ...

    def retire(self, actor_id: int) -> None:
        """Called once the actor has stopped for good."""
        ...


class AbstractActorBehavior(abc.ABC):
    """
    ABC helper for class-based behaviors.

    Subclasses set `name`, `description` and `pacing`, and implement `spawn`.
    `pacing` is `(base, jitter)`: each pause is `base + U(0, jitter)` seconds.
    """

    name: str
    description: str
    pacing: Tuple[float, float] = (0.0, 0.0)

    def __init__(self, context: BehaviorContext) -> None:
        self.context = context

    @abc.abstractmethod
    def spawn(self, actor_id: int) -> Activation:  # pragma: no cover - interface only
        """Create the activation callable for one new actor."""
        raise NotImplementedError

    def next_pause(self) -> float:
        base, jitter = self.pacing
        return base + self.context.rng.random() * jitter

    def retire(self, actor_id: int) -> None:
        """Drop whatever state `spawn` created for a finished actor."""

    def _random_product_id(self, rng: Optional[random.Random] = None) -> int:
        """Uniform pick over the catalog, for the read/cancel paths that ignore weights."""
        return (rng or self.context.rng).choice(self.context.catalog.product_ids)


__all__ = [
    "AbstractActorBehavior",
    "Activation",
    "ActorBehavior",
    "BehaviorContext",
]
