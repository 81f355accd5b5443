"""
Product sampling and idempotency key generation.

Both are pure: no I/O and no state beyond the random source they are given.
"""

from __future__ import annotations

import random
import uuid
from typing import Optional, Sequence

from flashprobe.domain.models import Catalog, WeightEntry


def pick_weighted(
    entries: Sequence[WeightEntry], total_weight: float, rng: Optional[random.Random] = None
) -> int:
    """
    Draw one product id with probability `weight / total_weight`.

    Draws `r` uniformly from `[0, total_weight)` and subtracts weights in
    order, returning the first entry that brings `r` to zero or below.
    Falls back to the last entry if float drift leaves `r` positive.
    """
    if not entries:
        raise ValueError("cannot sample from an empty weight table")
    r = (rng or random).random() * total_weight
    for entry in entries:
        r -= entry.weight
        if r <= 0:
            return entry.product_id
    return entries[-1].product_id


class WeightedSampler:
    """
    Callable sampler bound to a catalog's weight table.

    The total weight is computed once at construction.
    """

    def __init__(self, catalog: Catalog, rng: Optional[random.Random] = None) -> None:
        self.entries = tuple(catalog.weights)
        self.total_weight = catalog.total_weight
        self._rng = rng

    def __call__(self) -> int:
        return pick_weighted(self.entries, self.total_weight, self._rng)


def new_idempotency_key() -> str:
    """
    A fresh random (version 4) UUID in canonical 8-4-4-4-12 form.
    """
    return str(uuid.uuid4())


__all__ = ["WeightedSampler", "new_idempotency_key", "pick_weighted"]
