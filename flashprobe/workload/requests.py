"""
Assembly of purchase requests from sampled inputs.
"""

from __future__ import annotations

import random
from typing import Callable, Optional

from flashprobe.domain.models import PurchaseRequest
from flashprobe.workload.sampling import new_idempotency_key


class OrderRequestBuilder:
    """
    Build `PurchaseRequest` values for an actor.

    Parameters
    ----------
    sampler : Callable[[], int]
        Product picker, usually a `WeightedSampler`.
    min_quantity, max_quantity : int
        Inclusive bounds of the uniform quantity draw.
    customer_prefix : str
        Customer ids are `f"{customer_prefix}{actor_id}"`, so every request of
        one actor shares a customer.
    rng : random.Random, optional
        Source for the quantity draw; defaults to the module-level generator.
    """

    def __init__(
        self,
        sampler: Callable[[], int],
        min_quantity: int = 1,
        max_quantity: int = 3,
        customer_prefix: str = "customer_vu",
        rng: Optional[random.Random] = None,
    ) -> None:
        if not 1 <= min_quantity <= max_quantity:
            raise ValueError(
                f"invalid quantity range [{min_quantity}, {max_quantity}]"
            )
        self.sampler = sampler
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity
        self.customer_prefix = customer_prefix
        self._rng = rng or random.Random()

    def customer_id(self, actor_id: int) -> str:
        return f"{self.customer_prefix}{actor_id}"

    def build(
        self,
        actor_id: int,
        product_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseRequest:
        return PurchaseRequest(
            product_id=product_id if product_id is not None else self.sampler(),
            idempotency_key=idempotency_key or new_idempotency_key(),
            customer_id=self.customer_id(actor_id),
            quantity=self._rng.randint(self.min_quantity, self.max_quantity),
        )


__all__ = ["OrderRequestBuilder"]
