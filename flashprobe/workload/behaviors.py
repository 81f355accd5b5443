"""
Concrete phase behaviors.

Each behavior turns one actor activation into a handful of requests and
counter increments. 404/409/422 answers are business branches checked against
an explicit per-call whitelist, never failures of the load engine.
"""

from __future__ import annotations

from typing import Dict, Optional

from flashprobe.domain.models import REQUIRED_ORDER_FIELDS, OrderStatus
from flashprobe.oracle import (
    MALFORMED_ORDER_ID,
    NOT_FOUND_ORDER_ID,
    ConsistencyOracle,
    OracleReport,
)
from flashprobe.utils.logging import get_logger
from flashprobe.workload.abstract import AbstractActorBehavior, Activation, BehaviorContext
from flashprobe.workload.idempotency import IdempotencyActor
from flashprobe.workload.requests import OrderRequestBuilder
from flashprobe.workload.sampling import WeightedSampler

log = get_logger(__name__)


class WarmupBehavior(AbstractActorBehavior):
    """Confirm every product is reachable and exposes its stock field."""

    name = "warmup"
    description = "GET /products/{id}, cycling through the catalog."
    pacing = (2.0, 0.0)

    def spawn(self, actor_id: int) -> Activation:
        product_ids = self.context.catalog.product_ids
        position = {"next": 0}

        async def activate() -> None:
            product_id = product_ids[position["next"] % len(product_ids)]
            position["next"] += 1
            response = await self.context.client.get_product(product_id, tag="warmup_get_product")
            metrics = self.context.metrics
            if not metrics.check(response.status == 200):
                log.warning(f"warmup: product {product_id} returned {response.status}")
            elif not metrics.check(response.field(self.context.settings.stock_field) is not None):
                log.warning(
                    f"warmup: product {product_id} has no {self.context.settings.stock_field!r} field"
                )

        return activate


class FlashSaleBehavior(AbstractActorBehavior):
    """Place weighted-random orders with a fresh idempotency key each time."""

    name = "flash_sale"
    description = "POST /orders on a weighted product, read back created orders."
    pacing = (0.0, 0.1)

    def __init__(self, context: BehaviorContext) -> None:
        super().__init__(context)
        self.builder = OrderRequestBuilder(
            WeightedSampler(context.catalog, context.rng), rng=context.rng
        )

    def spawn(self, actor_id: int) -> Activation:
        async def activate() -> None:
            client, metrics = self.context.client, self.context.metrics
            request = self.builder.build(actor_id)
            response = await client.place_order(request, tag="flash_sale_place_order")

            if response.status == 201:
                metrics.incr("orders_created")
                order_id = response.field("id")
                if order_id is None:
                    return
                verify = await client.get_order(str(order_id), tag="flash_sale_verify_order")
                metrics.check(verify.status == 200)
                metrics.check(verify.field("id") == order_id)
            elif response.status == 409:
                metrics.incr("stock_exhausted")

        return activate


class CancelWaveBehavior(AbstractActorBehavior):
    """Discover a confirmed order of a random product and cancel it."""

    name = "cancel_wave"
    description = "List a product's orders, cancel one CONFIRMED order."
    pacing = (0.0, 0.3)

    def spawn(self, actor_id: int) -> Activation:
        async def activate() -> None:
            client, metrics, rng = self.context.client, self.context.metrics, self.context.rng
            product_id = self._random_product_id()
            listing = await client.list_orders(product_id, tag="cancel_list_orders")
            metrics.check(listing.status == 200)

            orders = listing.orders() or []
            confirmed = [
                order
                for order in orders
                if order.get("status") == OrderStatus.CONFIRMED.value and order.get("order_id")
            ]
            if not confirmed:
                return

            target = rng.choice(confirmed)["order_id"]
            response = await client.cancel_order(str(target), tag="cancel_order")
            metrics.check(response.status in (200, 404, 409))
            if response.status == 200:
                metrics.incr("orders_cancelled")
            elif response.status == 409:
                metrics.incr("cancel_already_cancelled")

        return activate


class GetOrderBehavior(AbstractActorBehavior):
    """Read orders by id and probe the 404/422 contracts."""

    name = "get_order"
    description = "GET /orders/{id} with field checks, plus unknown/malformed id probes."
    pacing = (0.0, 0.3)

    def spawn(self, actor_id: int) -> Activation:
        async def activate() -> None:
            client, metrics, rng = self.context.client, self.context.metrics, self.context.rng
            product_id = self._random_product_id()
            listing = await client.list_orders(product_id, tag="get_order_list")
            metrics.check(listing.status == 200)

            orders = [order for order in listing.orders() or [] if order.get("order_id")]
            if orders:
                target = str(rng.choice(orders)["order_id"])
                detail = await client.get_order(target, tag="get_order_by_id")
                checks: Dict[str, bool] = {
                    "status 200": detail.status == 200,
                    "has id": detail.field("id") is not None and str(detail.field("id")) == target,
                }
                for name in REQUIRED_ORDER_FIELDS[1:]:
                    checks[f"has {name}"] = detail.body is not None and name in detail.body
                if all([metrics.check(passed) for passed in checks.values()]):
                    metrics.incr("get_order_success")

            missing = await client.get_order(NOT_FOUND_ORDER_ID, tag="get_order_404")
            metrics.check(missing.status == 404)
            malformed = await client.get_order(MALFORMED_ORDER_ID, tag="get_order_422")
            metrics.check(malformed.status == 422)

        return activate


class IdempotencyBehavior(AbstractActorBehavior):
    """One `IdempotencyActor` per spawned actor; memory dies with the actor."""

    name = "idempotency"
    description = "Original POST with a fresh key, then identical replays."
    pacing = (0.2, 0.3)

    def __init__(self, context: BehaviorContext) -> None:
        super().__init__(context)
        self.builder = OrderRequestBuilder(
            WeightedSampler(context.catalog, context.rng),
            customer_prefix="idem_vu",
            rng=context.rng,
        )
        self.actors: Dict[int, IdempotencyActor] = {}

    def spawn(self, actor_id: int) -> Activation:
        actor = IdempotencyActor(actor_id, self.builder, self.context.client, self.context.metrics)
        self.actors[actor_id] = actor
        return actor.activate

    def retire(self, actor_id: int) -> None:
        self.actors.pop(actor_id, None)


class ValidationBehavior(AbstractActorBehavior):
    """Run the consistency oracle; the last report is kept for the run summary."""

    name = "validation"
    description = "Post-run black-box consistency oracle."

    def __init__(self, context: BehaviorContext) -> None:
        super().__init__(context)
        settings = context.settings
        self.oracle = ConsistencyOracle(
            context.client,
            context.catalog,
            listing_cap=settings.listing_cap,
            stock_field=settings.stock_field,
            metrics=context.metrics,
        )
        self.report: Optional[OracleReport] = None

    def spawn(self, actor_id: int) -> Activation:
        async def activate() -> OracleReport:
            self.report = await self.oracle.run()
            return self.report

        return activate


BEHAVIORS = {
    behavior.name: behavior
    for behavior in (
        WarmupBehavior,
        FlashSaleBehavior,
        CancelWaveBehavior,
        GetOrderBehavior,
        IdempotencyBehavior,
        ValidationBehavior,
    )
}


def available_behaviors() -> list:
    """List available behavior names."""
    return sorted(BEHAVIORS)


def resolve_behavior(name: str, context: BehaviorContext) -> AbstractActorBehavior:
    if name not in BEHAVIORS:
        raise ValueError(f"Unknown behavior '{name}'. Available: {', '.join(available_behaviors())}")
    return BEHAVIORS[name](context)


__all__ = [
    "BEHAVIORS",
    "CancelWaveBehavior",
    "FlashSaleBehavior",
    "GetOrderBehavior",
    "IdempotencyBehavior",
    "ValidationBehavior",
    "WarmupBehavior",
    "available_behaviors",
    "resolve_behavior",
]
