"""
Domain models for flashprobe.

Defines the static catalog the run is configured with (products and their
sampling weights), the purchase request value object the load side emits,
and the order record shape the service exposes. The load engine and the
oracle only ever observe orders; they never construct them for the service.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field, model_validator


class Product(BaseModel):
    """
    A product with its stock baseline, known before any load runs.
    """

    id: int = Field(..., description="Product identifier as exposed by the service.")
    name: str = Field("", description="Display name.")
    initial_stock: int = Field(..., ge=0, description="Stock before the run starts.")

    model_config = {"frozen": True}


class WeightEntry(BaseModel):
    """
    One entry of the discrete sampling distribution over products.
    """

    product_id: int
    weight: int = Field(..., gt=0)

    model_config = {"frozen": True}


class Catalog(BaseModel):
    """
    Products plus the weight table used to bias load toward them.
    """

    products: List[Product]
    weights: List[WeightEntry]

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_references(self) -> "Catalog":
        if not self.products:
            raise ValueError("catalog needs at least one product")
        if not self.weights:
            raise ValueError("catalog needs at least one weight entry")
        ids = [p.id for p in self.products]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate product ids in catalog: {ids}")
        known = set(ids)
        unknown = [w.product_id for w in self.weights if w.product_id not in known]
        if unknown:
            raise ValueError(f"weight entries reference unknown products: {unknown}")
        return self

    @property
    def total_weight(self) -> int:
        return sum(w.weight for w in self.weights)

    @property
    def product_ids(self) -> Tuple[int, ...]:
        return tuple(p.id for p in self.products)

    def product(self, product_id: int) -> Product:
        for product in self.products:
            if product.id == product_id:
                return product
        raise KeyError(product_id)


class PurchaseRequest(BaseModel):
    """
    Body of `POST /orders`. Immutable once built so replays are byte-identical.
    """

    product_id: int
    idempotency_key: str
    customer_id: str
    quantity: int = Field(..., ge=1)

    model_config = {"frozen": True}

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump()


class OrderStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class OrderRecord(BaseModel):
    """
    Full order as returned by `GET /orders/{order_id}`.
    """

    id: str
    idempotency_key: str
    product_id: int
    customer_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    status: OrderStatus
    created_at: str


# Every field the detail endpoint must carry, in the order they are reported.
REQUIRED_ORDER_FIELDS: Tuple[str, ...] = tuple(OrderRecord.model_fields)


__all__ = [
    "Catalog",
    "OrderRecord",
    "OrderStatus",
    "Product",
    "PurchaseRequest",
    "REQUIRED_ORDER_FIELDS",
    "WeightEntry",
]
