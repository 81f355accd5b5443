"""
Domain package for flashprobe.

Exports the catalog, request and order models shared by the workload
behaviors, the service client and the consistency oracle.
"""

from flashprobe.domain.models import (
    REQUIRED_ORDER_FIELDS,
    Catalog,
    OrderRecord,
    OrderStatus,
    Product,
    PurchaseRequest,
    WeightEntry,
)

__all__ = [
    "Catalog",
    "OrderRecord",
    "OrderStatus",
    "Product",
    "PurchaseRequest",
    "REQUIRED_ORDER_FIELDS",
    "WeightEntry",
]
