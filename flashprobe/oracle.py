"""
Black-box consistency oracle for the order service.

Runs once, after every load phase has drained, and rebuilds the service's
invariants from nothing but API responses:

Per product
    stock conservation, non-negative stock, unique order ids, stock delta vs
    order impact, detail/list agreement with required fields, unique
    idempotency keys, and re-cancel safety.
Across products
    global uniqueness of order ids and idempotency keys.
Error space
    unknown-but-well-formed order id -> 404, malformed order id -> 422.

The listing endpoint caps how many orders it returns. When a product's listing
hits the cap the view may be incomplete, so the two equation checks are
downgraded to a coverage warning; non-negativity still runs. Every check yields
a `Finding`; one failed check never stops the remaining ones.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from flashprobe.domain.models import REQUIRED_ORDER_FIELDS, Catalog, OrderStatus, Product
from flashprobe.infrastructure.http_client import ApiResponse, ServiceClient
from flashprobe.metrics import Metrics
from flashprobe.utils.logging import get_logger

log = get_logger(__name__)

NOT_FOUND_ORDER_ID = "00000000-0000-4000-8000-000000000000"
MALFORMED_ORDER_ID = "not-a-valid-uuid"
CANCEL_SAMPLE_SIZE = 3


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


@dataclass(frozen=True)
class Finding:
    """
    One named check result.

    WARN findings document reduced coverage; they do not fail the verdict.
    """

    check: str
    status: CheckStatus
    message: str
    product_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status is not CheckStatus.FAIL

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class OracleReport:
    findings: List[Finding] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(finding.passed for finding in self.findings)

    def failures(self) -> List[Finding]:
        return [finding for finding in self.findings if not finding.passed]

    def by_check(self, check: str, product_id: Optional[int] = None) -> List[Finding]:
        return [
            finding
            for finding in self.findings
            if finding.check == check and (product_id is None or finding.product_id == product_id)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "findings": [finding.to_dict() for finding in self.findings],
        }


@dataclass
class _ProductView:
    """What the oracle observed for one product."""

    product: Product
    stock: int
    orders: List[Dict[str, Any]]
    confirmed_qty: int = 0
    cancelled_qty: int = 0
    confirmed_count: int = 0
    cancelled_count: int = 0
    order_ids: List[str] = field(default_factory=list)
    cancelled_ids: List[str] = field(default_factory=list)
    idempotency_keys: List[str] = field(default_factory=list)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class ConsistencyOracle:
    """
    Read back the service's state and check its invariants.

    Parameters
    ----------
    client : ServiceClient
        Service to query. Calls are issued strictly one after another.
    catalog : Catalog
        Products and their initial stock, the ground truth of the run.
    listing_cap : int
        Page size of `GET /orders?product_id=`; a listing this long is untrusted.
    stock_field : str
        Name of the stock attribute in `GET /products/{id}`.
    metrics : Metrics, optional
        Receives the `validation_passed` rate sample.
    """

    def __init__(
        self,
        client: ServiceClient,
        catalog: Catalog,
        listing_cap: int = 50,
        stock_field: str = "stock",
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.client = client
        self.catalog = catalog
        self.listing_cap = listing_cap
        self.stock_field = stock_field
        self.metrics = metrics

    async def run(self) -> OracleReport:
        log.info("=== Post-run validation ===")
        report = OracleReport()
        all_order_ids: List[Tuple[str, int]] = []
        all_keys: List[Tuple[str, int]] = []

        for product in self.catalog.products:
            log.info(f"--- Product {product.id}: {product.name} ---")
            view = await self._check_product(product, report)
            if view is not None:
                # Duplicates inside one product are already reported per product.
                all_order_ids.extend((oid, product.id) for oid in dict.fromkeys(view.order_ids))
                all_keys.extend((key, product.id) for key in dict.fromkeys(view.idempotency_keys))

        log.info("--- Cross-product duplicate checks ---")
        self._check_cross_product(report, all_order_ids, "cross_product_order_ids", "order_id")
        self._check_cross_product(
            report, all_keys, "cross_product_idempotency_keys", "idempotency_key"
        )

        log.info("--- Error case checks ---")
        await self._check_error_contracts(report)

        if self.metrics is not None:
            self.metrics.rate("validation_passed", report.passed)
        if report.passed:
            log.info("RESULT: PASS (all validation rules passed)")
        else:
            log.error(
                f"RESULT: FAIL ({len(report.failures())} validation rule(s) failed)",
                extra={"failed_checks": sorted({f.check for f in report.failures()})},
            )
        return report

    # ------------------------------------------------------------------ helpers

    def _record(
        self,
        report: OracleReport,
        check: str,
        status: CheckStatus,
        message: str,
        product_id: Optional[int] = None,
        **details: Any,
    ) -> Finding:
        finding = Finding(check, status, message, product_id, details)
        report.findings.append(finding)
        extra = {"check": check, "product_id": product_id}
        line = f"{status.value}: {message}"
        if status is CheckStatus.PASS:
            log.info(line, extra=extra)
        elif status is CheckStatus.WARN:
            log.warning(line, extra=extra)
        else:
            log.error(line, extra=extra)
        return finding

    def _stock_of(self, response: ApiResponse) -> Optional[int]:
        if response.status != 200:
            return None
        return _as_int(response.field(self.stock_field))

    async def _read_stock(self, product_id: int, tag: str) -> Optional[int]:
        return self._stock_of(await self.client.get_product(product_id, tag=tag))

    # ------------------------------------------------------------- per product

    async def _check_product(self, product: Product, report: OracleReport) -> Optional[_ProductView]:
        pid = product.id
        product_res = await self.client.get_product(pid, tag="validation_get_product")
        stock = self._stock_of(product_res)
        if stock is None:
            self._record(
                report,
                "product_fetch",
                CheckStatus.FAIL,
                f"could not read {self.stock_field!r} of product {pid} "
                f"(status={product_res.status}, error={product_res.error})",
                pid,
            )
            return None

        if stock < 0:
            self._record(report, "non_negative_stock", CheckStatus.FAIL, f"negative stock ({stock})", pid, stock=stock)
        else:
            self._record(report, "non_negative_stock", CheckStatus.PASS, f"stock non-negative ({stock})", pid, stock=stock)

        orders_res = await self.client.list_orders(pid, tag="validation_get_orders")
        orders = orders_res.orders() if orders_res.status == 200 else None
        if orders is None:
            self._record(
                report,
                "orders_fetch",
                CheckStatus.FAIL,
                f"could not list orders for product {pid} "
                f"(status={orders_res.status}, error={orders_res.error})",
                pid,
            )
            return None

        view = self._partition(product, stock, orders)
        log.info(
            f"Orders: {len(orders)} total, {view.confirmed_count} confirmed (qty={view.confirmed_qty}), "
            f"{view.cancelled_count} cancelled (qty={view.cancelled_qty})",
            extra={"product_id": pid},
        )
        log.info(f"Stock: initial={product.initial_stock}, current={stock}", extra={"product_id": pid})

        trusted = len(orders) < self.listing_cap
        self._check_conservation(report, view, trusted)
        self._check_unique(report, "unique_order_ids", "order_ids", view.order_ids, pid)
        self._check_order_consistency(report, view, trusted)
        await self._check_order_details(report, view)
        self._check_unique(report, "unique_idempotency_keys", "idempotency_keys", view.idempotency_keys, pid)
        await self._check_cancel_safety(report, view)
        return view

    def _partition(self, product: Product, stock: int, orders: List[Dict[str, Any]]) -> _ProductView:
        view = _ProductView(product=product, stock=stock, orders=orders)
        for order in orders:
            order_id = order.get("order_id")
            if order_id is not None:
                view.order_ids.append(str(order_id))
            quantity = _as_int(order.get("quantity")) or 0
            status = order.get("status")
            if status == OrderStatus.CONFIRMED.value:
                view.confirmed_qty += quantity
                view.confirmed_count += 1
            elif status == OrderStatus.CANCELLED.value:
                view.cancelled_qty += quantity
                view.cancelled_count += 1
                if order_id is not None:
                    view.cancelled_ids.append(str(order_id))
        return view

    def _check_conservation(self, report: OracleReport, view: _ProductView, trusted: bool) -> None:
        pid = view.product.id
        if not trusted:
            self._record(
                report,
                "stock_conservation",
                CheckStatus.WARN,
                f"{len(view.orders)} orders returned (listing cap {self.listing_cap}), "
                "skipping stock equation check",
                pid,
                returned=len(view.orders),
            )
            return
        expected = view.product.initial_stock - view.confirmed_qty + view.cancelled_qty
        if view.stock == expected:
            self._record(
                report, "stock_conservation", CheckStatus.PASS, f"stock integrity (stock={view.stock})",
                pid, expected=expected, actual=view.stock,
            )
        else:
            self._record(
                report, "stock_conservation", CheckStatus.FAIL,
                f"stock integrity, expected={expected}, actual={view.stock}",
                pid, expected=expected, actual=view.stock,
            )

    def _check_order_consistency(self, report: OracleReport, view: _ProductView, trusted: bool) -> None:
        pid = view.product.id
        if not trusted:
            self._record(
                report,
                "order_consistency",
                CheckStatus.WARN,
                f"listing capped at {self.listing_cap}, skipping stock delta vs order impact",
                pid,
            )
            return
        stock_delta = view.product.initial_stock - view.stock
        order_impact = view.confirmed_qty - view.cancelled_qty
        status = CheckStatus.PASS if stock_delta == order_impact else CheckStatus.FAIL
        self._record(
            report,
            "order_consistency",
            status,
            f"order consistency, stockDelta={stock_delta}, orderImpact={order_impact}",
            pid,
            stock_delta=stock_delta,
            order_impact=order_impact,
        )

    def _check_unique(
        self, report: OracleReport, check: str, label: str, values: List[str], pid: int
    ) -> None:
        count, unique = len(values), len(set(values))
        seen: Dict[str, int] = {}
        for value in values:
            seen[value] = seen.get(value, 0) + 1
        duplicates = sorted(value for value, hits in seen.items() if hits > 1)
        if count == unique:
            self._record(report, check, CheckStatus.PASS, f"no duplicate {label} ({count})", pid, count=count, unique=unique)
        else:
            self._record(
                report, check, CheckStatus.FAIL,
                f"duplicate {label} (count={count}, unique={unique})",
                pid, count=count, unique=unique, duplicates=duplicates,
            )

    async def _check_order_details(self, report: OracleReport, view: _ProductView) -> None:
        pid = view.product.id
        problems: List[str] = []
        for order in view.orders:
            order_id = order.get("order_id")
            if order_id is None:
                problems.append("listing entry without order_id")
                continue
            detail_res = await self.client.get_order(str(order_id), tag="validation_get_order_detail")
            detail = detail_res.body
            if detail_res.status != 200 or detail is None:
                problems.append(f"could not fetch order {order_id} (status={detail_res.status})")
                continue

            missing = [name for name in REQUIRED_ORDER_FIELDS if name not in detail]
            if missing:
                problems.append(f"order {order_id} missing fields: {', '.join(missing)}")
            if "id" in detail and str(detail["id"]) != str(order_id):
                problems.append(f"order {order_id} detail id mismatch (got={detail['id']})")
            if detail.get("quantity") != order.get("quantity"):
                problems.append(
                    f"order {order_id} quantity mismatch "
                    f"(list={order.get('quantity')}, detail={detail.get('quantity')})"
                )
            if _as_int(detail.get("product_id")) != pid:
                problems.append(
                    f"order {order_id} product_id mismatch (expected={pid}, got={detail.get('product_id')})"
                )
            if detail.get("idempotency_key"):
                view.idempotency_keys.append(str(detail["idempotency_key"]))

        for problem in problems:
            log.error(f"  {problem}", extra={"product_id": pid})
        if problems:
            self._record(
                report, "order_fields", CheckStatus.FAIL,
                f"{len(problems)} field validation failure(s)",
                pid, failures=len(problems), problems=problems,
            )
        else:
            self._record(report, "order_fields", CheckStatus.PASS, f"all order fields valid ({len(view.orders)})", pid)

    async def _check_cancel_safety(self, report: OracleReport, view: _ProductView) -> None:
        pid = view.product.id
        samples = view.cancelled_ids[:CANCEL_SAMPLE_SIZE]
        if not samples:
            self._record(
                report, "cancel_safety", CheckStatus.WARN,
                "no cancelled orders to re-cancel, cancel safety not exercised", pid,
            )
            return

        problems: List[str] = []
        for order_id in samples:
            # stock-before, cancel, stock-after must stay strictly ordered
            before = await self._read_stock(pid, tag="validation_stock_before_recancel")
            recancel = await self.client.cancel_order(order_id, tag="validation_recancel")
            after = await self._read_stock(pid, tag="validation_stock_after_recancel")

            if recancel.status != 409:
                problems.append(f"re-cancel {order_id} returned {recancel.status} (expected 409)")
            if before is None or after is None:
                problems.append(f"could not read stock around re-cancel {order_id} (before={before}, after={after})")
            elif before != after:
                problems.append(f"stock changed after re-cancel {order_id} (before={before}, after={after})")

        for problem in problems:
            log.error(f"  {problem}", extra={"product_id": pid})
        if problems:
            self._record(
                report, "cancel_safety", CheckStatus.FAIL,
                f"cancel safety, {len(problems)} problem(s) over {len(samples)} re-cancel attempt(s)",
                pid, samples=samples, problems=problems,
            )
        else:
            self._record(
                report, "cancel_safety", CheckStatus.PASS,
                f"cancel safety ({len(samples)} re-cancel attempts)", pid, samples=samples,
            )

    # ------------------------------------------------------------ cross product

    def _check_cross_product(
        self, report: OracleReport, observed: List[Tuple[str, int]], check: str, label: str
    ) -> None:
        owner: Dict[str, int] = {}
        duplicates: List[Dict[str, Any]] = []
        for value, pid in observed:
            if value in owner:
                duplicates.append({label: value, "products": [owner[value], pid]})
                log.error(f"  {label} {value} appears in products {owner[value]} and {pid}")
            else:
                owner[value] = pid

        if duplicates:
            self._record(
                report, check, CheckStatus.FAIL,
                f"{len(duplicates)} cross-product {label} duplicate(s)",
                duplicates=duplicates,
            )
        else:
            self._record(
                report, check, CheckStatus.PASS,
                f"no cross-product {label} duplicates ({len(observed)} observed)",
            )

    async def _check_error_contracts(self, report: OracleReport) -> None:
        missing = await self.client.get_order(NOT_FOUND_ORDER_ID, tag="validation_error_404")
        self._record(
            report,
            "error_not_found",
            CheckStatus.PASS if missing.status == 404 else CheckStatus.FAIL,
            f"non-existent order returns 404 (got {missing.status})",
            http_status=missing.status,
        )
        malformed = await self.client.get_order(MALFORMED_ORDER_ID, tag="validation_error_422")
        self._record(
            report,
            "error_invalid_id",
            CheckStatus.PASS if malformed.status == 422 else CheckStatus.FAIL,
            f"malformed order id returns 422 (got {malformed.status})",
            http_status=malformed.status,
        )


__all__ = [
    "CANCEL_SAMPLE_SIZE",
    "CheckStatus",
    "ConsistencyOracle",
    "Finding",
    "MALFORMED_ORDER_ID",
    "NOT_FOUND_ORDER_ID",
    "OracleReport",
]
