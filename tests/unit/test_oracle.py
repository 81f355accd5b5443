from __future__ import annotations

from typing import Dict

import pytest

from flashprobe.oracle import CheckStatus, ConsistencyOracle, OracleReport
from tests.fakes import FakeOrderService, make_catalog, make_client

INITIAL_STOCK = {1: 20, 2: 5}
SMALL_CAP = 3


def _confirm(service: FakeOrderService, product_id: int, quantity: int, **kwargs) -> Dict:
    service.stock[product_id] -= quantity
    return service.add_order(product_id, quantity, **kwargs)


def _cancelled(service: FakeOrderService, product_id: int, quantity: int) -> Dict:
    return service.add_order(product_id, quantity, status="CANCELLED")


def _status(report: OracleReport, check: str, product_id=None) -> CheckStatus:
    findings = report.by_check(check, product_id)
    assert len(findings) == 1, findings
    return findings[0].status


async def _run(service, metrics, settings, stock=None, **oracle_kwargs) -> OracleReport:
    catalog = make_catalog(stock or INITIAL_STOCK)
    async with make_client(service, metrics, settings) as client:
        oracle = ConsistencyOracle(client, catalog, metrics=metrics, **oracle_kwargs)
        return await oracle.run()


@pytest.mark.asyncio
async def test_consistent_service_passes_every_check(metrics, test_settings):
    service = FakeOrderService({1: 100, 2: 5})
    _confirm(service, 1, 3)
    _confirm(service, 1, 5)
    _cancelled(service, 1, 2)
    _confirm(service, 2, 5)
    service.reported_stock[1] = 94

    report = await _run(service, metrics, test_settings, stock={1: 100, 2: 5})

    assert report.passed, [f.message for f in report.failures()]
    assert _status(report, "stock_conservation", 1) is CheckStatus.PASS
    assert report.by_check("stock_conservation", 1)[0].details == {"expected": 94, "actual": 94}
    assert _status(report, "order_consistency", 2) is CheckStatus.PASS
    assert _status(report, "cancel_safety", 1) is CheckStatus.PASS
    # product 2 has nothing to re-cancel; that is reduced coverage, not a failure
    assert _status(report, "cancel_safety", 2) is CheckStatus.WARN
    assert _status(report, "error_not_found") is CheckStatus.PASS
    assert _status(report, "error_invalid_id") is CheckStatus.PASS
    assert metrics.rates["validation_passed"].value == 1.0


@pytest.mark.asyncio
async def test_stock_below_conservation_value_is_reported(metrics, test_settings):
    service = FakeOrderService({1: 100, 2: 5})
    _confirm(service, 1, 3)
    _confirm(service, 1, 5)
    _cancelled(service, 1, 2)
    service.reported_stock[1] = 90

    report = await _run(service, metrics, test_settings, stock={1: 100, 2: 5})

    finding = report.by_check("stock_conservation", 1)[0]
    assert finding.status is CheckStatus.FAIL
    assert finding.message == "stock integrity, expected=94, actual=90"
    assert finding.details == {"expected": 94, "actual": 90}


@pytest.mark.asyncio
async def test_lost_stock_fails_conservation_and_consistency(fake_service, metrics, test_settings):
    _confirm(fake_service, 1, 2)
    _confirm(fake_service, 1, 1)
    fake_service.reported_stock[1] = 15

    report = await _run(fake_service, metrics, test_settings)

    conservation = report.by_check("stock_conservation", 1)[0]
    assert conservation.status is CheckStatus.FAIL
    assert conservation.message == "stock integrity, expected=17, actual=15"
    consistency = report.by_check("order_consistency", 1)[0]
    assert consistency.status is CheckStatus.FAIL
    assert consistency.details == {"stock_delta": 5, "order_impact": 3}
    assert not report.passed
    assert metrics.rates["validation_passed"].value == 0.0


@pytest.mark.asyncio
async def test_oversold_product_fails_non_negative_stock(fake_service, metrics, test_settings):
    _confirm(fake_service, 2, 3)
    _confirm(fake_service, 2, 3)

    report = await _run(fake_service, metrics, test_settings)

    assert _status(report, "non_negative_stock", 2) is CheckStatus.FAIL
    # the equation still holds for an oversell that decremented honestly
    assert _status(report, "stock_conservation", 2) is CheckStatus.PASS


@pytest.mark.asyncio
async def test_duplicate_idempotency_keys_within_product(fake_service, metrics, test_settings):
    _confirm(fake_service, 1, 1, idempotency_key="shared-key")
    _confirm(fake_service, 1, 2, idempotency_key="shared-key")

    report = await _run(fake_service, metrics, test_settings)

    finding = report.by_check("unique_idempotency_keys", 1)[0]
    assert finding.status is CheckStatus.FAIL
    assert finding.message == "duplicate idempotency_keys (count=2, unique=1)"
    assert finding.details["duplicates"] == ["shared-key"]
    # reported once per product, not again across products
    assert _status(report, "cross_product_idempotency_keys") is CheckStatus.PASS


@pytest.mark.asyncio
async def test_duplicate_order_id_in_listing(fake_service, metrics, test_settings):
    order = _confirm(fake_service, 1, 1)
    fake_service.extra_listing[1] = [order["id"]]

    report = await _run(fake_service, metrics, test_settings)

    finding = report.by_check("unique_order_ids", 1)[0]
    assert finding.status is CheckStatus.FAIL
    assert finding.details == {"count": 2, "unique": 1, "duplicates": [order["id"]]}
    assert _status(report, "cross_product_order_ids") is CheckStatus.PASS


@pytest.mark.asyncio
async def test_order_listed_under_two_products(fake_service, metrics, test_settings):
    order = _confirm(fake_service, 1, 1)
    fake_service.extra_listing[2] = [order["id"]]

    report = await _run(fake_service, metrics, test_settings)

    cross = report.by_check("cross_product_order_ids")[0]
    assert cross.status is CheckStatus.FAIL
    assert cross.details["duplicates"] == [{"order_id": order["id"], "products": [1, 2]}]
    keys = report.by_check("cross_product_idempotency_keys")[0]
    assert keys.status is CheckStatus.FAIL
    fields = report.by_check("order_fields", 2)[0]
    assert fields.status is CheckStatus.FAIL
    assert any("product_id mismatch" in problem for problem in fields.details["problems"])


@pytest.mark.asyncio
async def test_capped_listing_downgrades_equations_to_warnings(fake_service, metrics, test_settings):
    fake_service.listing_cap = SMALL_CAP
    for _ in range(SMALL_CAP + 1):
        _confirm(fake_service, 1, 1)
    # even a corrupt stock value cannot be judged against a partial view
    fake_service.reported_stock[1] = 3

    report = await _run(fake_service, metrics, test_settings, listing_cap=SMALL_CAP)

    conservation = report.by_check("stock_conservation", 1)[0]
    assert conservation.status is CheckStatus.WARN
    assert conservation.details == {"returned": SMALL_CAP}
    assert _status(report, "order_consistency", 1) is CheckStatus.WARN
    assert _status(report, "non_negative_stock", 1) is CheckStatus.PASS
    assert report.passed


@pytest.mark.asyncio
async def test_capped_listing_still_checks_negative_stock(fake_service, metrics, test_settings):
    fake_service.listing_cap = SMALL_CAP
    for _ in range(SMALL_CAP):
        _confirm(fake_service, 1, 1)
    fake_service.reported_stock[1] = -2

    report = await _run(fake_service, metrics, test_settings, listing_cap=SMALL_CAP)

    assert _status(report, "stock_conservation", 1) is CheckStatus.WARN
    assert _status(report, "non_negative_stock", 1) is CheckStatus.FAIL
    assert not report.passed


@pytest.mark.asyncio
async def test_detail_disagreeing_with_listing_fails_order_fields(
    fake_service, metrics, test_settings
):
    order = _confirm(fake_service, 1, 2)
    fake_service.detail_overrides[order["id"]] = {"quantity": 9}

    report = await _run(fake_service, metrics, test_settings)

    finding = report.by_check("order_fields", 1)[0]
    assert finding.status is CheckStatus.FAIL
    assert finding.details["failures"] == 1
    assert "quantity mismatch (list=2, detail=9)" in finding.details["problems"][0]


@pytest.mark.asyncio
async def test_recancel_that_refunds_stock_fails_cancel_safety(
    fake_service, metrics, test_settings
):
    fake_service.recancel_refunds = True
    _cancelled(fake_service, 1, 2)

    report = await _run(fake_service, metrics, test_settings)

    finding = report.by_check("cancel_safety", 1)[0]
    assert finding.status is CheckStatus.FAIL
    problems = " ".join(finding.details["problems"])
    assert "returned 200 (expected 409)" in problems
    assert "stock changed" in problems


@pytest.mark.asyncio
async def test_cancel_safety_samples_at_most_three_orders(fake_service, metrics, test_settings):
    for _ in range(5):
        _cancelled(fake_service, 1, 1)

    report = await _run(fake_service, metrics, test_settings)

    finding = report.by_check("cancel_safety", 1)[0]
    assert finding.status is CheckStatus.PASS
    assert len(finding.details["samples"]) == 3
    recancels = [path for method, path in fake_service.requests if path.endswith("/cancel")]
    assert len(recancels) == 3


@pytest.mark.asyncio
async def test_wrong_error_contracts_fail(fake_service, metrics, test_settings):
    fake_service.not_found_status = 400
    fake_service.malformed_status = 404

    report = await _run(fake_service, metrics, test_settings)

    not_found = report.by_check("error_not_found")[0]
    assert not_found.status is CheckStatus.FAIL
    assert not_found.details == {"http_status": 400}
    assert _status(report, "error_invalid_id") is CheckStatus.FAIL


@pytest.mark.asyncio
async def test_unknown_product_fails_fetch_and_others_still_run(
    fake_service, metrics, test_settings
):
    report = await _run(fake_service, metrics, test_settings, stock={1: 20, 2: 5, 3: 10})

    assert _status(report, "product_fetch", 3) is CheckStatus.FAIL
    assert report.by_check("stock_conservation", 3) == []
    assert _status(report, "stock_conservation", 1) is CheckStatus.PASS
    assert _status(report, "error_not_found") is CheckStatus.PASS
    assert not report.passed


@pytest.mark.asyncio
async def test_stock_field_is_configurable(fake_service, metrics, test_settings):
    fake_service.stock_field = "stock_quantity"

    drifted = await _run(fake_service, metrics, test_settings)
    configured = await _run(fake_service, metrics, test_settings, stock_field="stock_quantity")

    assert _status(drifted, "product_fetch", 1) is CheckStatus.FAIL
    assert configured.passed


@pytest.mark.asyncio
async def test_report_serializes_statuses(fake_service, metrics, test_settings):
    report = await _run(fake_service, metrics, test_settings)

    data = report.to_dict()
    assert data["passed"] is True
    assert {finding["status"] for finding in data["findings"]} <= {"PASS", "WARN"}
