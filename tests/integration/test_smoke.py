"""
Integration tests against a running order service.

These tests talk to a real deployment and verify that:
1. The service exposes the catalog and the stock field the oracle reads
2. Order creation honors idempotency keys
3. The oracle's error-contract checks pass

Run with: RUN_INTEGRATION_TESTS=1 BASE_URL=http://localhost:9999 pytest tests/integration/
"""

from __future__ import annotations

import os

import pytest

from flashprobe.config import Settings
from flashprobe.infrastructure.http_client import ServiceClient, wait_until_ready
from flashprobe.metrics import Metrics
from flashprobe.oracle import CheckStatus, ConsistencyOracle
from flashprobe.workload.idempotency import IdempotencyActor, ReplayOutcome
from flashprobe.workload.requests import OrderRequestBuilder

REPLAYS = 2

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and a reachable order service",
)


@pytest.fixture
def live_settings(live_base_url: str) -> Settings:
    return Settings(base_url=live_base_url, readiness_attempts=3)


class TestServiceContract:
    """Shape of the responses the probe relies on."""

    @pytest.mark.asyncio
    async def test_every_catalog_product_exposes_stock(self, live_settings: Settings):
        """Verify the configured stock field is present for every product."""
        async with ServiceClient(live_settings, Metrics()) as client:
            await wait_until_ready(client, live_settings.catalog().products[0].id)
            for product in live_settings.catalog().products:
                response = await client.get_product(product.id)
                assert response.status == 200
                assert isinstance(response.field(live_settings.stock_field), int)

    @pytest.mark.asyncio
    async def test_replays_are_idempotent(self, live_settings: Settings):
        """Verify replays of one request never create a second order."""
        metrics = Metrics()
        async with ServiceClient(live_settings, metrics) as client:
            builder = OrderRequestBuilder(lambda: 3, customer_prefix="smoke_vu")
            actor = IdempotencyActor(1, builder, client, metrics)
            await actor.activate()
            outcomes = [await actor.activate() for _ in range(REPLAYS)]

        assert ReplayOutcome.VIOLATION not in outcomes
        assert metrics.counters["idempotency_violations"] == 0


class TestOracle:
    """Oracle checks that hold on any correct deployment."""

    @pytest.mark.asyncio
    async def test_error_contracts(self, live_settings: Settings):
        """Verify unknown ids yield 404 and malformed ids yield 422."""
        async with ServiceClient(live_settings, Metrics()) as client:
            oracle = ConsistencyOracle(client, live_settings.catalog())
            report = await oracle.run()

        assert report.by_check("error_not_found")[0].status is CheckStatus.PASS
        assert report.by_check("error_invalid_id")[0].status is CheckStatus.PASS
        assert report.by_check("cross_product_order_ids")[0].status is CheckStatus.PASS
