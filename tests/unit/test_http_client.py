from __future__ import annotations

import httpx
import pytest

from flashprobe.domain.models import PurchaseRequest
from flashprobe.infrastructure.http_client import (
    ServiceClient,
    ServiceUnavailableError,
    wait_until_ready,
)
from tests.fakes import make_client


def _client(handler, metrics, settings) -> ServiceClient:
    return ServiceClient(settings, metrics, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_place_order_posts_payload_and_parses_body(fake_service, metrics, test_settings):
    request = PurchaseRequest(product_id=1, idempotency_key="k-1", customer_id="customer_vu1", quantity=2)

    async with make_client(fake_service, metrics, test_settings) as client:
        response = await client.place_order(request)

    assert response.status == 201
    assert response.ok
    assert response.field("idempotency_key") == "k-1"
    assert fake_service.stock[1] == 18
    assert metrics.latencies_ms["place_order"]


@pytest.mark.asyncio
async def test_list_orders_passes_product_filter(fake_service, metrics, test_settings):
    fake_service.add_order(2, 1)
    fake_service.add_order(1, 1)

    async with make_client(fake_service, metrics, test_settings) as client:
        response = await client.list_orders(2)

    orders = response.orders()
    assert len(orders) == 1
    assert orders[0]["product_id"] == 2


@pytest.mark.asyncio
async def test_transport_error_becomes_statusless_response(metrics, test_settings):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(refuse, metrics, test_settings) as client:
        response = await client.get_product(1)

    assert response.status is None
    assert response.is_server_fault
    assert "ConnectError" in response.error
    assert metrics.rates["http_req_failed"].value == 1.0


@pytest.mark.asyncio
async def test_unparsable_body_keeps_status(metrics, test_settings):
    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    async with _client(garbage, metrics, test_settings) as client:
        response = await client.get_order("abc")

    assert response.status == 200
    assert response.body is None
    assert response.error.startswith("unparsable body")
    assert response.field("id") is None


@pytest.mark.asyncio
async def test_non_object_json_is_rejected(metrics, test_settings):
    def listing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2, 3])

    async with _client(listing, metrics, test_settings) as client:
        response = await client.list_orders(1)

    assert response.body is None
    assert response.orders() is None
    assert "expected JSON object" in response.error


@pytest.mark.asyncio
async def test_wait_until_ready_retries_until_service_answers(metrics, test_settings, fake_service):
    calls = {"count": 0}

    def booting(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503)
        return fake_service.handle(request)

    async with _client(booting, metrics, test_settings) as client:
        await wait_until_ready(client, 1, attempts=2)

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_wait_until_ready_gives_up(metrics, test_settings):
    def down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with _client(down, metrics, test_settings) as client:
        with pytest.raises(ServiceUnavailableError, match="status=503"):
            await wait_until_ready(client, 1, attempts=1)
