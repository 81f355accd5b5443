"""
HTTP client for the order-processing service under test.

One `httpx.AsyncClient` is shared by every actor of a run; its connection pool
is sized from settings and closed when the `ServiceClient` context exits.
Calls never raise on transport or parse problems: the load engine is a probe,
so every outcome comes back as an `ApiResponse` value and the caller decides
which branch it is on.

Includes a readiness wait with retry using tenacity, so a run does not start
hammering a service that is still booting.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from flashprobe.config import Settings
from flashprobe.domain.models import PurchaseRequest
from flashprobe.metrics import Metrics
from flashprobe.utils.logging import get_logger

log = get_logger(__name__)


class ServiceUnavailableError(ConnectionError):
    """The service never answered the readiness probe."""


@dataclass(frozen=True)
class ApiResponse:
    """
    Outcome of one request.

    `status` is None when the request never got an HTTP answer (connect error,
    timeout). `body` is None when the payload was missing or not a JSON object.
    """

    status: Optional[int]
    body: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    @property
    def is_server_fault(self) -> bool:
        """Transport failure, timeout or 5xx: the only infrastructure-failure branch."""
        return self.status is None or self.status >= 500

    def field(self, name: str, default: Any = None) -> Any:
        if self.body is None:
            return default
        return self.body.get(name, default)

    def orders(self) -> Optional[List[Dict[str, Any]]]:
        """The `orders` array of a listing response, or None if unusable."""
        if self.body is None:
            return None
        orders = self.body.get("orders", [])
        if not isinstance(orders, list):
            return None
        return [order for order in orders if isinstance(order, dict)]


class ServiceClient:
    """
    Thin async wrapper over the service's HTTP API.

    Parameters
    ----------
    settings : Settings
        Supplies the base URL, timeout and connection pool limits.
    metrics : Metrics
        Registry every request is accounted into.
    transport : httpx.AsyncBaseTransport, optional
        Override the network transport (tests pass an `httpx.MockTransport`).
    """

    def __init__(
        self,
        settings: Settings,
        metrics: Metrics,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.metrics = metrics
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            limits=httpx.Limits(
                max_connections=settings.http_max_connections,
                max_keepalive_connections=settings.http_max_connections,
            ),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        tag: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json_body, params=params)
        except httpx.HTTPError as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self.metrics.record_request(tag, None, elapsed_ms)
            log.debug(f"{method} {path} failed: {exc!r}", extra={"tag": tag})
            return ApiResponse(status=None, error=f"{type(exc).__name__}: {exc}", elapsed_ms=elapsed_ms)

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        self.metrics.record_request(tag, response.status_code, elapsed_ms)

        body: Optional[Dict[str, Any]] = None
        error: Optional[str] = None
        if response.content:
            try:
                parsed = response.json()
            except ValueError as exc:
                error = f"unparsable body: {exc}"
            else:
                if isinstance(parsed, dict):
                    body = parsed
                else:
                    error = f"expected JSON object, got {type(parsed).__name__}"
        return ApiResponse(
            status=response.status_code, body=body, error=error, elapsed_ms=elapsed_ms
        )

    async def get_product(self, product_id: int, tag: str = "get_product") -> ApiResponse:
        return await self._request("GET", f"/products/{product_id}", tag)

    async def list_orders(self, product_id: int, tag: str = "list_orders") -> ApiResponse:
        return await self._request("GET", "/orders", tag, params={"product_id": product_id})

    async def get_order(self, order_id: str, tag: str = "get_order") -> ApiResponse:
        return await self._request("GET", f"/orders/{order_id}", tag)

    async def place_order(self, request: PurchaseRequest, tag: str = "place_order") -> ApiResponse:
        return await self._request("POST", "/orders", tag, json_body=request.to_payload())

    async def cancel_order(self, order_id: str, tag: str = "cancel_order") -> ApiResponse:
        return await self._request("POST", f"/orders/{order_id}/cancel", tag)


async def wait_until_ready(client: ServiceClient, product_id: int, attempts: int = 5) -> None:
    """
    Block until `GET /products/{product_id}` answers 200.

    Retries with exponential backoff for up to `attempts` tries.

    Raises
    ------
    ServiceUnavailableError
        If the service still does not answer 200 after all attempts.
    """

    @retry(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
        retry=retry_if_exception_type(ServiceUnavailableError),
        reraise=True,
    )
    async def _probe() -> None:
        response = await client.get_product(product_id, tag="readiness")
        if response.status != 200:
            detail = response.error or f"status={response.status}"
            log.warning(f"Service not ready ({detail})", extra={"product_id": product_id})
            raise ServiceUnavailableError(f"product {product_id} probe failed: {detail}")

    await _probe()
    log.info("Service is ready", extra={"product_id": product_id})


__all__ = [
    "ApiResponse",
    "ServiceClient",
    "ServiceUnavailableError",
    "wait_until_ready",
]
