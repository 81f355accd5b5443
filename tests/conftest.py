"""
Pytest configuration for flashprobe.

Provides fixtures for:
- Settings pointed at the in-memory order service
- A fresh fake order service and metrics registry per test
- Live-service reachability for integration tests
"""

from __future__ import annotations

import os

import httpx
import pytest

from flashprobe.config import Settings
from flashprobe.domain.models import Product, WeightEntry
from flashprobe.metrics import Metrics
from tests.fakes import FAKE_BASE_URL, FakeOrderService


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """
    Settings fixture pointed at the fake service, with a tiny catalog.
    """
    return Settings(
        base_url=FAKE_BASE_URL,
        log_level="DEBUG",
        readiness_attempts=1,
        results_dir=str(tmp_path / "results"),
        products=[
            Product(id=1, name="Keyboard", initial_stock=20),
            Product(id=2, name="Webcam", initial_stock=5),
        ],
        product_weights=[
            WeightEntry(product_id=1, weight=1),
            WeightEntry(product_id=2, weight=3),
        ],
    )


@pytest.fixture
def metrics() -> Metrics:
    return Metrics()


@pytest.fixture
def fake_service() -> FakeOrderService:
    return FakeOrderService({1: 20, 2: 5})


@pytest.fixture(scope="session")
def live_base_url() -> str:
    """
    Base URL of a real order service for integration tests.

    Skips the test when the service does not answer.
    """
    base_url = os.getenv("BASE_URL", "http://localhost:9999")
    try:
        httpx.get(f"{base_url}/products/1", timeout=2.0)
    except httpx.HTTPError:
        pytest.skip(f"order service not reachable at {base_url}")
    return base_url
