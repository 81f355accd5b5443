from time import sleep

import pytest
from pydantic import ValidationError

from flashprobe import config
from flashprobe.config import Settings
from flashprobe.domain.models import REQUIRED_ORDER_FIELDS, Catalog, Product, WeightEntry
from flashprobe.utils import profiler


def test_get_settings_defaults():
    settings = config.get_settings()
    assert settings.base_url.startswith("http")
    assert settings.listing_cap == 50
    assert settings.stock_field == "stock"
    assert settings.time_scale > 0
    assert settings.http_timeout_seconds > 0


def test_default_catalog_biases_low_stock_products():
    catalog = Settings().catalog()
    weights = {w.product_id: w.weight for w in catalog.weights}

    assert catalog.product_ids == (1, 2, 3, 4, 5)
    assert catalog.total_weight == 100
    assert catalog.product(4).initial_stock == 10
    assert weights[4] == weights[5] == 35


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("BASE_URL", "http://orders.internal:8080")
    monkeypatch.setenv("TIME_SCALE", "0.5")
    monkeypatch.setenv("STOCK_FIELD", "current_stock")

    settings = Settings()
    assert settings.base_url == "http://orders.internal:8080"
    assert settings.time_scale == 0.5
    assert settings.stock_field == "current_stock"


def test_time_scale_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(time_scale=0)


def test_catalog_rejects_unknown_weight_reference():
    with pytest.raises(ValidationError, match="unknown products"):
        Catalog(
            products=[Product(id=1, initial_stock=5)],
            weights=[WeightEntry(product_id=2, weight=1)],
        )


def test_catalog_rejects_duplicate_products():
    with pytest.raises(ValidationError, match="duplicate"):
        Catalog(
            products=[Product(id=1, initial_stock=5), Product(id=1, initial_stock=6)],
            weights=[WeightEntry(product_id=1, weight=1)],
        )


def test_weights_must_be_positive():
    with pytest.raises(ValidationError):
        WeightEntry(product_id=1, weight=0)


def test_required_order_fields_start_with_id():
    assert REQUIRED_ORDER_FIELDS[0] == "id"
    assert set(REQUIRED_ORDER_FIELDS) == {
        "id",
        "idempotency_key",
        "product_id",
        "customer_id",
        "quantity",
        "unit_price",
        "total_price",
        "status",
        "created_at",
    }


def test_profile_phase_measures_time():
    with profiler.profile_phase("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    assert stats.peak_rss_bytes is None or stats.peak_rss_bytes > 0
    if stats.cpu_percent is not None:
        assert isinstance(stats.cpu_percent, float)
