"""
Configuration settings for flashprobe.

Uses Pydantic Settings to load environment variables for the target service,
logging, timeline scaling, oracle policy and the product catalog. The catalog
defaults mirror the flash-sale fixture the service is seeded with; override
`PRODUCTS` / `PRODUCT_WEIGHTS` with JSON lists to probe a different seed.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flashprobe.domain.models import Catalog, Product, WeightEntry


def _default_products() -> List[Product]:
    return [
        Product(id=1, name="Mechanical Keyboard Ultra", initial_stock=100),
        Product(id=2, name="Wireless Mouse Pro", initial_stock=50),
        Product(id=3, name="USB-C Hub 7-in-1", initial_stock=200),
        Product(id=4, name="4K Webcam Stream", initial_stock=10),
        Product(id=5, name="Noise-Cancel Headphones", initial_stock=30),
    ]


def _default_weights() -> List[WeightEntry]:
    # Weighted toward the low-stock products to maximize contention.
    return [
        WeightEntry(product_id=1, weight=10),
        WeightEntry(product_id=2, weight=10),
        WeightEntry(product_id=3, weight=10),
        WeightEntry(product_id=4, weight=35),
        WeightEntry(product_id=5, weight=35),
    ]


class Settings(BaseSettings):
    # Target service
    base_url: str = Field("http://localhost:9999", alias="BASE_URL")
    http_timeout_seconds: float = Field(10.0, alias="HTTP_TIMEOUT_SECONDS")
    http_max_connections: int = Field(100, alias="HTTP_MAX_CONNECTIONS")
    readiness_attempts: int = Field(5, alias="READINESS_ATTEMPTS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    # Run shape
    time_scale: float = Field(1.0, gt=0, alias="TIME_SCALE")

    # Oracle policy
    listing_cap: int = Field(50, gt=0, alias="LISTING_CAP")
    stock_field: str = Field("stock", alias="STOCK_FIELD")

    # Thresholds
    threshold_p99_ms: float = Field(500.0, alias="THRESHOLD_P99_MS")
    threshold_failed_rate: float = Field(0.01, alias="THRESHOLD_FAILED_RATE")
    threshold_checks_rate: float = Field(0.95, alias="THRESHOLD_CHECKS_RATE")
    threshold_max_idempotency_violations: int = Field(
        0, ge=0, alias="THRESHOLD_MAX_IDEMPOTENCY_VIOLATIONS"
    )

    # Catalog
    products: List[Product] = Field(default_factory=_default_products, alias="PRODUCTS")
    product_weights: List[WeightEntry] = Field(
        default_factory=_default_weights, alias="PRODUCT_WEIGHTS"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def catalog(self) -> Catalog:
        """
        Assemble the validated product/weight catalog for this run.
        """
        return Catalog(products=self.products, weights=self.product_weights)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
