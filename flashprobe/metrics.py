"""
Named counters, rates and latency samples emitted by a probe run.

Everything runs on one event loop, so plain ints are enough; there is no
cross-thread access. The registry is created once per run and handed to the
service client, the behaviors and the oracle.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

# Statuses that are valid business answers; anything else counts as a failed request.
EXPECTED_STATUSES = frozenset({200, 201, 404, 409, 422})

COUNTERS = (
    "orders_created",
    "stock_exhausted",
    "orders_cancelled",
    "cancel_already_cancelled",
    "idempotent_replays_correct",
    "idempotency_violations",
    "probe_errors",
    "get_order_success",
    "http_reqs",
    "actor_errors",
)

RATES = ("http_req_failed", "checks", "validation_passed")


@dataclass
class Rate:
    """Fraction of true samples among all samples."""

    hits: int = 0
    total: int = 0

    def add(self, value: bool) -> None:
        self.total += 1
        if value:
            self.hits += 1

    @property
    def value(self) -> Optional[float]:
        return self.hits / self.total if self.total else None


@dataclass
class ThresholdResult:
    name: str
    expression: str
    observed: Optional[float]
    passed: bool


@dataclass
class Metrics:
    counters: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in COUNTERS})
    rates: Dict[str, Rate] = field(default_factory=lambda: {name: Rate() for name in RATES})
    latencies_ms: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def incr(self, name: str, amount: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + amount

    def rate(self, name: str, value: bool) -> None:
        self.rates.setdefault(name, Rate()).add(value)

    def check(self, value: bool) -> bool:
        """Record one load-side boolean check and hand the value back."""
        self.rate("checks", value)
        return value

    def record_request(self, tag: str, status: Optional[int], elapsed_ms: float) -> None:
        """
        Account one HTTP request.

        Only transport failures, timeouts and statuses outside the expected
        business set count toward `http_req_failed`; 404/409/422 are answers.
        """
        self.incr("http_reqs")
        self.latencies_ms[tag].append(elapsed_ms)
        self.rate("http_req_failed", status is None or status not in EXPECTED_STATUSES)

    def all_latencies(self) -> List[float]:
        return [value for samples in self.latencies_ms.values() for value in samples]

    def latency_summary(self) -> Dict[str, Optional[float]]:
        samples = self.all_latencies()
        return {
            "p50": _percentile(samples, 50),
            "p95": _percentile(samples, 95),
            "p99": _percentile(samples, 99),
            "max": max(samples) if samples else None,
        }

    def evaluate_thresholds(
        self,
        p99_ms: float,
        failed_rate: float,
        checks_rate: float = 0.95,
        max_violations: int = 0,
        required_counts: Iterable[str] = (),
    ) -> List[ThresholdResult]:
        """
        Evaluate the pass/fail thresholds of a run.

        `checks` is only judged once a check was recorded and
        `validation_passed` only when an oracle actually ran. Every counter in
        `required_counts` must be above zero; idempotency violations may not
        exceed `max_violations`.
        """
        p99 = self.latency_summary()["p99"]
        failed = self.rates["http_req_failed"].value
        results = [
            ThresholdResult(
                "http_req_duration", f"p(99)<{p99_ms:g}", p99, p99 is not None and p99 < p99_ms
            ),
            ThresholdResult(
                "http_req_failed",
                f"rate<{failed_rate:g}",
                failed,
                failed is None or failed < failed_rate,
            ),
            ThresholdResult(
                "http_reqs", "count>0", float(self.counters["http_reqs"]), self.counters["http_reqs"] > 0
            ),
        ]
        violations = self.counters["idempotency_violations"]
        results.append(
            ThresholdResult(
                "idempotency_violations",
                f"count<={max_violations}",
                float(violations),
                violations <= max_violations,
            )
        )
        for name in required_counts:
            count = self.counters.get(name, 0)
            results.append(ThresholdResult(name, "count>0", float(count), count > 0))
        checks = self.rates["checks"]
        if checks.total:
            results.append(
                ThresholdResult(
                    "checks", f"rate>{checks_rate:g}", checks.value, checks.value > checks_rate
                )
            )
        validation = self.rates["validation_passed"]
        if validation.total:
            results.append(
                ThresholdResult(
                    "validation_passed", "rate==1.00", validation.value, validation.value == 1.0
                )
            )
        return results

    def snapshot(self) -> Dict[str, Any]:
        latency = self.latency_summary()
        return {
            "counters": dict(self.counters),
            "rates": {
                name: {"hits": rate.hits, "total": rate.total, "value": rate.value}
                for name, rate in self.rates.items()
            },
            "http_req_duration_ms": {
                key: round(value, 2) if value is not None else None
                for key, value in latency.items()
            },
        }


def _percentile(samples: List[float], pct: int) -> Optional[float]:
    if not samples:
        return None
    if len(samples) == 1:
        return samples[0]
    # quantiles() with n=100 yields the 1st..99th percentile cut points
    return statistics.quantiles(samples, n=100, method="inclusive")[pct - 1]


__all__ = ["EXPECTED_STATUSES", "Metrics", "Rate", "ThresholdResult"]
