"""
flashprobe - load generation and black-box consistency validation for a
flash-sale order service.

The package drives concurrent pressure against an order API with finite
per-product stock, idempotent order creation and cancellable orders, then
verifies the service's invariants purely from its HTTP responses:

- Weighted product sampling biased toward low-stock items
- Idempotency replay actors that hold the service to its duplicate contract
- A declarative, overlapping phase timeline (warmup, burst, retries, cancel
  wave, read probes, validation)
- A consistency oracle checking stock conservation, uniqueness, cancel safety
  and error contracts under a capped listing view
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from flashprobe.config import Settings, get_settings
from flashprobe.oracle import CheckStatus, ConsistencyOracle, Finding, OracleReport
from flashprobe.orchestrator import run_probe, run_timeline, run_validation
from flashprobe.timeline import Phase, PhaseTimeline, Stage, default_timeline
from flashprobe.utils.logging import configure_logging, get_logger
from flashprobe.workload.abstract import ActorBehavior, BehaviorContext

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Orchestration
    "run_probe",
    "run_timeline",
    "run_validation",
    # Timeline
    "Phase",
    "PhaseTimeline",
    "Stage",
    "default_timeline",
    # Behaviors
    "ActorBehavior",
    "BehaviorContext",
    # Oracle
    "CheckStatus",
    "ConsistencyOracle",
    "Finding",
    "OracleReport",
    # Logging
    "configure_logging",
    "get_logger",
]
