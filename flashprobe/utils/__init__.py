"""
Utilities package for flashprobe.

Exports shared helpers for logging, profiling, and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from flashprobe.utils.logging import configure_logging, get_logger
from flashprobe.utils.profiler import PhaseProfile, profile_phase

__all__ = [
    "configure_logging",
    "get_logger",
    "PhaseProfile",
    "profile_phase",
]
