"""
Resource profiling for load phases.

The load generator itself can become the bottleneck (CPU-bound event loop,
ballooning memory from retained responses), which would make the service look
slower than it is. Each phase is wrapped in `profile_phase` so the run summary
records how hard the generator was working while that phase was active:

- Wall-clock time (perf_counter)
- CPU usage of this process (psutil)
- Peak RSS via a background sampling thread (psutil)

Usage:
    from flashprobe.utils.profiler import profile_phase

    with profile_phase("flash_sale") as profile:
        await run_phase()

    print(profile.duration_seconds, profile.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class PhaseProfile:
    """
    Resource measurements taken while one phase was running.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration_seconds"] = round(self.duration_seconds, 2)
        if self.cpu_percent is not None:
            data["cpu_percent"] = round(self.cpu_percent, 1)
        return data


@contextlib.contextmanager
def profile_phase(
    label: str, sample_interval_ms: int = 250
) -> Generator[PhaseProfile, None, None]:
    """
    Profile the enclosed block, sampling RSS on a daemon thread.

    Parameters
    ----------
    label : str
        Phase name the measurements belong to.
    sample_interval_ms : int
        Interval in milliseconds between RSS samples.

    Notes
    -----
    Phases overlap, so the figures describe the whole process while the phase
    was active, not the phase in isolation.
    """
    profile = PhaseProfile(label=label)
    process = psutil.Process()
    peak_rss = process.memory_info().rss
    stop_sampling = threading.Event()

    def _sample_memory() -> None:
        nonlocal peak_rss
        while not stop_sampling.is_set():
            try:
                peak_rss = max(peak_rss, process.memory_info().rss)
            except psutil.Error:
                return
            stop_sampling.wait(timeout=sample_interval_ms / 1000.0)

    # cpu_percent needs a priming call
    process.cpu_percent(interval=None)

    sampler = threading.Thread(target=_sample_memory, name=f"rss-{label}", daemon=True)
    sampler.start()

    profile.start_ts = time.perf_counter()
    try:
        yield profile
    finally:
        profile.end_ts = time.perf_counter()
        profile.duration_seconds = profile.end_ts - profile.start_ts

        stop_sampling.set()
        sampler.join(timeout=1.0)

        profile.peak_rss_bytes = peak_rss if peak_rss > 0 else None
        profile.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["PhaseProfile", "profile_phase"]
