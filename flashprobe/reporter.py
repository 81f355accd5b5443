from __future__ import annotations

from typing import Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from flashprobe.metrics import ThresholdResult
from flashprobe.oracle import CheckStatus, OracleReport
from flashprobe.orchestrator import PhaseResult, RunSummary
from flashprobe.timeline import PhaseTimeline

_STATUS_STYLE = {
    CheckStatus.PASS: "bold green",
    CheckStatus.WARN: "bold yellow",
    CheckStatus.FAIL: "bold red",
}


def _fmt(value: Optional[float], pattern: str = "{:.2f}") -> str:
    return "N/A" if value is None else pattern.format(value)


def print_report(report: OracleReport, console: Optional[Console] = None) -> None:
    """
    Render oracle findings as a rich table, one row per check.
    """
    console = console or Console()
    if not report.findings:
        console.print("[yellow]No validation findings to display.[/yellow]")
        return

    table = Table(title="Consistency Validation", box=box.ROUNDED)
    table.add_column("Product", justify="right", style="cyan", no_wrap=True)
    table.add_column("Check", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Detail")

    for finding in report.findings:
        product = "-" if finding.product_id is None else str(finding.product_id)
        style = _STATUS_STYLE[finding.status]
        table.add_row(
            product, finding.check, f"[{style}]{finding.status.value}[/{style}]", finding.message
        )

    console.print(table)
    verdict = "[bold green]PASS[/bold green]" if report.passed else "[bold red]FAIL[/bold red]"
    console.print(f"RESULT: {verdict} ({len(report.failures())} failed check(s))")


def print_timeline(timeline: PhaseTimeline, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Phase Timeline", box=box.ROUNDED)
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Behavior", style="magenta")
    table.add_column("Start (s)", justify="right")
    table.add_column("End (s)", justify="right")
    table.add_column("Grace (s)", justify="right")
    table.add_column("Peak actors", justify="right", style="green")

    for phase in sorted(timeline.phases, key=lambda p: p.start_offset):
        info = phase.describe()
        peak = f"{info['peak_actors']} x{phase.iterations} it" if phase.iterations else str(info["peak_actors"])
        table.add_row(
            phase.name,
            phase.behavior,
            f"{info['start']:g}",
            f"{info['end']:g}",
            f"{info['graceful_stop']:g}",
            peak,
        )
    console.print(table)


def _phase_table(phases: Iterable[PhaseResult]) -> Table:
    table = Table(title="Phases", box=box.ROUNDED)
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Actors", justify="right", style="magenta")
    table.add_column("Activations", justify="right", style="green")
    table.add_column("Actor errors", justify="right", style="red")
    table.add_column("Duration (s)", justify="right")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")
    table.add_column("CPU %", justify="right", style="red")

    for phase in phases:
        profile = phase.profile
        mem_mb = (profile.peak_rss_bytes or 0) / (1024 * 1024) if profile else None
        table.add_row(
            phase.name,
            str(phase.actors_spawned),
            f"{phase.activations:,}",
            str(phase.actor_errors),
            _fmt(profile.duration_seconds if profile else None, "{:.1f}"),
            _fmt(mem_mb),
            _fmt(profile.cpu_percent if profile else None, "{:.1f}"),
        )
    return table


def _threshold_table(thresholds: List[ThresholdResult]) -> Table:
    table = Table(title="Thresholds", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Threshold")
    table.add_column("Observed", justify="right")
    table.add_column("Result", justify="center")
    for threshold in thresholds:
        result = "[bold green]PASS[/bold green]" if threshold.passed else "[bold red]FAIL[/bold red]"
        table.add_row(threshold.name, threshold.expression, _fmt(threshold.observed, "{:.4g}"), result)
    return table


def print_summary(summary: RunSummary, console: Optional[Console] = None) -> None:
    """
    Render a full run: phases, counters, latency, thresholds and the oracle verdict.
    """
    console = console or Console()
    console.print(_phase_table(summary.phases))

    counters = Table(title="Counters", box=box.ROUNDED)
    counters.add_column("Name", style="cyan")
    counters.add_column("Value", justify="right", style="bold green")
    for name, value in summary.metrics["counters"].items():
        counters.add_row(name, f"{value:,}")
    for name, rate in summary.metrics["rates"].items():
        counters.add_row(f"{name} (rate)", _fmt(rate["value"], "{:.2%}"))
    for name, value in summary.metrics["http_req_duration_ms"].items():
        counters.add_row(f"http_req_duration {name} (ms)", _fmt(value))
    console.print(counters)

    console.print(_threshold_table(summary.thresholds))
    if summary.report is not None:
        print_report(summary.report, console)
    else:
        console.print("[yellow]No validation phase ran.[/yellow]")


__all__ = ["print_report", "print_summary", "print_timeline"]
