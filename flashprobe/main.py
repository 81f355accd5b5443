from __future__ import annotations

import asyncio
import json
import sys
from typing import List, Optional

import typer
from pydantic import ValidationError

from flashprobe.config import Settings, get_settings
from flashprobe.infrastructure.http_client import ServiceUnavailableError
from flashprobe.orchestrator import run_probe, run_validation
from flashprobe.reporter import print_report, print_summary, print_timeline
from flashprobe.timeline import TimelineError, default_timeline
from flashprobe.utils.logging import configure_logging

app = typer.Typer(help="Flash-sale order service load generator and consistency oracle.")


def _effective_settings(base_url: Optional[str], time_scale: Optional[float]) -> Settings:
    settings = get_settings()
    overrides = {}
    if base_url:
        overrides["base_url"] = base_url
    if time_scale is not None:
        overrides["time_scale"] = time_scale
    return settings.model_copy(update=overrides) if overrides else settings


@app.command()
def info() -> None:
    """
    Show effective configuration values and the product catalog.
    """
    settings = get_settings()
    catalog = settings.catalog()
    typer.echo(
        f"target={settings.base_url} | timeout={settings.http_timeout_seconds}s "
        f"listing_cap={settings.listing_cap} stock_field={settings.stock_field} "
        f"time_scale={settings.time_scale}"
    )
    weights = {w.product_id: w.weight for w in catalog.weights}
    for product in catalog.products:
        typer.echo(
            f"  product {product.id}: {product.name} initial_stock={product.initial_stock} "
            f"weight={weights.get(product.id, 0)}/{catalog.total_weight}"
        )


@app.command()
def timeline(
    time_scale: Optional[float] = typer.Option(
        None, "--time-scale", "-t", help="Multiply every offset and duration (e.g. 0.1)."
    ),
) -> None:
    """
    Print the phase timeline a run would execute.
    """
    settings = _effective_settings(None, time_scale)
    try:
        scaled = default_timeline().scaled(settings.time_scale).validate()
    except TimelineError as exc:
        typer.echo(f"Invalid timeline: {exc}", err=True)
        raise typer.Exit(code=2)
    print_timeline(scaled)


@app.command()
def run(
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="Service base URL."),
    time_scale: Optional[float] = typer.Option(
        None, "--time-scale", "-t", help="Multiply every offset and duration (e.g. 0.1)."
    ),
    phases: Optional[List[str]] = typer.Option(
        None, "--phase", "-p", help="Run only the named phase(s); repeatable."
    ),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results JSON."),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
) -> None:
    """
    Run the full load timeline followed by the consistency oracle.
    """
    settings = _effective_settings(base_url, time_scale)
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    selected = default_timeline()
    try:
        if phases:
            selected = selected.only(phases)
        summary = asyncio.run(run_probe(settings, timeline=selected, persist=persist))
    except TimelineError as exc:
        typer.echo(f"Invalid timeline: {exc}", err=True)
        raise typer.Exit(code=2)
    except ServiceUnavailableError as exc:
        typer.echo(f"Service unavailable: {exc}", err=True)
        raise typer.Exit(code=3)

    if as_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2, default=str))
    else:
        print_summary(summary)
    if not summary.passed:
        raise typer.Exit(code=1)


@app.command()
def validate(
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="Service base URL."),
) -> None:
    """
    Run only the consistency oracle against the service's current state.
    """
    settings = _effective_settings(base_url, None)
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    report = asyncio.run(run_validation(settings))
    print_report(report)
    if not report.passed:
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except ValidationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        sys.exit(2)
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
