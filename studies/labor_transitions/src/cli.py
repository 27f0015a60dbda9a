"""
CLI for the household-head labor transitions panel.

Usage:
    transitions countries [--json]
    transitions build [--country slv]
    transitions pool
    transitions estimate [--absorb]
    transitions run
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from studies.labor_transitions.src.diagnostics import PipelineError, RunDiagnostics, Severity

app = typer.Typer(
    name="transitions",
    help="Household-head labor market and poverty transitions panel",
)
console = Console()


def setup_logging(level: str = "INFO") -> None:
    """Configure logging with rich output."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def print_diagnostics(diagnostics: RunDiagnostics) -> None:
    """End-of-run summary of non-fatal conditions."""
    if not diagnostics.records:
        console.print("[green]No diagnostics recorded.[/green]")
        return

    table = Table(title="Run diagnostics")
    table.add_column("Severity")
    table.add_column("Country")
    table.add_column("Period")
    table.add_column("Code")
    table.add_column("Message", overflow="fold")

    for record in diagnostics.records:
        style = "yellow" if record.severity == Severity.WARNING else "dim"
        table.add_row(
            record.severity.value,
            record.country or "-",
            record.period or "-",
            record.code,
            escape(record.message),
            style=style,
        )

    console.print(table)


def _pipeline(config: Optional[Path]):
    from config.settings import get_settings
    from studies.labor_transitions.src.pipeline import TransitionPipeline

    settings = get_settings()
    setup_logging(settings.log_level)
    if config is not None:
        settings = settings.model_copy(update={"countries_config": config})

    diagnostics = RunDiagnostics()
    try:
        return TransitionPipeline(settings, diagnostics=diagnostics)
    except PipelineError as e:
        _fail(diagnostics, e)


def _fail(diagnostics: RunDiagnostics, error: PipelineError) -> None:
    print_diagnostics(diagnostics)
    console.print(f"[bold red]{escape(str(error))}[/bold red]")
    raise typer.Exit(1)


@app.command()
def countries(
    config: Optional[Path] = typer.Option(None, help="Path to countries.yaml"),
    as_json: bool = typer.Option(False, "--json", help="Print the resolved table as JSON"),
):
    """Show the configured countries."""
    pipeline = _pipeline(config)

    if as_json:
        console.print_json(json.dumps([spec.to_dict() for spec in pipeline.specs.values()]))
        return

    table = Table(title="Configured countries")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Input")
    table.add_column("Periods")
    table.add_column("Missing covariates")

    for spec in pipeline.specs.values():
        table.add_row(
            spec.code,
            spec.name,
            str(spec.path),
            ", ".join(f"{t0}-{t1}" for t0, t1 in spec.periods),
            ", ".join(spec.missing_covariates) or "-",
        )

    console.print(table)


@app.command()
def build(
    country: Optional[list[str]] = typer.Option(None, help="Country code(s); default all"),
    config: Optional[Path] = typer.Option(None, help="Path to countries.yaml"),
):
    """Build per-country head transition tables."""
    pipeline = _pipeline(config)

    try:
        tables = pipeline.build_all(country or None)
    except PipelineError as e:
        _fail(pipeline.diagnostics, e)

    for code, selection in pipeline.selections.items():
        console.print(f"[bold]{code}[/bold]: {selection.summary()} -> {len(tables[code]):,} rows")

    pipeline.save()
    print_diagnostics(pipeline.diagnostics)


@app.command()
def pool(
    config: Optional[Path] = typer.Option(None, help="Path to countries.yaml"),
):
    """Build all countries and pool them into one analysis table."""
    pipeline = _pipeline(config)

    try:
        pooled = pipeline.pool()
    except PipelineError as e:
        _fail(pipeline.diagnostics, e)

    console.print(f"Pooled table: {pooled.shape}")
    console.print(
        pipeline.sample_sizes.pivot(index="country", columns="outcome", values="n_obs").to_string()
    )

    pipeline.save()
    print_diagnostics(pipeline.diagnostics)


@app.command()
def estimate(
    absorb: bool = typer.Option(False, help="Absorb fixed effects with PanelOLS"),
    config: Optional[Path] = typer.Option(None, help="Path to countries.yaml"),
):
    """Estimate regression tables and graph data."""
    pipeline = _pipeline(config)

    try:
        regressions = pipeline.estimate(absorb=absorb)
    except PipelineError as e:
        _fail(pipeline.diagnostics, e)

    for regs in regressions.values():
        console.print(regs.summary())

    pipeline.save()
    print_diagnostics(pipeline.diagnostics)


@app.command()
def run(
    country: Optional[list[str]] = typer.Option(None, help="Country code(s); default all"),
    absorb: bool = typer.Option(False, help="Absorb fixed effects with PanelOLS"),
    save: bool = typer.Option(True, help="Write outputs to disk"),
    config: Optional[Path] = typer.Option(None, help="Path to countries.yaml"),
):
    """Run the full pipeline."""
    pipeline = _pipeline(config)

    try:
        pooled = pipeline.run(codes=country or None, absorb=absorb, save=save)
    except PipelineError as e:
        _fail(pipeline.diagnostics, e)

    console.print(f"[bold green]Done.[/bold green] Pooled table: {pooled.shape}")
    print_diagnostics(pipeline.diagnostics)


if __name__ == "__main__":
    app()
