"""
CLI entry point for Task Orchestra.

Commands:
    orchestra run <task>   - Run a task across providers
    orchestra doctor       - Check provider status
    orchestra config       - Manage configuration
    orchestra version      - Show version information
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from task_orchestra.config.settings import get_config_file, load_config, write_default_config
from task_orchestra.export import ExportFormat, to_json, write_export
from task_orchestra.logging import configure_logging
from task_orchestra.protocol.types import (
    Approach,
    ConsensusMode,
    ExecutionPhase,
    HealthStatus,
    OrchestrationResult,
    ProviderRecommendation,
    QualityLevel,
    SpeedPriority,
    StrategyAssessment,
    TaskStatus,
    TaskType,
)

app = typer.Typer(
    name="orchestra",
    help="Task Orchestra - Route tasks across multiple AI providers",
    no_args_is_help=True,
)
console = Console()


def _split(value: str | None) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()] if value else []


def _parse_phase(value: str) -> ExecutionPhase:
    """Parse ``name:provider[:description]``."""

    parts = value.split(":", 2)
    if len(parts) < 2 or not parts[0].strip() or not parts[1].strip():
        raise typer.BadParameter(f"Phase must look like name:provider[:description], got {value!r}")
    description = parts[2].strip() if len(parts) == 3 else ""
    return ExecutionPhase(name=parts[0].strip(), provider=parts[1].strip(), description=description)


def _load_assessment(path: Path) -> StrategyAssessment:
    data = yaml.safe_load(path.read_text()) or {}
    return StrategyAssessment.model_validate(data)


def build_assessment(
    approach: str | None,
    providers: list[str],
    phases: list[str],
    coordinator: str | None,
    assessment_file: Path | None,
) -> StrategyAssessment | None:
    """Assessment from CLI options; None lets the facade pick its default."""

    if assessment_file is not None:
        return _load_assessment(assessment_file)
    if not (approach or phases or coordinator):
        return None

    parsed_phases = [_parse_phase(item) for item in phases]
    if approach is None:
        if parsed_phases:
            approach = Approach.SEQUENTIAL.value
        elif coordinator:
            approach = Approach.HIERARCHICAL.value
        else:
            approach = Approach.PARALLEL.value
    return StrategyAssessment(
        approach=approach,
        recommendations=[ProviderRecommendation(provider=name) for name in providers],
        phases=parsed_phases,
        coordinator=coordinator,
    )


def _headline(result: OrchestrationResult) -> str:
    if result.consensus is not None and result.consensus.decision.content:
        return result.consensus.decision.content
    for response in result.results:
        if response.status == TaskStatus.SUCCESS and response.result.content:
            return response.result.content
    reasons = [r.result.reasoning for r in result.results if r.result.reasoning]
    return "\n".join(reasons) or "No provider returned a result."


def _print_result(result: OrchestrationResult, verbose: bool) -> None:
    if result.success:
        console.print(
            Panel(
                _headline(result),
                title=f"[green]Result: SUCCESS[/green] ({result.strategy_used})",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                _headline(result),
                title=f"[red]Result: FAILED[/red] ({result.strategy_used})",
                border_style="red",
            )
        )

    if not verbose:
        return

    table = Table(title="Responses")
    table.add_column("Provider", style="cyan")
    table.add_column("Request")
    table.add_column("Status")
    table.add_column("Confidence")
    table.add_column("Duration")
    for response in result.results:
        color = "green" if response.status == TaskStatus.SUCCESS else "red"
        table.add_row(
            response.provider.name,
            response.id,
            f"[{color}]{response.status.value}[/{color}]",
            f"{response.result.confidence:.2f}",
            f"{response.performance.duration_ms}ms",
        )
    console.print(table)

    perf = result.performance
    console.print("\n[bold]Metrics:[/bold]")
    console.print(f"  Duration: {perf.total_duration_ms}ms")
    console.print(f"  Tokens: {perf.tokens_used}")
    console.print(f"  Est. cost: ${perf.total_cost:.4f}")
    if result.consensus is not None:
        console.print(
            f"  Consensus: {result.consensus.mode.value} "
            f"{result.consensus.confidence:.2f} over {result.consensus.participant_count}"
        )
    if result.validation is not None:
        console.print(
            f"  Agreement: {result.validation.cross_provider_agreement:.2f}, "
            f"quality {result.validation.quality_score:.2f}"
        )
        for issue in result.validation.issues:
            console.print(f"  [yellow]![/yellow] {issue}")
    if result.metadata.hierarchical_mode:
        console.print(f"  Hierarchical mode: {result.metadata.hierarchical_mode}")
    if result.metadata.skipped_providers:
        console.print(f"  Skipped: {', '.join(result.metadata.skipped_providers)}")


async def _run_task(
    config_overrides: dict[str, Any],
    task: str,
    assessment: StrategyAssessment | None,
    request_options: dict[str, Any],
) -> OrchestrationResult:
    from task_orchestra.orchestra import Orchestra

    config = load_config(**config_overrides)
    async with Orchestra(config=config) as orchestra:
        return await orchestra.run(task, assessment, **request_options)


@app.command()
def run(
    task: str = typer.Argument(..., help="Task description"),
    task_type: TaskType = typer.Option(TaskType.ANALYSIS, "--type", "-t", help="Task type"),
    quality: QualityLevel = typer.Option(QualityLevel.PRODUCTION, "--quality", "-q"),
    speed: SpeedPriority = typer.Option(SpeedPriority.BALANCED, "--speed", "-s"),
    approach: str | None = typer.Option(
        None,
        "--approach",
        "-a",
        help="single-provider, parallel, sequential or hierarchical",
    ),
    providers: str | None = typer.Option(
        None,
        "--providers",
        "-p",
        help="Comma-separated provider list (default: from config or claude)",
    ),
    phase: list[str] = typer.Option(
        [],
        "--phase",
        help="Sequential phase as name:provider[:description]; repeatable",
    ),
    coordinator: str | None = typer.Option(
        None, "--coordinator", help="Coordinator provider for hierarchical runs"
    ),
    assessment_file: Path | None = typer.Option(
        None,
        "--assessment",
        exists=True,
        dir_okay=False,
        help="YAML/JSON strategy assessment file",
    ),
    timeout: int | None = typer.Option(None, "--timeout", help="Per-call timeout in ms"),
    consensus: ConsensusMode | None = typer.Option(None, "--consensus", help="Consensus mode"),
    auto_validate: bool | None = typer.Option(
        None, "--auto-validate/--no-auto-validate", help="Cross-provider validation"
    ),
    memory_namespace: str | None = typer.Option(None, "--namespace", help="Memory namespace"),
    enforce_limits: bool | None = typer.Option(
        None, "--enforce-limits/--no-enforce-limits", help="Check ORCHESTRA_* usage limits first"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
    export: ExportFormat | None = typer.Option(None, "--export", help="Write the result to a file"),
    export_dir: Path = typer.Option(Path("."), "--export-dir", help="Directory for --export"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
) -> None:
    """Run a task across the configured providers."""
    configure_logging(logging.INFO if verbose else logging.WARNING)

    provider_list = _split(providers)
    config_overrides: dict[str, Any] = {
        "providers": provider_list or None,
        "timeout_ms": timeout,
        "consensus_mode": consensus,
        "auto_validate": auto_validate,
        "coordinator_provider": coordinator,
        "memory_namespace": memory_namespace,
        "enforce_limits": enforce_limits,
    }

    try:
        assessment = build_assessment(
            approach, provider_list, phase, coordinator, assessment_file
        )
        request_options: dict[str, Any] = {
            "task_type": task_type,
            "quality": quality,
            "speed": speed,
            "strategy": approach,
        }
        if timeout is not None:
            request_options["timeout_ms"] = timeout

        if not output_json:
            plan = assessment.approach if assessment else "default plan"
            console.print(f"[bold blue]Orchestra[/bold blue] Running {task_type.value} task ({plan})...")

        result = asyncio.run(_run_task(config_overrides, task, assessment, request_options))

        if output_json:
            print(to_json(result))
        else:
            _print_result(result, verbose)

        if export is not None:
            path = write_export(result, export, export_dir)
            if not output_json:
                console.print(f"[green]Exported to {path}[/green]")

    except Exception as e:
        if output_json:
            print(json.dumps({"error": str(e)}))
        else:
            console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@app.command()
def doctor(
    providers: str | None = typer.Option(
        None, "--providers", "-p", help="Comma-separated provider list"
    ),
) -> None:
    """Check provider availability and configuration."""
    console.print("[bold blue]Orchestra Doctor[/bold blue] Checking providers...\n")

    from task_orchestra.orchestra import Orchestra

    config = load_config(providers=_split(providers) or None)

    async def _check() -> tuple[Any, dict[str, str]]:
        async with Orchestra(config=config) as orchestra:
            return await orchestra.doctor(), dict(orchestra.provider_errors)

    report, provider_errors = asyncio.run(_check())

    if not report.providers and not provider_errors:
        console.print("[yellow]No providers configured.[/yellow]")
        console.print("Run 'orchestra config --init' to create a configuration.")
        return

    table = Table(title="Provider Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Message")
    table.add_column("Latency")

    styles = {
        HealthStatus.HEALTHY: "[green]OK[/green]",
        HealthStatus.DEGRADED: "[yellow]DEGRADED[/yellow]",
        HealthStatus.UNAVAILABLE: "[red]FAIL[/red]",
    }
    for entry in report.providers:
        latency = f"{entry.latency_ms:.0f}ms" if entry.latency_ms else "-"
        table.add_row(entry.provider, styles[entry.status], entry.message or "-", latency)
    for name, message in provider_errors.items():
        if name not in {entry.provider for entry in report.providers}:
            table.add_row(name, "[red]ERROR[/red]", message, "-")

    console.print(table)


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", help="Initialize default configuration"),
) -> None:
    """Manage Task Orchestra configuration."""
    config_file = get_config_file()

    if show:
        if config_file.exists():
            console.print(config_file.read_text())
        else:
            console.print("[yellow]No configuration file found.[/yellow]")
            console.print(f"Run 'orchestra config --init' to create one at {config_file}")
        return

    if init:
        write_default_config(config_file)
        console.print(f"[green]Created configuration at {config_file}[/green]")
        return

    console.print("Usage: orchestra config [--show | --init]")


@app.command()
def version() -> None:
    """Show version information."""
    from task_orchestra import __version__

    console.print(f"Task Orchestra v{__version__}")


if __name__ == "__main__":
    app()
