"""Swarm run command - execute sprints until the task list is done."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from swarm.config import SwarmConfig
from swarm.exceptions import SwarmError
from swarm.logging import get_logger, setup_logging
from swarm.orchestrator import SprintOrchestrator, SprintResult
from swarm.runner import RunSummary, StopReason, run_loop
from swarm.shutdown import ShutdownController, install_signal_handlers

console = Console()
logger = get_logger("run")


@click.command()
@click.option("--config", "-c", "config_path", help="Path to config.yaml")
@click.option("--team", "-t", help="Team to run (overrides config)")
@click.option("--target", help="Target branch (overrides config)")
@click.option("--engine", type=click.Choice(["stub", "command"]), help="Engine type (overrides config)")
@click.option("--stub", is_flag=True, help="Shortcut for --engine stub")
@click.option("--max-sprints", type=int, help="Stop after this many sprints (0 = unlimited)")
@click.option("--max-agents", type=int, help="Maximum agents per sprint")
@click.option("--tasks-per-agent", type=int, help="Tasks per agent per sprint")
@click.option("--no-review", is_flag=True, help="Skip the post-sprint review")
@click.option("--json", "json_output", is_flag=True, help="Print the run summary as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(
    config_path: str | None,
    team: str | None,
    target: str | None,
    engine: str | None,
    stub: bool,
    max_sprints: int | None,
    max_agents: int | None,
    tasks_per_agent: int | None,
    no_review: bool,
    json_output: bool,
    verbose: bool,
) -> None:
    """Run sprints until no assignable tasks remain.

    Press Ctrl+C once to finish the current work and stop; three times to
    force exit.

    Examples:

        swarm run

        swarm run --team backend --max-sprints 2

        swarm run --stub --no-review
    """
    try:
        config = SwarmConfig.load(config_path)
        overrides = {
            "project": {"team": team, "target_branch": target},
            "engine": {"type": "stub" if stub else engine},
            "sprint": {
                "max_sprints": max_sprints,
                "max_agents": max_agents,
                "tasks_per_agent": tasks_per_agent,
            },
        }
        config = apply_overrides(config, overrides)
        if no_review:
            config.sprint.post_sprint_review = False

        setup_logging(
            level="debug" if verbose else config.logging.level,
            log_dir=config.logging.directory,
            json_output=config.logging.json_output,
            console_output=True,
            max_bytes=config.logging.max_log_size_mb * 1024 * 1024,
        )

        shutdown = ShutdownController()
        install_signal_handlers(shutdown)

        console.print(
            f"\n[bold cyan]Swarm[/bold cyan] - team [bold]{config.project.team}[/bold] "
            f"-> {config.project.target_branch}\n"
        )
        orchestrator = SprintOrchestrator.from_config(config, ".", shutdown=shutdown)
        try:
            summary = run_loop(orchestrator)
        finally:
            orchestrator.repo_ops.shutdown()

        if json_output:
            console.print_json(json.dumps(summary.to_dict()))
        else:
            show_summary(summary)

        if summary.stop_reason == StopReason.CONSECUTIVE_FAILURES:
            raise SystemExit(1)

    except SwarmError as e:
        logger.exception("Run command failed")
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from None


def apply_overrides(config: SwarmConfig, overrides: dict[str, dict[str, object]]) -> SwarmConfig:
    """Return a copy of ``config`` with every non-None override applied."""
    data = config.to_dict()
    for section, values in overrides.items():
        for key, value in values.items():
            if value is not None:
                data[section][key] = value
    return SwarmConfig.from_dict(data)


def show_summary(summary: RunSummary) -> None:
    """Print one row per sprint."""
    table = Table(title="Sprints")
    table.add_column("Sprint", justify="right")
    table.add_column("Branch")
    table.add_column("Assigned", justify="right")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Landed")

    for result in summary.sprints:
        table.add_row(
            str(result.sprint_number),
            result.sprint_branch or "-",
            str(result.tasks_assigned),
            str(result.tasks_completed),
            str(result.tasks_failed),
            _landed_cell(result),
        )

    console.print(table)
    console.print(
        f"\nStopped: [bold]{summary.stop_reason.value}[/bold] after {summary.sprints_run} sprint(s); "
        f"{summary.tasks_completed} completed, {summary.tasks_failed} failed"
    )


def _landed_cell(result: SprintResult) -> str:
    if result.land is None:
        return "[dim]-[/dim]"
    if result.land.success:
        return "[green]✓[/green]"
    return f"[red]✗[/red] {result.land.error or ''}"
