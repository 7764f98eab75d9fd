"""Swarm status command - show task progress and team state."""

from __future__ import annotations

import json
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from swarm.agents import name_from_initial
from swarm.config import SwarmConfig
from swarm.events import ChatLog
from swarm.exceptions import SwarmError
from swarm.logging import get_logger
from swarm.state import SprintHistory, TeamState
from swarm.tasks import TaskList, TaskStatus

console = Console()
logger = get_logger("status")

STATUS_SYMBOLS = {
    TaskStatus.COMPLETED: "[green]✓[/green]",
    TaskStatus.ASSIGNED: "[yellow]●[/yellow]",
    TaskStatus.UNASSIGNED: "[dim]○[/dim]",
}


@click.command()
@click.option("--config", "-c", "config_path", help="Path to config.yaml")
@click.option("--team", "-t", help="Team to show (overrides config)")
@click.option("--tasks", "tasks_view", is_flag=True, help="List every task")
@click.option("--chat", "chat_lines", default=0, type=int, help="Show the last N chat messages")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def status(
    config_path: str | None,
    team: str | None,
    tasks_view: bool,
    chat_lines: int,
    json_output: bool,
) -> None:
    """Show task progress for a team.

    Examples:

        swarm status

        swarm status --tasks --chat 20

        swarm status --team backend --json
    """
    try:
        config = SwarmConfig.load(config_path)
        if team:
            config.project.team = team

        team_dir = config.team_dir
        tasks = TaskList.load(config.tasks_file)
        history = SprintHistory.load(team_dir, config.project.team)
        state = TeamState.load(team_dir, config.project.team)

        if json_output:
            console.print_json(json.dumps(build_status(tasks, history, state)))
            return

        show_overview(config, tasks, history, state)
        if tasks_view:
            show_tasks(tasks)
        if chat_lines > 0:
            show_chat(ChatLog(config.chat_file), chat_lines)

    except SwarmError as e:
        logger.exception("Status command failed")
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from None


def build_status(tasks: TaskList, history: SprintHistory, state: TeamState) -> dict[str, Any]:
    """Machine-readable status of one team."""
    return {
        "team": history.team,
        "total_sprints": history.total_sprints,
        "feature_branch": state.feature_branch,
        "tasks": {
            "total": len(tasks),
            "unassigned": tasks.unassigned_count(),
            "assigned": tasks.assigned_count(),
            "completed": tasks.completed_count(),
            "assignable": tasks.assignable_count(),
        },
    }


def show_overview(config: SwarmConfig, tasks: TaskList, history: SprintHistory, state: TeamState) -> None:
    console.print(f"\n[bold cyan]Swarm Status[/bold cyan] - {history.formatted_team_name}\n")

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Target branch", config.project.target_branch)
    table.add_row("Sprints run", str(history.total_sprints))
    table.add_row("Sprint in flight", state.feature_branch or "[dim]none[/dim]")
    table.add_row("Completed", f"{tasks.completed_count()}/{len(tasks)}")
    table.add_row("Assigned", str(tasks.assigned_count()))
    table.add_row("Assignable now", str(tasks.assignable_count()))
    console.print(table)


def show_tasks(tasks: TaskList) -> None:
    table = Table(title="Tasks")
    table.add_column("", width=2)
    table.add_column("#", justify="right")
    table.add_column("Agent")
    table.add_column("Description")

    for idx, task in enumerate(tasks.tasks):
        number = task.task_number()
        agent = name_from_initial(task.initial) if task.initial else None
        description = task.description
        if task.status == TaskStatus.UNASSIGNED and tasks.is_task_blocked(idx):
            description = f"[dim]{description}[/dim]"
        table.add_row(
            STATUS_SYMBOLS[task.status],
            str(number) if number is not None else "-",
            agent or task.initial or "",
            description,
        )

    console.print()
    console.print(table)


def show_chat(chat: ChatLog, count: int) -> None:
    console.print("\n[bold]Recent chat[/bold]")
    for line in chat.read_recent(count):
        console.print(f"  {line}", markup=False)
