"""Swarm init command - write a default configuration and task file."""

from pathlib import Path

import click
from rich.console import Console

from swarm.config import SwarmConfig
from swarm.constants import CONFIG_FILE
from swarm.logging import get_logger
from swarm.tasks import TaskList

console = Console()
logger = get_logger("init")

TASKS_TEMPLATE = """# Tasks

- [ ] (#1) Describe the first task here
"""


@click.command()
@click.option("--project", "-p", help="Project name used in branch names")
@click.option("--team", "-t", default="default", help="Team name")
@click.option("--target", default="main", help="Branch that sprints land on")
@click.option("--agents", "-a", default=3, type=int, help="Maximum agents per sprint")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(project: str | None, team: str, target: str, agents: int, force: bool) -> None:
    """Initialize swarm state for the current repository.

    Examples:

        swarm init --project api --team backend

        swarm init --target develop --agents 5
    """
    config_path = Path(CONFIG_FILE)
    if config_path.exists() and not force:
        console.print(f"[yellow]{config_path} already exists[/yellow] (use --force to overwrite)")
        raise SystemExit(1)

    config = SwarmConfig.from_dict(
        {
            "project": {"name": project or Path.cwd().name, "team": team, "target_branch": target},
            "sprint": {"max_agents": agents},
        }
    )
    config.save(config_path)
    console.print(f"[green]✓[/green] Wrote {config_path}")

    tasks_path = config.tasks_file
    if tasks_path.exists():
        count = len(TaskList.load(tasks_path))
        console.print(f"[dim]Keeping {tasks_path} ({count} tasks)[/dim]")
    else:
        tasks_path.parent.mkdir(parents=True, exist_ok=True)
        tasks_path.write_text(TASKS_TEMPLATE)
        console.print(f"[green]✓[/green] Wrote {tasks_path}")
    logger.info(f"Initialized swarm for team {team}")
