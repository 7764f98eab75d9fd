"""Swarm cleanup command - remove leftover worktrees and branches."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from swarm.config import SwarmConfig
from swarm.exceptions import GitOperationError, SwarmError
from swarm.logging import get_logger
from swarm.worktree import WorktreeManager

console = Console()
logger = get_logger("cleanup")


@dataclass
class CleanupPlan:
    """Worktrees and branches a cleanup would remove."""

    worktrees: list[Path] = field(default_factory=list)
    branches: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.worktrees and not self.branches


@click.command()
@click.option("--config", "-c", "config_path", help="Path to config.yaml")
@click.option("--keep-branches", is_flag=True, help="Preserve sprint and agent branches")
@click.option("--dry-run", is_flag=True, help="Show cleanup plan only")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def cleanup(config_path: str | None, keep_branches: bool, dry_run: bool, yes: bool) -> None:
    """Remove worktrees and branches left behind by interrupted runs.

    Dead-letter refs of conflicted agent branches are kept.

    Examples:

        swarm cleanup --dry-run

        swarm cleanup --yes --keep-branches
    """
    try:
        config = SwarmConfig.load(config_path)
        manager = WorktreeManager(".", state_dir=config.paths.state_dir)

        plan = create_cleanup_plan(manager, config, keep_branches)
        if plan.empty:
            console.print("[green]Nothing to clean up[/green]")
            return

        show_cleanup_plan(plan)
        if dry_run:
            console.print("\n[dim]Dry run - no changes made[/dim]")
            return
        if not yes and not click.confirm("\nProceed with cleanup?", default=False):
            console.print("[yellow]Aborted[/yellow]")
            return

        errors = execute_cleanup(manager, plan)
        manager.repo_ops.shutdown()
        if errors:
            for error in errors:
                console.print(f"[red]✗[/red] {error}")
            raise SystemExit(1)
        console.print("\n[green]✓[/green] Cleanup complete")

    except SwarmError as e:
        logger.exception("Cleanup command failed")
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from None


def create_cleanup_plan(manager: WorktreeManager, config: SwarmConfig, keep_branches: bool) -> CleanupPlan:
    """Collect swarm worktrees under the worktrees directory and swarm branches."""
    worktrees_dir = (manager.repo_path / config.paths.worktrees_dir).resolve()
    plan = CleanupPlan()
    for wt in manager.list_worktrees():
        if wt.path != manager.repo_path and worktrees_dir in wt.path.parents:
            plan.worktrees.append(wt.path)

    if not keep_branches:
        project = config.project.name
        for pattern in (f"{project}-sprint-*", f"{project}-agent-*"):
            plan.branches.extend(manager.git.list_branches(pattern))
    return plan


def show_cleanup_plan(plan: CleanupPlan) -> None:
    table = Table(title="Cleanup Plan")
    table.add_column("Kind")
    table.add_column("Target")
    for path in plan.worktrees:
        table.add_row("worktree", str(path))
    for branch in plan.branches:
        table.add_row("branch", branch)
    console.print(table)


def execute_cleanup(manager: WorktreeManager, plan: CleanupPlan) -> list[str]:
    """Remove everything in ``plan``, collecting errors instead of stopping."""
    errors = []
    for path in plan.worktrees:
        try:
            manager.remove_worktree(path)
        except (GitOperationError, OSError) as e:
            errors.append(f"{path}: {e}")
    for branch in plan.branches:
        try:
            manager.delete_branch(branch)
        except GitOperationError as e:
            errors.append(f"{branch}: {e}")
    manager.prune()
    logger.info(
        f"Cleanup removed {len(plan.worktrees)} worktree(s), {len(plan.branches)} branch(es); "
        f"{len(errors)} error(s)"
    )
    return errors
