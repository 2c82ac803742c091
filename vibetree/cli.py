"""CLI for VibeTree."""

import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from vibetree import __version__
from vibetree.ai import InvalidToolNameError, validate_tool_name
from vibetree.config import load_config, normalize_path, save_config
from vibetree.store import Store

# Shared Rich console instance for all CLI output
console = Console()

LOG_LEVELS = ["debug", "info", "warning", "error"]


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """VibeTree: parallel coding tasks in isolated git worktrees.

    Each task gets its own worktree, branch and terminal, optionally
    driven by an AI coding CLI.
    """
    pass


@main.command()
@click.option("--host", default=None, help="Host to bind to (default: from config)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: from config)")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity",
)
def serve(host: Optional[str], port: Optional[int], log_level: str) -> None:
    """Start the VibeTree server."""
    from vibetree.web.app import run_server

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    host = host or config.host
    port = port or config.port

    console.print(f"\n[cyan]Starting VibeTree server at http://{host}:{port}[/cyan]")
    if config.repo_path:
        console.print(f"[dim]Active repository: {config.repo_path}[/dim]")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    run_server(host=host, port=port, log_level=log_level.lower())


@main.group()
def repos() -> None:
    """Manage registered repositories."""
    pass


@repos.command("list")
def repos_list() -> None:
    """List registered repositories."""
    repositories = Store().list_repositories()
    if not repositories:
        console.print("[yellow]No repositories registered[/yellow]")
        return

    table = Table(title="Repositories")
    table.add_column("ID", style="dim")
    table.add_column("Path", style="bold cyan")
    table.add_column("AI Tool", style="magenta")
    table.add_column("Worktrees", style="yellow")

    for repo in repositories:
        table.add_row(
            repo.id,
            repo.path,
            repo.ai_tool or "-",
            repo.worktree_path or "<repo>/.vibetree/worktrees",
        )

    console.print(table)


@repos.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, resolve_path=True))
@click.option("--copy-file", "copy_files", multiple=True, help="File copied into each new worktree")
def repos_add(path: str, copy_files: tuple[str, ...]) -> None:
    """Register a repository."""
    repo = Store().add_repository(path, copy_files="\n".join(copy_files))
    console.print(f"[green]✓ Registered {repo.path}[/green] [dim]({repo.id})[/dim]")


@main.command()
@click.option("--repo", "repo_path", default=None, help="Only tasks of this repository path")
def tasks(repo_path: Optional[str]) -> None:
    """List tasks, newest first."""
    store = Store()
    repositories = {r.id: r for r in store.list_repositories()}

    repository_id = None
    if repo_path:
        repo = store.get_repository_by_path(str(Path(repo_path).resolve()))
        if repo is None:
            console.print(f"[red]Repository not registered: {repo_path}[/red]")
            raise SystemExit(1)
        repository_id = repo.id

    task_list = store.list_tasks(repository_id)
    if not task_list:
        console.print("[yellow]No tasks[/yellow]")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold cyan")
    table.add_column("Branch", style="yellow")
    table.add_column("Repository", style="blue")
    table.add_column("PR", style="green")

    for task in task_list:
        repo = repositories.get(task.repository_id)
        if task.pr_merged:
            pr = "merged"
        else:
            pr = task.pr_url or "-"
        table.add_row(task.id, task.title, task.branch_name, repo.path if repo else "?", pr)

    console.print(table)


@main.group("config")
def config_group() -> None:
    """Show or change VibeTree settings."""
    pass


@config_group.command("show")
def config_show() -> None:
    """Print the effective configuration."""
    config = load_config()
    for key, value in config.model_dump().items():
        console.print(f"[bold]{key}[/bold]: {value!r}")


@config_group.command("set")
@click.option("--repo-path", default=None, help="Active repository")
@click.option("--ai-tool", default=None, help="AI CLI to run in new task terminals")
@click.option("--copy-files", default=None, help="Newline-separated files copied into new worktrees")
def config_set(repo_path: Optional[str], ai_tool: Optional[str], copy_files: Optional[str]) -> None:
    """Update settings in ~/.vibetree/config.yaml."""
    config = load_config()

    if ai_tool is not None:
        try:
            validate_tool_name(ai_tool)
        except InvalidToolNameError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        config.ai_tool = ai_tool

    if repo_path is not None:
        repo_path = normalize_path(str(Path(repo_path).resolve()))
        if not Path(repo_path).is_dir():
            console.print(f"[red]Repository path does not exist: {repo_path}[/red]")
            raise SystemExit(1)
        config.repo_path = repo_path

    if copy_files is not None:
        config.copy_files = copy_files

    save_config(config)
    if config.repo_path:
        Store().add_repository(config.repo_path, copy_files=config.copy_files)
    console.print("[green]✓ Config saved[/green]")


if __name__ == "__main__":
    main()
