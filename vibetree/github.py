"""GitHub integration for VibeTree (via the gh CLI)."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from vibetree.git_utils import (
    GitError,
    commit_all,
    get_current_branch,
    get_worktree_path,
    run_git,
    sanitize_branch_name,
)

log = logging.getLogger("vibetree.github")


class GitHubError(RuntimeError):
    """Raised when a gh command fails."""


class PullRequestResult(BaseModel):
    """Outcome of create_pr / update_pr."""

    success: bool
    url: Optional[str] = None
    message: Optional[str] = None


def gh_command(args: List[str], cwd: Optional[str | Path] = None) -> str:
    """Run a gh (GitHub CLI) command.

    Args:
        args: Command arguments
        cwd: Working directory (the repository or worktree)

    Returns:
        Command output

    Raises:
        GitHubError: If gh command fails or is not installed
    """
    try:
        result = subprocess.run(
            ["gh"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitHubError(f"GitHub CLI command failed: {e.stderr}") from e
    except FileNotFoundError as e:
        raise GitHubError("GitHub CLI (gh) not found. Install: https://cli.github.com/") from e


def _task_dir(repo_path: str | Path, task_id: str, worktree_base: str | Path | None) -> Path:
    worktree_path = get_worktree_path(repo_path, task_id, worktree_base)
    if not worktree_path.exists():
        raise GitError(["git"], f"Worktree not found: {worktree_path}")
    return worktree_path


def create_pr(
    repo_path: str | Path,
    task_id: str,
    title: str,
    body: str,
    base_branch: str,
    worktree_base: str | Path | None = None,
) -> PullRequestResult:
    """Commit pending work, push the task branch and open a pull request.

    Returns:
        PullRequestResult whose url is the last line gh prints

    Raises:
        GitError: If committing or pushing fails
        GitHubError: If `gh pr create` fails
    """
    base = sanitize_branch_name(base_branch)
    cwd = _task_dir(repo_path, task_id, worktree_base)
    branch = sanitize_branch_name(get_current_branch(cwd))

    commit_all(cwd, title)
    run_git(["push", "-u", "origin", branch], cwd)

    output = gh_command(
        ["pr", "create", "--title", title, "--body", body or "", "--base", base, "--head", branch],
        cwd=cwd,
    )
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    url = lines[-1] if lines else None
    log.info("Created PR for %s: %s", branch, url)
    return PullRequestResult(success=True, url=url)


def update_pr(
    repo_path: str | Path,
    task_id: str,
    title: str,
    body: str,
    worktree_base: str | Path | None = None,
) -> PullRequestResult:
    """Rewrite the title and body of the task branch's pull request.

    Raises:
        GitHubError: If `gh pr edit` fails
    """
    cwd = _task_dir(repo_path, task_id, worktree_base)
    gh_command(["pr", "edit", "--title", title, "--body", body], cwd=cwd)
    return PullRequestResult(success=True, message="PR updated")


def check_pr_merge_status(repo_path: str | Path, pr_url: str) -> bool:
    """Check whether a pull request has been merged.

    Any failure (gh missing, network, unknown PR) is logged and reported as not merged.
    """
    try:
        state = gh_command(["pr", "view", pr_url, "--json", "state", "--jq", ".state"], cwd=repo_path)
    except (GitHubError, OSError) as e:
        log.warning("Could not check merge status of %s: %s", pr_url, e)
        return False
    return state.strip().lower() == "merged"
