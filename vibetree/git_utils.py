"""Git operations for VibeTree.

Every function here is stateless: it takes the repository path (and task id
where a worktree is involved), resolves the working directory itself, and
shells out to git. Functions are synchronous; the web layer runs them with
asyncio.to_thread so they never block the event loop.
"""

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

log = logging.getLogger("vibetree.git")

WORKTREES_SUBDIR = Path(".vibetree") / "worktrees"

_BRANCH_NAME_PATTERN = re.compile(r"[a-zA-Z0-9/_.\-]+")

# Substrings git prints when the remote has commits the local branch lacks
_PUSH_REJECTED_MARKERS = ("rejected", "non-fast-forward", "fetch first")


class GitError(RuntimeError):
    """Raised when a git command fails."""

    def __init__(self, command: list[str], message: str):
        self.command = command
        self.message = message.strip()
        super().__init__(f"Git command failed: {' '.join(command)}: {self.message}")


class PushRejectedError(GitError):
    """Raised when a push is rejected because the remote branch has diverged."""


class InvalidBranchNameError(ValueError):
    """Raised when a branch name contains unsafe characters."""


class WorktreeResult(BaseModel):
    """Outcome of create_worktree."""

    success: bool
    path: str
    message: Optional[str] = None


class OperationResult(BaseModel):
    """Outcome of a git operation."""

    success: bool
    message: Optional[str] = None


def sanitize_branch_name(name: str) -> str:
    """Validate a branch name before it is handed to git.

    Allows only [a-zA-Z0-9/_.-], rejects '..' anywhere and a leading '.' or '/'.

    Returns:
        The name, unchanged

    Raises:
        InvalidBranchNameError: If the name is empty or unsafe
    """
    if not name:
        raise InvalidBranchNameError("Branch name is empty")
    if not _BRANCH_NAME_PATTERN.fullmatch(name):
        raise InvalidBranchNameError(f"Invalid characters in branch name: {name!r}")
    if ".." in name:
        raise InvalidBranchNameError(f"Branch name must not contain '..': {name!r}")
    if name.startswith((".", "/")):
        raise InvalidBranchNameError(f"Branch name must not start with '.' or '/': {name!r}")
    return name


def get_worktree_base(repo_path: str | Path, worktree_base: str | Path | None = None) -> Path:
    """Directory that holds the worktrees of a repository."""
    if worktree_base:
        return Path(worktree_base)
    return Path(repo_path) / WORKTREES_SUBDIR


def get_worktree_path(
    repo_path: str | Path, task_id: str, worktree_base: str | Path | None = None
) -> Path:
    """Path of a task's worktree: <worktree_base>/<task_id>."""
    if not repo_path:
        raise ValueError("Repository path is required")
    if not task_id or "/" in task_id or "\\" in task_id or task_id in (".", ".."):
        raise ValueError(f"Invalid task id: {task_id!r}")
    return get_worktree_base(repo_path, worktree_base) / task_id


def run_git(args: list[str], cwd: str | Path, env: Optional[dict[str, str]] = None) -> str:
    """Run a git command and return its stripped stdout.

    Args:
        args: Arguments after 'git'
        cwd: Working directory
        env: Extra environment variables

    Raises:
        GitError: If git exits non-zero or cannot be started
    """
    command = ["git", *args]
    run_env = {**os.environ, **env} if env else None
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=run_env,
        )
    except subprocess.CalledProcessError as e:
        log.debug("git %s failed in %s: %s", " ".join(args), cwd, e.stderr)
        raise GitError(command, e.stderr or e.stdout or str(e)) from e
    except (FileNotFoundError, NotADirectoryError) as e:
        raise GitError(command, str(e)) from e
    return result.stdout.strip()


def _git_succeeds(args: list[str], cwd: str | Path) -> bool:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)
    return result.returncode == 0


def _resolve_task_dir(repo_path: str | Path, task_id: str, worktree_base: str | Path | None) -> Path:
    worktree_path = get_worktree_path(repo_path, task_id, worktree_base)
    if not worktree_path.exists():
        raise GitError(["git"], f"Worktree not found: {worktree_path}")
    return worktree_path


def _copy_files_into_worktree(repo_path: Path, worktree_path: Path, copy_files: str) -> None:
    """Copy configured files (e.g. .env) into a fresh worktree.

    Missing entries and directories are skipped with a warning.
    """
    entries = [line.strip() for line in copy_files.splitlines() if line.strip()]
    for entry in entries:
        src = Path(entry) if os.path.isabs(entry) else repo_path / entry
        dest = worktree_path / Path(entry).name
        if not src.exists():
            log.warning("Copy skipped (not found): %s", src)
            continue
        if not src.is_file():
            log.warning("Copy skipped (not a file): %s", src)
            continue
        try:
            shutil.copyfile(src, dest)
            log.info("Copied %s to worktree", src.name)
        except OSError as e:
            log.warning("Failed to copy %s: %s", entry, e)


def create_worktree(
    repo_path: str | Path,
    task_id: str,
    branch_name: str,
    copy_files: Optional[str] = None,
    worktree_base: str | Path | None = None,
) -> WorktreeResult:
    """Create the worktree for a task.

    Idempotent: if the worktree directory already exists nothing is run.

    Args:
        repo_path: Path to the main repository
        task_id: Task ID (names the worktree directory)
        branch_name: Branch checked out in the worktree, created if missing
        copy_files: Newline-separated files (absolute or repo-relative) to copy in
        worktree_base: Override for <repo>/.vibetree/worktrees

    Returns:
        WorktreeResult with the worktree path

    Raises:
        GitError: If `git worktree add` fails
        InvalidBranchNameError: If the branch name is unsafe
    """
    repo = Path(repo_path)
    worktree_path = get_worktree_path(repo, task_id, worktree_base)

    if worktree_path.exists():
        return WorktreeResult(success=True, path=str(worktree_path), message="Worktree already exists")

    branch = sanitize_branch_name(branch_name)
    worktree_path.parent.mkdir(parents=True, exist_ok=True)

    if _git_succeeds(["rev-parse", "--verify", branch], repo):
        run_git(["worktree", "add", str(worktree_path), branch], repo)
    else:
        run_git(["worktree", "add", "-b", branch, str(worktree_path)], repo)
    log.info("Created worktree %s on branch %s", worktree_path, branch)

    if copy_files:
        _copy_files_into_worktree(repo, worktree_path, copy_files)

    return WorktreeResult(success=True, path=str(worktree_path))


def remove_worktree(
    repo_path: str | Path,
    task_id: str,
    branch_name: Optional[str] = None,
    worktree_base: str | Path | None = None,
) -> OperationResult:
    """Remove a task's worktree and, best-effort, its branch.

    Raises:
        GitError: If `git worktree remove` fails
    """
    repo = Path(repo_path)
    worktree_path = get_worktree_path(repo, task_id, worktree_base)

    if worktree_path.exists():
        run_git(["worktree", "remove", "--force", str(worktree_path)], repo)
        log.info("Removed worktree at %s", worktree_path)

    if branch_name:
        try:
            run_git(["branch", "-D", sanitize_branch_name(branch_name)], repo)
            log.info("Deleted branch %s", branch_name)
        except (GitError, InvalidBranchNameError) as e:
            log.warning("Failed to delete branch %s: %s", branch_name, e)

    return OperationResult(success=True)


def get_current_branch(cwd: str | Path) -> str:
    """Get the checked-out branch name ('HEAD' when detached)."""
    return run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)


def get_status(cwd: str | Path) -> dict[str, str]:
    """Get branch and short status for a working directory."""
    return {
        "branch": run_git(["branch", "--show-current"], cwd),
        "status": run_git(["status", "--short"], cwd),
    }


def get_diff(cwd: str | Path) -> str:
    """Get the unstaged diff of a working directory."""
    return run_git(["diff"], cwd)


def commit_all(cwd: str | Path, message: str) -> bool:
    """Stage everything and commit if anything is staged.

    Returns:
        True if a commit was created
    """
    run_git(["add", "."], cwd)
    if _git_succeeds(["diff", "--cached", "--quiet"], cwd):
        return False
    run_git(["commit", "-m", message], cwd)
    return True


def rebase(
    repo_path: str | Path,
    task_id: str,
    base_branch: str,
    worktree_base: str | Path | None = None,
) -> OperationResult:
    """Rebase a task's branch onto base_branch.

    Conflicts are not resolved here; the failed rebase is left for the user.

    Raises:
        GitError: If the rebase fails
    """
    base = sanitize_branch_name(base_branch)
    cwd = _resolve_task_dir(repo_path, task_id, worktree_base)
    run_git(["rebase", base], cwd)
    return OperationResult(success=True, message=f"Rebased onto {base}")


def classify_push_failure(stdout: str, stderr: str) -> bool:
    """Tell whether a failed push was rejected because the remote diverged.

    Prefers `git push --porcelain` status lines ('!' flag), falling back to
    matching git's message text.
    """
    for line in stdout.splitlines():
        if line.startswith("!") and "rejected" in line.lower():
            return True
    text = f"{stdout}\n{stderr}".lower()
    return any(marker in text for marker in _PUSH_REJECTED_MARKERS)


def _push(cwd: Path, branch: str, force: bool) -> None:
    command = ["git", "push", "--porcelain", "-u", "origin", branch]
    if force:
        command.insert(2, "--force")
    result = subprocess.run(
        command,
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
        env={**os.environ, "LC_ALL": "C"},
    )
    if result.returncode == 0:
        return

    if not force and classify_push_failure(result.stdout, result.stderr):
        raise PushRejectedError(command, result.stderr or result.stdout)
    raise GitError(command, result.stderr or result.stdout)


def push_branch(
    repo_path: str | Path,
    task_id: str,
    commit_message: str,
    worktree_base: str | Path | None = None,
    force: bool = False,
) -> OperationResult:
    """Commit pending changes in a task's worktree and push its branch.

    Raises:
        PushRejectedError: If the remote branch has diverged (offer force push)
        GitError: For any other failure
    """
    cwd = _resolve_task_dir(repo_path, task_id, worktree_base)
    branch = sanitize_branch_name(get_current_branch(cwd))

    commit_all(cwd, commit_message)
    _push(cwd, branch, force)
    log.info("Pushed %s%s", branch, " (force)" if force else "")
    return OperationResult(success=True, message=f"Pushed {branch}")


def push_branch_force(
    repo_path: str | Path,
    task_id: str,
    commit_message: str,
    worktree_base: str | Path | None = None,
) -> OperationResult:
    """Like push_branch, but overwrites the remote branch."""
    return push_branch(repo_path, task_id, commit_message, worktree_base, force=True)


def get_default_branch(repo_path: str | Path) -> str:
    """Get the default branch of origin.

    Tries the origin/HEAD symbolic ref, then asks git to set it from the
    remote and retries, then parses `git remote show origin`. Falls back to 'main'.
    """
    prefix = "refs/remotes/origin/"

    def _from_symbolic_ref() -> Optional[str]:
        result = subprocess.run(
            ["git", "symbolic-ref", "refs/remotes/origin/HEAD"],
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=False,
        )
        ref = result.stdout.strip()
        if result.returncode == 0 and ref.startswith(prefix):
            return ref[len(prefix):]
        return None

    branch = _from_symbolic_ref()
    if branch:
        return branch

    if _git_succeeds(["remote", "set-head", "origin", "--auto"], repo_path):
        branch = _from_symbolic_ref()
        if branch:
            return branch

    result = subprocess.run(
        ["git", "remote", "show", "origin"],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=False,
        env={**os.environ, "LC_ALL": "C"},
    )
    if result.returncode == 0:
        match = re.search(r"HEAD branch:\s*(\S+)", result.stdout)
        if match and match.group(1) != "(unknown)":
            return match.group(1)

    return "main"


def pull_main_branch(repo_path: str | Path) -> OperationResult:
    """Bring the local default branch up to date with origin.

    If the main checkout is on the default branch it is pulled; otherwise only
    the local ref is fast-forwarded so the unrelated checkout is left alone.

    Raises:
        GitError: If fetch or pull fails
    """
    repo = Path(repo_path)
    run_git(["fetch", "origin"], repo)

    default_branch = sanitize_branch_name(get_default_branch(repo))
    current = get_current_branch(repo)

    if current == default_branch:
        run_git(["pull", "origin", default_branch], repo)
        message = f"Pulled latest {default_branch}"
    else:
        run_git(["fetch", "origin", f"{default_branch}:{default_branch}"], repo)
        message = f"Updated {default_branch} from origin (checked out: {current})"

    log.info(message)
    return OperationResult(success=True, message=message)


def has_changes_for_pr(
    repo_path: str | Path,
    task_id: str,
    base_branch: str,
    worktree_base: str | Path | None = None,
) -> bool:
    """True if the worktree has uncommitted changes or commits ahead of base_branch."""
    worktree_path = get_worktree_path(repo_path, task_id, worktree_base)
    if not worktree_path.exists():
        return False

    if run_git(["status", "--porcelain"], worktree_path):
        return True

    base = sanitize_branch_name(base_branch)
    try:
        ahead = run_git(["rev-list", f"{base}..HEAD", "--count"], worktree_path)
        return int(ahead or "0") > 0
    except (GitError, ValueError) as e:
        log.debug("Could not count commits ahead of %s: %s", base, e)
        return False


def get_branch_diff(
    repo_path: str | Path,
    task_id: str,
    base_branch: str,
    worktree_base: str | Path | None = None,
) -> str:
    """Diff of a task's branch against base_branch (three-dot)."""
    base = sanitize_branch_name(base_branch)
    cwd = _resolve_task_dir(repo_path, task_id, worktree_base)
    return run_git(["diff", f"{base}...HEAD"], cwd)
