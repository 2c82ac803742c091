"""Git and pull request API routes.

Git and gh run in worker threads so the event loop keeps streaming terminal
output while a push or rebase is in flight.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from vibetree import git_utils
from vibetree.ai import AIToolError, generate_pr_summary
from vibetree.config import AppConfig
from vibetree.git_utils import GitError, OperationResult
from vibetree.github import GitHubError, PullRequestResult, check_pr_merge_status, create_pr, update_pr
from vibetree.store import Store
from vibetree.web.deps import get_config, get_current_user, get_store, http_error
from vibetree.web.models import (
    CommitRequest,
    PullRequestCreate,
    PushRequest,
    RebaseRequest,
    RepoRef,
    TaskRef,
)

router = APIRouter(prefix="/api/git", tags=["git"])
logger = logging.getLogger("vibetree.web")

# Errors a git route reports to the client instead of crashing
GIT_ERRORS = (GitError, GitHubError, AIToolError, ValueError)


def _worktree_base(store: Store, repo_path: str) -> Optional[str]:
    repo = store.get_repository_by_path(repo_path)
    return repo.worktree_path if repo else None


def _resolve_cwd(store: Store, repo_path: str, task_id: Optional[str]) -> Path:
    """The task's worktree when task_id is given, else the repository itself."""
    if task_id:
        return git_utils.get_worktree_path(repo_path, task_id, _worktree_base(store, repo_path))
    return Path(repo_path)


@router.get("/status")
async def git_status(
    repo_path: str,
    task_id: Optional[str] = None,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        cwd = await asyncio.to_thread(_resolve_cwd, store, repo_path, task_id)
        return await asyncio.to_thread(git_utils.get_status, cwd)
    except GIT_ERRORS as e:
        raise http_error(e)


@router.get("/diff")
async def git_diff(
    repo_path: str,
    task_id: Optional[str] = None,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        cwd = await asyncio.to_thread(_resolve_cwd, store, repo_path, task_id)
        diff = await asyncio.to_thread(git_utils.get_diff, cwd)
    except GIT_ERRORS as e:
        raise http_error(e)
    return {"diff": diff}


@router.post("/commit")
async def git_commit(
    body: CommitRequest,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        cwd = await asyncio.to_thread(_resolve_cwd, store, body.repo_path, body.task_id)
        committed = await asyncio.to_thread(git_utils.commit_all, cwd, body.message)
    except GIT_ERRORS as e:
        raise http_error(e)
    return {"success": True, "committed": committed}


@router.get("/worktree-path")
async def worktree_path(
    repo_path: str,
    task_id: str,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        path = await asyncio.to_thread(_resolve_cwd, store, repo_path, task_id)
    except ValueError as e:
        raise http_error(e)
    return {"path": str(path)}


@router.post("/rebase")
async def rebase(
    body: RebaseRequest,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> OperationResult:
    try:
        base = await asyncio.to_thread(_worktree_base, store, body.repo_path)
        return await asyncio.to_thread(
            git_utils.rebase, body.repo_path, body.task_id, body.base_branch, base
        )
    except GIT_ERRORS as e:
        raise http_error(e)


@router.post("/push")
async def push(
    body: PushRequest,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> OperationResult:
    """Commit and push the task branch.

    Responds 409 with kind=push_rejected when the remote branch has diverged,
    so the client can offer a force push.
    """
    try:
        base = await asyncio.to_thread(_worktree_base, store, body.repo_path)
        return await asyncio.to_thread(
            git_utils.push_branch, body.repo_path, body.task_id, body.commit_message, base
        )
    except GIT_ERRORS as e:
        raise http_error(e)


@router.post("/push-force")
async def push_force(
    body: PushRequest,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> OperationResult:
    try:
        base = await asyncio.to_thread(_worktree_base, store, body.repo_path)
        return await asyncio.to_thread(
            git_utils.push_branch_force, body.repo_path, body.task_id, body.commit_message, base
        )
    except GIT_ERRORS as e:
        raise http_error(e)


@router.post("/pr")
async def create_pull_request(
    body: PullRequestCreate,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> PullRequestResult:
    """Open a PR for the task branch and remember its URL on the task."""
    try:
        base = await asyncio.to_thread(_worktree_base, store, body.repo_path)
        result = await asyncio.to_thread(
            create_pr,
            body.repo_path,
            body.task_id,
            body.title,
            body.body,
            body.base_branch,
            base,
        )
    except GIT_ERRORS as e:
        raise http_error(e)

    if result.success and result.url and await asyncio.to_thread(store.get_task, body.task_id):
        await asyncio.to_thread(store.update_task, body.task_id, pr_url=result.url)
    return result


@router.post("/pr/sync")
async def sync_pull_request(
    body: TaskRef,
    store: Store = Depends(get_store),
    config: AppConfig = Depends(get_config),
    user: str | None = Depends(get_current_user),
) -> PullRequestResult:
    """Rewrite the PR title and body from an AI summary of the branch diff."""
    repo = await asyncio.to_thread(store.get_repository_by_path, body.repo_path)
    tool = (repo.ai_tool if repo else None) or config.ai_tool
    if not tool:
        raise HTTPException(status_code=400, detail="AI tool not configured")

    try:
        base_branch = await asyncio.to_thread(git_utils.get_default_branch, body.repo_path)
        diff = await asyncio.to_thread(
            git_utils.get_branch_diff,
            body.repo_path,
            body.task_id,
            base_branch,
            repo.worktree_path if repo else None,
        )
        if not diff:
            return PullRequestResult(success=True, message="No changes found")

        title, pr_body = await asyncio.to_thread(generate_pr_summary, tool, diff)
        return await asyncio.to_thread(
            update_pr,
            body.repo_path,
            body.task_id,
            title,
            pr_body,
            repo.worktree_path if repo else None,
        )
    except GIT_ERRORS as e:
        raise http_error(e)


@router.get("/default-branch")
async def default_branch(
    repo_path: str,
    user: str | None = Depends(get_current_user),
) -> dict:
    branch = await asyncio.to_thread(git_utils.get_default_branch, repo_path)
    return {"branch": branch}


@router.post("/pull-main")
async def pull_main(
    body: RepoRef,
    user: str | None = Depends(get_current_user),
) -> OperationResult:
    try:
        return await asyncio.to_thread(git_utils.pull_main_branch, body.repo_path)
    except GIT_ERRORS as e:
        raise http_error(e)


@router.post("/pr-merge-status")
async def pr_merge_status(
    body: TaskRef,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    """Check whether the task's PR was merged and record the answer on the task."""
    task = await asyncio.to_thread(store.get_task, body.task_id)
    if task is None or not task.pr_url:
        return {"merged": False}

    merged = await asyncio.to_thread(check_pr_merge_status, body.repo_path, task.pr_url)
    if merged != task.pr_merged:
        await asyncio.to_thread(store.update_task, task.id, pr_merged=merged)
        logger.info("Task %s PR merged=%s", task.id, merged)
    return {"merged": merged}


@router.get("/has-changes")
async def has_changes(
    repo_path: str,
    task_id: str,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        base_branch = await asyncio.to_thread(git_utils.get_default_branch, repo_path)
        worktree_base = await asyncio.to_thread(_worktree_base, store, repo_path)
        changed = await asyncio.to_thread(
            git_utils.has_changes_for_pr, repo_path, task_id, base_branch, worktree_base
        )
    except GIT_ERRORS as e:
        raise http_error(e)
    return {"has_changes": changed}
