"""Task API routes."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends

from vibetree.lifecycle import LifecycleOrchestrator
from vibetree.store import NotFoundError, Store, Task
from vibetree.web.deps import get_current_user, get_orchestrator, get_store, http_error
from vibetree.web.models import TaskCreate, TaskUpdate

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("")
async def list_tasks(
    repo_path: Optional[str] = None,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> list[Task]:
    """List tasks, newest first. With repo_path, only that repository's tasks."""
    if repo_path is None:
        return await asyncio.to_thread(store.list_tasks)

    repo = await asyncio.to_thread(store.get_repository_by_path, repo_path)
    if repo is None:
        return []
    return await asyncio.to_thread(store.list_tasks, repo.id)


@router.post("")
async def create_task(
    body: TaskCreate,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    user: str | None = Depends(get_current_user),
) -> Task:
    """Create a task with its worktree and terminal, then start the AI tool."""
    try:
        return await orchestrator.create_task(body.repo_path, body.title, body.description)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> Task:
    try:
        return await asyncio.to_thread(
            store.update_task, task_id, **body.model_dump(exclude_none=True)
        )
    except NotFoundError as e:
        raise http_error(e)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    repo_path: Optional[str] = None,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    user: str | None = Depends(get_current_user),
) -> dict:
    """Delete a task: terminal, worktree and branch first, then the record."""
    try:
        await orchestrator.delete_task(task_id, repo_path)
    except NotFoundError as e:
        raise http_error(e)
    return {"success": True}
