"""Repository API routes."""

import asyncio

from fastapi import APIRouter, Depends

from vibetree.ai import validate_tool_name
from vibetree.lifecycle import LifecycleOrchestrator
from vibetree.store import NotFoundError, Repository, Store
from vibetree.web.deps import get_current_user, get_orchestrator, get_store, http_error
from vibetree.web.models import RepositoryCreate, RepositoryUpdate

router = APIRouter(prefix="/api/repositories", tags=["repositories"])


@router.get("")
async def list_repositories(
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> list[Repository]:
    return await asyncio.to_thread(store.list_repositories)


@router.post("")
async def add_repository(
    body: RepositoryCreate,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> Repository:
    """Register a repository (returns the existing record for a known path)."""
    try:
        return await asyncio.to_thread(store.add_repository, body.path, body.copy_files)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{repository_id}")
async def update_repository(
    repository_id: str,
    body: RepositoryUpdate,
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> Repository:
    try:
        if body.ai_tool:
            validate_tool_name(body.ai_tool)
        return await asyncio.to_thread(
            store.update_repository,
            repository_id,
            **body.model_dump(exclude_none=True),
        )
    except (ValueError, NotFoundError) as e:  # InvalidToolNameError is a ValueError
        raise http_error(e)


@router.delete("/{repository_id}")
async def delete_repository(
    repository_id: str,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    user: str | None = Depends(get_current_user),
) -> dict:
    """Delete a repository, tearing down every one of its tasks first."""
    try:
        await orchestrator.delete_repository(repository_id)
    except NotFoundError as e:
        raise http_error(e)
    return {"success": True}
