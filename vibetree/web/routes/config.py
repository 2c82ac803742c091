"""Configuration API routes."""

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request

from vibetree.ai import InvalidToolNameError, validate_tool_name
from vibetree.config import AppConfig, normalize_path, save_config
from vibetree.store import Store
from vibetree.web.deps import get_config, get_current_user, get_store
from vibetree.web.models import ConfigUpdate

router = APIRouter(prefix="/api/config", tags=["config"])
logger = logging.getLogger("vibetree.web")


@router.get("")
async def read_config(
    config: AppConfig = Depends(get_config),
    user: str | None = Depends(get_current_user),
) -> AppConfig:
    return config


@router.post("")
async def update_config(
    request: Request,
    update: ConfigUpdate,
    config: AppConfig = Depends(get_config),
    store: Store = Depends(get_store),
    user: str | None = Depends(get_current_user),
) -> AppConfig:
    """Update the active repository, AI tool and copy-files list.

    Setting a repository path registers that repository and pushes the
    copy-files list to its record.
    """
    if update.ai_tool:
        try:
            validate_tool_name(update.ai_tool)
        except InvalidToolNameError as e:
            raise HTTPException(status_code=400, detail=str(e))

    repo_path = None
    if update.repo_path is not None:
        repo_path = normalize_path(update.repo_path.strip())
        if repo_path and not Path(repo_path).is_dir():
            raise HTTPException(status_code=400, detail=f"Repository path does not exist: {repo_path}")

    # The same AppConfig instance is shared with the terminal manager
    if repo_path is not None:
        config.repo_path = repo_path
    if update.ai_tool is not None:
        config.ai_tool = update.ai_tool
    if update.copy_files is not None:
        config.copy_files = update.copy_files

    await asyncio.to_thread(save_config, config, request.app.state.config_path)

    if config.repo_path:
        repo = await asyncio.to_thread(store.add_repository, config.repo_path, config.copy_files)
        if update.copy_files is not None:
            await asyncio.to_thread(store.update_repository, repo.id, copy_files=update.copy_files)
        logger.info("Active repository set to %s", config.repo_path)

    return config
