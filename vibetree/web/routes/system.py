"""Host OS helper routes (file manager, folder picker, tool detection, VS Code)."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from vibetree import system
from vibetree.web.deps import get_current_user
from vibetree.web.models import PathRequest

router = APIRouter(prefix="/api/system", tags=["system"])


@router.post("/open-directory")
async def open_directory(
    body: PathRequest,
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        await asyncio.to_thread(system.open_directory, body.path)
    except system.SystemCommandError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True}


@router.post("/pick-folder")
async def pick_folder(user: str | None = Depends(get_current_user)) -> dict:
    """Show the native folder picker; returns {path} or {canceled: true}."""
    try:
        path = await asyncio.to_thread(system.pick_folder)
    except system.SystemCommandError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"path": path} if path else {"canceled": True}


@router.get("/ai-tools")
async def ai_tools(user: str | None = Depends(get_current_user)) -> dict[str, bool]:
    return await asyncio.to_thread(system.get_ai_tools)


@router.get("/vscode")
async def vscode_installed(user: str | None = Depends(get_current_user)) -> dict:
    return {"installed": await asyncio.to_thread(system.check_vscode)}


@router.post("/open-vscode")
async def open_vscode(
    body: PathRequest,
    user: str | None = Depends(get_current_user),
) -> dict:
    try:
        await asyncio.to_thread(system.open_vscode, body.path)
    except system.SystemCommandError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True}
