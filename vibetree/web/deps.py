"""Shared dependencies for web routes."""

import os
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from vibetree.config import AppConfig
from vibetree.git_utils import PushRejectedError
from vibetree.lifecycle import LifecycleOrchestrator
from vibetree.store import NotFoundError, Store
from vibetree.terminal import TerminalManager

# Optional authentication (auto_error=False allows requests without credentials)
security = HTTPBasic(auto_error=False)

# Auth configuration from environment variables
AUTH_ENABLED = os.getenv("VIBETREE_WEB_AUTH", "false").lower() == "true"
AUTH_USERNAME = os.getenv("VIBETREE_WEB_USERNAME", "admin")
AUTH_PASSWORD = os.getenv("VIBETREE_WEB_PASSWORD", "changeme")


def verify_credentials(
    credentials: Optional[HTTPBasicCredentials] = Depends(security),
) -> Optional[str]:
    """Verify HTTP Basic Auth credentials.

    This dependency is optional - only enforces auth if AUTH_ENABLED=true.
    """
    if not AUTH_ENABLED:
        return None

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )

    # Constant-time comparison to prevent timing attacks
    username_correct = secrets.compare_digest(
        credentials.username.encode("utf-8"), AUTH_USERNAME.encode("utf-8")
    )
    password_correct = secrets.compare_digest(
        credentials.password.encode("utf-8"), AUTH_PASSWORD.encode("utf-8")
    )

    if not (username_correct and password_correct):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return str(credentials.username)


def get_current_user(
    username: Optional[str] = Depends(verify_credentials),
) -> Optional[str]:
    """Get current authenticated user (or None if auth disabled)."""
    return username


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_terminals(request: Request) -> TerminalManager:
    return request.app.state.terminals


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    return request.app.state.orchestrator


def http_error(e: Exception) -> HTTPException:
    """Map a domain exception to the HTTP error the client expects."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PushRejectedError):
        return HTTPException(status_code=409, detail={"kind": "push_rejected", "message": e.message})
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
