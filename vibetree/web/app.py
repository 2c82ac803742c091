"""FastAPI application for VibeTree."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from vibetree import __version__
from vibetree.config import AppConfig, get_config_path, load_config
from vibetree.lifecycle import LifecycleOrchestrator
from vibetree.store import Store
from vibetree.terminal import SpawnFunc, TerminalManager, spawn_pty
from vibetree.web import terminal_ws
from vibetree.web.routes import config as config_routes
from vibetree.web.routes import git as git_routes
from vibetree.web.routes import repositories as repository_routes
from vibetree.web.routes import system as system_routes
from vibetree.web.routes import tasks as task_routes

# Module-level logger for web app
logger = logging.getLogger("vibetree.web")


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[Store] = None,
    spawn: SpawnFunc = spawn_pty,
    config_path: Optional[Path] = None,
) -> FastAPI:
    """Build the application.

    Components are created when the app starts, so importing this module
    touches neither the config file nor the database.

    Args:
        config: Configuration (default: loaded from config.yaml)
        store: Repository/task store (default: ~/.vibetree/vibetree.yaml)
        spawn: PTY factory, replaced in tests
        config_path: Where POST /api/config saves
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Wire up components and restore a terminal for every stored task."""
        app.state.config_path = config_path or get_config_path()
        app.state.config = config or load_config(app.state.config_path)
        app.state.store = store or Store()
        app.state.terminals = TerminalManager(app.state.store, app.state.config, spawn=spawn)
        app.state.orchestrator = LifecycleOrchestrator(
            app.state.store, app.state.terminals, app.state.config
        )

        restored = await app.state.orchestrator.restore_terminals()
        logger.info("Restored %d task terminals", restored)

        yield  # Server runs here

        await app.state.terminals.shutdown_all()
        logger.info("Stopped all terminals")

    app = FastAPI(title="VibeTree", version=__version__, lifespan=lifespan)

    app.include_router(config_routes.router)
    app.include_router(repository_routes.router)
    app.include_router(task_routes.router)
    app.include_router(git_routes.router)
    app.include_router(system_routes.router)
    app.include_router(terminal_ws.router)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy", "service": "vibetree-web"}

    return app


app = create_app()


def run_server(host: str = "127.0.0.1", port: int = 5179, log_level: str = "info") -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to
        port: Port to bind to
        log_level: uvicorn log level
    """
    import uvicorn

    # Single worker - terminal sessions live in this process's memory
    uvicorn.run(
        "vibetree.web.app:app",
        host=host,
        port=port,
        workers=1,
        loop="asyncio",
        log_level=log_level,
    )


if __name__ == "__main__":
    run_server()
