"""Task lifecycle: provision and tear down a task's worktree and terminal.

Creating a task persists it first, then runs each side effect in order
(worktree, terminal, AI auto-run). A failing step is logged and never rolls
back the task, so the user can retry or clean up from the UI.
"""

import asyncio
import logging
from typing import Optional

from vibetree.config import AppConfig, normalize_path
from vibetree.git_utils import create_worktree, remove_worktree
from vibetree.store import NotFoundError, Repository, Store, Task
from vibetree.terminal import TerminalManager

log = logging.getLogger("vibetree.lifecycle")


class LifecycleOrchestrator:
    """Sequences store, git and terminal operations for tasks and repositories."""

    def __init__(self, store: Store, terminals: TerminalManager, config: AppConfig):
        self.store = store
        self.terminals = terminals
        self.config = config

    def _resolve_repository(self, repo_path: str) -> Repository:
        repo = self.store.get_repository_by_path(repo_path)
        if repo is None:
            repo = self.store.add_repository(repo_path, copy_files=self.config.copy_files)
        return repo

    async def create_task(self, repo_path: str, title: str, description: str = "") -> Task:
        """Create a task with its worktree and terminal, then start the AI tool.

        Raises:
            ValueError: If repo_path is empty (nothing is created)
        """
        repo_path = normalize_path(repo_path or "")
        if not repo_path:
            raise ValueError("Repository path is required")

        repo = await asyncio.to_thread(self._resolve_repository, repo_path)
        task = await asyncio.to_thread(self.store.create_task, repo.id, title, description)
        log.info("Created task %s (%s) in %s", task.id, task.branch_name, repo_path)

        try:
            await asyncio.to_thread(
                create_worktree,
                repo_path,
                task.id,
                task.branch_name,
                repo.copy_files,
                repo.worktree_path,
            )
        except Exception as e:
            log.error("Failed to create worktree for task %s: %s", task.id, e)

        try:
            await self.terminals.ensure_terminal_for_task(task.id, repo_path)
        except Exception as e:
            log.error("Failed to start terminal for task %s: %s", task.id, e)

        self.terminals.start_ai_run(task.id, repo_path)
        return task

    async def delete_task(self, task_id: str, repo_path: Optional[str] = None) -> None:
        """Shut down the terminal, remove the worktree and branch, then delete the record.

        Worktree removal failures are logged; the record is deleted regardless.

        Raises:
            NotFoundError: If the task does not exist
        """
        task = await asyncio.to_thread(self.store.get_task, task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        await self.terminals.shutdown_terminal_for_task(task_id)

        repo = await asyncio.to_thread(self.store.get_repository, task.repository_id)
        repo_path = normalize_path(repo_path or "") or (repo.path if repo else "")
        if repo_path:
            worktree_base = repo.worktree_path if repo else None
            try:
                await asyncio.to_thread(
                    remove_worktree, repo_path, task_id, task.branch_name, worktree_base
                )
            except Exception as e:
                log.error("Failed to remove worktree/branch for task %s: %s", task_id, e)

        await asyncio.to_thread(self.store.delete_task, task_id)
        log.info("Deleted task %s", task_id)

    async def delete_repository(self, repository_id: str) -> None:
        """Delete every task of a repository (with teardown), then the repository.

        Raises:
            NotFoundError: If the repository does not exist
        """
        repo = await asyncio.to_thread(self.store.get_repository, repository_id)
        if repo is None:
            raise NotFoundError("Repository", repository_id)

        for task in await asyncio.to_thread(self.store.list_tasks, repository_id):
            try:
                await self.delete_task(task.id, repo.path)
            except NotFoundError:
                continue

        await asyncio.to_thread(self.store.delete_repository, repository_id)
        log.info("Deleted repository %s", repo.path)

    async def restore_terminals(self) -> int:
        """Start terminals for every stored task whose worktree exists.

        Returns:
            Number of sessions running afterwards
        """
        repos = {r.id: r for r in await asyncio.to_thread(self.store.list_repositories)}
        for task in await asyncio.to_thread(self.store.list_tasks):
            repo = repos.get(task.repository_id)
            if repo is None:
                continue
            try:
                await self.terminals.ensure_terminal_for_task(task.id, repo.path)
            except Exception as e:
                log.error("Failed to restore terminal for task %s: %s", task.id, e)
        return self.terminals.session_count()
