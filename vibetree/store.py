"""Repository registry and task store.

Repositories and tasks live in a single YAML document (~/.vibetree/vibetree.yaml).
Every write is a locked read-modify-write so that the web server and CLI
commands running at the same time never clobber each other.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

import yaml
from filelock import FileLock
from pydantic import BaseModel, Field

from vibetree.config import get_vibetree_home, normalize_path

log = logging.getLogger("vibetree.store")

# Lock timeout in seconds - prevents deadlocks if a process crashes while holding lock
_LOCK_TIMEOUT = 5.0


class NotFoundError(LookupError):
    """Raised when a repository or task does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class Repository(BaseModel):
    """A git repository registered with VibeTree."""

    id: str
    path: str
    copy_files: str = ""
    worktree_path: Optional[str] = None  # Overrides <repo>/.vibetree/worktrees
    ai_tool: Optional[str] = None  # Overrides the global AI tool


class Task(BaseModel):
    """A unit of work bound to one worktree and one terminal."""

    id: str
    repository_id: str
    title: str
    description: str = ""
    branch_name: str = ""
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    pr_url: Optional[str] = None
    pr_merged: bool = False


def make_branch_name() -> str:
    """Derive a fresh task branch name from the current time."""
    return f"feature/task-{int(time.time() * 1000)}"


class Store:
    """YAML-backed store for repositories and tasks."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or get_vibetree_home() / "vibetree.yaml"
        self.lock_path = self.path.parent / f"{self.path.name}.lock"

    @contextmanager
    def _lock(self) -> Generator[None, None, None]:
        """Exclusive access to the database file.

        Raises:
            Timeout: If lock cannot be acquired within _LOCK_TIMEOUT seconds
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.lock_path, timeout=_LOCK_TIMEOUT):
            yield

    def _load(self) -> dict[str, list[dict[str, Any]]]:
        if not self.path.exists():
            return {"repositories": [], "tasks": []}

        with open(self.path) as f:
            data = yaml.safe_load(f) or {}

        return {
            "repositories": data.get("repositories") or [],
            "tasks": data.get("tasks") or [],
        }

    def _save(self, data: dict[str, list[dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".yaml.tmp")
        with open(tmp_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        tmp_path.replace(self.path)

    # Repositories

    def list_repositories(self) -> list[Repository]:
        data = self._load()
        return [Repository(**r) for r in data["repositories"]]

    def get_repository(self, repository_id: str) -> Optional[Repository]:
        for repo in self.list_repositories():
            if repo.id == repository_id:
                return repo
        return None

    def get_repository_by_path(self, path: str) -> Optional[Repository]:
        normalized = normalize_path(path)
        if not normalized:
            return None
        for repo in self.list_repositories():
            if repo.path == normalized:
                return repo
        return None

    def add_repository(self, path: str, copy_files: Optional[str] = None) -> Repository:
        """Register a repository, returning the existing record if already known."""
        normalized = normalize_path(path)
        if not normalized:
            raise ValueError("Repository path is required")

        with self._lock():
            data = self._load()
            for r in data["repositories"]:
                if r["path"] == normalized:
                    return Repository(**r)

            repo = Repository(id=str(uuid.uuid4()), path=normalized, copy_files=copy_files or "")
            data["repositories"].append(repo.model_dump())
            self._save(data)

        log.info("Registered repository %s", normalized)
        return repo

    def update_repository(self, repository_id: str, **updates: Any) -> Repository:
        """Update repository fields (path, copy_files, worktree_path, ai_tool).

        Fields passed as None are left untouched.

        Raises:
            NotFoundError: If the repository does not exist
            ValueError: If the new path is empty or registered to another repository
        """
        updates = {k: v for k, v in updates.items() if v is not None}
        if "path" in updates:
            updates["path"] = normalize_path(updates["path"])
            if not updates["path"]:
                raise ValueError("Repository path is required")
        if "worktree_path" in updates:
            # Empty string clears the override
            updates["worktree_path"] = normalize_path(updates["worktree_path"]) or None
        if "ai_tool" in updates:
            updates["ai_tool"] = updates["ai_tool"] or None

        with self._lock():
            data = self._load()
            if "path" in updates:
                for r in data["repositories"]:
                    if r["path"] == updates["path"] and r["id"] != repository_id:
                        raise ValueError(f"Repository path already registered: {updates['path']}")
            for i, r in enumerate(data["repositories"]):
                if r["id"] == repository_id:
                    repo = Repository(**r).model_copy(update=updates)
                    data["repositories"][i] = repo.model_dump()
                    self._save(data)
                    return repo

        raise NotFoundError("Repository", repository_id)

    def delete_repository(self, repository_id: str) -> None:
        """Remove a repository and the records of its tasks."""
        with self._lock():
            data = self._load()
            data["repositories"] = [r for r in data["repositories"] if r["id"] != repository_id]
            data["tasks"] = [t for t in data["tasks"] if t["repository_id"] != repository_id]
            self._save(data)

    # Tasks

    def list_tasks(self, repository_id: Optional[str] = None) -> list[Task]:
        """List tasks, newest first, optionally scoped to one repository."""
        data = self._load()
        # Later records first, so timestamp ties still list newest first
        tasks = [Task(**t) for t in reversed(data["tasks"])]
        if repository_id:
            tasks = [t for t in tasks if t.repository_id == repository_id]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.list_tasks():
            if task.id == task_id:
                return task
        return None

    def create_task(
        self,
        repository_id: str,
        title: str,
        description: str = "",
        branch_name: Optional[str] = None,
    ) -> Task:
        task = Task(
            id=str(uuid.uuid4()),
            repository_id=repository_id,
            title=title or "New Task",
            description=description or "",
            branch_name=branch_name or make_branch_name(),
        )

        with self._lock():
            data = self._load()
            data["tasks"].append(task.model_dump())
            self._save(data)

        return task

    def update_task(self, task_id: str, **updates: Any) -> Task:
        """Update task fields (title, description, branch_name, pr_url, pr_merged).

        Raises:
            NotFoundError: If the task does not exist
        """
        updates = {k: v for k, v in updates.items() if v is not None}

        with self._lock():
            data = self._load()
            for i, t in enumerate(data["tasks"]):
                if t["id"] == task_id:
                    task = Task(**t).model_copy(update=updates)
                    data["tasks"][i] = task.model_dump()
                    self._save(data)
                    return task

        raise NotFoundError("Task", task_id)

    def delete_task(self, task_id: str) -> None:
        with self._lock():
            data = self._load()
            data["tasks"] = [t for t in data["tasks"] if t["id"] != task_id]
            self._save(data)
