"""Test doubles for terminal sessions and realtime connections."""

import asyncio
import queue
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable

from vibetree.git_utils import WorktreeResult


class FakePty:
    """In-memory stand-in for a spawned PTY (see vibetree.terminal.PtyHandle)."""

    def __init__(self, argv: list[str], cwd: str, env: dict[str, str], cols: int, rows: int):
        self.argv = argv
        self.cwd = cwd
        self.env = env
        self.size = (rows, cols)
        self.written: list[str] = []
        self.terminated = False
        self._output: "queue.Queue[str | None]" = queue.Queue()

    def read(self, size: int) -> str:
        chunk = self._output.get()
        if chunk is None:
            raise EOFError("End of file")
        return chunk

    def write(self, data: str) -> int:
        self.written.append(data)
        return len(data)

    def setwinsize(self, rows: int, cols: int) -> None:
        self.size = (rows, cols)

    def terminate(self, force: bool = False) -> bool:
        self.terminated = True
        self._output.put(None)
        return True

    def isalive(self) -> bool:
        return not self.terminated

    # Test helpers

    def feed(self, data: str) -> None:
        """Simulate the shell printing data."""
        self._output.put(data)

    def exit(self) -> None:
        """Simulate the shell exiting."""
        self._output.put(None)


class FakePtyFactory:
    """Spawn function recording every FakePty it creates."""

    def __init__(self) -> None:
        self.spawned: list[FakePty] = []

    def __call__(self, argv: list[str], cwd: str, env: dict[str, str], cols: int, rows: int) -> FakePty:
        pty = FakePty(argv, cwd, env, cols, rows)
        self.spawned.append(pty)
        return pty


class FakeConnection:
    """Records emitted events and lets tests fire client events."""

    def __init__(self) -> None:
        self.emitted: list[tuple[str, Any]] = []
        self.handlers: dict[str, list[Callable[[Any], Any]]] = defaultdict(list)

    def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        self.handlers[event].append(handler)

    def off(self, event: str, handler: Callable[[Any], Any]) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def remove_all_listeners(self, event: str) -> None:
        self.handlers.pop(event, None)

    def trigger(self, event: str, data: Any = None) -> None:
        for handler in list(self.handlers[event]):
            handler(data)

    def events(self, name: str) -> list[Any]:
        return [data for event, data in self.emitted if event == name]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Let the event loop run until predicate() holds (PTY output arrives from a thread)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(0.01)


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Blocking variant of wait_for, for tests driving a TestClient."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Timed out waiting for condition")
        time.sleep(0.01)


def make_worktree(repo_path, task_id, branch_name, copy_files=None, worktree_base=None):
    """Stand-in for create_worktree that only creates the directory."""
    base = Path(worktree_base) if worktree_base else Path(repo_path) / ".vibetree" / "worktrees"
    path = base / task_id
    path.mkdir(parents=True, exist_ok=True)
    return WorktreeResult(success=True, path=str(path), message="created")
