"""Terminal session management for VibeTree.

Each task owns at most one long-lived shell running in a PTY. Browser clients
attach to a session over the realtime channel; reconnecting replays the
buffered output and then resumes live streaming. Detaching never kills the
shell.

All registry mutations happen on the asyncio event loop. PTY output is read on
a daemon thread per session and handed to the loop with call_soon_threadsafe.
"""

import asyncio
import logging
import os
import shutil
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from transitions import Machine

from vibetree.ai import InvalidToolNameError, build_ai_command
from vibetree.config import AppConfig
from vibetree.git_utils import get_worktree_path
from vibetree.store import Store, Task

log = logging.getLogger("vibetree.terminal")

DEFAULT_COLS = 80
DEFAULT_ROWS = 30
READ_CHUNK_SIZE = 4096


class PtyHandle(Protocol):
    """What a session needs from a PTY (PexpectPty or pywinpty's PtyProcess)."""

    def read(self, size: int) -> str: ...
    def write(self, data: str) -> Any: ...
    def setwinsize(self, rows: int, cols: int) -> None: ...
    def terminate(self, force: bool = False) -> Any: ...
    def isalive(self) -> bool: ...


class Connection(Protocol):
    """A realtime client connection (see vibetree.web.terminal_ws.TerminalConnection)."""

    def emit(self, event: str, data: Any = None) -> None: ...
    def on(self, event: str, handler: Callable[[Any], Any]) -> None: ...
    def off(self, event: str, handler: Callable[[Any], Any]) -> None: ...
    def remove_all_listeners(self, event: str) -> None: ...


SpawnFunc = Callable[[list[str], str, dict[str, str], int, int], PtyHandle]


def default_shell(config: Optional[AppConfig] = None) -> list[str]:
    """Shell argv for new terminals.

    zsh on POSIX, falling back to $SHELL then /bin/sh when zsh is not
    installed; powershell.exe on Windows.
    """
    if config and config.shell:
        return [config.shell]
    if sys.platform == "win32":
        return ["powershell.exe"]
    if os.path.exists("/bin/zsh"):
        return ["/bin/zsh"]
    fallback = os.environ.get("SHELL") or shutil.which("zsh") or "/bin/sh"
    return [fallback]


class PexpectPty:
    """POSIX PTY backed by pexpect.spawn."""

    def __init__(self, argv: list[str], cwd: str, env: dict[str, str], cols: int, rows: int):
        import pexpect

        self._pexpect = pexpect
        self._proc = pexpect.spawn(
            argv[0],
            argv[1:],
            cwd=cwd,
            env={**env, "TERM": "xterm-color"},
            encoding="utf-8",
            codec_errors="replace",
            dimensions=(rows, cols),
            timeout=None,
        )

    def read(self, size: int) -> str:
        """Block until output is available."""
        try:
            return self._proc.read_nonblocking(size, timeout=None)
        except self._pexpect.EOF as e:
            raise EOFError(str(e)) from e

    def write(self, data: str) -> int:
        return self._proc.send(data)

    def setwinsize(self, rows: int, cols: int) -> None:
        self._proc.setwinsize(rows, cols)

    def terminate(self, force: bool = False) -> bool:
        return self._proc.terminate(force=force)

    def isalive(self) -> bool:
        return self._proc.isalive()


def spawn_pty(argv: list[str], cwd: str, env: dict[str, str], cols: int, rows: int) -> PtyHandle:
    """Start a process attached to a new pseudo-terminal."""
    if sys.platform == "win32":
        from winpty import PtyProcess as WinPtyProcess

        # pywinpty's PtyProcess already matches PtyHandle
        return WinPtyProcess.spawn(argv, cwd=cwd, env=env, dimensions=(rows, cols))

    return PexpectPty(argv, cwd, env, cols, rows)


class OutputBuffer:
    """Bounded FIFO of the most recent output chunks; the oldest is evicted first."""

    def __init__(self, max_size: int):
        self._chunks: deque[str] = deque(maxlen=max_size)

    @property
    def max_size(self) -> int:
        return self._chunks.maxlen or 0

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)

    def snapshot(self) -> str:
        return "".join(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)


class TerminalSession:
    """One PTY, its output buffer and the client currently attached to it.

    Lifecycle: no_session -> spawning -> running -> terminated.
    """

    STATES = ["no_session", "spawning", "running", "terminated"]

    TRANSITIONS = [
        {"trigger": "spawn", "source": "no_session", "dest": "spawning"},
        {"trigger": "started", "source": "spawning", "dest": "running"},
        {"trigger": "fail", "source": "spawning", "dest": "terminated"},
        {"trigger": "terminate", "source": ["spawning", "running"], "dest": "terminated"},
    ]

    # Set by transitions.Machine
    state: str

    def __init__(self, term_id: str, buffer_size: int):
        self.term_id = term_id
        self.pty: Optional[PtyHandle] = None
        self.buffer = OutputBuffer(buffer_size)
        self.client: Optional[Connection] = None
        # Handlers registered on the attached client, by event name
        self.listeners: dict[str, Callable[[Any], Any]] = {}
        self.reader: Optional[threading.Thread] = None

        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial="no_session",
            auto_transitions=False,
        )

    def detach(self) -> None:
        """Drop the attached client and unregister its handlers."""
        if self.client is not None:
            for event, handler in self.listeners.items():
                self.client.off(event, handler)
        self.client = None
        self.listeners = {}


class TerminalManager:
    """Registry of terminal sessions keyed by task id ("default" for the repo shell)."""

    def __init__(self, store: Store, config: AppConfig, spawn: SpawnFunc = spawn_pty):
        self.store = store
        self.config = config
        self._spawn = spawn
        self.sessions: dict[str, TerminalSession] = {}
        self._ai_runs: set[asyncio.Task] = set()

    def has_session(self, term_id: str) -> bool:
        return term_id in self.sessions

    def session_count(self) -> int:
        return len(self.sessions)

    def resolve_worktree_dir(self, repo_path: str, task_id: str) -> Path:
        repo = self.store.get_repository_by_path(repo_path)
        worktree_base = repo.worktree_path if repo else None
        return get_worktree_path(repo_path, task_id, worktree_base)

    @staticmethod
    def _task_env(task: Optional[Task]) -> dict[str, str]:
        if task is None:
            return {}
        return {
            "TASK_ID": task.id,
            "TASK_TITLE": task.title,
            "TASK_DESCRIPTION": task.description,
        }

    def _start_session(self, term_id: str, cwd: str, task_env: dict[str, str]) -> TerminalSession:
        """Spawn a shell for term_id and start streaming its output.

        Must be called on the event loop thread.
        """
        loop = asyncio.get_running_loop()
        session = TerminalSession(term_id, self.config.terminal_buffer_size)
        session.spawn()

        argv = default_shell(self.config)
        env = {**os.environ, **task_env}
        try:
            session.pty = self._spawn(argv, cwd, env, DEFAULT_COLS, DEFAULT_ROWS)
        except Exception:
            session.fail()
            raise

        session.started()
        self.sessions[term_id] = session
        session.reader = threading.Thread(
            target=self._read_loop,
            args=(session, loop),
            name=f"pty-reader-{term_id}",
            daemon=True,
        )
        session.reader.start()
        log.info("Spawned %s for %s in %s", argv[0], term_id, cwd)
        return session

    def _read_loop(self, session: TerminalSession, loop: asyncio.AbstractEventLoop) -> None:
        pty = session.pty
        while True:
            try:
                data = pty.read(READ_CHUNK_SIZE)
            except (EOFError, OSError):
                break
            if not data:
                continue
            try:
                loop.call_soon_threadsafe(self._on_output, session, data)
            except RuntimeError:
                # Event loop already closed
                return
        try:
            loop.call_soon_threadsafe(self._on_exit, session)
        except RuntimeError:
            pass

    def _on_output(self, session: TerminalSession, data: str) -> None:
        session.buffer.append(data)
        if session.client is not None:
            session.client.emit(f"terminal:data:{session.term_id}", data)

    def _on_exit(self, session: TerminalSession) -> None:
        if session.state == "terminated":
            return
        session.terminate()
        if self.sessions.get(session.term_id) is session:
            del self.sessions[session.term_id]
        log.info("Terminal %s exited", session.term_id)
        if session.client is not None:
            session.client.emit(f"terminal:exit:{session.term_id}", None)
        session.detach()

    def attach(
        self,
        connection: Connection,
        session: TerminalSession,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
    ) -> None:
        """Make connection the session's only client and replay its backlog.

        A previously attached client is detached silently; it stops receiving
        output and its input is no longer forwarded.
        """
        term_id = session.term_id
        input_event = f"terminal:input:{term_id}"
        resize_event = f"terminal:resize:{term_id}"

        session.detach()
        connection.remove_all_listeners(input_event)
        connection.remove_all_listeners(resize_event)

        def on_input(data: Any) -> None:
            if session.is_running() and isinstance(data, str):
                session.pty.write(data)

        def on_resize(data: Any) -> None:
            data = data or {}
            if session.is_running():
                session.pty.setwinsize(data.get("rows") or DEFAULT_ROWS, data.get("cols") or DEFAULT_COLS)

        def on_disconnect(_data: Any = None) -> None:
            if session.client is connection:
                session.detach()

        session.client = connection
        session.listeners = {
            input_event: on_input,
            resize_event: on_resize,
            "disconnect": on_disconnect,
        }
        for event, handler in session.listeners.items():
            connection.on(event, handler)

        if cols and rows:
            session.pty.setwinsize(rows, cols)

        if len(session.buffer) > 0:
            log.debug("Replaying %d buffered chunks to client of %s", len(session.buffer), term_id)
            connection.emit(f"terminal:reconnect:{term_id}", session.buffer.snapshot())

    async def ensure_terminal_for_task(self, task_id: str, repo_path: str) -> None:
        """Start the task's terminal in its worktree if it is not running yet.

        Silently does nothing when the worktree is missing or not accessible.
        """
        if task_id in self.sessions or not repo_path:
            return

        try:
            worktree_dir = await asyncio.to_thread(self.resolve_worktree_dir, repo_path, task_id)
        except ValueError as e:
            log.warning("Cannot resolve worktree for %s: %s", task_id, e)
            return
        if not worktree_dir.is_dir() or not os.access(worktree_dir, os.R_OK | os.X_OK):
            return

        task = await asyncio.to_thread(self.store.get_task, task_id)
        # Another caller may have started it while the store was read
        if task_id in self.sessions:
            return
        self._start_session(task_id, str(worktree_dir), self._task_env(task))

    async def handle_create(
        self,
        connection: Connection,
        cols: Optional[int],
        rows: Optional[int],
        task_id: Optional[str],
        repo_path: Optional[str],
    ) -> None:
        """Handle a client's terminal:create request."""
        if not repo_path:
            connection.emit("terminal:error", "Repository path not provided")
            return

        term_id = task_id or "default"
        session = self.sessions.get(term_id)
        if session is not None:
            self.attach(connection, session, cols, rows)
            return

        working_dir = Path(repo_path)
        task_env: dict[str, str] = {}
        if term_id != "default":
            task = await asyncio.to_thread(self.store.get_task, term_id)
            if task is not None:
                task_env = self._task_env(task)
                try:
                    worktree_dir = await asyncio.to_thread(self.resolve_worktree_dir, repo_path, term_id)
                except ValueError as e:
                    connection.emit("terminal:error", str(e))
                    return
                if worktree_dir.exists():
                    working_dir = worktree_dir

        if not working_dir.exists():
            log.warning("Working dir %s missing, using home", working_dir)
            working_dir = Path.home()

        if not os.access(working_dir, os.R_OK | os.X_OK):
            connection.emit("terminal:error", f"Directory not accessible: {working_dir}")
            return

        session = self.sessions.get(term_id)
        if session is not None:
            # Started by another caller while the store was read
            self.attach(connection, session, cols, rows)
            return

        try:
            session = self._start_session(term_id, str(working_dir), task_env)
        except Exception as e:
            log.exception("Failed to spawn terminal for %s", term_id)
            connection.emit("terminal:error", str(e))
            return

        self.attach(connection, session, cols, rows)

    async def run_ai_for_task(self, task_id: str, repo_path: str) -> bool:
        """Type the AI tool command, with the task as its prompt, into the task's terminal.

        Returns:
            True if the command was written
        """
        session = self.sessions.get(task_id)
        if session is None:
            return False

        repo = await asyncio.to_thread(self.store.get_repository_by_path, repo_path)
        tool = (repo.ai_tool if repo else None) or self.config.ai_tool
        if not tool:
            return False

        task = await asyncio.to_thread(self.store.get_task, task_id)
        if task is None:
            return False

        try:
            command = build_ai_command(tool, task.title, task.description)
        except InvalidToolNameError as e:
            log.warning("Not running AI for %s: %s", task_id, e)
            return False

        # Give the shell time to print its prompt
        await asyncio.sleep(self.config.ai_settle_delay)

        if self.sessions.get(task_id) is not session or not session.is_running():
            return False
        try:
            session.pty.write(command)
        except OSError as e:
            log.error("Failed to run AI command for %s: %s", task_id, e)
            return False

        log.info("Ran %s with task context for %s", tool, task_id)
        return True

    def start_ai_run(self, task_id: str, repo_path: str) -> asyncio.Task:
        """Schedule run_ai_for_task in the background; failures are logged."""
        run = asyncio.create_task(self.run_ai_for_task(task_id, repo_path), name=f"ai-run-{task_id}")
        self._ai_runs.add(run)
        run.add_done_callback(self._on_ai_run_done)
        return run

    def _on_ai_run_done(self, run: asyncio.Task) -> None:
        self._ai_runs.discard(run)
        if run.cancelled():
            return
        exc = run.exception()
        if exc is not None:
            log.error("AI auto-run %s failed", run.get_name(), exc_info=exc)

    def write_input(self, term_id: str, data: str) -> bool:
        session = self.sessions.get(term_id)
        if session is None or not session.is_running():
            return False
        session.pty.write(data)
        return True

    def resize(self, term_id: str, cols: int, rows: int) -> bool:
        session = self.sessions.get(term_id)
        if session is None or not session.is_running():
            return False
        session.pty.setwinsize(rows or DEFAULT_ROWS, cols or DEFAULT_COLS)
        return True

    async def shutdown_terminal_for_task(self, task_id: str) -> None:
        """Kill a task's shell and forget the session. No-op if there is none."""
        session = self.sessions.pop(task_id, None)
        if session is None:
            return

        log.info("Shutting down terminal for %s", task_id)
        if session.state != "terminated":
            session.terminate()
        session.detach()
        try:
            await asyncio.to_thread(session.pty.terminate, True)
        except Exception as e:
            log.error("Error killing PTY for %s: %s", task_id, e)

    async def shutdown_all(self) -> None:
        for run in list(self._ai_runs):
            run.cancel()
        for term_id in list(self.sessions):
            await self.shutdown_terminal_for_task(term_id)
