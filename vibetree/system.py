"""Host OS helpers: file manager, folder picker, installed tool detection, VS Code."""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

log = logging.getLogger("vibetree.system")

AI_TOOLS = ("claude", "codex", "gemini")


class SystemCommandError(RuntimeError):
    """Raised when a host helper command fails or is unsupported."""


def _common_bin_dirs() -> list[str]:
    home = str(Path.home())
    return [
        "/opt/homebrew/bin",
        "/usr/local/bin",
        "/usr/bin",
        "/bin",
        os.path.join(home, ".local", "bin"),
        os.path.join(home, "bin"),
    ]


def find_executable(name: str) -> Optional[str]:
    """Locate an executable on PATH or in common install directories.

    GUI-launched servers often run with a minimal PATH, so well-known
    directories are searched as well.
    """
    extended_path = os.pathsep.join(_common_bin_dirs() + [os.environ.get("PATH", "")])
    found = shutil.which(name, path=extended_path)
    if found:
        return found

    suffix = ".exe" if sys.platform == "win32" else ""
    for directory in _common_bin_dirs():
        candidate = os.path.join(directory, name + suffix)
        if os.path.exists(candidate):
            return candidate
    return None


def get_ai_tools() -> dict[str, bool]:
    """Which of the supported AI CLIs are installed."""
    return {tool: find_executable(tool) is not None for tool in AI_TOOLS}


def check_vscode() -> bool:
    return find_executable("code") is not None


def open_directory(path: str) -> None:
    """Open a directory in the platform file manager.

    Raises:
        SystemCommandError: If the opener fails
    """
    if sys.platform == "darwin":
        command = ["open", path]
    elif sys.platform == "win32":
        command = ["explorer", path]
    else:
        command = ["xdg-open", path]

    try:
        subprocess.run(command, capture_output=True, text=True, check=sys.platform != "win32")
    except (subprocess.CalledProcessError, OSError) as e:
        raise SystemCommandError(f"Failed to open {path}: {e}") from e


def pick_folder() -> Optional[str]:
    """Show a native folder picker.

    Returns:
        The selected path, or None if the dialog was cancelled

    Raises:
        SystemCommandError: On platforms without a picker, or if the dialog fails
    """
    if sys.platform == "darwin":
        command = [
            "osascript",
            "-e",
            'POSIX path of (choose folder with prompt "Select a Git Repository")',
        ]
    elif sys.platform == "win32":
        command = [
            "powershell",
            "-Command",
            "Add-Type -AssemblyName System.Windows.Forms; "
            "$f = New-Object System.Windows.Forms.FolderBrowserDialog; "
            "$f.ShowDialog() | Out-Null; $f.SelectedPath",
        ]
    else:
        raise SystemCommandError("Directory picker not supported on this platform")

    result = subprocess.run(command, capture_output=True, text=True, check=False)
    selected = result.stdout.strip()
    if result.returncode != 0 and not selected:
        # osascript exits non-zero when the user cancels
        log.debug("Folder picker exited %s: %s", result.returncode, result.stderr)
        return None
    return selected or None


def open_vscode(path: str) -> None:
    """Launch VS Code on a directory, detached from the server.

    Raises:
        SystemCommandError: If VS Code cannot be started
    """
    if sys.platform == "win32":
        command = ["cmd", "/c", "code", path]
        kwargs: dict = {"creationflags": subprocess.DETACHED_PROCESS}
    else:
        command = ["code", path]
        kwargs = {"start_new_session": True}

    try:
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            **kwargs,
        )
    except OSError as e:
        log.error("Failed to open VS Code: %s", e)
        raise SystemCommandError(f"Failed to open VS Code: {e}") from e
