"""Integration test fixtures.

These fixtures create real git repositories (a working clone plus a bare
origin) so worktree, push and terminal flows run against real git and a real PTY.
"""

import subprocess
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def git_identity(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Fixed commit identity, independent of the user's git config."""
    global_config = tmp_path / "gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    """Bare repository acting as the remote."""
    origin_path = tmp_path / "origin.git"
    subprocess.run(["git", "init", "--bare", str(origin_path)], check=True, capture_output=True)
    subprocess.run(
        ["git", "symbolic-ref", "HEAD", "refs/heads/main"],
        cwd=origin_path, check=True, capture_output=True
    )
    return origin_path


@pytest.fixture
def git_repo(tmp_path: Path, origin: Path) -> Path:
    """Create a real git repository on main, pushed to origin.

    .env is ignored by git, so it only reaches a worktree by being copied.
    """
    repo_path = tmp_path / "project"
    repo_path.mkdir()

    subprocess.run(["git", "init"], cwd=repo_path, check=True, capture_output=True)
    subprocess.run(
        ["git", "symbolic-ref", "HEAD", "refs/heads/main"],
        cwd=repo_path, check=True, capture_output=True
    )

    (repo_path / "README.md").write_text("# Test Project\n")
    (repo_path / ".gitignore").write_text(".env\n.vibetree/\n")
    (repo_path / ".env").write_text("SECRET=1\n")
    subprocess.run(["git", "add", "."], cwd=repo_path, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"],
        cwd=repo_path, check=True, capture_output=True
    )

    subprocess.run(
        ["git", "remote", "add", "origin", str(origin)],
        cwd=repo_path, check=True, capture_output=True
    )
    subprocess.run(
        ["git", "push", "-u", "origin", "main"],
        cwd=repo_path, check=True, capture_output=True
    )
    return repo_path
