"""Pytest configuration and fixtures for vibetree tests.

VIBETREE_HOME points at a temp dir for every test so nothing touches the real
~/.vibetree. Terminal tests use FakePty instead of a real pseudo-terminal.
"""

from pathlib import Path

import pytest
from click.testing import CliRunner

from tests.helpers import FakePtyFactory
from vibetree.config import AppConfig
from vibetree.store import Store


@pytest.fixture(autouse=True)
def vibetree_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate config and database in a temp dir."""
    home = tmp_path / "vibetree-home"
    monkeypatch.setenv("VIBETREE_HOME", str(home))
    for var in ("REPO_PATH", "AI_TOOL", "VIBETREE_PORT"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def fake_spawn() -> FakePtyFactory:
    return FakePtyFactory()


@pytest.fixture
def config() -> AppConfig:
    """Config with no shell settle delay so AI runs complete immediately."""
    return AppConfig(ai_tool="claude", ai_settle_delay=0, shell="/bin/sh")


@pytest.fixture
def store(vibetree_home: Path) -> Store:
    return Store()


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    """An (unversioned) directory standing in for a repository."""
    repo = tmp_path / "repo"
    repo.mkdir()
    return repo


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click test runner."""
    return CliRunner()
