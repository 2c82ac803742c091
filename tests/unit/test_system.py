"""Tests for host OS helpers."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from vibetree import system


class TestToolDetection:
    """Tests for installed tool detection."""

    def test_get_ai_tools(self) -> None:
        with patch("vibetree.system.find_executable", side_effect=lambda name: "/bin/claude" if name == "claude" else None):
            assert system.get_ai_tools() == {"claude": True, "codex": False, "gemini": False}

    def test_check_vscode(self) -> None:
        with patch("vibetree.system.find_executable", return_value="/usr/local/bin/code"):
            assert system.check_vscode() is True
        with patch("vibetree.system.find_executable", return_value=None):
            assert system.check_vscode() is False

    def test_find_executable_searches_common_dirs(self, tmp_path, monkeypatch) -> None:
        tool = tmp_path / "mytool"
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)
        monkeypatch.setattr(system, "_common_bin_dirs", lambda: [str(tmp_path)])
        monkeypatch.setenv("PATH", "")

        assert system.find_executable("mytool") == str(tool)
        assert system.find_executable("definitely-not-installed-xyz") is None


class TestOpenDirectory:
    """Tests for open_directory."""

    @patch("subprocess.run")
    def test_linux_uses_xdg_open(self, mock_run: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "linux")

        system.open_directory("/code/app")

        assert mock_run.call_args.args[0] == ["xdg-open", "/code/app"]

    @patch("subprocess.run")
    def test_macos_uses_open(self, mock_run: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "darwin")

        system.open_directory("/code/app")

        assert mock_run.call_args.args[0] == ["open", "/code/app"]

    @patch("subprocess.run")
    def test_failure_raises(self, mock_run: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "linux")
        mock_run.side_effect = subprocess.CalledProcessError(4, ["xdg-open"])

        with pytest.raises(system.SystemCommandError):
            system.open_directory("/code/app")


class TestPickFolder:
    """Tests for pick_folder."""

    def test_unsupported_platform(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "linux")

        with pytest.raises(system.SystemCommandError, match="not supported"):
            system.pick_folder()

    @patch("subprocess.run")
    def test_macos_selection(self, mock_run: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "darwin")
        mock_run.return_value = Mock(returncode=0, stdout="/Users/me/app/\n", stderr="")

        assert system.pick_folder() == "/Users/me/app/"
        assert mock_run.call_args.args[0][0] == "osascript"

    @patch("subprocess.run")
    def test_macos_cancel(self, mock_run: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "darwin")
        mock_run.return_value = Mock(returncode=1, stdout="", stderr="User canceled. (-128)")

        assert system.pick_folder() is None


class TestOpenVscode:
    """Tests for open_vscode."""

    @patch("subprocess.Popen")
    def test_spawns_detached(self, mock_popen: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "linux")

        system.open_vscode("/code/app")

        assert mock_popen.call_args.args[0] == ["code", "/code/app"]
        assert mock_popen.call_args.kwargs["start_new_session"] is True

    @patch("subprocess.Popen", side_effect=FileNotFoundError("code"))
    def test_missing_code(self, mock_popen: Mock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(system.sys, "platform", "linux")

        with pytest.raises(system.SystemCommandError):
            system.open_vscode("/code/app")
