"""Tests for git operations."""

import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from vibetree.git_utils import (
    GitError,
    InvalidBranchNameError,
    PushRejectedError,
    classify_push_failure,
    commit_all,
    create_worktree,
    get_branch_diff,
    get_default_branch,
    get_status,
    get_worktree_path,
    has_changes_for_pr,
    pull_main_branch,
    push_branch,
    push_branch_force,
    rebase,
    remove_worktree,
    sanitize_branch_name,
)


def git_args(mock_run: Mock) -> list[list[str]]:
    """argv of every subprocess.run call, without the leading 'git'."""
    return [c.args[0][1:] for c in mock_run.call_args_list]


def fake_git(responses: dict[tuple[str, ...], Mock]):
    """subprocess.run replacement answering by argv prefix (after 'git')."""

    def run(cmd, *args, **kwargs):
        argv = tuple(cmd[1:])
        for prefix, result in responses.items():
            if argv[: len(prefix)] == prefix:
                if kwargs.get("check") and result.returncode != 0:
                    raise subprocess.CalledProcessError(
                        result.returncode, cmd, output=result.stdout, stderr=result.stderr
                    )
                return result
        return Mock(returncode=0, stdout="", stderr="")

    return run


def ok(stdout: str = "") -> Mock:
    return Mock(returncode=0, stdout=stdout, stderr="")


def failed(stderr: str = "", stdout: str = "", code: int = 1) -> Mock:
    return Mock(returncode=code, stdout=stdout, stderr=stderr)


class TestSanitizeBranchName:
    """Tests for branch name validation."""

    @pytest.mark.parametrize("name", ["main", "feature/task-1712345678901", "fix_bug.2", "a-b/c_d.e"])
    def test_accepts_safe_names(self, name: str) -> None:
        assert sanitize_branch_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "feat..x", "../etc", ".hidden", "/abs", "has space", "semi;colon", "$(rm)", "back`tick", "main\n", "main\r"],
    )
    def test_rejects_unsafe_names(self, name: str) -> None:
        with pytest.raises(InvalidBranchNameError):
            sanitize_branch_name(name)

    def test_is_value_error(self) -> None:
        assert issubclass(InvalidBranchNameError, ValueError)


class TestWorktreePath:
    """Tests for worktree path resolution."""

    def test_default_base(self) -> None:
        assert get_worktree_path("/code/app", "t1") == Path("/code/app/.vibetree/worktrees/t1")

    def test_override_base(self) -> None:
        assert get_worktree_path("/code/app", "t1", "/trees") == Path("/trees/t1")

    @pytest.mark.parametrize("task_id", ["", "..", "a/b", "a\\b"])
    def test_rejects_bad_task_ids(self, task_id: str) -> None:
        with pytest.raises(ValueError):
            get_worktree_path("/code/app", task_id)


class TestCreateWorktree:
    """Tests for create_worktree."""

    def test_existing_worktree_is_reused(self, tmp_path: Path) -> None:
        """A second call for the same task must not run git at all."""
        existing = tmp_path / ".vibetree" / "worktrees" / "t1"
        existing.mkdir(parents=True)

        with patch("subprocess.run") as mock_run:
            result = create_worktree(tmp_path, "t1", "feature/task-1")

        mock_run.assert_not_called()
        assert result.success is True
        assert result.path == str(existing)
        assert result.message == "Worktree already exists"

    def test_creates_new_branch(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=fake_git({("rev-parse",): failed()})) as mock_run:
            result = create_worktree(tmp_path, "t1", "feature/task-1")

        path = str(tmp_path / ".vibetree" / "worktrees" / "t1")
        assert ["worktree", "add", "-b", "feature/task-1", path] in git_args(mock_run)
        assert result.success is True
        assert result.path == path

    def test_reuses_existing_branch(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=fake_git({})) as mock_run:
            create_worktree(tmp_path, "t1", "feature/task-1")

        path = str(tmp_path / ".vibetree" / "worktrees" / "t1")
        assert ["worktree", "add", path, "feature/task-1"] in git_args(mock_run)

    def test_uses_worktree_base_override(self, tmp_path: Path) -> None:
        base = tmp_path / "elsewhere"

        with patch("subprocess.run", side_effect=fake_git({})):
            result = create_worktree(tmp_path / "repo", "t1", "feature/x", worktree_base=base)

        assert result.path == str(base / "t1")
        assert base.is_dir()

    def test_git_failure_raises(self, tmp_path: Path) -> None:
        responses = {("worktree", "add"): failed("fatal: invalid reference")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            with pytest.raises(GitError, match="invalid reference"):
                create_worktree(tmp_path, "t1", "feature/x")

    def test_rejects_unsafe_branch_before_running_git(self, tmp_path: Path) -> None:
        with patch("subprocess.run") as mock_run:
            with pytest.raises(InvalidBranchNameError):
                create_worktree(tmp_path, "t1", "bad;name")
        mock_run.assert_not_called()

    def test_copies_files(self, tmp_path: Path) -> None:
        repo = tmp_path / "repo"
        (repo / "config").mkdir(parents=True)
        (repo / ".env").write_text("SECRET=1")
        (repo / "config" / "local.json").write_text("{}")
        absolute = tmp_path / "shared.txt"
        absolute.write_text("shared")

        def run(cmd, *args, **kwargs):
            if cmd[1:3] == ["worktree", "add"]:
                Path(cmd[-1] if "-b" in cmd else cmd[-2]).mkdir(parents=True)
            return ok()

        copy_files = f".env\nconfig/local.json\n\nmissing.txt\nconfig\n{absolute}\n"
        with patch("subprocess.run", side_effect=run):
            result = create_worktree(repo, "t1", "feature/x", copy_files=copy_files)

        worktree = Path(result.path)
        assert (worktree / ".env").read_text() == "SECRET=1"
        assert (worktree / "local.json").read_text() == "{}"
        assert (worktree / "shared.txt").read_text() == "shared"
        assert not (worktree / "missing.txt").exists()
        assert not (worktree / "config").exists()


class TestRemoveWorktree:
    """Tests for remove_worktree."""

    def test_removes_worktree_and_branch(self, tmp_path: Path) -> None:
        worktree = tmp_path / ".vibetree" / "worktrees" / "t1"
        worktree.mkdir(parents=True)

        with patch("subprocess.run", side_effect=fake_git({})) as mock_run:
            result = remove_worktree(tmp_path, "t1", "feature/x")

        assert git_args(mock_run) == [
            ["worktree", "remove", "--force", str(worktree)],
            ["branch", "-D", "feature/x"],
        ]
        assert result.success is True

    def test_missing_worktree_only_deletes_branch(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=fake_git({})) as mock_run:
            remove_worktree(tmp_path, "t1", "feature/x")

        assert git_args(mock_run) == [["branch", "-D", "feature/x"]]

    def test_branch_delete_failure_is_swallowed(self, tmp_path: Path) -> None:
        responses = {("branch", "-D"): failed("error: branch 'feature/x' not found")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            result = remove_worktree(tmp_path, "t1", "feature/x")

        assert result.success is True


class TestRebase:
    """Tests for rebase."""

    def test_rebases_in_worktree(self, tmp_path: Path) -> None:
        worktree = tmp_path / ".vibetree" / "worktrees" / "t1"
        worktree.mkdir(parents=True)

        with patch("subprocess.run", side_effect=fake_git({})) as mock_run:
            rebase(tmp_path, "t1", "main")

        assert git_args(mock_run) == [["rebase", "main"]]
        assert mock_run.call_args.kwargs["cwd"] == worktree

    def test_conflict_propagates(self, tmp_path: Path) -> None:
        (tmp_path / ".vibetree" / "worktrees" / "t1").mkdir(parents=True)
        responses = {("rebase",): failed("CONFLICT (content): Merge conflict in a.py")}

        with patch("subprocess.run", side_effect=fake_git(responses)):
            with pytest.raises(GitError, match="CONFLICT"):
                rebase(tmp_path, "t1", "main")

    def test_missing_worktree(self, tmp_path: Path) -> None:
        with pytest.raises(GitError, match="Worktree not found"):
            rebase(tmp_path, "t1", "main")


class TestClassifyPushFailure:
    """Tests for push rejection detection."""

    def test_porcelain_rejected_line(self) -> None:
        stdout = "To github.com:me/app.git\n!\trefs/heads/x:refs/heads/x\t[rejected] (fetch first)\nDone\n"
        assert classify_push_failure(stdout, "") is True

    @pytest.mark.parametrize(
        "stderr",
        [
            " ! [rejected]        x -> x (non-fast-forward)",
            "hint: Updates were rejected because the remote contains work",
            "error: failed to push some refs (fetch first)",
            "NON-FAST-FORWARD",
        ],
    )
    def test_text_match(self, stderr: str) -> None:
        assert classify_push_failure("", stderr) is True

    def test_other_failures(self) -> None:
        assert classify_push_failure("", "fatal: could not read from remote repository") is False
        assert classify_push_failure("", "Permission denied (publickey)") is False


class TestPush:
    """Tests for push_branch and push_branch_force."""

    @pytest.fixture
    def worktree(self, tmp_path: Path) -> Path:
        path = tmp_path / ".vibetree" / "worktrees" / "t1"
        path.mkdir(parents=True)
        return path

    def test_commits_staged_changes_and_pushes(self, tmp_path: Path, worktree: Path) -> None:
        responses = {
            ("rev-parse", "--abbrev-ref"): ok("feature/x\n"),
            ("diff", "--cached", "--quiet"): failed(),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            result = push_branch(tmp_path, "t1", "Save work")

        calls = git_args(mock_run)
        assert ["add", "."] in calls
        assert ["commit", "-m", "Save work"] in calls
        assert ["push", "--porcelain", "-u", "origin", "feature/x"] in calls
        push_call = mock_run.call_args_list[-1]
        assert push_call.kwargs["env"]["LC_ALL"] == "C"
        assert result.success is True

    def test_skips_commit_when_nothing_staged(self, tmp_path: Path, worktree: Path) -> None:
        responses = {("rev-parse", "--abbrev-ref"): ok("feature/x")}
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            push_branch(tmp_path, "t1", "Save work")

        assert not any(args[0] == "commit" for args in git_args(mock_run))

    def test_rejected_push(self, tmp_path: Path, worktree: Path) -> None:
        responses = {
            ("rev-parse", "--abbrev-ref"): ok("feature/x"),
            ("push",): failed(
                stderr="error: failed to push some refs",
                stdout="!\trefs/heads/feature/x:refs/heads/feature/x\t[rejected] (non-fast-forward)\n",
            ),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)):
            with pytest.raises(PushRejectedError):
                push_branch(tmp_path, "t1", "Save work")

    def test_other_push_failure_is_plain_git_error(self, tmp_path: Path, worktree: Path) -> None:
        responses = {
            ("rev-parse", "--abbrev-ref"): ok("feature/x"),
            ("push",): failed(stderr="fatal: unable to access remote"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)):
            with pytest.raises(GitError) as exc_info:
                push_branch(tmp_path, "t1", "Save work")

        assert not isinstance(exc_info.value, PushRejectedError)

    def test_force_push(self, tmp_path: Path, worktree: Path) -> None:
        responses = {("rev-parse", "--abbrev-ref"): ok("feature/x")}
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            push_branch_force(tmp_path, "t1", "Save work")

        assert ["push", "--force", "--porcelain", "-u", "origin", "feature/x"] in git_args(mock_run)


class TestDefaultBranch:
    """Tests for get_default_branch."""

    def test_symbolic_ref(self) -> None:
        responses = {("symbolic-ref",): ok("refs/remotes/origin/develop\n")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert get_default_branch("/code/app") == "develop"

    def test_set_head_then_retry(self) -> None:
        calls = {"count": 0}

        def run(cmd, *args, **kwargs):
            if cmd[1] == "symbolic-ref":
                calls["count"] += 1
                if calls["count"] == 1:
                    return failed("fatal: ref refs/remotes/origin/HEAD is not a symbolic ref")
                return ok("refs/remotes/origin/trunk")
            return ok()

        with patch("subprocess.run", side_effect=run):
            assert get_default_branch("/code/app") == "trunk"

    def test_remote_show_fallback(self) -> None:
        responses = {
            ("symbolic-ref",): failed(),
            ("remote", "set-head"): failed(),
            ("remote", "show"): ok("* remote origin\n  HEAD branch: master\n"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert get_default_branch("/code/app") == "master"

    def test_defaults_to_main(self) -> None:
        responses = {
            ("symbolic-ref",): failed(),
            ("remote",): failed("fatal: 'origin' does not appear to be a git repository"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert get_default_branch("/code/app") == "main"


class TestPullMainBranch:
    """Tests for pull_main_branch."""

    def test_pulls_when_on_default_branch(self) -> None:
        responses = {
            ("symbolic-ref",): ok("refs/remotes/origin/main"),
            ("rev-parse", "--abbrev-ref"): ok("main"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            result = pull_main_branch("/code/app")

        assert ["pull", "origin", "main"] in git_args(mock_run)
        assert result.success is True

    def test_fast_forwards_ref_when_on_other_branch(self) -> None:
        responses = {
            ("symbolic-ref",): ok("refs/remotes/origin/main"),
            ("rev-parse", "--abbrev-ref"): ok("HEAD"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            result = pull_main_branch("/code/app")

        calls = git_args(mock_run)
        assert ["fetch", "origin", "main:main"] in calls
        assert not any(args[0] == "pull" for args in calls)
        assert "HEAD" in result.message


class TestHasChangesForPr:
    """Tests for has_changes_for_pr."""

    def test_missing_worktree(self, tmp_path: Path) -> None:
        assert has_changes_for_pr(tmp_path, "t1", "main") is False

    def test_uncommitted_changes(self, tmp_path: Path) -> None:
        (tmp_path / ".vibetree" / "worktrees" / "t1").mkdir(parents=True)
        responses = {("status", "--porcelain"): ok(" M app.py\n")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert has_changes_for_pr(tmp_path, "t1", "main") is True

    def test_commits_ahead(self, tmp_path: Path) -> None:
        (tmp_path / ".vibetree" / "worktrees" / "t1").mkdir(parents=True)
        responses = {("rev-list",): ok("2\n")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert has_changes_for_pr(tmp_path, "t1", "main") is True

    def test_nothing_to_propose(self, tmp_path: Path) -> None:
        (tmp_path / ".vibetree" / "worktrees" / "t1").mkdir(parents=True)
        responses = {("rev-list",): ok("0")}
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert has_changes_for_pr(tmp_path, "t1", "main") is False


class TestWorkingTreeHelpers:
    """Tests for commit_all, get_status and get_branch_diff."""

    def test_commit_all_commits_staged_changes(self) -> None:
        responses = {("diff", "--cached", "--quiet"): failed(code=1)}
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            assert commit_all("/code/app", "wip") is True

        calls = git_args(mock_run)
        assert calls[0] == ["add", "."]
        assert ["commit", "-m", "wip"] in calls

    def test_commit_all_nothing_staged(self) -> None:
        with patch("subprocess.run", side_effect=fake_git({})) as mock_run:
            assert commit_all("/code/app", "wip") is False

        assert not any(args[0] == "commit" for args in git_args(mock_run))

    def test_get_status(self) -> None:
        responses = {
            ("branch", "--show-current"): ok("feature/x\n"),
            ("status", "--short"): ok(" M app.py\n"),
        }
        with patch("subprocess.run", side_effect=fake_git(responses)):
            assert get_status("/code/app") == {"branch": "feature/x", "status": "M app.py"}

    def test_branch_diff_is_three_dot(self, tmp_path: Path) -> None:
        (tmp_path / ".vibetree" / "worktrees" / "t1").mkdir(parents=True)
        responses = {("diff",): ok("diff --git a/x b/x\n")}
        with patch("subprocess.run", side_effect=fake_git(responses)) as mock_run:
            assert get_branch_diff(tmp_path, "t1", "main") == "diff --git a/x b/x"

        assert git_args(mock_run) == [["diff", "main...HEAD"]]

    def test_branch_diff_missing_worktree(self, tmp_path: Path) -> None:
        with pytest.raises(GitError, match="Worktree not found"):
            get_branch_diff(tmp_path, "t1", "main")
