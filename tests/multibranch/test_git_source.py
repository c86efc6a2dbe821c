"""
Tests for GitBranchSource and the git command runner.

git itself is never run; subprocess calls are patched.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from multibranch.config import SourceConfig
from multibranch.git_runner import get_git_environment, run_git_command
from multibranch.git_source import GitBranchSource, parse_ls_remote
from multibranch.models import BranchHead

LS_REMOTE_OUTPUT = (
    "1111111111111111111111111111111111111111\trefs/heads/main\n"
    "2222222222222222222222222222222222222222\trefs/heads/feature/x\n"
    "3333333333333333333333333333333333333333\trefs/tags/v1.0\n"
    "\n"
    "garbage line\n"
)


class TestParseLsRemote:
    """Test suite for parse_ls_remote()."""

    def test_only_heads_are_returned(self):
        assert parse_ls_remote(LS_REMOTE_OUTPUT) == {
            BranchHead("main", "1" * 40),
            BranchHead("feature/x", "2" * 40),
        }

    def test_empty_output(self):
        assert parse_ls_remote("") == set()


class TestGitBranchSource:
    """Test suite for GitBranchSource."""

    def test_fetch_heads_runs_ls_remote(self):
        source = GitBranchSource(
            SourceConfig(remote="https://example.com/r.git"), git_binary="git", timeout=5
        )
        completed = subprocess.CompletedProcess([], 0, stdout=LS_REMOTE_OUTPUT, stderr="")

        with patch("multibranch.git_source.run_git_command", return_value=completed) as run:
            found = source.fetch_heads()

        assert {h.name for h in found} == {"main", "feature/x"}
        cmd = run.call_args[0][0]
        assert cmd == ["git", "ls-remote", "--heads", "https://example.com/r.git"]
        assert run.call_args[1]["timeout"] == 5

    def test_fetch_failure_raises_runtime_error(self):
        source = GitBranchSource(SourceConfig(remote="https://example.com/r.git"))
        error = subprocess.CalledProcessError(128, ["git"], stderr="fatal: not found")

        with patch("multibranch.git_source.run_git_command", side_effect=error):
            with pytest.raises(RuntimeError, match="not found"):
                source.fetch_heads()

    def test_fetch_timeout_raises_runtime_error(self):
        source = GitBranchSource(SourceConfig(remote="https://example.com/r.git"), timeout=1)
        error = subprocess.TimeoutExpired(["git"], 1)

        with patch("multibranch.git_source.run_git_command", side_effect=error):
            with pytest.raises(RuntimeError, match="timed out"):
                source.fetch_heads()

    def test_build_binding(self):
        source = GitBranchSource(
            SourceConfig(remote="https://example.com/r.git", source_id="web")
        )

        binding = source.build_binding(BranchHead("feature/x", "abc"))

        assert binding.remote == "https://example.com/r.git"
        assert binding.branch == "feature/x"
        assert binding.revision == "abc"
        assert binding.source_id == "web"


class TestGitRunner:
    """Test suite for run_git_command()."""

    def test_environment_disables_prompts(self):
        assert get_git_environment()["GIT_TERMINAL_PROMPT"] == "0"

    def test_safe_directory_shifts_existing_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GIT_CONFIG_COUNT", "1")
        monkeypatch.setenv("GIT_CONFIG_KEY_0", "core.autocrlf")
        monkeypatch.setenv("GIT_CONFIG_VALUE_0", "false")

        env = get_git_environment(tmp_path)

        assert env["GIT_CONFIG_COUNT"] == "2"
        assert env["GIT_CONFIG_KEY_0"] == "safe.directory"
        assert env["GIT_CONFIG_VALUE_0"] == str(tmp_path.resolve())
        assert env["GIT_CONFIG_KEY_1"] == "core.autocrlf"

    @patch("multibranch.git_runner.time.sleep")
    @patch("multibranch.git_runner.subprocess.run")
    def test_retries_once_on_failure(self, mock_run, mock_sleep):
        ok = MagicMock(returncode=0, stdout="", stderr="")
        mock_run.side_effect = [subprocess.CalledProcessError(1, ["git"]), ok]

        result = run_git_command(["git", "ls-remote", "x"])

        assert result is ok
        assert mock_run.call_count == 2

    @patch("multibranch.git_runner.time.sleep")
    @patch("multibranch.git_runner.subprocess.run")
    def test_gives_up_after_retry(self, mock_run, mock_sleep):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["git"])

        with pytest.raises(subprocess.CalledProcessError):
            run_git_command(["git", "ls-remote", "x"])
        assert mock_run.call_count == 2

    @patch("multibranch.git_runner.subprocess.run")
    def test_timeout_is_not_retried(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["git"], 1)

        with pytest.raises(subprocess.TimeoutExpired):
            run_git_command(["git", "ls-remote", "x"], timeout=1)
        assert mock_run.call_count == 1
