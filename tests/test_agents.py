"""Tests for agent execution through real child processes."""

import threading
import time

import pytest

from codettea.core import agents as agents_mod
from codettea.core import conflicts


class TestExecute:
    def test_returns_output(self, tmp_path):
        out = agents_mod.execute("hello agent\n", "solver", tmp_path, command=["cat"])
        assert out == "hello agent"

    def test_runs_in_working_directory(self, tmp_path):
        out = agents_mod.execute("", "reviewer", tmp_path, command=["pwd"])
        assert out == str(tmp_path.resolve())

    def test_nonzero_exit(self, tmp_path):
        with pytest.raises(agents_mod.AgentError, match="exited with code"):
            agents_mod.execute("x", "solver", tmp_path, command=["false"])

    def test_empty_output(self, tmp_path):
        with pytest.raises(agents_mod.AgentError, match="no output"):
            agents_mod.execute("x", "solver", tmp_path, command=["true"])

    def test_missing_command(self, tmp_path):
        with pytest.raises(agents_mod.AgentError, match="Could not start"):
            agents_mod.execute("x", "solver", tmp_path, command=["definitely-not-a-real-agent-cli"])

    def test_timeout(self, tmp_path):
        start = time.monotonic()
        with pytest.raises(agents_mod.AgentTimeoutError):
            agents_mod.execute("x", "solver", tmp_path, command=["sleep", "30"], timeout=0.5, poll_interval=0.1)
        assert time.monotonic() - start < 10
        assert agents_mod.active_agent_pids() == []

    def test_cancel(self, tmp_path):
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            with pytest.raises(agents_mod.AgentCancelledError):
                agents_mod.execute(
                    "x", "reviewer", tmp_path,
                    command=["sleep", "30"], cancel_event=cancel, poll_interval=0.1,
                )
        finally:
            timer.cancel()
        assert agents_mod.active_agent_pids() == []

    def test_unknown_kind(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown agent kind"):
            agents_mod.execute("x", "deployer", tmp_path, command=["cat"])


class TestPromptFiles:
    def test_write_prompt_file(self, tmp_path):
        path = agents_mod.write_prompt_file(tmp_path, "solver-1-1", "do it")
        assert path.parent == tmp_path
        assert path.name.startswith(".codettea-solver-1-1-")
        assert path.name.endswith("-prompt.md")
        assert path.read_text() == "do it"

    def test_prompt_file_name_is_deleted_on_conflict(self, tmp_path):
        path = agents_mod.write_prompt_file(tmp_path, "reviewer-backend-3-1", "review", tracking_dir=".agents")
        assert conflicts.classify_conflict(path.name, ".agents") == conflicts.TEMP_PROMPT
        assert conflicts.classify_conflict(path.name) == conflicts.MANUAL

    def test_prompt_file_removed_after_success(self, tmp_path):
        path = agents_mod.write_prompt_file(tmp_path, "solver", "prompt text")
        out = agents_mod.execute_prompt_file(path, "solver", tmp_path, command=["cat"])
        assert out == "prompt text"
        assert not path.exists()

    def test_prompt_file_removed_after_failure(self, tmp_path):
        path = agents_mod.write_prompt_file(tmp_path, "reviewer", "prompt text")
        with pytest.raises(agents_mod.AgentError):
            agents_mod.execute_prompt_file(path, "reviewer", tmp_path, command=["false"])
        assert not path.exists()
