"""Tests for environment configuration."""

from pathlib import Path

import pytest

from codettea.config import Config
from codettea.core import agents, conflicts

ENV_VARS = (
    "CODETTEA_MAIN_REPO_PATH", "CODETTEA_WORKTREE_BASE", "CODETTEA_PROJECT_NAME", "CODETTEA_BASE_BRANCH",
    "CODETTEA_REVIEWERS", "CODETTEA_MAX_ATTEMPTS", "CODETTEA_AGENT_COMMAND", "CODETTEA_AGENT_TIMEOUT",
    "CODETTEA_POLL_INTERVAL", "CODETTEA_TRACKING_DIR", "CODETTEA_PROMPTS_DIR", "SLACK_BOT_TOKEN",
    "CODETTEA_SLACK_CHANNEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    def test_defaults_follow_repo_path(self, tmp_path):
        config = Config(main_repo_path=tmp_path / "app")
        assert config.base_worktree_path == tmp_path.resolve()
        assert config.project_name == "app"
        assert config.max_attempts == 3
        assert config.agent_command[0] == "claude"

    def test_defaults_shared_with_agents(self, tmp_path):
        config = Config(main_repo_path=tmp_path)
        assert config.agent_command == agents.DEFAULT_COMMAND
        assert config.agent_command is not agents.DEFAULT_COMMAND
        assert config.agent_timeout == agents.DEFAULT_TIMEOUT
        assert config.tracking_dir == conflicts.DEFAULT_TRACKING_DIR

    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CODETTEA_MAIN_REPO_PATH", str(tmp_path / "app"))
        monkeypatch.setenv("CODETTEA_WORKTREE_BASE", str(tmp_path / "wt"))
        monkeypatch.setenv("CODETTEA_REVIEWERS", "Backend, devops")
        monkeypatch.setenv("CODETTEA_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CODETTEA_AGENT_COMMAND", "my-agent --yes -p")
        monkeypatch.setenv("CODETTEA_POLL_INTERVAL", "0.5")
        monkeypatch.setenv("CODETTEA_PROMPTS_DIR", str(tmp_path / "prompts"))

        config = Config.from_env()
        assert config.main_repo_path == (tmp_path / "app").resolve()
        assert config.base_worktree_path == (tmp_path / "wt").resolve()
        assert config.reviewer_profiles == ["backend", "devops"]
        assert config.max_attempts == 5
        assert config.agent_command == ["my-agent", "--yes", "-p"]
        assert config.poll_interval == 0.5
        assert config.prompts_dir == Path(tmp_path / "prompts")
        assert config.slack_bot_token is None

    def test_invalid_attempts(self, monkeypatch):
        monkeypatch.setenv("CODETTEA_MAX_ATTEMPTS", "0")
        with pytest.raises(ValueError, match="at least 1"):
            Config.from_env()

    def test_empty_reviewers(self, monkeypatch):
        monkeypatch.setenv("CODETTEA_REVIEWERS", " , ")
        with pytest.raises(ValueError, match="reviewer profile"):
            Config.from_env()
