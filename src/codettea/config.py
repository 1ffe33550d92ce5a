"""Configuration loading from environment variables."""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from codettea.core.agents import DEFAULT_COMMAND, DEFAULT_TIMEOUT
from codettea.core.conflicts import DEFAULT_TRACKING_DIR


def _split_list(value: str) -> list[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    main_repo_path: Path = field(default_factory=lambda: Path.cwd())
    base_worktree_path: Path | None = None
    project_name: str | None = None
    base_branch: str = "main"
    reviewer_profiles: list[str] = field(default_factory=lambda: ["frontend", "backend", "devops"])
    max_attempts: int = 3
    agent_command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
    agent_timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = 5.0
    tracking_dir: str = DEFAULT_TRACKING_DIR
    prompts_dir: Path | None = None
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    def __post_init__(self):
        self.main_repo_path = Path(self.main_repo_path).resolve()
        if self.base_worktree_path is None:
            self.base_worktree_path = self.main_repo_path.parent
        if not self.project_name:
            self.project_name = self.main_repo_path.name

    @classmethod
    def from_env(cls) -> "Config":
        kwargs: dict = {}

        if repo := os.environ.get("CODETTEA_MAIN_REPO_PATH"):
            kwargs["main_repo_path"] = Path(repo)

        if base := os.environ.get("CODETTEA_WORKTREE_BASE"):
            kwargs["base_worktree_path"] = Path(base).resolve()

        if name := os.environ.get("CODETTEA_PROJECT_NAME"):
            kwargs["project_name"] = name

        if branch := os.environ.get("CODETTEA_BASE_BRANCH"):
            kwargs["base_branch"] = branch

        if reviewers := os.environ.get("CODETTEA_REVIEWERS"):
            kwargs["reviewer_profiles"] = _split_list(reviewers)

        if attempts := os.environ.get("CODETTEA_MAX_ATTEMPTS"):
            kwargs["max_attempts"] = int(attempts)

        if command := os.environ.get("CODETTEA_AGENT_COMMAND"):
            kwargs["agent_command"] = shlex.split(command)

        if timeout := os.environ.get("CODETTEA_AGENT_TIMEOUT"):
            kwargs["agent_timeout"] = float(timeout)

        if interval := os.environ.get("CODETTEA_POLL_INTERVAL"):
            kwargs["poll_interval"] = float(interval)

        if tracking := os.environ.get("CODETTEA_TRACKING_DIR"):
            kwargs["tracking_dir"] = tracking

        if prompts := os.environ.get("CODETTEA_PROMPTS_DIR"):
            kwargs["prompts_dir"] = Path(prompts)

        kwargs["slack_bot_token"] = os.environ.get("SLACK_BOT_TOKEN")
        kwargs["slack_channel"] = os.environ.get("CODETTEA_SLACK_CHANNEL")

        config = cls(**kwargs)
        if config.max_attempts < 1:
            raise ValueError(f"CODETTEA_MAX_ATTEMPTS must be at least 1, got {config.max_attempts}")
        if not config.reviewer_profiles:
            raise ValueError("CODETTEA_REVIEWERS must name at least one reviewer profile")
        return config


def get_config() -> Config:
    return Config.from_env()
