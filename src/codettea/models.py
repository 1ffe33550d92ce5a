"""Data models for the feature orchestrator."""

from dataclasses import dataclass, field
from pathlib import Path

APPROVE = "APPROVE"
REJECT = "REJECT"


@dataclass(frozen=True)
class Review:
    reviewer_id: str
    verdict: str
    feedback: str
    timestamp: float
    pr_number: int | None = None
    profile: str = ""


@dataclass
class Task:
    issue_number: int
    title: str
    description: str = ""
    dependencies: frozenset[int] = field(default_factory=frozenset)
    required_reviewers: list[str] = field(default_factory=list)
    status: str = "pending"
    attempts: int = 0
    max_attempts: int = 3
    review_history: list[Review] = field(default_factory=list)
    worktree_path: str | None = None
    branch: str | None = None
    pr_number: int | None = None


@dataclass
class FeatureSpec:
    name: str
    description: str = ""
    base_branch: str = "main"
    issues: list[int] | None = None
    is_parent_feature: bool = False
    architecture_mode: bool = False


@dataclass
class WorktreeBinding:
    feature_name: str
    path: Path
    branch: str | None = None
    exists: bool = False


@dataclass(frozen=True)
class ConflictResolution:
    strategy: str
    action: str
    reason: str
