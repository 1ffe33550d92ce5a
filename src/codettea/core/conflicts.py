"""Merge conflict classification and automatic resolution.

Each conflicted path is matched against an ordered rule table. The first
matching rule yields a ConflictResolution, and the resolution's action is
looked up in ACTIONS to apply it. Paths no rule matches need a human.
"""

import logging
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from codettea.integrations import git
from codettea.models import ConflictResolution

logger = logging.getLogger(__name__)

DEFAULT_TRACKING_DIR = ".codettea"

SOURCE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".json", ".py",
})

APPEND_ONLY_FILES = frozenset({"ARCHITECTURE_NOTES.md", "CHANGELOG.md"})

TEMP_PROMPT = ConflictResolution("auto", "delete", "temporary prompt file")
TOOL_REFERENCE = ConflictResolution("auto", "theirs", "newer tool reference file supersedes older one")
APPEND_ONLY_LOG = ConflictResolution("auto", "both", "append-only log, keep both sides")
SOURCE_FILE = ConflictResolution("agent", "agent-resolve", "source file needs semantic resolution")
MANUAL = ConflictResolution("manual", "custom", "no safe automatic resolution")

AgentResolver = Callable[[str, Path], bool]


def _is_temp_prompt(path: PurePosixPath, tracking_dir: str) -> bool:
    return (
        len(path.parts) == 1
        and path.name.startswith(f"{tracking_dir}-")
        and path.name.endswith("-prompt.md")
    )


def _in_tracking_dir(path: PurePosixPath, tracking_dir: str) -> bool:
    return tracking_dir in path.parts[:-1]


def _is_tool_reference(path: PurePosixPath, tracking_dir: str) -> bool:
    return _in_tracking_dir(path, tracking_dir) and path.name.startswith(("reviewer-", "solver-"))


def _is_append_only(path: PurePosixPath, tracking_dir: str) -> bool:
    return _in_tracking_dir(path, tracking_dir) and path.name in APPEND_ONLY_FILES


def _is_source(path: PurePosixPath, tracking_dir: str) -> bool:
    return path.suffix in SOURCE_EXTENSIONS


RULES: list[tuple[Callable[[PurePosixPath, str], bool], ConflictResolution]] = [
    (_is_temp_prompt, TEMP_PROMPT),
    (_is_tool_reference, TOOL_REFERENCE),
    (_is_append_only, APPEND_ONLY_LOG),
    (_is_source, SOURCE_FILE),
]


def classify_conflict(path: str, tracking_dir: str = DEFAULT_TRACKING_DIR) -> ConflictResolution:
    posix = PurePosixPath(path)
    for matches, resolution in RULES:
        if matches(posix, tracking_dir):
            return resolution
    return MANUAL


# ── Actions ──────────────────────────────────────────────────────────────────


def _delete(path: str, cwd: Path) -> None:
    git.remove_file(path, cwd)


def _ours(path: str, cwd: Path) -> None:
    git.resolve_conflict_file(path, "ours", cwd)


def _theirs(path: str, cwd: Path) -> None:
    git.resolve_conflict_file(path, "theirs", cwd)


def _both(path: str, cwd: Path) -> None:
    git.resolve_conflict_file(path, "both", cwd)


ACTIONS: dict[str, Callable[[str, Path], None]] = {
    "delete": _delete,
    "ours": _ours,
    "theirs": _theirs,
    "both": _both,
}


def _resolve_with_agent(path: str, cwd: Path, agent_resolver: AgentResolver | None) -> bool:
    if agent_resolver is not None:
        if agent_resolver(path, cwd):
            git.add_files(path, cwd)
            return True
        logger.warning("Agent could not resolve %s", path)
        return False
    logger.warning(
        "No conflict agent configured, taking incoming changes for source file %s; review this merge",
        path,
    )
    _theirs(path, cwd)
    return True


def apply_resolution(
    path: str,
    resolution: ConflictResolution,
    cwd: str | Path,
    agent_resolver: AgentResolver | None = None,
) -> bool:
    cwd = Path(cwd)
    logger.info("Resolving %s: %s/%s (%s)", path, resolution.strategy, resolution.action, resolution.reason)
    if resolution.strategy == "manual":
        return False
    if resolution.strategy == "agent":
        return _resolve_with_agent(path, cwd, agent_resolver)
    ACTIONS[resolution.action](path, cwd)
    return True


def resolve_merge_conflicts(
    cwd: str | Path,
    source_branch: str,
    tracking_dir: str = DEFAULT_TRACKING_DIR,
    agent_resolver: AgentResolver | None = None,
) -> bool:
    """Resolve every conflicted file and commit the merge.

    Returns False without touching the index when any file needs manual
    resolution, or when applying a resolution fails. The caller is expected
    to abort the merge in that case.
    """
    files = git.get_merge_conflict_files(cwd)
    if not files:
        if git.merge_in_progress(cwd):
            logger.info("Merge from %s already resolved, committing it", source_branch)
            try:
                git.complete_merge(f"Merge {source_branch}", cwd)
            except git.GitError as e:
                logger.error("Could not complete merge from %s: %s", source_branch, e)
                return False
        return True

    plan = [(path, classify_conflict(path, tracking_dir)) for path in files]
    manual = [path for path, resolution in plan if resolution.strategy == "manual"]
    if manual:
        logger.error("Manual resolution required for: %s", ", ".join(manual))
        return False

    for path, resolution in plan:
        try:
            if not apply_resolution(path, resolution, cwd, agent_resolver):
                return False
        except (git.GitError, OSError) as e:
            logger.error("Failed to resolve %s: %s", path, e)
            return False

    try:
        git.complete_merge(f"Resolve merge conflicts from {source_branch}", cwd)
    except git.GitError as e:
        logger.error("Could not complete merge from %s: %s", source_branch, e)
        return False

    logger.info("Resolved %d conflicted file(s) from %s", len(plan), source_branch)
    return True


def handle_merge_conflict(
    cwd: str | Path,
    source_branch: str,
    tracking_dir: str = DEFAULT_TRACKING_DIR,
    agent_resolver: AgentResolver | None = None,
) -> bool:
    """Resolve conflicts, aborting the merge when that is not possible."""
    if resolve_merge_conflicts(cwd, source_branch, tracking_dir, agent_resolver):
        return True
    try:
        git.abort_merge(cwd)
    except git.GitError as e:
        logger.error("Could not abort merge in %s: %s", cwd, e)
    return False
