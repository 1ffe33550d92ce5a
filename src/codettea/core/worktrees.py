"""Feature worktree and branch lifecycle.

A feature owns one worktree at ``{base_worktree_path}/{project_name}-{feature}``
and one target branch. Every operation here is idempotent: calling it when
the desired state already holds changes nothing. Worktree existence is always
checked on disk since other processes may remove it at any time.
"""

import logging
from pathlib import Path

from codettea.core import conflicts
from codettea.integrations import git
from codettea.models import WorktreeBinding

logger = logging.getLogger(__name__)

NO_MERGE_TO_ABORT = ("no merge to abort", "MERGE_HEAD missing")


class WorktreeError(Exception):
    """Raised when a feature worktree cannot be brought to the expected state."""


class WorktreeManager:
    def __init__(
        self,
        main_repo_path: str | Path,
        base_worktree_path: str | Path,
        project_name: str,
        feature_name: str,
        tracking_dir: str = conflicts.DEFAULT_TRACKING_DIR,
        agent_resolver: conflicts.AgentResolver | None = None,
    ):
        self.main_repo_path = Path(main_repo_path)
        self.base_worktree_path = Path(base_worktree_path)
        self.project_name = project_name
        self.feature_name = feature_name
        self.tracking_dir = tracking_dir
        self.agent_resolver = agent_resolver
        self.target_branch = self.feature_branch

    # ── Naming ───────────────────────────────────────────────────────────────

    @property
    def path(self) -> Path:
        return self.base_worktree_path / f"{self.project_name}-{self.feature_name}"

    @property
    def feature_branch(self) -> str:
        return f"feature/{self.feature_name}"

    def issue_branch(self, issue_number: int) -> str:
        return f"feature/{self.feature_name}-issue-{issue_number}"

    @property
    def tracking_path(self) -> Path:
        return self.path / self.tracking_dir / self.feature_name

    @property
    def architecture_notes_path(self) -> Path:
        return self.tracking_path / "ARCHITECTURE_NOTES.md"

    @property
    def changelog_path(self) -> Path:
        return self.tracking_path / "CHANGELOG.md"

    # ── State ────────────────────────────────────────────────────────────────

    def exists(self) -> bool:
        return self.path.exists()

    def current_branch(self) -> str:
        return git.get_current_branch(self.path)

    def binding(self) -> WorktreeBinding:
        exists = self.exists()
        return WorktreeBinding(
            feature_name=self.feature_name,
            path=self.path,
            branch=self.current_branch() if exists else None,
            exists=exists,
        )

    def _resolve_conflicts(self, cwd: Path, source_branch: str = "auto-cleanup") -> bool:
        return conflicts.resolve_merge_conflicts(cwd, source_branch, self.tracking_dir, self.agent_resolver)

    def _safe_checkout(self, branch: str, cwd: Path) -> None:
        git.safe_checkout(branch, cwd, resolve_conflicts=self._resolve_conflicts)

    # ── Branch synchronisation ───────────────────────────────────────────────

    def _held_elsewhere(self, branch: str) -> Path | None:
        """The worktree other than the main clone that has ``branch`` checked out."""
        holder = git.find_worktree_for_branch(self.main_repo_path, branch)
        if holder is not None and holder.resolve() != self.main_repo_path.resolve():
            return holder
        return None

    def sync_base_branch(self, base_branch: str) -> None:
        """Pull the base branch wherever it is checked out, else in the main clone."""
        if holder := self._held_elsewhere(base_branch):
            logger.info("Pulling %s in worktree %s", base_branch, holder)
            git.pull(base_branch, holder)
            return
        logger.info("Syncing %s in %s", base_branch, self.main_repo_path)
        self._safe_checkout(base_branch, self.main_repo_path)
        git.pull(base_branch, self.main_repo_path)

    def ensure_feature_branch(self, base_branch: str) -> str:
        branch = self.feature_branch
        if not git.branch_exists(self.main_repo_path, branch):
            logger.info("Creating feature branch %s from %s", branch, base_branch)
            git.create_branch(branch, self.main_repo_path, start_point=base_branch)
            git.push(branch, self.main_repo_path)
        elif git.is_branch_in_worktree(self.main_repo_path, branch):
            logger.debug("Feature branch %s already active in a worktree", branch)
        else:
            self._safe_checkout(branch, self.main_repo_path)
        return branch

    def _merge_location(self) -> Path:
        return self.path if self.exists() else self.main_repo_path

    def _clear_partial_merge(self, location: Path, source_branch: str) -> None:
        """Finish or discard a merge left unconcluded in ``location``."""
        if self._resolve_conflicts(location, source_branch):
            return
        try:
            git.abort_merge(location)
        except git.GitError as e:
            if not any(marker in e.output for marker in NO_MERGE_TO_ABORT):
                raise
            git.reset_index(location)

    def _merge_or_resolve(self, source_branch: str, location: Path) -> None:
        try:
            git.merge(source_branch, location)
        except git.MergeConflictError:
            logger.warning("Conflicts merging %s in %s, attempting resolution", source_branch, location)
            if not conflicts.handle_merge_conflict(
                location, source_branch, self.tracking_dir, self.agent_resolver
            ):
                raise WorktreeError(
                    f"Failed to resolve merge conflicts when syncing {self.feature_branch} with "
                    f"{source_branch}. Manual intervention required."
                ) from None

    def sync_feature_branch(self, base_branch: str) -> None:
        """Merge the base branch into the feature branch, then return the main clone to base."""
        location = self._merge_location()
        logger.info("Merging %s into %s at %s", base_branch, self.feature_branch, location)
        try:
            try:
                self._merge_or_resolve(base_branch, location)
            except git.PartialMergeError:
                logger.warning("Unfinished merge found in %s, cleaning up before retrying", location)
                self._clear_partial_merge(location, base_branch)
                self._merge_or_resolve(base_branch, location)
        finally:
            if not self._held_elsewhere(base_branch):
                self._safe_checkout(base_branch, self.main_repo_path)

    # ── Worktree ─────────────────────────────────────────────────────────────

    def _release_from_main_clone(self, branch: str) -> None:
        if git.get_current_branch(self.main_repo_path) == branch:
            logger.info("Detaching main clone from %s so the worktree can take it", branch)
            git.checkout_detached(self.main_repo_path)

    def ensure_worktree(self, branch: str) -> Path:
        if self.exists():
            return self.path
        self._release_from_main_clone(branch)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Creating worktree %s on %s", self.path, branch)
        git.worktree_add(self.main_repo_path, self.path, branch)
        return self.path

    def verify_worktree_branch(self, expected: str) -> None:
        current = self.current_branch()
        if current != expected:
            logger.info("Worktree on %s, switching to %s", current or "detached HEAD", expected)
            self._safe_checkout(expected, self.path)

    def refresh_target_branch(self) -> None:
        """Switch the worktree back to its target branch and pull merged work."""
        self.verify_worktree_branch(self.target_branch)
        git.pull(self.target_branch, self.path)

    # ── Setup entry points ───────────────────────────────────────────────────

    def setup_for_feature(self, base_branch: str, is_parent_feature: bool) -> WorktreeBinding:
        """Prepare the worktree on the feature branch, or directly on ``base_branch``."""
        self.sync_base_branch(base_branch)
        if is_parent_feature:
            self.target_branch = self.ensure_feature_branch(base_branch)
            self.sync_feature_branch(base_branch)
        else:
            self.target_branch = base_branch
        self.ensure_worktree(self.target_branch)
        self.verify_worktree_branch(self.target_branch)
        return self.binding()

    def setup_for_architecture(self, base_branch: str) -> WorktreeBinding:
        binding = self.setup_for_feature(base_branch, is_parent_feature=True)
        self.tracking_path.mkdir(parents=True, exist_ok=True)
        for path in (self.architecture_notes_path, self.changelog_path):
            with open(path, "a"):
                pass
        return binding

    # ── Issue branches ───────────────────────────────────────────────────────

    def setup_issue_branch(self, issue_number: int) -> str:
        branch = self.issue_branch(issue_number)
        if self.current_branch() == branch:
            return branch
        if git.branch_exists(self.path, branch):
            self._safe_checkout(branch, self.path)
        else:
            logger.info("Creating %s from %s", branch, self.target_branch)
            git.create_branch(branch, self.path, start_point=self.target_branch)
        return branch

    def _stage_all(self) -> None:
        git.add_files(".", self.path)
        if (self.path / self.tracking_dir).exists():
            try:
                git.add_files(self.tracking_dir, self.path)
            except git.GitError as e:
                logger.debug("Tracking files not staged: %s", e)

    def commit_issue_changes(self, issue_number: int, title: str, branch: str) -> bool:
        """Commit everything in the worktree and push the issue branch.

        Returns False when the agent left nothing to commit. The branch is
        pushed either way so an existing PR stays reachable.
        """
        self._stage_all()
        committed = git.commit(f"feat(#{issue_number}): {title}\n\nCloses #{issue_number}", self.path)
        if not committed:
            logger.warning("Nothing to commit for issue #%s", issue_number)
        git.push(branch, self.path)
        return committed

    def commit_architecture_changes(self, issue_numbers: list[int]) -> bool:
        self._stage_all()
        issues = ", ".join(f"#{n}" for n in issue_numbers) or "none"
        committed = git.commit(
            f"docs({self.feature_name}): architecture notes\n\nPlanned issues: {issues}",
            self.path,
        )
        if committed:
            git.push(self.target_branch, self.path)
        return committed
