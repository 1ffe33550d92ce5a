"""Feature orchestration: task graph scheduling, solve/review state machine
and the unanimous reviewer consensus gate.

Tasks run one at a time against the feature's single worktree. Only the
reviewers of one review round run concurrently.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from codettea.config import Config
from codettea.core import agents as agents_mod
from codettea.core import feedback as feedback_mod
from codettea.core import prompts as prompts_mod
from codettea.core import tasks as tasks_mod
from codettea.core.worktrees import WorktreeError, WorktreeManager
from codettea.integrations import git
from codettea.integrations import github as github_mod
from codettea.integrations import slack as slack_mod
from codettea.models import APPROVE, REJECT, FeatureSpec, Review, Task

logger = logging.getLogger(__name__)

COMPLETION_COMMENT = "✅ Completed by multi-agent system - PR merged successfully"

# Reviewer placeholders stay unrendered in the shared review document.
REVIEWER_PLACEHOLDERS = ("REVIEWER_PROFILE", "AGENT_ID", "PROFILE_SPECIFIC_CONTENT")


class OrchestratorError(Exception):
    """Raised when a feature run cannot finish."""


class TaskFailedError(OrchestratorError):
    """Raised when a task fails fatally. Names the issue and attempt."""

    def __init__(self, task: Task, reason: str):
        self.issue_number = task.issue_number
        self.attempt = task.attempts
        super().__init__(
            f"Task #{task.issue_number} failed on attempt {task.attempts}/{task.max_attempts}: {reason}"
        )


class FeatureCancelledError(OrchestratorError):
    """Raised when a feature run is cancelled through its cancel event."""


class NoChangesError(OrchestratorError):
    """Raised when the solver left no changes and no pull request exists yet."""


class FeatureOrchestrator:
    def __init__(
        self,
        config: Config,
        feature_name: str,
        worktrees: WorktreeManager | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.config = config
        self.feature_name = feature_name
        self.cancel_event = cancel_event or threading.Event()
        self.worktrees = worktrees or WorktreeManager(
            main_repo_path=config.main_repo_path,
            base_worktree_path=config.base_worktree_path,
            project_name=config.project_name,
            feature_name=feature_name,
            tracking_dir=config.tracking_dir,
            agent_resolver=self.resolve_conflict_with_agent,
        )
        self.tasks: dict[int, Task] = {}
        self.notifier = slack_mod.SlackNotifier(config.slack_bot_token, config.slack_channel)

    # ── Helpers ──────────────────────────────────────────────────────────────

    @property
    def worktree_path(self) -> Path:
        return self.worktrees.path

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise FeatureCancelledError(f"Feature {self.feature_name} cancelled")

    def _run_agent(self, prompt: str, agent_kind: str, prefix: str) -> str:
        """Run an agent in the worktree through a transient prompt file."""
        prompt_file = agents_mod.write_prompt_file(self.worktree_path, prefix, prompt, self.config.tracking_dir)
        try:
            return agents_mod.execute_prompt_file(
                prompt_file,
                agent_kind,
                self.worktree_path,
                command=self.config.agent_command,
                timeout=self.config.agent_timeout,
                cancel_event=self.cancel_event,
            )
        except agents_mod.AgentCancelledError as e:
            raise FeatureCancelledError(f"Feature {self.feature_name} cancelled") from e

    def _template(self, name: str) -> str:
        return prompts_mod.load_template(name, self.config.prompts_dir)

    # ── Feature entry point ──────────────────────────────────────────────────

    def execute_feature(self, spec: FeatureSpec) -> list[Task]:
        """Drive every task of the feature to completion or raise.

        Parent features finish with a summary PR against the base branch.
        """
        logger.info("Starting feature %s (base %s)", spec.name, spec.base_branch)
        try:
            if spec.architecture_mode:
                issues = self.architect_feature(spec)
            else:
                self.worktrees.setup_for_feature(spec.base_branch, spec.is_parent_feature)
                issues = list(spec.issues or [])

            if not issues:
                raise OrchestratorError(f"No issues to process for feature {spec.name}")

            self.initialize_tasks(issues)
            self.execute_tasks()

            if spec.is_parent_feature and not tasks_mod.has_incomplete_tasks(self.tasks):
                self.create_feature_pr(spec)
        except FeatureCancelledError:
            logger.warning("Feature %s cancelled", spec.name)
            raise
        except (git.GitError, github_mod.GitHubError, WorktreeError, agents_mod.AgentError) as e:
            self.notifier.notify(f"Feature {spec.name} failed", slack_mod.format_feature_failure(spec.name, str(e)))
            raise OrchestratorError(f"Feature {spec.name} failed: {e}") from e
        except OrchestratorError as e:
            self.notifier.notify(f"Feature {spec.name} failed", slack_mod.format_feature_failure(spec.name, str(e)))
            raise

        completed = list(self.tasks.values())
        self.notifier.notify(
            f"Feature {spec.name} completed",
            slack_mod.format_feature_summary(spec.name, completed),
        )
        logger.info("Feature %s completed: %d task(s)", spec.name, len(completed))
        return completed

    def architect_feature(self, spec: FeatureSpec) -> list[int]:
        """Let the architect agent break the feature down into issues."""
        self.worktrees.setup_for_architecture(spec.base_branch)
        prompt = prompts_mod.render_template(
            self._template("arch"),
            {
                "FEATURE_REQUEST": spec.description,
                "FEATURE_NAME": spec.name,
                "AGENT_ID": f"architect-{int(time.time())}",
                "MAIN_REPO_PATH": str(self.config.main_repo_path),
                "WORKTREE_PATH": str(self.worktree_path),
                "ARCHITECTURE_NOTES_PATH": str(self.worktrees.architecture_notes_path),
            },
        )
        response = self._run_agent(prompt, "architect", f"architect-{spec.name}")

        issues = tasks_mod.parse_created_issues(response)
        if not issues:
            logger.warning("Architect output named no issues, listing issues labelled %s", spec.name)
            issues = github_mod.list_issues(label=spec.name, limit=20, cwd=self.worktree_path)
        logger.info("Architecture phase produced issues: %s", ", ".join(f"#{n}" for n in issues) or "none")

        try:
            self.worktrees.commit_architecture_changes(issues)
        except git.GitError as e:
            logger.warning("Could not commit architecture notes: %s", e)
        return issues

    def initialize_tasks(self, issue_numbers: list[int]) -> dict[int, Task]:
        for number in issue_numbers:
            issue = github_mod.get_issue(number, cwd=self.worktree_path)
            task = tasks_mod.build_task(
                number,
                issue.title,
                issue.body,
                self.config.reviewer_profiles,
                max_attempts=self.config.max_attempts,
                pr_number=github_mod.find_pr_for_issue(number, cwd=self.worktree_path),
            )
            if not task.required_reviewers:
                raise OrchestratorError(f"Issue #{number} has no reviewer profiles")
            self.tasks[number] = task
            logger.info(
                "Task #%s: %s (deps: %s, reviewers: %s, PR: %s)",
                number,
                task.title,
                sorted(task.dependencies) or "none",
                ", ".join(task.required_reviewers),
                task.pr_number or "none",
            )

        if cycle := tasks_mod.find_dependency_cycle(self.tasks):
            raise OrchestratorError("Dependency cycle between issues: " + " -> ".join(f"#{n}" for n in cycle))
        return self.tasks

    # ── Scheduler ────────────────────────────────────────────────────────────

    def execute_tasks(self) -> None:
        """Run ready tasks one at a time until all are completed."""
        while tasks_mod.has_incomplete_tasks(self.tasks):
            self._check_cancelled()
            ready = tasks_mod.get_ready_tasks(self.tasks)
            if not ready:
                blocked = [f"#{t.issue_number}" for t in tasks_mod.get_blocked_tasks(self.tasks)]
                logger.info("No ready tasks (waiting: %s), rechecking in %ss",
                            ", ".join(blocked) or "none", self.config.poll_interval)
                if self.cancel_event.wait(self.config.poll_interval):
                    self._check_cancelled()
                continue
            self.execute_task(ready[0])

    def task_needs_solving(self, task: Task) -> bool:
        if not task.pr_number:
            return True
        if task.review_history:
            return True
        try:
            return github_mod.has_pending_change_requests(task.pr_number, cwd=self.worktree_path)
        except github_mod.GitHubError as e:
            logger.warning("Could not check change requests on PR #%s, solving again: %s", task.pr_number, e)
            return True

    def execute_task(self, task: Task) -> None:
        logger.info("Executing task #%s: %s", task.issue_number, task.title)
        try:
            if self.task_needs_solving(task):
                task.status = "solving"
                task.attempts += 1
                try:
                    self.solve_task(task)
                except (agents_mod.AgentError, NoChangesError) as e:
                    self._retry_or_fail(task, f"solver failed: {e}")
                    return
            elif task.attempts == 0 and task.pr_number:
                logger.info("PR #%s already open for #%s, going straight to review",
                            task.pr_number, task.issue_number)
                task.attempts = 1

            approved = self.review_task(task)
            self.complete_task(task, approved)
        except FeatureCancelledError:
            raise
        except TaskFailedError:
            task.status = "rejected"
            raise
        except (git.GitError, github_mod.GitHubError, WorktreeError, OSError) as e:
            task.status = "rejected"
            raise TaskFailedError(task, str(e)) from e

    def _retry_or_fail(self, task: Task, reason: str) -> None:
        if task.attempts < task.max_attempts:
            logger.warning("Task #%s attempt %d/%d failed (%s), will retry",
                           task.issue_number, task.attempts, task.max_attempts, reason)
            task.status = "pending"
            return
        task.status = "rejected"
        raise TaskFailedError(task, f"{reason} after {task.max_attempts} attempts")

    # ── Solve ────────────────────────────────────────────────────────────────

    def _issue_details(self, issue: github_mod.Issue) -> str:
        return f"#{issue.number}: {issue.title}\n\n{issue.body}"

    def solve_task(self, task: Task) -> None:
        branch = self.worktrees.setup_issue_branch(task.issue_number)
        issue = github_mod.get_issue(task.issue_number, cwd=self.worktree_path)

        if task.attempts > 1:
            previous = feedback_mod.generate_previous_failure_feedback(task.review_history, task.attempts)
        else:
            previous = feedback_mod.NO_PREVIOUS_FEEDBACK

        prompt = prompts_mod.render_template(
            self._template("solve"),
            {
                "ISSUE_NUMBER": task.issue_number,
                "FEATURE_NAME": self.feature_name,
                "ATTEMPT_NUMBER": task.attempts,
                "MAX_ATTEMPTS": task.max_attempts,
                "AGENT_ID": f"solver-{int(time.time())}",
                "WORKTREE_PATH": str(self.worktree_path),
                "BASE_BRANCH": self.worktrees.target_branch,
                "ISSUE_DETAILS": self._issue_details(issue),
                "ARCHITECTURE_CONTEXT": str(self.worktrees.architecture_notes_path),
                "PREVIOUS_FEEDBACK_SECTION": previous,
            },
        )
        self._run_agent(prompt, "solver", f"solver-{task.issue_number}-{task.attempts}")

        committed = self.worktrees.commit_issue_changes(task.issue_number, issue.title, branch)
        if not committed and not task.pr_number:
            raise NoChangesError(f"solver made no changes for #{task.issue_number}")

        title = f"feat(#{task.issue_number}): {issue.title}"
        body = (
            f"## Summary\nImplements #{task.issue_number}: {issue.title}\n\n"
            f"Attempt {task.attempts} of {task.max_attempts}, feature `{self.feature_name}`.\n\n"
            f"Closes #{task.issue_number}"
        )
        if task.pr_number:
            try:
                github_mod.update_pr(task.pr_number, title=title, body=body, cwd=self.worktree_path)
            except github_mod.GitHubError as e:
                logger.warning("Could not update PR #%s: %s", task.pr_number, e)
        else:
            number = github_mod.create_pr(title, body, self.worktrees.target_branch, cwd=self.worktree_path)
            if not number:
                prs = github_mod.list_prs(limit=1, cwd=self.worktree_path)
                number = prs[0].number if prs else None
            if not number:
                raise OrchestratorError(f"Could not determine PR number for #{task.issue_number}")
            task.pr_number = number
            logger.info("Created PR #%s for #%s", number, task.issue_number)

        task.branch = self.worktrees.current_branch()
        task.worktree_path = str(self.worktree_path)

    # ── Review ───────────────────────────────────────────────────────────────

    def _write_shared_review_prompt(self, task: Task, issue: github_mod.Issue) -> str:
        """Render the review document shared by every reviewer and keep a copy for audit."""
        keep = {name: f"${name}" for name in REVIEWER_PLACEHOLDERS}
        shared = prompts_mod.render_template(
            self._template("review"),
            {
                **keep,
                "PR_NUMBER": task.pr_number,
                "ISSUE_NUMBER": task.issue_number,
                "FEATURE_NAME": self.feature_name,
                "ATTEMPT_NUMBER": task.attempts,
                "MAX_ATTEMPTS": task.max_attempts,
                "ISSUE_DETAILS": self._issue_details(issue),
                "WORKTREE_PATH": str(self.worktree_path),
                "BRANCH": self.worktrees.issue_branch(task.issue_number),
                "ARCHITECTURE_CONTEXT": str(self.worktrees.architecture_notes_path),
            },
        )
        self.worktrees.tracking_path.mkdir(parents=True, exist_ok=True)
        reference = (
            self.worktrees.tracking_path
            / f"reviewer-shared-issue-{task.issue_number}-attempt-{task.attempts}.md"
        )
        reference.write_text(shared)
        return shared

    def _review_as(self, task: Task, profile: str, reviewer_id: str, shared: str) -> Review:
        prompt = prompts_mod.render_template(
            shared,
            {
                "REVIEWER_PROFILE": profile,
                "AGENT_ID": reviewer_id,
                "PROFILE_SPECIFIC_CONTENT": prompts_mod.load_profile_content(profile, self.config.prompts_dir),
            },
        )
        response = self._run_agent(
            prompt, "reviewer", f"reviewer-{profile}-{task.issue_number}-{task.attempts}"
        )
        result = feedback_mod.classify_review(response)
        if result.ambiguous:
            logger.warning("%s (%s) gave a mixed verdict on PR #%s, counted as %s",
                           reviewer_id, profile, task.pr_number, result.verdict)
        if result.verdict == REJECT and feedback_mod.has_rework_required_feedback(response):
            logger.warning("%s (%s) requires rework on PR #%s", reviewer_id, profile, task.pr_number)

        try:
            github_mod.submit_pr_review(
                task.pr_number, result.verdict, response, reviewer_id, profile, cwd=self.worktree_path
            )
        except github_mod.GitHubError as e:
            logger.warning("Could not post review from %s on PR #%s: %s", reviewer_id, task.pr_number, e)

        return Review(
            reviewer_id=reviewer_id,
            verdict=result.verdict,
            feedback=response,
            timestamp=time.time(),
            pr_number=task.pr_number,
            profile=profile,
        )

    def review_task(self, task: Task) -> bool:
        """Run one review round. Approved only when every reviewer approves."""
        if not task.pr_number:
            raise TaskFailedError(task, "no pull request to review")
        task.status = "reviewing"
        self.worktrees.verify_worktree_branch(self.worktrees.issue_branch(task.issue_number))

        issue = github_mod.get_issue(task.issue_number, cwd=self.worktree_path)
        shared = self._write_shared_review_prompt(task, issue)
        reviewers = task.required_reviewers
        logger.info("Reviewing PR #%s with %s", task.pr_number, ", ".join(reviewers))

        with ThreadPoolExecutor(max_workers=len(reviewers), thread_name_prefix="reviewer") as pool:
            futures = [
                pool.submit(self._review_as, task, profile, f"reviewer-{i}", shared)
                for i, profile in enumerate(reviewers)
            ]
            errors = []
            reviews = []
            for future in futures:
                try:
                    reviews.append(future.result())
                except Exception as e:
                    errors.append(e)

        if any(isinstance(e, FeatureCancelledError) for e in errors):
            raise FeatureCancelledError(f"Feature {self.feature_name} cancelled")
        if errors:
            raise TaskFailedError(task, f"Review process failed: {errors[0]}") from errors[0]

        task.review_history.extend(reviews)
        approvals = sum(1 for r in reviews if r.verdict == APPROVE)
        logger.info("PR #%s: %d/%d approvals", task.pr_number, approvals, len(reviewers))
        return approvals == len(reviewers)

    # ── Completion ───────────────────────────────────────────────────────────

    def complete_task(self, task: Task, approved: bool) -> None:
        if not approved:
            task.status = "rejected"
            self._retry_or_fail(task, "reviewers did not reach consensus")
            return

        task.status = "approved"
        try:
            github_mod.merge_pr(task.pr_number, "squash", cwd=self.worktree_path)
        except github_mod.GitHubError as e:
            raise TaskFailedError(task, f"could not merge PR #{task.pr_number}: {e}") from e
        try:
            github_mod.close_issue(task.issue_number, COMPLETION_COMMENT, cwd=self.worktree_path)
        except github_mod.GitHubError as e:
            raise TaskFailedError(task, f"could not close issue #{task.issue_number}: {e}") from e

        self._cleanup_issue_branch(task)

        task.status = "completed"
        task.review_history.clear()
        logger.info("Task #%s completed", task.issue_number)
        self.notifier.notify(
            f"Issue #{task.issue_number} completed",
            slack_mod.format_task_notification(task.issue_number, task.title, task.status, self.feature_name),
        )

    def _cleanup_issue_branch(self, task: Task) -> None:
        try:
            branch = github_mod.get_pr_branch_name(task.pr_number, cwd=self.worktree_path)
        except github_mod.GitHubError:
            branch = ""
        branch = branch or task.branch or self.worktrees.issue_branch(task.issue_number)

        try:
            self.worktrees.refresh_target_branch()
        except (git.GitError, WorktreeError) as e:
            logger.warning("Could not return worktree to %s: %s", self.worktrees.target_branch, e)
        try:
            github_mod.delete_branch(branch, self.worktree_path, remote=True)
        except (git.GitError, github_mod.GitHubError) as e:
            logger.warning("Branch cleanup for %s incomplete: %s", branch, e)

    def create_feature_pr(self, spec: FeatureSpec) -> int | None:
        self.worktrees.verify_worktree_branch(self.worktrees.target_branch)
        lines = [f"- [x] #{t.issue_number}: {t.title}" for t in self.tasks.values()]
        body = (
            f"## Feature: {tasks_mod.readable_name(spec.name)}\n\n"
            f"{spec.description}\n\n"
            "## Completed Issues\n" + "\n".join(lines)
        )
        number = github_mod.create_pr(
            f"feat: {tasks_mod.readable_name(spec.name)}", body, spec.base_branch, cwd=self.worktree_path
        )
        logger.info("Created feature PR %s against %s", f"#{number}" if number else "", spec.base_branch)
        return number

    # ── Conflict resolution ──────────────────────────────────────────────────

    def resolve_conflict_with_agent(self, path: str, cwd: Path) -> bool:
        """Ask an agent to merge a conflicted source file by hand."""
        prompt = prompts_mod.render_template(
            self._template("conflict"),
            {
                "AGENT_ID": f"resolver-{int(time.time())}",
                "SOURCE_BRANCH": self.worktrees.target_branch,
                "WORKTREE_PATH": str(cwd),
                "FILE_PATH": path,
            },
        )
        prompt_file = agents_mod.write_prompt_file(cwd, "resolver", prompt, self.config.tracking_dir)
        try:
            agents_mod.execute_prompt_file(
                prompt_file,
                "resolver",
                cwd,
                command=self.config.agent_command,
                timeout=self.config.agent_timeout,
                cancel_event=self.cancel_event,
            )
        except agents_mod.AgentCancelledError as e:
            raise FeatureCancelledError(f"Feature {self.feature_name} cancelled") from e
        except agents_mod.AgentError as e:
            logger.warning("Conflict agent failed on %s: %s", path, e)
            return False
        text = (Path(cwd) / path).read_text()
        return not any(marker in text for marker in ("<<<<<<<", ">>>>>>>"))
