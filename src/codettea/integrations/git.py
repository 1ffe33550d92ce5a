"""Git subprocess wrappers for branch, merge and worktree operations.

Every function takes an explicit working directory. Failures surface as
``GitError``; merges additionally distinguish ``MergeConflictError`` and
``PartialMergeError`` so callers can route them to conflict recovery.
"""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Raised when a git command fails."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout or ""
        self.stderr = stderr or ""

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class MergeConflictError(GitError):
    """Raised when a merge stops on conflicting changes."""


class PartialMergeError(GitError):
    """Raised when a merge cannot start because a previous one is unfinished."""


@dataclass
class WorktreeInfo:
    path: str
    branch: str
    head: str
    is_bare: bool = False


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or "").strip()
        raise GitError(f"git {' '.join(args)} failed: {detail}", e.stdout, e.stderr) from e


# ── Branches ─────────────────────────────────────────────────────────────────


def checkout(branch: str, cwd: str | Path) -> str:
    return run_git(["checkout", branch], cwd=cwd)


def checkout_detached(cwd: str | Path) -> str:
    return run_git(["checkout", "--detach"], cwd=cwd)


def create_branch(branch: str, cwd: str | Path, start_point: str | None = None) -> str:
    """Create a branch and switch to it."""
    args = ["checkout", "-b", branch]
    if start_point:
        args.append(start_point)
    return run_git(args, cwd=cwd)


def safe_checkout(
    branch: str,
    cwd: str | Path,
    resolve_conflicts: Callable[[Path], bool] | None = None,
) -> None:
    """Checkout a branch, recovering from an unmerged index or dirty files.

    An index with unresolved entries is handed to ``resolve_conflicts`` first
    and aborted if that fails. Local changes that would be overwritten are
    stashed, carried over, and popped on the target branch.
    """
    try:
        checkout(branch, cwd)
        return
    except GitError as e:
        message = e.output

        if "you need to resolve your current index first" in message or "needs merge" in message:
            logger.warning("Unresolved index in %s, attempting cleanup before checkout", cwd)
            resolved = resolve_conflicts(Path(cwd)) if resolve_conflicts else False
            if not resolved:
                abort_merge(cwd)
            checkout(branch, cwd)
            return

        if "would be overwritten by checkout" in message:
            logger.info("Stashing local changes in %s before switching to %s", cwd, branch)
            stash_push(cwd, "Auto-stash before branch switch")
            checkout(branch, cwd)
            try:
                stash_pop(cwd)
            except GitError as pop_error:
                logger.warning("Could not restore stashed changes on %s: %s", branch, pop_error)
            return

        raise


def pull(branch: str, cwd: str | Path, remote: str = "origin") -> str:
    return run_git(["pull", remote, branch], cwd=cwd)


def push(branch: str, cwd: str | Path, remote: str = "origin") -> str:
    return run_git(["push", "-u", remote, branch], cwd=cwd)


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a branch exists."""
    try:
        run_git(["rev-parse", "--verify", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def delete_branch(repo_path: str | Path, branch: str, force: bool = False) -> str:
    """Delete a branch."""
    flag = "-D" if force else "-d"
    return run_git(["branch", flag, branch], cwd=repo_path)


def delete_remote_branch(repo_path: str | Path, branch: str, remote: str = "origin") -> str:
    return run_git(["push", remote, "--delete", branch], cwd=repo_path)


def get_status(cwd: str | Path) -> str:
    """Get git status of a working directory."""
    return run_git(["status", "--short"], cwd=cwd)


def get_current_branch(cwd: str | Path) -> str:
    """Get the current branch name."""
    return run_git(["branch", "--show-current"], cwd=cwd)


# ── Worktrees ────────────────────────────────────────────────────────────────


def worktree_add(
    repo_path: str | Path,
    worktree_path: str | Path,
    branch: str,
    start_point: str | None = None,
) -> str:
    """Add a worktree on ``branch``. With ``start_point`` the branch is created from it."""
    if start_point:
        args = ["worktree", "add", "-b", branch, str(worktree_path), start_point]
    else:
        args = ["worktree", "add", str(worktree_path), branch]
    return run_git(args, cwd=repo_path)


def _worktree_from_porcelain(block: str) -> WorktreeInfo:
    fields = {}
    for line in block.splitlines():
        key, _, value = line.partition(" ")
        fields[key] = value
    return WorktreeInfo(
        path=fields.get("worktree", ""),
        branch=fields.get("branch", "").removeprefix("refs/heads/"),
        head=fields.get("HEAD", ""),
        is_bare="bare" in fields,
    )


def worktree_list(repo_path: str | Path) -> list[WorktreeInfo]:
    """All working trees of the repository, main clone first."""
    output = run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    return [_worktree_from_porcelain(block) for block in output.split("\n\n") if block.strip()]


def is_branch_in_worktree(repo_path: str | Path, branch: str) -> bool:
    """True when any working tree of the repository has ``branch`` checked out."""
    return any(wt.branch == branch for wt in worktree_list(repo_path))


def find_worktree_for_branch(repo_path: str | Path, branch: str) -> Path | None:
    for wt in worktree_list(repo_path):
        if wt.branch == branch:
            return Path(wt.path)
    return None


# ── Staging and commits ──────────────────────────────────────────────────────


def add_files(pathspec: str, cwd: str | Path) -> str:
    return run_git(["add", pathspec], cwd=cwd)


def remove_file(path: str, cwd: str | Path) -> str:
    return run_git(["rm", "-f", "--ignore-unmatch", "--", path], cwd=cwd)


def commit(message: str, cwd: str | Path) -> bool:
    """Commit staged changes. Returns False when there was nothing to commit."""
    try:
        run_git(["commit", "-m", message], cwd=cwd)
        return True
    except GitError as e:
        if "nothing to commit" in e.output or "nothing added to commit" in e.output:
            return False
        raise


# ── Merging ──────────────────────────────────────────────────────────────────


def merge(branch: str, cwd: str | Path) -> str:
    """Merge ``branch`` into the current branch."""
    try:
        return run_git(["merge", branch], cwd=cwd)
    except GitError as e:
        message = e.output
        if (
            "unmerged files" in message
            or "Merging is not possible" in message
            or "You have not concluded your merge" in message
        ):
            raise PartialMergeError(str(e), e.stdout, e.stderr) from e
        if "CONFLICT" in message or "Automatic merge failed" in message:
            raise MergeConflictError(str(e), e.stdout, e.stderr) from e
        raise


def get_merge_conflict_files(cwd: str | Path) -> list[str]:
    output = run_git(["diff", "--name-only", "--diff-filter=U"], cwd=cwd)
    return [line for line in output.split("\n") if line.strip()]


def resolve_conflict_file(path: str, resolution: str, cwd: str | Path) -> None:
    """Resolve one conflicted file with ``ours``, ``theirs`` or ``both`` and stage it."""
    if resolution in ("ours", "theirs"):
        run_git(["checkout", f"--{resolution}", "--", path], cwd=cwd)
    elif resolution == "both":
        try:
            ours = run_git(["show", f":2:{path}"], cwd=cwd)
            theirs = run_git(["show", f":3:{path}"], cwd=cwd)
        except GitError:
            logger.warning("Could not read both sides of %s, keeping theirs", path)
            run_git(["checkout", "--theirs", "--", path], cwd=cwd)
        else:
            (Path(cwd) / path).write_text(f"{ours}\n\n{theirs}\n")
    else:
        raise ValueError(f"Unknown conflict resolution: {resolution}")
    add_files(path, cwd)


def merge_in_progress(cwd: str | Path) -> bool:
    """True while MERGE_HEAD exists, even when every conflict is already staged."""
    try:
        run_git(["rev-parse", "-q", "--verify", "MERGE_HEAD"], cwd=cwd)
        return True
    except GitError:
        return False


def abort_merge(cwd: str | Path) -> str:
    return run_git(["merge", "--abort"], cwd=cwd)


def complete_merge(message: str, cwd: str | Path) -> str:
    return run_git(["commit", "-m", message], cwd=cwd)


def reset_index(cwd: str | Path) -> str:
    return run_git(["reset", "--mixed", "HEAD"], cwd=cwd)


def stash_push(cwd: str | Path, message: str) -> str:
    return run_git(["stash", "push", "-m", message], cwd=cwd)


def stash_pop(cwd: str | Path) -> str:
    return run_git(["stash", "pop"], cwd=cwd)
