"""Tests for git wrappers against real temporary repositories."""

import subprocess
import tempfile
from pathlib import Path

import pytest

from codettea.integrations import git


def _git(args, cwd):
    return subprocess.run(["git"] + args, cwd=cwd, capture_output=True, text=True, check=True).stdout


@pytest.fixture
def git_repo():
    """Create a temporary git repo on main with an initial commit."""
    with tempfile.TemporaryDirectory() as tmp:
        repo = Path(tmp) / "repo"
        repo.mkdir()
        _git(["init"], repo)
        _git(["checkout", "-b", "main"], repo)
        _git(["config", "user.name", "Test"], repo)
        _git(["config", "user.email", "test@test.com"], repo)
        (repo / "README.md").write_text("# Test\n")
        _git(["add", "."], repo)
        _git(["commit", "-m", "init"], repo)
        yield repo


def _diverge(repo, path, main_text, other_text, branch="other"):
    """Commit different contents of ``path`` on main and on ``branch``."""
    _git(["checkout", "-b", branch], repo)
    (repo / path).parent.mkdir(parents=True, exist_ok=True)
    (repo / path).write_text(other_text)
    _git(["add", "."], repo)
    _git(["commit", "-m", f"{branch} change"], repo)
    _git(["checkout", "main"], repo)
    (repo / path).write_text(main_text)
    _git(["add", "."], repo)
    _git(["commit", "-m", "main change"], repo)


class TestRunGit:
    def test_error_carries_output(self, git_repo):
        with pytest.raises(git.GitError) as exc_info:
            git.run_git(["checkout", "no-such-branch"], cwd=git_repo)
        assert "no-such-branch" in exc_info.value.stderr

    def test_current_branch(self, git_repo):
        assert git.get_current_branch(git_repo) == "main"


class TestBranches:
    def test_create_and_exists(self, git_repo):
        assert not git.branch_exists(git_repo, "feature/x")
        git.create_branch("feature/x", git_repo)
        assert git.branch_exists(git_repo, "feature/x")
        assert git.get_current_branch(git_repo) == "feature/x"

    def test_create_from_start_point(self, git_repo):
        git.create_branch("other", git_repo)
        (git_repo / "a.txt").write_text("a")
        git.add_files(".", git_repo)
        git.commit("add a", git_repo)
        git.create_branch("from-main", git_repo, start_point="main")
        assert not (git_repo / "a.txt").exists()

    def test_worktree_membership(self, git_repo, tmp_path):
        git.create_branch("feature/x", git_repo)
        git.checkout("main", git_repo)
        assert not git.is_branch_in_worktree(git_repo, "feature/x")

        wt_path = tmp_path / "wt"
        git.worktree_add(git_repo, wt_path, "feature/x")
        assert git.is_branch_in_worktree(git_repo, "feature/x")
        assert git.find_worktree_for_branch(git_repo, "feature/x").resolve() == wt_path.resolve()
        assert git.is_branch_in_worktree(git_repo, "main")

    def test_worktree_new_branch_and_detached(self, git_repo, tmp_path):
        git.worktree_add(git_repo, tmp_path / "wt", "feature/y", start_point="main")
        git.checkout_detached(tmp_path / "wt")

        worktrees = git.worktree_list(git_repo)
        assert [wt.branch for wt in worktrees] == ["main", ""]
        assert all(len(wt.head) == 40 for wt in worktrees)
        assert git.branch_exists(git_repo, "feature/y")


class TestCommit:
    def test_commit_changes(self, git_repo):
        (git_repo / "new.txt").write_text("content")
        git.add_files(".", git_repo)
        assert git.commit("add new", git_repo) is True

    def test_nothing_to_commit(self, git_repo):
        git.add_files(".", git_repo)
        assert git.commit("empty", git_repo) is False


class TestMerge:
    def test_clean_merge(self, git_repo):
        git.create_branch("other", git_repo)
        (git_repo / "other.txt").write_text("x")
        git.add_files(".", git_repo)
        git.commit("other", git_repo)
        git.checkout("main", git_repo)
        git.merge("other", git_repo)
        assert (git_repo / "other.txt").exists()

    def test_conflict_error(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)
        assert git.get_merge_conflict_files(git_repo) == ["app.py"]

    def test_partial_merge_error(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)
        with pytest.raises(git.PartialMergeError):
            git.merge("other", git_repo)

    def test_conflict_is_a_git_error(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        with pytest.raises(git.GitError):
            git.merge("other", git_repo)

    def test_abort_merge(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)
        git.abort_merge(git_repo)
        assert git.get_merge_conflict_files(git_repo) == []
        assert (git_repo / "app.py").read_text() == "main\n"

    def test_resolve_theirs(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)
        git.resolve_conflict_file("app.py", "theirs", git_repo)
        assert (git_repo / "app.py").read_text() == "other\n"
        assert git.get_merge_conflict_files(git_repo) == []

    def test_resolve_both(self, git_repo):
        _diverge(git_repo, "notes.md", "from main\n", "from other\n")
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)
        git.resolve_conflict_file("notes.md", "both", git_repo)
        text = (git_repo / "notes.md").read_text()
        assert "from main" in text
        assert "from other" in text
        git.complete_merge("merge other", git_repo)
        assert git.get_status(git_repo) == ""


class TestSafeCheckout:
    def test_plain_checkout(self, git_repo):
        git.create_branch("other", git_repo)
        git.safe_checkout("main", git_repo)
        assert git.get_current_branch(git_repo) == "main"

    def test_keeps_unrelated_local_changes(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        (git_repo / "README.md").write_text("# Local edit\n")
        git.safe_checkout("other", git_repo)
        assert git.get_current_branch(git_repo) == "other"
        assert (git_repo / "README.md").read_text() == "# Local edit\n"

    def test_stashes_changes_that_would_be_overwritten(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        (git_repo / "app.py").write_text("main\nlocal\n")
        git.safe_checkout("other", git_repo)
        assert git.get_current_branch(git_repo) == "other"

    def test_aborts_unresolvable_merge(self, git_repo):
        _diverge(git_repo, "app.py", "main\n", "other\n")
        git.create_branch("target", git_repo)
        git.checkout("main", git_repo)
        with pytest.raises(git.MergeConflictError):
            git.merge("other", git_repo)

        git.safe_checkout("target", git_repo, resolve_conflicts=lambda cwd: False)
        assert git.get_current_branch(git_repo) == "target"
        assert git.get_merge_conflict_files(git_repo) == []
