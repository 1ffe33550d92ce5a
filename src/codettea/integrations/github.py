"""GitHub access through the ``gh`` CLI: issues, pull requests and reviews."""

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from codettea.integrations import git
from codettea.models import APPROVE

logger = logging.getLogger(__name__)

REVIEW_FOOTER = "\n\n---\n*Review by {profile} agent ({reviewer_id}) - Multi-agent orchestrator*"

# Review body phrases that mean the reviewer still wants changes, even when
# the review was only posted as a comment.
REJECTION_PATTERNS = (
    "🔴 Critical",
    "Critical Issues",
    "## ❌ REJECT",
    "Must Fix",
    "Action Items",
    "Recommendation:",
    "before merging",
    "must be addressed",
    "must be resolved",
)


class GitHubError(Exception):
    """Raised when a gh command fails or returns unusable output."""


@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    state: str = "OPEN"


@dataclass
class PullRequest:
    number: int
    title: str
    body: str = ""
    state: str = "OPEN"


@dataclass
class PRReview:
    author: str
    state: str
    body: str
    submitted_at: str


def run_gh(args: list[str], cwd: str | Path | None = None, input: str | None = None) -> str:
    """Run a gh command and return stdout. Raises GitHubError on failure."""
    cmd = ["gh"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            input=input,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except FileNotFoundError as e:
        raise GitHubError("gh CLI not found on PATH") from e
    except subprocess.CalledProcessError as e:
        raise GitHubError(f"gh {' '.join(args)} failed: {(e.stderr or '').strip()}") from e


def _run_gh_json(args: list[str], cwd: str | Path | None = None):
    output = run_gh(args, cwd=cwd)
    try:
        return json.loads(output) if output else None
    except json.JSONDecodeError as e:
        raise GitHubError(f"gh {' '.join(args)} returned invalid JSON") from e


# ── Issues ───────────────────────────────────────────────────────────────────


def get_issue(number: int, cwd: str | Path | None = None) -> Issue:
    data = _run_gh_json(["issue", "view", str(number), "--json", "title,body,state,number"], cwd=cwd)
    if not data:
        raise GitHubError(f"Issue #{number} not found")
    return Issue(
        number=data.get("number", number),
        title=data.get("title", ""),
        body=data.get("body") or "",
        state=data.get("state", ""),
    )


def close_issue(number: int, comment: str | None = None, cwd: str | Path | None = None) -> None:
    args = ["issue", "close", str(number)]
    if comment:
        args += ["--comment", comment]
    run_gh(args, cwd=cwd)


def list_issues(label: str | None = None, limit: int = 20, cwd: str | Path | None = None) -> list[int]:
    """Issue numbers, optionally filtered by label. Failures yield an empty list."""
    args = ["issue", "list", "--limit", str(limit), "--json", "number"]
    if label:
        args += ["--label", label]
    try:
        data = _run_gh_json(args, cwd=cwd) or []
    except GitHubError as e:
        logger.warning("Could not list issues: %s", e)
        return []
    return [item["number"] for item in data if "number" in item]


# ── Pull requests ────────────────────────────────────────────────────────────


def _references_issue(text: str, issue_number: int) -> bool:
    return re.search(rf"#{issue_number}(?!\d)", text or "") is not None


def find_pr_for_issue(issue_number: int, cwd: str | Path | None = None) -> int | None:
    """Find an open PR whose title or body references the issue."""
    try:
        data = _run_gh_json(
            ["pr", "list", "--search", f"#{issue_number}", "--json", "number,title,body,state"],
            cwd=cwd,
        ) or []
    except GitHubError as e:
        logger.warning("Could not search PRs for issue #%s: %s", issue_number, e)
        return None

    for pr in data:
        if pr.get("state") != "OPEN":
            continue
        if _references_issue(pr.get("title", ""), issue_number) or _references_issue(
            pr.get("body", ""), issue_number
        ):
            return pr["number"]
    return None


def _parse_pr_number(output: str) -> int | None:
    if match := re.search(r"/pull/(\d+)", output):
        return int(match.group(1))
    return None


def create_pr(title: str, body: str, base: str, cwd: str | Path | None = None) -> int | None:
    """Create a PR from the current branch. Returns its number when gh reports a URL."""
    args = ["pr", "create", "--title", title, "--body", body, "--base", base]
    try:
        output = run_gh(args, cwd=cwd)
    except GitHubError as first_error:
        head = git.get_current_branch(cwd or ".")
        logger.warning("PR creation failed (%s), retrying with --head %s", first_error, head)
        output = run_gh(args + ["--head", head], cwd=cwd)
    return _parse_pr_number(output)


def update_pr(
    number: int,
    title: str | None = None,
    body: str | None = None,
    base: str | None = None,
    cwd: str | Path | None = None,
) -> None:
    args = ["pr", "edit", str(number)]
    if title:
        args += ["--title", title]
    if body:
        args += ["--body", body]
    if base:
        args += ["--base", base]
    run_gh(args, cwd=cwd)


def get_pr_state(number: int, cwd: str | Path | None = None) -> str:
    return run_gh(["pr", "view", str(number), "--json", "state", "--jq", ".state"], cwd=cwd)


def merge_pr(number: int, strategy: str = "squash", cwd: str | Path | None = None) -> None:
    """Merge a PR. A PR that is already merged counts as success."""
    try:
        run_gh(["pr", "merge", str(number), f"--{strategy}"], cwd=cwd)
    except GitHubError:
        try:
            state = get_pr_state(number, cwd=cwd)
        except GitHubError:
            state = ""
        if state != "MERGED":
            raise
        logger.info("PR #%s was already merged", number)


def list_prs(limit: int = 10, cwd: str | Path | None = None) -> list[PullRequest]:
    data = _run_gh_json(["pr", "list", "--limit", str(limit), "--json", "number,title,body,state"], cwd=cwd) or []
    return [
        PullRequest(
            number=item["number"],
            title=item.get("title", ""),
            body=item.get("body") or "",
            state=item.get("state", ""),
        )
        for item in data
    ]


def get_pr_branch_name(number: int, cwd: str | Path | None = None) -> str:
    return run_gh(["pr", "view", str(number), "--json", "headRefName", "--jq", ".headRefName"], cwd=cwd)


def delete_branch(branch: str, cwd: str | Path, remote: bool = True) -> None:
    """Delete a branch locally and, optionally, on origin.

    Both deletions are attempted; a GitHubError lists whichever failed.
    """
    failures = []
    try:
        git.delete_branch(cwd, branch, force=True)
    except git.GitError as e:
        failures.append(f"local: {e}")
    if remote:
        try:
            git.delete_remote_branch(cwd, branch)
        except git.GitError as e:
            failures.append(f"remote: {e}")
    if failures:
        raise GitHubError(f"Could not fully delete branch {branch}: {'; '.join(failures)}")


# ── Reviews ──────────────────────────────────────────────────────────────────


def get_pr_reviews(number: int, cwd: str | Path | None = None) -> list[PRReview]:
    data = _run_gh_json(["pr", "view", str(number), "--json", "reviews"], cwd=cwd) or {}
    return [
        PRReview(
            author=(review.get("author") or {}).get("login", ""),
            state=review.get("state", ""),
            body=review.get("body") or "",
            submitted_at=review.get("submittedAt") or "",
        )
        for review in data.get("reviews", [])
    ]


def latest_reviews_by_author(reviews: list[PRReview]) -> list[PRReview]:
    latest: dict[str, PRReview] = {}
    for review in sorted(reviews, key=lambda r: r.submitted_at):
        latest[review.author] = review
    return list(latest.values())


def review_requests_changes(review: PRReview) -> bool:
    if review.state == "CHANGES_REQUESTED":
        return True
    body = review.body.lower()
    return any(pattern.lower() in body for pattern in REJECTION_PATTERNS)


def has_pending_change_requests(number: int, cwd: str | Path | None = None) -> bool:
    """True when any reviewer's latest review on the PR still asks for changes."""
    reviews = latest_reviews_by_author(get_pr_reviews(number, cwd=cwd))
    pending = [r for r in reviews if review_requests_changes(r)]
    if pending:
        logger.info(
            "PR #%s has pending change requests from: %s",
            number,
            ", ".join(r.author or "unknown" for r in pending),
        )
    return bool(pending)


def get_current_user(cwd: str | Path | None = None) -> str:
    return run_gh(["api", "user", "--jq", ".login"], cwd=cwd)


def get_pr_author(number: int, cwd: str | Path | None = None) -> str:
    return run_gh(["pr", "view", str(number), "--json", "author", "--jq", ".author.login"], cwd=cwd)


def submit_pr_review(
    number: int,
    verdict: str,
    body: str,
    reviewer_id: str,
    profile: str,
    cwd: str | Path | None = None,
) -> None:
    """Post a reviewer verdict on the PR.

    GitHub refuses formal reviews on your own PR, so in that case the verdict
    is posted as a plain comment.
    """
    full_body = body + REVIEW_FOOTER.format(profile=profile, reviewer_id=reviewer_id)

    try:
        own_pr = get_current_user(cwd=cwd) == get_pr_author(number, cwd=cwd)
    except GitHubError as e:
        logger.debug("Could not determine PR authorship for #%s: %s", number, e)
        own_pr = False

    if own_pr:
        run_gh(["pr", "comment", str(number), "--body-file", "-"], cwd=cwd, input=full_body)
        return

    flag = "--approve" if verdict == APPROVE else "--request-changes"
    run_gh(["pr", "review", str(number), flag, "--body-file", "-"], cwd=cwd, input=full_body)
