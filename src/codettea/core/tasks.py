"""Task graph construction and readiness, plus the issue-text parsers feeding it."""

import logging
import re

from codettea.models import Task

logger = logging.getLogger(__name__)

DEPENDENCY_PATTERN = re.compile(r"(?:depends on|blocked by)\s+#(\d+)", re.IGNORECASE)

REVIEWER_PATTERNS = (
    re.compile(
        r"(?:\*\*)?(?:This issue requires?|Reviewers? Required?)(?:\*\*)?\s*:\s*([a-zA-Z,\s]+?)(?:\n|$)",
        re.IGNORECASE,
    ),
    re.compile(r"\*\*This issue requires?\*\*\s*:\s*([a-zA-Z,\s]+?)(?:\n|$)", re.IGNORECASE),
    re.compile(
        r"Reviewers?\s+Required[:\s]*\n\s*(?:\*\*)?(?:This issue requires?)?(?:\*\*)?\s*:?\s*([a-zA-Z,\s]+?)(?:\n|$)",
        re.IGNORECASE,
    ),
)

PROFILE_NAME = re.compile(r"^[a-zA-Z-]+$")

ISSUE_REFERENCE = re.compile(r"#(\d+)")


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def readable_name(feature_name: str) -> str:
    """``user-auth`` -> ``User Auth``."""
    return " ".join(word.capitalize() for word in re.split(r"[-_]+", feature_name) if word)


# ── Issue text parsing ───────────────────────────────────────────────────────


def parse_dependencies(body: str) -> frozenset[int]:
    """Issue numbers referenced as "Depends on #N" or "Blocked by #N"."""
    return frozenset(int(n) for n in DEPENDENCY_PATTERN.findall(body or ""))


def parse_required_reviewers(body: str) -> list[str] | None:
    """Reviewer profiles named in the issue body, or None when it names none.

    The first pattern yielding at least one valid profile name wins.
    """
    for pattern in REVIEWER_PATTERNS:
        if not (match := pattern.search(body or "")):
            continue
        profiles = []
        for name in match.group(1).split(","):
            name = name.strip().lower()
            if name and PROFILE_NAME.match(name) and name not in profiles:
                profiles.append(name)
        if profiles:
            return profiles
    return None


def parse_created_issues(text: str) -> list[int]:
    """Unique issue numbers mentioned as ``#N``, in order of first appearance."""
    seen: list[int] = []
    for n in ISSUE_REFERENCE.findall(text or ""):
        if int(n) not in seen:
            seen.append(int(n))
    return seen


def build_task(
    issue_number: int,
    title: str,
    body: str,
    default_reviewers: list[str],
    max_attempts: int = 3,
    pr_number: int | None = None,
) -> Task:
    reviewers = parse_required_reviewers(body)
    if reviewers is None:
        reviewers = list(default_reviewers)
    return Task(
        issue_number=issue_number,
        title=title,
        description=body,
        dependencies=parse_dependencies(body) - {issue_number},
        required_reviewers=reviewers,
        max_attempts=max_attempts,
        pr_number=pr_number,
    )


# ── Readiness ────────────────────────────────────────────────────────────────


def is_ready(task: Task, tasks: dict[int, Task]) -> bool:
    """Pending with every dependency completed or outside the graph."""
    if task.status != "pending":
        return False
    for dep_id in task.dependencies:
        dep = tasks.get(dep_id)
        if dep is None:
            logger.debug("Dependency #%s of #%s is not part of this feature, assuming completed",
                         dep_id, task.issue_number)
            continue
        if dep.status != "completed":
            return False
    return True


def get_ready_tasks(tasks: dict[int, Task]) -> list[Task]:
    """Tasks that can be scheduled now, in graph insertion order."""
    return [task for task in tasks.values() if is_ready(task, tasks)]


def get_blocked_tasks(tasks: dict[int, Task]) -> list[Task]:
    """Pending tasks still waiting on an incomplete dependency."""
    return [
        task for task in tasks.values()
        if task.status == "pending" and not is_ready(task, tasks)
    ]


def has_incomplete_tasks(tasks: dict[int, Task]) -> bool:
    return any(task.status != "completed" for task in tasks.values())


def find_dependency_cycle(tasks: dict[int, Task]) -> list[int] | None:
    """Return one dependency cycle among known tasks, or None."""
    visiting: list[int] = []
    done: set[int] = set()

    def visit(issue_number: int) -> list[int] | None:
        if issue_number in done:
            return None
        if issue_number in visiting:
            return visiting[visiting.index(issue_number):] + [issue_number]
        visiting.append(issue_number)
        for dep_id in sorted(tasks[issue_number].dependencies):
            if dep_id in tasks and (cycle := visit(dep_id)):
                return cycle
        visiting.pop()
        done.add(issue_number)
        return None

    for issue_number in tasks:
        if cycle := visit(issue_number):
            return cycle
    return None
