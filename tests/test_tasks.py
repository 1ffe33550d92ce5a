"""Tests for issue parsing and task graph readiness."""

from codettea.core import tasks as tasks_mod
from codettea.models import Task


def _graph(*tasks):
    return {t.issue_number: t for t in tasks}


class TestSlugify:
    def test_basic(self):
        assert tasks_mod.slugify("User Auth") == "user-auth"

    def test_special_chars(self):
        assert tasks_mod.slugify("Fix bug #123!") == "fix-bug-123"

    def test_readable_name(self):
        assert tasks_mod.readable_name("user-auth_flow") == "User Auth Flow"


class TestParseDependencies:
    def test_depends_on(self):
        assert tasks_mod.parse_dependencies("Depends on #1") == {1}

    def test_blocked_by_case_insensitive(self):
        body = "BLOCKED BY #7\nAlso depends on #3 and depends on #3"
        assert tasks_mod.parse_dependencies(body) == {3, 7}

    def test_plain_reference_is_not_dependency(self):
        assert tasks_mod.parse_dependencies("Related to #4") == frozenset()

    def test_empty_body(self):
        assert tasks_mod.parse_dependencies("") == frozenset()


class TestParseRequiredReviewers:
    def test_bold_requires(self):
        body = "Some text\n**This issue requires**: Frontend, backend\nMore"
        assert tasks_mod.parse_required_reviewers(body) == ["frontend", "backend"]

    def test_reviewers_required_heading(self):
        body = "## Reviewers Required\n**This issue requires**: devops\n"
        assert tasks_mod.parse_required_reviewers(body) == ["devops"]

    def test_inline_reviewers_required(self):
        assert tasks_mod.parse_required_reviewers("Reviewers Required: backend") == ["backend"]

    def test_missing_returns_none(self):
        assert tasks_mod.parse_required_reviewers("Just implement it") is None

    def test_duplicates_removed(self):
        body = "This issue requires: backend, Backend, devops"
        assert tasks_mod.parse_required_reviewers(body) == ["backend", "devops"]


class TestParseCreatedIssues:
    def test_unique_in_order(self):
        text = "Created #12: API\nCreated #13: UI (depends on #12)\n#14"
        assert tasks_mod.parse_created_issues(text) == [12, 13, 14]

    def test_none(self):
        assert tasks_mod.parse_created_issues("no issues here") == []


class TestBuildTask:
    def test_parses_body(self):
        body = "Depends on #1\n**This issue requires**: backend"
        task = tasks_mod.build_task(2, "Add API", body, ["frontend", "devops"], max_attempts=5)
        assert task.dependencies == {1}
        assert task.required_reviewers == ["backend"]
        assert task.max_attempts == 5
        assert task.status == "pending"
        assert task.attempts == 0

    def test_default_reviewers(self):
        task = tasks_mod.build_task(2, "Add API", "", ["frontend", "devops"], pr_number=9)
        assert task.required_reviewers == ["frontend", "devops"]
        assert task.pr_number == 9

    def test_self_dependency_dropped(self):
        task = tasks_mod.build_task(3, "Loop", "Depends on #3", ["backend"])
        assert task.dependencies == frozenset()


class TestReadiness:
    def test_dependency_must_complete(self):
        t1 = Task(1, "one")
        t2 = Task(2, "two", dependencies=frozenset({1}))
        graph = _graph(t1, t2)
        assert tasks_mod.get_ready_tasks(graph) == [t1]
        assert tasks_mod.get_blocked_tasks(graph) == [t2]

        t1.status = "completed"
        assert tasks_mod.get_ready_tasks(graph) == [t2]

    def test_missing_dependency_counts_as_satisfied(self):
        t2 = Task(2, "two", dependencies=frozenset({99}))
        assert tasks_mod.get_ready_tasks(_graph(t2)) == [t2]

    def test_only_pending_tasks_are_ready(self):
        t1 = Task(1, "one", status="reviewing")
        assert tasks_mod.get_ready_tasks(_graph(t1)) == []

    def test_has_incomplete(self):
        graph = _graph(Task(1, "one", status="completed"), Task(2, "two"))
        assert tasks_mod.has_incomplete_tasks(graph)
        graph[2].status = "completed"
        assert not tasks_mod.has_incomplete_tasks(graph)


class TestDependencyCycle:
    def test_no_cycle(self):
        graph = _graph(Task(1, "a"), Task(2, "b", dependencies=frozenset({1})))
        assert tasks_mod.find_dependency_cycle(graph) is None

    def test_cycle(self):
        graph = _graph(
            Task(1, "a", dependencies=frozenset({3})),
            Task(2, "b", dependencies=frozenset({1})),
            Task(3, "c", dependencies=frozenset({2})),
        )
        cycle = tasks_mod.find_dependency_cycle(graph)
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {1, 2, 3}

    def test_external_dependency_is_not_cycle(self):
        graph = _graph(Task(1, "a", dependencies=frozenset({50})))
        assert tasks_mod.find_dependency_cycle(graph) is None
