"""Tests for the MCP tools, called directly with a stub request context."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from codettea.config import Config
from codettea.mcp import prompts as mcp_prompts
from codettea.mcp import server
from codettea.models import FeatureSpec


@pytest.fixture
def app(tmp_path):
    return server.AppContext(config=Config(main_repo_path=tmp_path / "app"), runner=MagicMock())


@pytest.fixture
def ctx(app):
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app))


class TestTools:
    def test_start_feature_issue_mode(self, app, ctx):
        app.runner.start.return_value.to_dict.return_value = {"id": "abc"}
        assert server.start_feature(ctx, "auth", issues=[1, 2]) == {"id": "abc"}

        spec: FeatureSpec = app.runner.start.call_args.args[0]
        assert spec.base_branch == "feature/auth"
        assert spec.issues == [1, 2]
        assert not spec.is_parent_feature

    def test_start_feature_architecture(self, app, ctx):
        server.start_feature(ctx, "auth", description="Add login", architecture=True)
        spec = app.runner.start.call_args.args[0]
        assert spec.architecture_mode and spec.is_parent_feature
        assert spec.base_branch == "main"

    def test_start_feature_needs_issues(self, app, ctx):
        assert "error" in server.start_feature(ctx, "auth")
        app.runner.start.assert_not_called()

    def test_start_feature_duplicate(self, app, ctx):
        app.runner.start.side_effect = ValueError("Feature 'auth' already has a running run (x)")
        assert server.start_feature(ctx, "auth", issues=[1]) == {
            "error": "Feature 'auth' already has a running run (x)"
        }

    def test_status_unknown_run(self, app, ctx):
        app.runner.get.return_value = None
        assert server.feature_run_status(ctx, "nope") == {"error": "Run not found: nope"}

    def test_status_includes_agent_pids(self, app, ctx):
        app.runner.get.return_value.to_dict.return_value = {"id": "abc"}
        result = server.feature_run_status(ctx, "abc")
        assert result["active_agent_pids"] == []

    def test_cancel_unknown_run(self, app, ctx):
        app.runner.cancel.side_effect = ValueError("Run not found: nope")
        assert server.cancel_feature_run(ctx, "nope") == {"error": "Run not found: nope"}

    def test_classify_review(self):
        result = server.classify_review("❌ REJECT\n**REWORK_REQUIRED**")
        assert result["verdict"] == "REJECT"
        assert result["rework_required"]

    def test_classify_conflict(self, ctx):
        result = server.classify_conflict(ctx, ".codettea-solver-prompt.md")
        assert result == {
            "path": ".codettea-solver-prompt.md",
            "strategy": "auto",
            "action": "delete",
            "reason": "temporary prompt file",
        }


class TestPrompts:
    def test_plan_feature(self):
        text = mcp_prompts.plan_feature("auth", "Users can log in")
        assert "labelled `auth`" in text
        assert "Depends on #N" in text

    def test_review_profile(self):
        assert mcp_prompts.review_profile("backend").startswith("## BACKEND Review Focus")
