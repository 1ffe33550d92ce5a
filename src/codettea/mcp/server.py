"""MCP server for starting, watching and cancelling feature runs."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass

from mcp.server.fastmcp import Context, FastMCP

from codettea.config import Config, get_config
from codettea.core import agents as agents_mod
from codettea.core import conflicts as conflicts_mod
from codettea.core import feedback as feedback_mod
from codettea.core.runs import FeatureRunner
from codettea.integrations import git
from codettea.models import FeatureSpec


@dataclass
class AppContext:
    config: Config
    runner: FeatureRunner


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Create the run registry on startup, cancel its runs on shutdown."""
    config = get_config()
    runner = FeatureRunner(config)
    try:
        yield AppContext(config=config, runner=runner)
    finally:
        runner.shutdown()


mcp = FastMCP("codettea", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Feature Runs ──────────────────────────────────────────────────────────────


@mcp.tool()
def start_feature(
    ctx: Context,
    feature_name: str,
    issues: list[int] | None = None,
    description: str = "",
    parent_feature: bool = False,
    architecture: bool = False,
    base_branch: str | None = None,
) -> dict:
    """Start a feature run in the background.

    Pass issue numbers, or set architecture=True with a description to have an
    architect agent create the issues first. Architecture mode implies a parent
    feature with its own feature branch.
    """
    app = _ctx(ctx)
    parent = parent_feature or architecture
    spec = FeatureSpec(
        name=feature_name,
        description=description,
        base_branch=base_branch or (app.config.base_branch if parent else f"feature/{feature_name}"),
        issues=issues,
        is_parent_feature=parent,
        architecture_mode=architecture,
    )
    if not architecture and not issues:
        return {"error": "Provide issue numbers, or use architecture mode with a description"}
    try:
        run = app.runner.start(spec)
    except ValueError as e:
        return {"error": str(e)}
    return run.to_dict()


@mcp.tool()
def feature_run_status(ctx: Context, run_id: str) -> dict:
    """Status of a feature run, including each task's state and attempts."""
    run = _ctx(ctx).runner.get(run_id)
    if not run:
        return {"error": f"Run not found: {run_id}"}
    result = run.to_dict()
    result["active_agent_pids"] = agents_mod.active_agent_pids()
    return result


@mcp.tool()
def list_feature_runs(ctx: Context) -> list[dict]:
    """List feature runs started by this server."""
    return [run.to_dict() for run in _ctx(ctx).runner.list_runs()]


@mcp.tool()
def cancel_feature_run(ctx: Context, run_id: str) -> dict:
    """Cancel a running feature. Any agent process it is waiting on is killed."""
    try:
        run = _ctx(ctx).runner.cancel(run_id, wait=5)
    except ValueError as e:
        return {"error": str(e)}
    return run.to_dict()


# ── Repository ────────────────────────────────────────────────────────────────


@mcp.tool()
def list_feature_worktrees(ctx: Context) -> list[dict]:
    """List git worktrees of the main repository."""
    config = _ctx(ctx).config
    try:
        return [asdict(wt) for wt in git.worktree_list(config.main_repo_path)]
    except git.GitError as e:
        return [{"error": str(e)}]


# ── Classification ────────────────────────────────────────────────────────────


@mcp.tool()
def classify_review(text: str) -> dict:
    """Classify a reviewer response as APPROVE or REJECT."""
    result = feedback_mod.classify_review(text)
    return {
        **asdict(result),
        "rework_required": feedback_mod.has_rework_required_feedback(text),
    }


@mcp.tool()
def classify_conflict(ctx: Context, path: str) -> dict:
    """Show how a conflicted path would be resolved during a merge."""
    resolution = conflicts_mod.classify_conflict(path, _ctx(ctx).config.tracking_dir)
    return {"path": path, **asdict(resolution)}
