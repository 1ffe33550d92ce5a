"""CLI entry point for the feature orchestrator."""

import logging
import shutil
import signal
import sys
import threading

import click

from codettea.config import get_config
from codettea.core import conflicts as conflicts_mod
from codettea.core import feedback as feedback_mod
from codettea.core import tasks as tasks_mod
from codettea.core.orchestrator import FeatureCancelledError, FeatureOrchestrator, OrchestratorError
from codettea.core.worktrees import WorktreeManager
from codettea.integrations import git
from codettea.models import FeatureSpec


def _worktree_manager(config, feature_name: str) -> WorktreeManager:
    return WorktreeManager(
        main_repo_path=config.main_repo_path,
        base_worktree_path=config.base_worktree_path,
        project_name=config.project_name,
        feature_name=feature_name,
        tracking_dir=config.tracking_dir,
    )


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity",
)
def main(log_level):
    """codettea - multi-agent feature delivery"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Feature Commands ──────────────────────────────────────────────────────────


@main.command("run")
@click.argument("feature_name")
@click.argument("args", nargs=-1)
@click.option("--arch", is_flag=True, help="Let an architect agent create the issues from a description")
@click.option("--parent-feature", is_flag=True, help="Create and maintain a dedicated feature branch")
@click.option("--base-branch", default=None, help="Branch to build on (default depends on mode)")
def run_feature(feature_name, args, arch, parent_feature, base_branch):
    """Run a feature to completion.

    \b
    codettea run user-auth "Add login and signup" --arch
    codettea run user-auth 12 13 14 --parent-feature
    codettea run user-auth 15
    """
    if tasks_mod.slugify(feature_name) != feature_name:
        click.echo(f"Error: feature name must be a slug like '{tasks_mod.slugify(feature_name)}'", err=True)
        sys.exit(1)

    description = ""
    issues: list[int] = []
    if arch:
        if not args:
            click.echo("Error: architecture mode needs a feature description", err=True)
            sys.exit(1)
        description = " ".join(args)
    else:
        try:
            issues = [int(a.lstrip("#")) for a in args]
        except ValueError:
            click.echo(f"Error: issue numbers must be integers, got: {' '.join(args)}", err=True)
            sys.exit(1)
        if not issues:
            click.echo("Error: provide at least one issue number, or use --arch", err=True)
            sys.exit(1)

    config = get_config()
    for tool in (config.agent_command[0], "gh", "git"):
        if not shutil.which(tool):
            click.echo(f"Error: '{tool}' not found on PATH", err=True)
            sys.exit(1)

    is_parent = parent_feature or arch
    spec = FeatureSpec(
        name=feature_name,
        description=description,
        base_branch=base_branch or (config.base_branch if is_parent else f"feature/{feature_name}"),
        issues=issues or None,
        is_parent_feature=is_parent,
        architecture_mode=arch,
    )

    cancel_event = threading.Event()

    def _cancel(signum, frame):
        click.echo(f"\nReceived signal {signum}, stopping after the current step...", err=True)
        cancel_event.set()

    previous = {sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)}

    click.echo(f"Feature: {spec.name}")
    click.echo(f"  Base branch: {spec.base_branch}")
    click.echo(f"  Mode: {'architecture' if arch else 'issues ' + ', '.join(f'#{n}' for n in issues)}")

    orchestrator = FeatureOrchestrator(config, feature_name, cancel_event=cancel_event)
    try:
        tasks = orchestrator.execute_feature(spec)
    except FeatureCancelledError as e:
        click.echo(f"Cancelled: {e}", err=True)
        sys.exit(130)
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    click.echo(f"Feature {spec.name} completed:")
    for task in tasks:
        click.echo(f"  #{task.issue_number} {task.title} (attempts: {task.attempts}, PR #{task.pr_number})")


@main.command("status")
@click.argument("feature_name")
def feature_status(feature_name):
    """Show the worktree and branches of a feature."""
    config = get_config()
    manager = _worktree_manager(config, feature_name)
    binding = manager.binding()

    click.echo(f"Feature: {feature_name}")
    click.echo(f"  Worktree: {binding.path} ({'present' if binding.exists else 'missing'})")
    if binding.exists:
        click.echo(f"  Checked out: {binding.branch or '(detached)'}")
        if changes := git.get_status(binding.path):
            click.echo("  Uncommitted changes:")
            for line in changes.split("\n"):
                click.echo(f"    {line}")
    exists = git.branch_exists(config.main_repo_path, manager.feature_branch)
    click.echo(f"  Feature branch: {manager.feature_branch} ({'exists' if exists else 'not created'})")


# ── Worktree Commands ─────────────────────────────────────────────────────────


@main.group("worktree")
def worktree_group():
    """Inspect git worktrees."""
    pass


@worktree_group.command("list")
def worktree_list():
    """List all worktrees of the main repository."""
    config = get_config()
    try:
        wts = git.worktree_list(config.main_repo_path)
    except git.GitError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if not wts:
        click.echo("No worktrees found.")
        return
    for wt in wts:
        click.echo(f"  {wt.branch or '(detached)'} at {wt.path}")


# ── Classification Commands ───────────────────────────────────────────────────


@main.group("review")
def review_group():
    """Reviewer response tools."""
    pass


@review_group.command("classify")
@click.argument("source", type=click.File("r"), default="-")
def review_classify(source):
    """Classify a reviewer response read from a file or stdin."""
    text = source.read()
    result = feedback_mod.classify_review(text)
    click.echo(result.verdict)
    if result.ambiguous:
        click.echo("  (ambiguous: approval and rejection markers both present)")
    if feedback_mod.has_rework_required_feedback(text):
        click.echo("  (rework required)")


@main.group("conflicts")
def conflicts_group():
    """Merge conflict tools."""
    pass


@conflicts_group.command("classify")
@click.argument("paths", nargs=-1, required=True)
def conflicts_classify(paths):
    """Show how conflicted paths would be resolved."""
    config = get_config()
    for path in paths:
        resolution = conflicts_mod.classify_conflict(path, config.tracking_dir)
        click.echo(f"  {path}: {resolution.strategy}/{resolution.action} ({resolution.reason})")


# ── MCP Server ────────────────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from codettea.mcp.server import mcp
    from codettea.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
