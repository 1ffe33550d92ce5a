"""MCP prompt templates for feature planning."""

from codettea.core import prompts as prompts_mod
from codettea.mcp.server import mcp


@mcp.prompt()
def plan_feature(feature_name: str, goal: str) -> str:
    """Generate a prompt to break a feature down into orchestrator-ready issues."""
    return (
        f"I need to deliver the feature '{feature_name}':\n\n"
        f"{goal}\n\n"
        f"Break it down into GitHub issues labelled `{feature_name}`. For each issue:\n"
        f"1. Give it a clear, concise title\n"
        f"2. Describe what needs to be done and how to verify it\n"
        f"3. Write dependencies in the body as \"Depends on #N\"\n"
        f"4. Name the reviewers on their own line, e.g. \"**This issue requires**: backend, devops\"\n\n"
        f"Then call start_feature with the issue numbers and parent_feature=True."
    )


@mcp.prompt()
def run_report(run_id: str) -> str:
    """Generate a prompt for a feature run report."""
    return (
        f"Please report on feature run '{run_id}'.\n\n"
        f"Use feature_run_status to get the run, then provide:\n"
        f"1. Which issues are completed and which are pending\n"
        f"2. Issues that needed more than one attempt, and why if you can tell\n"
        f"3. Whether the run failed or was cancelled, and the error\n"
        f"4. Recommended next steps"
    )


@mcp.prompt()
def review_profile(profile: str) -> str:
    """Show the review guidance given to a reviewer profile."""
    return prompts_mod.load_profile_content(profile)
