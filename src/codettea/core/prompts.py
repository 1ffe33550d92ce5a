"""Prompt templates for the architect, solver, reviewer and conflict-resolver agents.

Templates use ``$UPPER_CASE`` placeholders. Rendering substitutes only the
variables it is given, so an unknown placeholder stays visible in the output.
A ``prompts_dir`` can override any template (``arch.md``, ``solve.md``,
``review.md``, ``conflict.md``) and any reviewer profile (``profiles/<name>/review.md``).
"""

import re
from pathlib import Path

PLACEHOLDER = re.compile(r"\$([A-Z][A-Z0-9_]*)")

ARCHITECTURE_TEMPLATE = """\
# Architecture Planning: $FEATURE_NAME

You are $AGENT_ID, the architect for this feature.

## Feature Request
$FEATURE_REQUEST

## Workspace
- Main repository: $MAIN_REPO_PATH
- Feature worktree: $WORKTREE_PATH
- Architecture notes: $ARCHITECTURE_NOTES_PATH

## Your Job
1. Study the codebase in the feature worktree.
2. Record the design in the architecture notes file (append, never rewrite history).
3. Break the feature into small, independently reviewable GitHub issues using
   `gh issue create`, labelled `$FEATURE_NAME`.
4. State dependencies in issue bodies as "Depends on #N".
5. Name the reviewers each issue needs on its own line, for example:
   **This issue requires**: frontend, backend

Finish by listing every issue you created as `#N: title`, one per line.
"""

SOLVE_TEMPLATE = """\
# Solve Issue #$ISSUE_NUMBER ($FEATURE_NAME)

You are $AGENT_ID. This is attempt $ATTEMPT_NUMBER of $MAX_ATTEMPTS.

## Issue
$ISSUE_DETAILS

## Workspace
- Worktree: $WORKTREE_PATH
- Base branch: $BASE_BRANCH
- Architecture notes: $ARCHITECTURE_CONTEXT

## Previous Attempts
$PREVIOUS_FEEDBACK_SECTION

## Instructions
- Implement the issue completely inside the worktree, with tests.
- Keep the change focused on this issue.
- Do not commit, push or open pull requests; the orchestrator does that.
- Append a short entry about the change to the feature CHANGELOG.md.

Finish with a summary of the files you changed.
"""

REVIEW_TEMPLATE = """\
# Review PR #$PR_NUMBER for Issue #$ISSUE_NUMBER ($FEATURE_NAME)

You are $AGENT_ID, reviewing as the $REVIEWER_PROFILE reviewer.
This is review round $ATTEMPT_NUMBER of $MAX_ATTEMPTS.

## Issue
$ISSUE_DETAILS

## Workspace
- Worktree: $WORKTREE_PATH (branch $BRANCH)
- Architecture notes: $ARCHITECTURE_CONTEXT

## Focus
$PROFILE_SPECIFIC_CONTENT

## Verdict
Inspect the diff with `gh pr diff $PR_NUMBER`. End your review with exactly one of:
- `✅ APPROVE` when the change is ready to merge.
- `❌ REJECT` followed by **REWORK_REQUIRED** and a numbered list of what must change.

Only write the word approve when you are approving.
"""

CONFLICT_TEMPLATE = """\
# Resolve Merge Conflict

You are $AGENT_ID. Branch $SOURCE_BRANCH was merged into the working tree at
$WORKTREE_PATH and the file `$FILE_PATH` has conflict markers.

Edit only that file so it keeps the intent of both sides, and remove every
`<<<<<<<`, `=======` and `>>>>>>>` marker. Do not stage, commit or touch other files.

Reply with a one-line summary of how you resolved it.
"""

DEFAULT_TEMPLATES = {
    "arch": ARCHITECTURE_TEMPLATE,
    "solve": SOLVE_TEMPLATE,
    "review": REVIEW_TEMPLATE,
    "conflict": CONFLICT_TEMPLATE,
}

PROFILE_GUIDANCE = {
    "frontend": (
        "## FRONTEND Review Focus\n\n"
        "- Component structure, state handling and rendering correctness\n"
        "- Accessibility and responsive behaviour\n"
        "- Client-side error handling and loading states"
    ),
    "backend": (
        "## BACKEND Review Focus\n\n"
        "- API contracts, validation and error responses\n"
        "- Data access, transactions and query efficiency\n"
        "- Security of inputs, authentication and secrets"
    ),
    "devops": (
        "## DEVOPS Review Focus\n\n"
        "- Build, CI and deployment configuration\n"
        "- Environment variables and secret handling\n"
        "- Observability and operational safety of the change"
    ),
}


def render_template(template: str, variables: dict[str, object]) -> str:
    """Substitute ``$NAME`` placeholders present in ``variables``."""

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return PLACEHOLDER.sub(substitute, template)


def load_template(name: str, prompts_dir: Path | None = None) -> str:
    if name not in DEFAULT_TEMPLATES:
        raise ValueError(f"Unknown prompt template: {name}")
    if prompts_dir and (override := Path(prompts_dir) / f"{name}.md").is_file():
        return override.read_text()
    return DEFAULT_TEMPLATES[name]


def load_profile_content(profile: str, prompts_dir: Path | None = None) -> str:
    """Reviewer guidance for a profile, falling back to general review advice."""
    if prompts_dir and (override := Path(prompts_dir) / "profiles" / profile / "review.md").is_file():
        return override.read_text()
    if profile in PROFILE_GUIDANCE:
        return PROFILE_GUIDANCE[profile]
    return (
        f"## {profile.upper()} Review Focus\n\n"
        "No specific profile guidance available. Use general code review principles."
    )
