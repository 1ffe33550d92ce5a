"""Agent execution: run the external agent CLI on a prompt and collect its answer."""

import logging
import os
import subprocess
import threading
import time
from datetime import datetime
from pathlib import Path

from codettea.core.conflicts import DEFAULT_TRACKING_DIR

logger = logging.getLogger(__name__)

AGENT_KINDS = ("architect", "solver", "reviewer", "resolver")

DEFAULT_COMMAND = ["claude", "--dangerously-skip-permissions", "-p"]
DEFAULT_TIMEOUT = 3600.0

# Module-level registry of running agent processes (keyed by PID)
_active_processes: dict[int, subprocess.Popen] = {}
_registry_lock = threading.Lock()


class AgentError(Exception):
    """Raised when an agent run fails, crashes or produces no output."""


class AgentTimeoutError(AgentError):
    """Raised when an agent run exceeds its timeout."""


class AgentCancelledError(AgentError):
    """Raised when an agent run is stopped through its cancel event."""


def active_agent_pids() -> list[int]:
    with _registry_lock:
        return sorted(_active_processes)


def _stop(proc: subprocess.Popen) -> None:
    proc.kill()
    try:
        proc.communicate(timeout=10)
    except subprocess.TimeoutExpired:
        logger.warning("Agent process %s did not exit after kill", proc.pid)


def execute(
    prompt: str,
    agent_kind: str,
    cwd: str | Path,
    command: list[str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    cancel_event: threading.Event | None = None,
    poll_interval: float = 1.0,
) -> str:
    """Run the agent with ``prompt`` on stdin and return its stripped stdout.

    Raises AgentTimeoutError past ``timeout`` seconds, AgentCancelledError once
    ``cancel_event`` is set, and AgentError on a non-zero exit or empty output.
    The adapter never retries.
    """
    if agent_kind not in AGENT_KINDS:
        raise ValueError(f"Unknown agent kind: {agent_kind}")

    cmd = list(command or DEFAULT_COMMAND)
    logger.info("Starting %s agent in %s", agent_kind, cwd)

    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env={**os.environ, "PWD": str(cwd)},
        )
    except OSError as e:
        raise AgentError(f"Could not start {agent_kind} agent ({cmd[0]}): {e}") from e

    with _registry_lock:
        _active_processes[proc.pid] = proc

    deadline = time.monotonic() + timeout
    pending_input: str | None = prompt
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                _stop(proc)
                raise AgentCancelledError(f"{agent_kind} agent cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _stop(proc)
                raise AgentTimeoutError(f"{agent_kind} agent timed out after {timeout:.0f}s")

            try:
                stdout, stderr = proc.communicate(pending_input, timeout=min(poll_interval, remaining))
                break
            except subprocess.TimeoutExpired:
                # communicate() keeps the input it already started sending
                pending_input = None
    finally:
        with _registry_lock:
            _active_processes.pop(proc.pid, None)

    if proc.returncode != 0:
        raise AgentError(
            f"{agent_kind} agent exited with code {proc.returncode}: {(stderr or '').strip()[:500]}"
        )

    output = (stdout or "").strip()
    if not output:
        raise AgentError(f"{agent_kind} agent returned no output")

    logger.info("%s agent finished (%d chars)", agent_kind, len(output))
    return output


# ── Prompt files ─────────────────────────────────────────────────────────────


def write_prompt_file(
    directory: str | Path, prefix: str, prompt: str, tracking_dir: str = DEFAULT_TRACKING_DIR
) -> Path:
    """Write a transient prompt file ``{tracking_dir}-{prefix}-{timestamp}-prompt.md``.

    The name matches the temporary-prompt conflict rule, so a copy that leaks
    into a merge is deleted rather than kept.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    path = directory / f"{tracking_dir}-{prefix}-{timestamp}-prompt.md"
    path.write_text(prompt)
    return path


def execute_prompt_file(
    prompt_path: str | Path,
    agent_kind: str,
    cwd: str | Path,
    **kwargs,
) -> str:
    """Execute the prompt stored at ``prompt_path`` and always delete the file."""
    prompt_path = Path(prompt_path)
    try:
        return execute(prompt_path.read_text(), agent_kind, cwd, **kwargs)
    finally:
        try:
            prompt_path.unlink()
        except FileNotFoundError:
            pass
