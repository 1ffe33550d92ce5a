"""Background feature runs for hosts that embed the orchestrator.

Each run owns a thread and a cancel event. Cancelling sets the event, which
stops the scheduler loop and kills any agent process still running.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from codettea.config import Config
from codettea.core.orchestrator import FeatureCancelledError, FeatureOrchestrator
from codettea.models import FeatureSpec, Task

logger = logging.getLogger(__name__)


@dataclass
class FeatureRun:
    id: str
    spec: FeatureSpec
    status: str = "running"
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    orchestrator: FeatureOrchestrator | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    @property
    def tasks(self) -> list[Task]:
        return list(self.orchestrator.tasks.values()) if self.orchestrator else []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "feature": self.spec.name,
            "status": self.status,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "tasks": [
                {
                    "issue_number": t.issue_number,
                    "title": t.title,
                    "status": t.status,
                    "attempts": t.attempts,
                    "max_attempts": t.max_attempts,
                    "pr_number": t.pr_number,
                }
                for t in self.tasks
            ],
        }


class FeatureRunner:
    """Registry of feature runs executing in background threads."""

    def __init__(self, config: Config):
        self.config = config
        self._runs: dict[str, FeatureRun] = {}
        self._lock = threading.Lock()

    def start(self, spec: FeatureSpec) -> FeatureRun:
        with self._lock:
            for run in self._runs.values():
                if run.spec.name == spec.name and run.status == "running":
                    raise ValueError(f"Feature '{spec.name}' already has a running run ({run.id})")
            run = FeatureRun(id=uuid.uuid4().hex[:8], spec=spec)
            run.orchestrator = FeatureOrchestrator(self.config, spec.name, cancel_event=run.cancel_event)
            run.thread = threading.Thread(
                target=self._run, args=(run,), name=f"feature-{spec.name}", daemon=True
            )
            self._runs[run.id] = run
        run.thread.start()
        logger.info("Started run %s for feature %s", run.id, spec.name)
        return run

    def _run(self, run: FeatureRun) -> None:
        try:
            run.orchestrator.execute_feature(run.spec)
            run.status = "completed"
        except FeatureCancelledError:
            run.status = "cancelled"
        except Exception as e:
            logger.exception("Feature run %s failed", run.id)
            run.status = "failed"
            run.error = str(e)
        finally:
            run.finished_at = datetime.now()

    def get(self, run_id: str) -> FeatureRun | None:
        return self._runs.get(run_id)

    def list_runs(self) -> list[FeatureRun]:
        return sorted(self._runs.values(), key=lambda r: r.started_at)

    def cancel(self, run_id: str, wait: float | None = None) -> FeatureRun:
        run = self._runs.get(run_id)
        if not run:
            raise ValueError(f"Run not found: {run_id}")
        run.cancel_event.set()
        if wait and run.thread:
            run.thread.join(timeout=wait)
        return run

    def shutdown(self, timeout: float = 10) -> None:
        """Cancel every run and wait briefly for the threads to stop."""
        for run in self._runs.values():
            run.cancel_event.set()
        for run in self._runs.values():
            if run.thread:
                run.thread.join(timeout=timeout)
