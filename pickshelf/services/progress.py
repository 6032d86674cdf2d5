"""Job progress handles passed explicitly through a sync pass."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from ..utils import utcnow

logger = logging.getLogger(__name__)

JobStatus = Literal["running", "completed", "failed", "cancelled"]

MAX_LOG_ENTRIES = 500
JOB_RETENTION = timedelta(minutes=10)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class RunCancelled(Exception):
    """Raised between phases once a job has been asked to stop."""


@dataclass(slots=True)
class JobLogEntry:
    timestamp: datetime
    level: str
    message: str


class JobProgress:
    """Mutable progress state of one job, shared by everything it runs."""

    def __init__(self, job_id: str, job_name: str, total_steps: int):
        self.id = job_id
        self.name = job_name
        self.total_steps = max(total_steps, 1)
        self.status: JobStatus = "running"
        self.step_index = 0
        self.step_name: str | None = None
        self.items_processed = 0
        self.items_total = 0
        self.current_item: str | None = None
        self.result: Any = None
        self.error: str | None = None
        self.started_at = utcnow()
        self.finished_at: datetime | None = None
        self._cancel_requested = False
        self._logs: deque[JobLogEntry] = deque(maxlen=MAX_LOG_ENTRIES)

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_requested or self.status == "cancelled"

    @property
    def is_finished(self) -> bool:
        return self.status != "running"

    @property
    def logs(self) -> list[JobLogEntry]:
        return list(self._logs)

    @property
    def progress(self) -> float:
        """Overall completion in ``[0, 1]``, weighted evenly per step."""

        if self.status == "completed":
            return 1.0
        fraction = 0.0
        if self.items_total > 0:
            fraction = min(self.items_processed / self.items_total, 1.0)
        overall = (self.step_index + fraction) / self.total_steps
        return max(0.0, min(overall, 1.0))

    def set_step(self, index: int, name: str, items_total: int = 0) -> None:
        self.step_index = max(0, min(index, self.total_steps))
        self.step_name = name
        self.items_processed = 0
        self.items_total = max(items_total, 0)
        self.current_item = None
        self.add_log("info", f"Step {index + 1}/{self.total_steps}: {name}")

    def update_progress(
        self,
        processed: int,
        total: int | None = None,
        current_item: str | None = None,
    ) -> None:
        if total is not None:
            self.items_total = max(total, 0)
        self.items_processed = max(processed, 0)
        if current_item is not None:
            self.current_item = current_item

    def add_log(self, level: str, message: str) -> None:
        normalized = level.lower() if level.lower() in _LEVELS else "info"
        self._logs.append(JobLogEntry(utcnow(), normalized, message))
        logger.log(_LEVELS[normalized], "[job %s] %s", self.id, message)

    def complete(self, result: Any = None) -> None:
        if self.is_finished:
            return
        self.result = result
        self.status = "completed"
        self.finished_at = utcnow()

    def fail(self, error: str) -> None:
        if self.is_finished:
            return
        self.error = error
        self.status = "failed"
        self.finished_at = utcnow()
        self.add_log("error", error)

    def request_cancel(self) -> None:
        if self.is_finished:
            return
        self._cancel_requested = True
        self.add_log("warning", "Cancellation requested")

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise RunCancelled(f"Job {self.id} was cancelled")

    def mark_cancelled(self) -> None:
        if self.is_finished:
            return
        self.status = "cancelled"
        self.finished_at = utcnow()

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "progress": round(self.progress, 4),
            "step": {
                "index": self.step_index,
                "name": self.step_name,
                "total": self.total_steps,
                "itemsProcessed": self.items_processed,
                "itemsTotal": self.items_total,
                "currentItem": self.current_item,
            },
            "cancelRequested": self._cancel_requested,
            "result": self.result,
            "error": self.error,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "logs": [
                {
                    "timestamp": entry.timestamp.isoformat(),
                    "level": entry.level,
                    "message": entry.message,
                }
                for entry in self._logs
            ],
        }


class JobRegistry:
    """In-memory registry of recent jobs keyed by id."""

    def __init__(self, retention: timedelta = JOB_RETENTION):
        self._retention = retention
        self._jobs: dict[str, JobProgress] = {}

    def create_run(self, job_name: str, total_steps: int) -> JobProgress:
        self._prune()
        job = JobProgress(uuid.uuid4().hex, job_name, total_steps)
        self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> JobProgress:
        self._prune()
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"Job {job_id} not found") from None

    def list_jobs(self) -> list[JobProgress]:
        self._prune()
        return sorted(self._jobs.values(), key=lambda job: job.started_at, reverse=True)

    def active(self) -> JobProgress | None:
        for job in self._jobs.values():
            if not job.is_finished:
                return job
        return None

    def _prune(self) -> None:
        cutoff = utcnow() - self._retention
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and job.finished_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
