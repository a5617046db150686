"""In-memory job tracking for video generation tasks.

Jobs live only in process memory and are lost on restart. The orchestrator is
the only writer; everything else reads snapshots.
"""
import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from threadreel.models import STAGE_MESSAGES, STAGE_ORDER, STAGE_PROGRESS, TERMINAL_STATUSES, JobStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Job:
    """Represents a video generation job, keyed by its script id."""

    def __init__(self, script_id: str, thread_url: str):
        self.script_id = script_id
        self.thread_url = thread_url
        self.status = JobStatus.PENDING
        self.progress = 0
        self.message = STAGE_MESSAGES[JobStatus.PENDING]
        self.video_path: Optional[str] = None
        self.error: Optional[str] = None
        self.warnings: list[str] = []
        self.created_at = _now()
        self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: JobStatus) -> bool:
        """Move forward to ``status``. Backward moves and terminal jobs are refused."""
        if self.is_terminal or status in TERMINAL_STATUSES:
            return False
        if STAGE_ORDER.index(status) <= STAGE_ORDER.index(self.status):
            return False
        self.status = status
        self.progress = max(self.progress, STAGE_PROGRESS[status])
        self.message = STAGE_MESSAGES[status]
        self.updated_at = _now()
        return True

    def mark_complete(self, video_path: str) -> bool:
        """Mark job as complete with video path."""
        if self.is_terminal:
            return False
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.message = STAGE_MESSAGES[JobStatus.COMPLETED]
        self.video_path = video_path
        self.updated_at = _now()
        return True

    def mark_error(self, error: str) -> bool:
        """Mark job as failed with error message."""
        if self.is_terminal:
            return False
        self.status = JobStatus.FAILED
        self.error = error
        self.message = STAGE_MESSAGES[JobStatus.FAILED]
        self.updated_at = _now()
        return True

    def mark_cancelled(self) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.CANCELLED
        self.message = STAGE_MESSAGES[JobStatus.CANCELLED]
        self.updated_at = _now()
        return True

    def snapshot(self) -> "Job":
        job = copy.copy(self)
        job.warnings = list(self.warnings)
        return job


class JobManager:
    """Manages video generation jobs in memory."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._guard: Optional[asyncio.Lock] = None
        self._guard_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def _lock(self) -> asyncio.Lock:
        # The global manager outlives any single event loop; a lock is only
        # usable from the loop it first waited on.
        loop = asyncio.get_running_loop()
        if self._guard is None or self._guard_loop is not loop:
            self._guard = asyncio.Lock()
            self._guard_loop = loop
        return self._guard

    async def create_job(self, script_id: str, thread_url: str) -> Job:
        """Create a new pending job."""
        async with self._lock:
            if script_id in self._jobs:
                raise ValueError(f"Job {script_id} already exists")
            job = Job(script_id, thread_url)
            self._jobs[script_id] = job
            return job.snapshot()

    async def get_job(self, script_id: str) -> Optional[Job]:
        """Get a snapshot of a job by script id."""
        async with self._lock:
            job = self._jobs.get(script_id)
            return job.snapshot() if job else None

    async def list_jobs(self) -> list[Job]:
        async with self._lock:
            return sorted((job.snapshot() for job in self._jobs.values()), key=lambda j: j.created_at)

    async def advance(self, script_id: str, status: JobStatus) -> bool:
        async with self._lock:
            job = self._jobs.get(script_id)
            return job.advance(status) if job else False

    async def add_warning(self, script_id: str, warning: str):
        async with self._lock:
            if script_id in self._jobs:
                self._jobs[script_id].warnings.append(warning)

    async def mark_job_complete(self, script_id: str, video_path: str) -> bool:
        """Mark job as complete."""
        async with self._lock:
            job = self._jobs.get(script_id)
            return job.mark_complete(video_path) if job else False

    async def mark_job_error(self, script_id: str, error: str) -> bool:
        """Mark job as failed."""
        async with self._lock:
            job = self._jobs.get(script_id)
            return job.mark_error(error) if job else False

    async def mark_job_cancelled(self, script_id: str) -> bool:
        """Mark job as cancelled; a no-op for jobs already finished."""
        async with self._lock:
            job = self._jobs.get(script_id)
            return job.mark_cancelled() if job else False

    async def cleanup_old_jobs(self, max_age_hours: int = 24) -> list[str]:
        """Remove finished jobs older than max_age_hours."""
        cutoff = _now() - timedelta(hours=max_age_hours)
        async with self._lock:
            old_job_ids = [
                script_id for script_id, job in self._jobs.items()
                if job.is_terminal and job.updated_at < cutoff
            ]
            for script_id in old_job_ids:
                del self._jobs[script_id]
            return old_job_ids


# Global job manager instance
job_manager = JobManager()
