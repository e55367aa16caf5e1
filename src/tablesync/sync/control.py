"""
ControlPlane: validates and applies pause/resume/stop to a persisted job.

Control actions take effect at the orchestrator's next batch boundary; an
in-flight remote query is never aborted.

  pause   paused=True, status unchanged (in_progress or pending only)
  resume  paused=False (in_progress or pending only)
  stop    status=stopped, end_time=now, whatever `paused` was

`stopped` is absorbing: pause/resume on any terminal job is rejected, and
stopping an already-stopped job is a no-op.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from tablesync.db.engine import store_session
from tablesync.db.job_store import JobStore
from tablesync.errors import JobConflictError, ValidationError
from tablesync.models.job import ACTIVE_STATUSES, JobStatus, SyncJob
from tablesync.sync.tables import TABLES
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("pause", "resume", "stop")


@dataclass
class ControlResult:
    job: SyncJob
    action: str

    @property
    def message(self) -> str:
        return f"Job {self.action} successful"

    def to_response(self) -> dict:
        return {
            "jobId": self.job.job_id,
            "status": self.job.status,
            "action": self.action,
            "success": True,
            "paused": self.job.paused,
            "message": self.message,
        }


class ControlPlane:
    def __init__(self, engine, clock=utcnow):
        self.engine = engine
        self._clock = clock

    def apply(self, job_id: Optional[str], action: Optional[str]) -> ControlResult:
        """
        Raises:
            ValidationError: missing job id, unknown action, or an action
                the job's current status does not allow.
            NotFoundError: no job with this id.
            StoreError: the store could not be read or written.
        """
        if not job_id:
            raise ValidationError("Missing job ID")
        if action not in VALID_ACTIONS:
            raise ValidationError(
                f"Invalid action. Must be one of: {', '.join(VALID_ACTIONS)}"
            )

        with store_session(self.engine) as session:
            jobs = JobStore(session)
            job = jobs.require(job_id)

            if action == "stop":
                job = self._stop(jobs, job)
            else:
                job = self._set_paused(jobs, job, paused=(action == "pause"))

        logger.info("Job %s: %s applied (status=%s paused=%s)", job_id, action, job.status, job.paused)
        return ControlResult(job=job, action=action)

    def _set_paused(self, jobs: JobStore, job: SyncJob, paused: bool) -> SyncJob:
        verb = "pause" if paused else "resume"
        try:
            return jobs.update(job.job_id, {"paused": paused}, expected_statuses=ACTIVE_STATUSES)
        except JobConflictError as exc:
            raise ValidationError(
                f"Cannot {verb} job {job.job_id}: job is {exc.current_status}"
            ) from exc

    def _stop(self, jobs: JobStore, job: SyncJob) -> SyncJob:
        if job.status == JobStatus.STOPPED.value:
            return job
        try:
            job = jobs.update(
                job.job_id,
                {"status": JobStatus.STOPPED, "end_time": self._clock()},
                expected_statuses=ACTIVE_STATUSES,
            )
        except JobConflictError as exc:
            if exc.current_status == JobStatus.STOPPED.value:
                return jobs.require(job.job_id)
            raise ValidationError(
                f"Cannot stop job {job.job_id}: job is already {exc.current_status}"
            ) from exc

        spec = TABLES.get(job.table_id)
        jobs.record_history(job, spec.table_name if spec else None)
        return job
