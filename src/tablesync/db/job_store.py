"""
JobStore: durable job state, read and patched by the orchestrator and the control plane.

Every write is a single-document compare-and-patch: `update()` issues one
conditional UPDATE guarded by the statuses the writer expects, so a stop
that lands mid-batch is never overwritten by a stale in-progress checkpoint.
Reads use populate_existing so a session that has seen a job before still
observes writes made through another session.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from tablesync.errors import JobConflictError, NotFoundError, StoreError, ValidationError
from tablesync.models.job import ACTIVE_STATUSES, JobStatus, SyncJob
from tablesync.models.sync import SyncHistory
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "paused",
        "cursor",
        "window_start",
        "window_end",
        "total_records",
        "processed_records",
        "inserted_records",
        "updated_records",
        "start_time",
        "end_time",
        "last_updated",
        "error",
    }
)


class JobStore:
    """Job persistence over one scoped session."""

    def __init__(self, session: Session):
        self.session = session

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, job_id: str) -> Optional[SyncJob]:
        with self._guard():
            return self.session.exec(
                select(SyncJob)
                .where(SyncJob.job_id == job_id)
                .execution_options(populate_existing=True)
            ).first()

    def require(self, job_id: str) -> SyncJob:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list(
        self,
        status: Optional[str] = None,
        table_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncJob]:
        stmt = select(SyncJob)
        if status:
            stmt = stmt.where(SyncJob.status == status)
        if table_id:
            stmt = stmt.where(SyncJob.table_id == table_id)
        stmt = stmt.order_by(col(SyncJob.id).desc()).limit(limit)
        with self._guard():
            return list(self.session.exec(stmt.execution_options(populate_existing=True)).all())

    def latest_completed(self, table_id: str, whseid: Optional[str]) -> Optional[SyncJob]:
        """Most recent completed job for this table/warehouse that recorded a cursor."""
        stmt = (
            select(SyncJob)
            .where(SyncJob.table_id == table_id)
            .where(SyncJob.whseid == whseid)
            .where(SyncJob.status == JobStatus.COMPLETED.value)
            .where(col(SyncJob.cursor).is_not(None))
            .order_by(col(SyncJob.end_time).desc(), col(SyncJob.id).desc())
        )
        with self._guard():
            return self.session.exec(stmt).first()

    def active_for_table(self, table_id: str) -> Optional[SyncJob]:
        stmt = (
            select(SyncJob)
            .where(SyncJob.table_id == table_id)
            .where(col(SyncJob.status).in_([s.value for s in ACTIVE_STATUSES]))
            .order_by(col(SyncJob.id).desc())
        )
        with self._guard():
            return self.session.exec(stmt.execution_options(populate_existing=True)).first()

    # ── Writes ────────────────────────────────────────────────────────────────

    def create(self, job: SyncJob) -> SyncJob:
        if self.get(job.job_id) is not None:
            raise ValidationError(f"Job {job.job_id} already exists")
        job.last_updated = utcnow()
        with self._guard():
            self.session.add(job)
            self.session.commit()
            self.session.refresh(job)
        return job

    def update(
        self,
        job_id: str,
        patch: Dict[str, Any],
        *,
        expected_statuses: Optional[Iterable[JobStatus]] = None,
    ) -> SyncJob:
        """
        Apply `patch` to one job and return the post-update row.

        Args:
            job_id: Job to patch.
            patch: Field → value; only job state fields are accepted.
            expected_statuses: If given, the patch applies only while the job's
                current status is one of these.

        Raises:
            NotFoundError: the job does not exist.
            JobConflictError: the job exists but its status failed the guard.
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot patch job fields: {', '.join(sorted(unknown))}")

        values = dict(patch)
        values.setdefault("last_updated", utcnow())
        if isinstance(values.get("status"), JobStatus):
            values["status"] = values["status"].value

        stmt = sa_update(SyncJob).where(col(SyncJob.job_id) == job_id)
        if expected_statuses is not None:
            allowed = [JobStatus(s).value for s in expected_statuses]
            stmt = stmt.where(col(SyncJob.status).in_(allowed))

        with self._guard():
            result = self.session.connection().execute(stmt.values(**values))
            self.session.commit()

        if result.rowcount == 0:
            current = self.get(job_id)
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")
            raise JobConflictError(
                f"Job {job_id} is {current.status}; update not applied",
                current_status=current.status,
            )
        return self.require(job_id)

    # ── History ───────────────────────────────────────────────────────────────

    def record_history(self, job: SyncJob, table_name: Optional[str] = None) -> SyncHistory:
        finished = job.end_time or utcnow()
        duration = None
        if job.start_time is not None:
            duration = (finished - job.start_time).total_seconds()
        entry = SyncHistory(
            table_id=job.table_id,
            table_name=table_name or job.table_id,
            job_id=job.job_id,
            status=job.status,
            started_at=job.start_time,
            finished_at=finished,
            duration_seconds=duration,
            records_processed=job.processed_records,
            records_inserted=job.inserted_records,
            records_updated=job.updated_records,
            error_message=job.error,
        )
        with self._guard():
            self.session.add(entry)
            self.session.commit()
            self.session.refresh(entry)
        return entry

    def history(self, table_id: Optional[str] = None, limit: int = 50) -> List[SyncHistory]:
        stmt = select(SyncHistory)
        if table_id:
            stmt = stmt.where(SyncHistory.table_id == table_id)
        stmt = stmt.order_by(col(SyncHistory.finished_at).desc()).limit(limit)
        with self._guard():
            return list(self.session.exec(stmt).all())

    def history_counts(self, table_id: str) -> Dict[str, int]:
        """Finished-job count per final status for one table."""
        stmt = (
            select(SyncHistory.status, func.count())
            .where(SyncHistory.table_id == table_id)
            .group_by(SyncHistory.status)
        )
        with self._guard():
            return {status: count for status, count in self.session.exec(stmt).all()}

    # ── Internal helpers ──────────────────────────────────────────────────────

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Job store error: %s", exc)
            raise StoreError(f"Job store unavailable: {exc}") from exc
