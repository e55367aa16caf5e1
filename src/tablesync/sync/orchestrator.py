"""
SyncOrchestrator: drives one table copy from the remote query service into
the document store, one checkpointed batch at a time.

Flow for a single run() invocation:
  1. Load the SyncJob, or create it with a fixed watermark window
  2. pending → in_progress (optionally counting the window first)
  3. Per batch: re-read the job, honour stop/pause, submit a paged query,
     poll it, fetch the rows, upsert them, commit, then checkpoint stats
     and cursor with a compare-and-patch guarded on in_progress
  4. Short batch or max_records reached → completed

A run stops starting batches once the invocation budget is spent; the job
stays in_progress and the next run() picks up from processed_records.

On any error inside a batch the job is marked failed with the message.
Rows committed by earlier batches are kept.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tablesync.config import Settings, get_settings
from tablesync.db.document_store import DocumentStore, UpsertOutcome
from tablesync.db.engine import store_session
from tablesync.db.job_store import JobStore
from tablesync.errors import JobConflictError, StoreError, ValidationError
from tablesync.models.config import SyncConfig
from tablesync.models.job import JobStatus, SyncJob
from tablesync.remote.polling import PollPolicy, wait_for_completion
from tablesync.sync.query_builder import Window, build_count_query, build_page_query
from tablesync.sync.tables import (
    TableSpec,
    get_table_spec,
    high_water_mark,
    normalize_timestamp,
    record_key,
    transform_row,
)
from tablesync.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)


def new_job_id(table_id: str) -> str:
    return f"{table_id}-{uuid.uuid4().hex[:12]}"


class SyncOrchestrator:
    """Runs sync jobs against one remote client and one engine."""

    def __init__(
        self,
        client,
        engine,
        policy: Optional[PollPolicy] = None,
        settings: Optional[Settings] = None,
        clock=utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            client: RemoteQueryClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            policy: Poll policy; defaults to the configured one.
            settings: Settings override; defaults to get_settings().
            clock: Naive-UTC wall clock for job timestamps and windows.
            monotonic: Clock for the invocation budget.
            sleep: Awaitable sleep used between status polls.
        """
        self.client = client
        self.engine = engine
        self.settings = settings or get_settings()
        self.policy = policy or PollPolicy.from_settings(self.settings)
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep

    async def run(self, job_id: str, config: SyncConfig) -> SyncJob:
        """
        Make as much progress on `job_id` as the invocation budget allows.

        Args:
            job_id: Job to continue, or to create when it does not exist yet.
            config: Table configuration (batch size, limits, options).

        Returns:
            The job as last persisted (or, if the final write failed, as
            last computed in memory).

        Raises:
            ValidationError: unknown table or invalid batch settings.
            StoreError: the job could not be loaded or created.
        """
        spec = get_table_spec(config.table_id)
        _validate_config(config)
        started = self._monotonic()

        with store_session(self.engine) as session:
            jobs = JobStore(session)
            docs = DocumentStore(session)

            job = jobs.get(job_id)
            if job is None:
                job = jobs.create(self._new_job(jobs, job_id, config))
                logger.info(
                    "Created job %s for %s window [%s, %s)",
                    job.job_id, spec.table_id, job.window_start, job.window_end,
                )
            elif job.table_id != spec.table_id:
                raise ValidationError(
                    f"Job {job_id} belongs to table {job.table_id}, not {spec.table_id}"
                )

            if job.is_terminal:
                logger.info("Job %s is already %s", job.job_id, job.status)
                return job

            if job.status == JobStatus.PENDING.value:
                try:
                    job = await self._start(jobs, job, spec, config)
                except JobConflictError:
                    return jobs.require(job_id)
                except Exception as exc:
                    return self._fail(jobs, job, spec, exc)

            return await self._run_batches(jobs, docs, job, spec, config, started)

    # ── Job lifecycle ─────────────────────────────────────────────────────────

    def _new_job(self, jobs: JobStore, job_id: str, config: SyncConfig) -> SyncJob:
        options = config.options or {}
        whseid = options.get("whseid") or None
        window = self._plan_window(jobs, config, whseid)
        return SyncJob(
            job_id=job_id,
            table_id=config.table_id,
            whseid=whseid,
            status=JobStatus.PENDING.value,
            window_start=window.start,
            window_end=window.end,
            cursor=window.start,
            start_time=self._clock(),
        )

    def _plan_window(self, jobs: JobStore, config: SyncConfig, whseid: Optional[str]) -> Window:
        """
        Incremental runs continue from the last completed job's cursor up to
        now. Initial runs use the configured bounds, ending at now when open.
        """
        now = isoformat(self._clock())
        if not config.initial_sync:
            previous = jobs.latest_completed(config.table_id, whseid)
            if previous is not None and previous.cursor:
                return Window(start=previous.cursor, end=now)

        options = config.options or {}
        start = _option_timestamp(options, "startDate")
        end = _option_timestamp(options, "endDate") or now
        if start and start >= end:
            raise ValidationError(f"startDate {start} must be before endDate {end}")
        return Window(start=start, end=end)

    async def _start(
        self, jobs: JobStore, job: SyncJob, spec: TableSpec, config: SyncConfig
    ) -> SyncJob:
        patch: Dict[str, Any] = {"status": JobStatus.IN_PROGRESS}
        if (config.options or {}).get("countFirst"):
            patch["total_records"] = await self._count(spec, job)
        job = jobs.update(job.job_id, patch, expected_statuses={JobStatus.PENDING})
        logger.info("Job %s started", job.job_id)
        return job

    async def _run_batches(
        self,
        jobs: JobStore,
        docs: DocumentStore,
        job: SyncJob,
        spec: TableSpec,
        config: SyncConfig,
        started: float,
    ) -> SyncJob:
        budget = self.settings.invocation_budget_seconds
        while True:
            if self._monotonic() - started >= budget:
                logger.info(
                    "Job %s: invocation budget of %.0fs spent after %d records; will resume",
                    job.job_id, budget, job.processed_records,
                )
                return job

            # Re-read so a stop/pause that landed since the last batch is seen
            job = jobs.require(job.job_id)
            if job.status != JobStatus.IN_PROGRESS.value:
                logger.info("Job %s is %s, not starting another batch", job.job_id, job.status)
                return job
            if job.paused:
                logger.info("Job %s is paused at %d records", job.job_id, job.processed_records)
                return job

            remaining = config.max_records - job.processed_records
            if remaining <= 0:
                return self._finish(jobs, job, spec, {})

            limit = min(config.batch_size, remaining)
            offset = job.processed_records
            try:
                rows = await self._fetch_batch(spec, job, offset, limit)
                inserted, updated = self._store_rows(docs, spec, rows)
            except Exception as exc:
                docs.rollback()
                return self._fail(jobs, job, spec, exc)

            patch = self._checkpoint_patch(job, spec, rows, inserted, updated)
            logger.info(
                "Job %s batch at offset %d: %d rows (%d inserted, %d updated)",
                job.job_id, offset, len(rows), inserted, updated,
            )

            exhausted = len(rows) < limit
            if exhausted or patch["processed_records"] >= config.max_records:
                return self._finish(jobs, job, spec, patch)

            try:
                job = jobs.update(job.job_id, patch, expected_statuses={JobStatus.IN_PROGRESS})
            except JobConflictError as exc:
                logger.info(
                    "Job %s moved to %s during the batch; checkpoint dropped",
                    job.job_id, exc.current_status,
                )
                return jobs.require(job.job_id)

    def _finish(
        self, jobs: JobStore, job: SyncJob, spec: TableSpec, patch: Dict[str, Any]
    ) -> SyncJob:
        patch = dict(patch)
        processed = patch.get("processed_records", job.processed_records)
        patch["status"] = JobStatus.COMPLETED
        patch["end_time"] = self._clock()
        if not job.total_records:
            patch["total_records"] = processed
        job = self._final_write(jobs, job, patch)
        if job.status == JobStatus.COMPLETED.value:
            logger.info("Job %s completed: %d records", job.job_id, job.processed_records)
            self._record_history(jobs, job, spec)
        return job

    def _fail(self, jobs: JobStore, job: SyncJob, spec: TableSpec, exc: Exception) -> SyncJob:
        message = str(exc) or exc.__class__.__name__
        logger.error("Job %s failed: %s", job.job_id, message)
        patch = {"status": JobStatus.FAILED, "error": message, "end_time": self._clock()}
        job = self._final_write(jobs, job, patch)
        if job.status == JobStatus.FAILED.value:
            self._record_history(jobs, job, spec)
        return job

    def _final_write(self, jobs: JobStore, job: SyncJob, patch: Dict[str, Any]) -> SyncJob:
        """
        Persist a terminal patch. A lost race returns the winner's state; a
        store failure is logged and the in-memory result returned.
        """
        snapshot = SyncJob(**{name: getattr(job, name) for name in SyncJob.model_fields})
        try:
            return jobs.update(
                job.job_id,
                patch,
                expected_statuses={JobStatus.PENDING, JobStatus.IN_PROGRESS},
            )
        except JobConflictError as exc:
            logger.info("Job %s is already %s; final write skipped", job.job_id, exc.current_status)
            return jobs.require(job.job_id)
        except StoreError as exc:
            logger.error("Could not persist final state of job %s: %s", job.job_id, exc)
            for name, value in patch.items():
                setattr(snapshot, name, value.value if isinstance(value, JobStatus) else value)
            return snapshot

    def _record_history(self, jobs: JobStore, job: SyncJob, spec: TableSpec) -> None:
        try:
            jobs.record_history(job, spec.table_name)
        except StoreError as exc:
            logger.error("Could not record history for job %s: %s", job.job_id, exc)

    # ── Batches ───────────────────────────────────────────────────────────────

    async def _run_query(self, sql: str) -> str:
        query_id = await self.client.submit(sql)
        await wait_for_completion(self.client, query_id, self.policy, sleep=self._sleep)
        return query_id

    async def _count(self, spec: TableSpec, job: SyncJob) -> int:
        sql = build_count_query(spec, job.whseid, Window(job.window_start, job.window_end))
        query_id = await self._run_query(sql)
        rows = await self.client.fetch_page(query_id, 0, 1)
        if not rows:
            return 0
        row = {str(k).lower(): v for k, v in rows[0].items()}
        return int(row.get("count") or 0)

    async def _fetch_batch(
        self, spec: TableSpec, job: SyncJob, offset: int, limit: int
    ) -> List[Dict[str, Any]]:
        """Run one paged query and read back at most `limit` rows."""
        sql = build_page_query(
            spec, job.whseid, Window(job.window_start, job.window_end), offset, limit
        )
        query_id = await self._run_query(sql)

        rows: List[Dict[str, Any]] = []
        page_size = self.settings.result_page_size
        while len(rows) < limit:
            want = min(page_size, limit - len(rows))
            page = await self.client.fetch_page(query_id, len(rows), want)
            rows.extend(page[:want])
            if len(page) < want:
                break
        return rows

    def _store_rows(
        self, docs: DocumentStore, spec: TableSpec, rows: List[Dict[str, Any]]
    ) -> Tuple[int, int]:
        inserted = updated = 0
        for row in rows:
            doc = transform_row(spec, row)
            outcome = docs.upsert(spec.table_id, record_key(spec, doc), doc.get("WHSEID"), doc)
            if outcome is UpsertOutcome.INSERTED:
                inserted += 1
            elif outcome is UpsertOutcome.UPDATED:
                updated += 1
        docs.commit()
        return inserted, updated

    def _checkpoint_patch(
        self,
        job: SyncJob,
        spec: TableSpec,
        rows: List[Dict[str, Any]],
        inserted: int,
        updated: int,
    ) -> Dict[str, Any]:
        cursor = job.cursor
        batch_mark = high_water_mark(spec, rows)
        if batch_mark is not None and (cursor is None or batch_mark > cursor):
            cursor = batch_mark
        return {
            "processed_records": job.processed_records + len(rows),
            "inserted_records": job.inserted_records + inserted,
            "updated_records": job.updated_records + updated,
            "cursor": cursor,
        }


def _validate_config(config: SyncConfig) -> None:
    if config.batch_size is None or config.batch_size < 1:
        raise ValidationError("batchSize must be a positive integer")
    if config.max_records is None or config.max_records < 1:
        raise ValidationError("maxRecords must be a positive integer")


def _option_timestamp(options: Dict[str, Any], name: str) -> Optional[str]:
    value = options.get(name)
    if value in (None, ""):
        return None
    normalized = normalize_timestamp(value)
    if normalized is None:
        raise ValidationError(f"{name} is not an ISO-8601 date: {value!r}")
    return normalized
