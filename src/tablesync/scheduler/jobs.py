"""
APScheduler jobs for background table sync.

Every few minutes the scheduler walks the enabled sync configs. A table
with an active (pending/in_progress) job gets that job continued; otherwise
a new job is started when the table is due. Each tick is one bounded
invocation per table, so long copies progress across many ticks.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session

from tablesync.config import get_settings
from tablesync.db.job_store import JobStore
from tablesync.sync.configs import effective_config, is_sync_due, list_configs, record_sync_result
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the orchestrator.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _scheduled_sync,
        trigger="interval",
        minutes=settings.scheduler_interval_minutes,
        id="table_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _scheduled_sync(engine, client=None) -> None:
    """
    One scheduler tick. Never raises: failures are logged per table.

    Args:
        engine: SQLAlchemy engine.
        client: RemoteQueryClient to use; one is built from settings when omitted.
    """
    from tablesync.remote.client import RemoteQueryClient

    logger.info("Scheduled sync starting at %s", utcnow().isoformat())

    try:
        with Session(engine) as s:
            configs = list_configs(s, enabled_only=True)
        if not configs:
            logger.info("No enabled sync configs")
            return

        if client is None:
            async with RemoteQueryClient.from_settings() as owned:
                await _sync_configs(engine, owned, configs)
        else:
            await _sync_configs(engine, client, configs)

    except Exception as exc:
        logger.error("Scheduled sync failed: %s", exc)


async def _sync_configs(engine, client, configs) -> None:
    from tablesync.sync.orchestrator import SyncOrchestrator, new_job_id

    orchestrator = SyncOrchestrator(client=client, engine=engine)
    now = utcnow()
    for config in configs:
        try:
            job_id = _active_job_id(engine, config.table_id)
            if job_id is None:
                if not is_sync_due(config, now):
                    logger.debug("Skipping %s, not due yet", config.table_id)
                    continue
                job_id = new_job_id(config.table_id)

            job = await orchestrator.run(job_id, effective_config(config))
            logger.info("Table %s: job %s is %s", config.table_id, job.job_id, job.status)

            with Session(engine) as s:
                record_sync_result(s, config.table_id, job)

        except Exception as exc:
            logger.error("Scheduled sync of %s failed: %s", config.table_id, exc)


def _active_job_id(engine, table_id: str) -> Optional[str]:
    with Session(engine) as s:
        job = JobStore(s).active_for_table(table_id)
        return job.job_id if job else None
