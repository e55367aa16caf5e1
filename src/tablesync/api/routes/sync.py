"""Sync trigger, history and per-table statistics routes."""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from tablesync.api.deps import get_engine_dep, get_session
from tablesync.db.document_store import DocumentStore
from tablesync.db.job_store import JobStore
from tablesync.errors import NotFoundError, ValidationError
from tablesync.models.config import SyncConfig
from tablesync.sync.configs import effective_config, get_config, list_configs, record_sync_result
from tablesync.sync.orchestrator import new_job_id
from tablesync.sync.tables import get_table_spec
from tablesync.timeutil import isoformat

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    whseid: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    batchSize: Optional[int] = Field(default=None, gt=0)
    maxRecords: Optional[int] = Field(default=None, gt=0)
    countFirst: Optional[bool] = None
    force: bool = False


async def _do_sync(engine, job_id: str, config: SyncConfig) -> None:
    """Background task: one orchestrator invocation for the job."""
    from tablesync.remote.client import RemoteQueryClient
    from tablesync.sync.orchestrator import SyncOrchestrator

    try:
        async with RemoteQueryClient.from_settings() as client:
            job = await SyncOrchestrator(client=client, engine=engine).run(job_id, config)
        with Session(engine) as s:
            record_sync_result(s, config.table_id, job)
    except Exception as exc:
        logger.error("Sync of %s (job %s) failed: %s", config.table_id, job_id, exc)


@router.post("/{table_id}")
async def trigger_sync(
    table_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[SyncTriggerRequest] = None,
    session: Session = Depends(get_session),
    engine=Depends(get_engine_dep),
):
    """
    Start a sync for one table, or continue its active job.
    Returns immediately; the batches run in the background.
    """
    request = request or SyncTriggerRequest()
    spec = get_table_spec(table_id)
    config = get_config(session, spec.table_id)
    if config is None:
        raise NotFoundError(f"No sync config for table {spec.table_id}")
    if not config.enabled and not request.force:
        raise ValidationError(f"Sync for {spec.table_id} is disabled; pass force=true to run anyway")

    active = JobStore(session).active_for_table(spec.table_id)
    job_id = active.job_id if active else new_job_id(spec.table_id)
    run_config = effective_config(config, request.model_dump(exclude={"force"}))

    background_tasks.add_task(_do_sync, engine, job_id, run_config)
    return {
        "message": "Sync continued" if active else "Sync started",
        "jobId": job_id,
        "tableId": spec.table_id,
    }


@router.get("/history")
def sync_history(
    tableId: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    session: Session = Depends(get_session),
):
    """Most recent finished jobs, newest first."""
    entries = JobStore(session).history(table_id=tableId, limit=limit)
    return {"history": [e.to_document() for e in entries], "count": len(entries)}


def _table_stats(session: Session, config: SyncConfig) -> dict:
    counts = JobStore(session).history_counts(config.table_id)
    return {
        "tableId": config.table_id,
        "tableName": config.table_name,
        "enabled": config.enabled,
        "syncFrequency": config.sync_frequency,
        "recordCount": DocumentStore(session).count(config.table_id),
        "lastSyncDate": isoformat(config.last_sync_date),
        "lastSyncStatus": config.last_sync_status,
        "lastSyncJobId": config.last_sync_job_id,
        "syncHistory": {
            "total": sum(counts.values()),
            "successful": counts.get("completed", 0),
            "failed": counts.get("failed", 0),
        },
    }


@router.get("/stats")
def sync_stats(
    tableId: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """Stored record count and last-sync state, for one table or all of them."""
    if tableId is not None:
        spec = get_table_spec(tableId)
        config = get_config(session, spec.table_id)
        if config is None:
            raise NotFoundError(f"No sync config for table {spec.table_id}")
        configs = [config]
    else:
        configs = list_configs(session)
    stats = [_table_stats(session, c) for c in configs]
    return {"stats": stats, "count": len(stats)}
