"""
Per-table sync configuration: defaults, updates, schedule checks and the
bookkeeping written back after each scheduled run.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from tablesync.errors import NotFoundError, ValidationError
from tablesync.models.config import SyncConfig
from tablesync.models.job import JobStatus, SyncJob
from tablesync.sync.tables import TABLES, get_table_spec
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
DEFAULT_MAX_RECORDS = 10000
DEFAULT_SYNC_FREQUENCY = 60  # minutes

_UPDATABLE = {
    "enabled",
    "sync_frequency",
    "initial_sync",
    "batch_size",
    "max_records",
    "options",
    "description",
}


def init_default_configs(session: Session) -> List[SyncConfig]:
    """Create a disabled config for every known table that has none. Idempotent."""
    existing = {c.table_id for c in session.exec(select(SyncConfig)).all()}
    created = []
    for spec in TABLES.values():
        if spec.table_id in existing:
            continue
        config = SyncConfig(
            table_id=spec.table_id,
            table_name=spec.table_name,
            description=spec.description,
            enabled=False,
            sync_frequency=DEFAULT_SYNC_FREQUENCY,
            initial_sync=True,
            batch_size=DEFAULT_BATCH_SIZE,
            max_records=DEFAULT_MAX_RECORDS,
            options={},
        )
        session.add(config)
        created.append(config)
    if created:
        session.commit()
        logger.info("Seeded sync configs: %s", ", ".join(c.table_id for c in created))
    return created


def list_configs(session: Session, enabled_only: bool = False) -> List[SyncConfig]:
    stmt = select(SyncConfig)
    if enabled_only:
        stmt = stmt.where(SyncConfig.enabled == True)  # noqa: E712
    return list(session.exec(stmt.order_by(SyncConfig.table_id)).all())


def get_config(session: Session, table_id: str) -> Optional[SyncConfig]:
    return session.exec(select(SyncConfig).where(SyncConfig.table_id == table_id)).first()


def update_config(session: Session, table_id: str, changes: Dict[str, Any]) -> SyncConfig:
    """
    Apply field changes to one config.

    Raises:
        ValidationError: unknown table, unknown field, or an invalid value.
        NotFoundError: the table has no config row yet.
    """
    get_table_spec(table_id)
    unknown = set(changes) - _UPDATABLE
    if unknown:
        raise ValidationError(f"Cannot update config fields: {', '.join(sorted(unknown))}")
    for name in ("sync_frequency", "batch_size", "max_records"):
        if name in changes and (changes[name] is None or int(changes[name]) < 1):
            raise ValidationError(f"{name} must be a positive integer")

    config = get_config(session, table_id)
    if config is None:
        raise NotFoundError(f"No sync config for table {table_id}")

    for name, value in changes.items():
        if name == "options":
            value = {**(config.options or {}), **(value or {})}
        setattr(config, name, value)
    config.updated_at = utcnow()
    session.add(config)
    session.commit()
    session.refresh(config)
    return config


def is_sync_due(config: SyncConfig, now: Optional[datetime] = None) -> bool:
    """Initial syncs and never-synced tables are always due; otherwise every sync_frequency minutes."""
    if config.initial_sync or config.last_sync_date is None:
        return True
    now = now or utcnow()
    minutes_since = (now - config.last_sync_date).total_seconds() / 60
    return minutes_since >= config.sync_frequency


def effective_config(config: SyncConfig, overrides: Optional[Dict[str, Any]] = None) -> SyncConfig:
    """
    Detached copy of `config` with per-run overrides applied.

    Recognised overrides: whseid, startDate, endDate, countFirst (merged
    into options), batchSize, maxRecords.
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    options = dict(config.options or {})
    for key in ("whseid", "startDate", "endDate", "countFirst"):
        if key in overrides:
            options[key] = overrides[key]
    return SyncConfig(
        table_id=config.table_id,
        table_name=config.table_name,
        description=config.description,
        enabled=config.enabled,
        sync_frequency=config.sync_frequency,
        initial_sync=config.initial_sync,
        batch_size=overrides.get("batchSize", config.batch_size),
        max_records=overrides.get("maxRecords", config.max_records),
        options=options,
        last_sync_date=config.last_sync_date,
        last_sync_status=config.last_sync_status,
        last_sync_job_id=config.last_sync_job_id,
    )


def record_sync_result(session: Session, table_id: str, job: SyncJob) -> Optional[SyncConfig]:
    """Write last_sync_* from a job; a completed job also ends the initial sync."""
    config = get_config(session, table_id)
    if config is None:
        return None
    config.last_sync_job_id = job.job_id
    config.last_sync_status = job.status
    if job.is_terminal:
        config.last_sync_date = job.end_time or utcnow()
    if job.status == JobStatus.COMPLETED.value:
        config.initial_sync = False
    config.updated_at = utcnow()
    session.add(config)
    session.commit()
    session.refresh(config)
    return config
