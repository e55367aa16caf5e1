"""Per-table sync configuration."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from tablesync.timeutil import isoformat, utcnow


class SyncConfig(SQLModel, table=True):
    """
    Parameterizes runs for one remote table. The orchestrator reads it and
    never writes it; the scheduler maintains the last_sync_* bookkeeping.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: str = Field(unique=True, index=True)
    table_name: str
    description: Optional[str] = None
    enabled: bool = False
    sync_frequency: int = 60  # minutes
    initial_sync: bool = True
    batch_size: int = 1000
    max_records: int = 10000
    # whseid, startDate, endDate, countFirst
    options: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    last_sync_date: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_job_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            "tableId": self.table_id,
            "tableName": self.table_name,
            "description": self.description,
            "enabled": self.enabled,
            "syncFrequency": self.sync_frequency,
            "initialSync": self.initial_sync,
            "batchSize": self.batch_size,
            "maxRecords": self.max_records,
            "options": dict(self.options or {}),
            "lastSyncDate": isoformat(self.last_sync_date),
            "lastSyncStatus": self.last_sync_status,
            "lastSyncJobId": self.last_sync_job_id,
        }
