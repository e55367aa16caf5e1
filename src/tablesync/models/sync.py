"""Sync history model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from tablesync.timeutil import isoformat, utcnow


class SyncHistory(SQLModel, table=True):
    """One row per job that reached a terminal status, for audit and the dashboard."""

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: str = Field(index=True)
    table_name: str
    job_id: str = Field(index=True)
    status: str  # "completed", "failed", "stopped"
    started_at: Optional[datetime] = None
    finished_at: datetime = Field(default_factory=utcnow)
    duration_seconds: Optional[float] = None
    records_processed: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    error_message: Optional[str] = None

    def to_document(self) -> dict:
        return {
            "tableId": self.table_id,
            "tableName": self.table_name,
            "jobId": self.job_id,
            "status": self.status,
            "startTime": isoformat(self.started_at),
            "endTime": isoformat(self.finished_at),
            "duration": self.duration_seconds,
            "recordsProcessed": self.records_processed,
            "recordsInserted": self.records_inserted,
            "recordsUpdated": self.records_updated,
            "error": self.error_message,
        }
