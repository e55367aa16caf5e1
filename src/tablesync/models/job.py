"""Durable sync job record: status, control flags, progress and cursor."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel

from tablesync.timeutil import isoformat, utcnow


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.IN_PROGRESS})


class SyncJob(SQLModel, table=True):
    """
    One copy of one table's window into the document store.

    `paused` is orthogonal to `status` and only meaningful while the job is
    in_progress. `cursor` is the watermark of the last committed batch;
    `window_start`/`window_end` are fixed at creation so every invocation
    pages the same range.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True)
    table_id: str = Field(index=True)
    whseid: Optional[str] = None
    status: str = Field(default=JobStatus.PENDING.value, index=True)
    paused: bool = False

    cursor: Optional[str] = None
    window_start: Optional[str] = None
    window_end: Optional[str] = None

    # Progress stats
    total_records: int = 0
    processed_records: int = 0
    inserted_records: int = 0
    updated_records: int = 0

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_updated: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status) in TERMINAL_STATUSES

    def to_document(self) -> Dict[str, Any]:
        """Render the job in the layout the dashboard consumes."""
        doc: Dict[str, Any] = {
            "jobId": self.job_id,
            "tableId": self.table_id,
            "whseid": self.whseid,
            "status": self.status,
            "paused": self.paused,
            "cursor": self.cursor,
            "window": {"start": self.window_start, "end": self.window_end},
            "stats": {
                "totalRecords": self.total_records,
                "processedRecords": self.processed_records,
                "insertedRecords": self.inserted_records,
                "updatedRecords": self.updated_records,
            },
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "lastUpdated": isoformat(self.last_updated),
        }
        if self.error:
            doc["error"] = self.error
        return doc
