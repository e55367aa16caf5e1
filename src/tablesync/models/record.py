"""Synced warehouse rows, stored as JSON documents keyed by natural key."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from tablesync.timeutil import utcnow


class SyncedRecord(SQLModel, table=True):
    """One remote row. (table_id, record_key) is the upsert identity."""

    __table_args__ = (UniqueConstraint("table_id", "record_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: str = Field(index=True)
    record_key: str = Field(index=True)
    whseid: Optional[str] = Field(default=None, index=True)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    synced_at: datetime = Field(default_factory=utcnow)
