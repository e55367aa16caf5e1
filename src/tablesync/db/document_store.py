"""
DocumentStore: synced warehouse rows keyed by (table_id, record_key).

Upserts are idempotent: writing the same document twice leaves one row and
reports the second write as unchanged.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from tablesync.errors import StoreError
from tablesync.models.record import SyncedRecord
from tablesync.timeutil import utcnow

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class DocumentStore:
    def __init__(self, session: Session):
        self.session = session

    def upsert(
        self,
        table_id: str,
        key: str,
        whseid: Optional[str],
        data: Dict[str, Any],
    ) -> UpsertOutcome:
        """
        Insert or replace one document. Does not commit; the orchestrator
        commits a whole batch before advancing the cursor.
        """
        try:
            existing = self.session.exec(
                select(SyncedRecord)
                .where(SyncedRecord.table_id == table_id)
                .where(SyncedRecord.record_key == key)
            ).first()

            if existing is None:
                self.session.add(
                    SyncedRecord(table_id=table_id, record_key=key, whseid=whseid, data=data)
                )
                # Flush so a duplicate key later in the same batch finds this row
                self.session.flush()
                return UpsertOutcome.INSERTED

            if existing.data == data and existing.whseid == whseid:
                return UpsertOutcome.UNCHANGED

            existing.data = data
            existing.whseid = whseid
            existing.synced_at = utcnow()
            self.session.add(existing)
            self.session.flush()
            return UpsertOutcome.UPDATED
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"Upsert failed for {table_id}/{key}: {exc}") from exc

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"Commit failed: {exc}") from exc

    def rollback(self) -> None:
        self.session.rollback()

    def find(self, table_id: str, **filters: Any) -> List[Dict[str, Any]]:
        """Documents of one table whose fields equal every filter value."""
        stmt = select(SyncedRecord).where(SyncedRecord.table_id == table_id)
        if "whseid" in filters:
            stmt = stmt.where(SyncedRecord.whseid == filters.pop("whseid"))
        rows = self.session.exec(stmt.order_by(SyncedRecord.id)).all()
        return [
            r.data for r in rows
            if all((r.data or {}).get(k) == v for k, v in filters.items())
        ]

    def count(self, table_id: str) -> int:
        return self.session.exec(
            select(func.count()).select_from(SyncedRecord).where(SyncedRecord.table_id == table_id)
        ).one()
