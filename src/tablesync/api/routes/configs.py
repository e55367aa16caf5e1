"""Per-table sync configuration routes."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from tablesync.api.deps import get_session
from tablesync.sync.configs import list_configs, update_config

router = APIRouter()


class ConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    description: Optional[str] = None
    syncFrequency: Optional[int] = Field(default=None, gt=0)
    initialSync: Optional[bool] = None
    batchSize: Optional[int] = Field(default=None, gt=0)
    maxRecords: Optional[int] = Field(default=None, gt=0)
    options: Optional[Dict[str, Any]] = None


_FIELD_NAMES = {
    "enabled": "enabled",
    "description": "description",
    "syncFrequency": "sync_frequency",
    "initialSync": "initial_sync",
    "batchSize": "batch_size",
    "maxRecords": "max_records",
    "options": "options",
}


@router.get("")
def get_configs(session: Session = Depends(get_session)):
    configs = list_configs(session)
    return {"configs": [c.to_document() for c in configs]}


@router.put("/{table_id}")
def put_config(table_id: str, body: ConfigUpdate, session: Session = Depends(get_session)):
    changes = {
        _FIELD_NAMES[name]: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None
    }
    return update_config(session, table_id, changes).to_document()
