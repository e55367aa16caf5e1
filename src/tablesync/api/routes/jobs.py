"""Job status and control routes used by the dashboard."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from tablesync.api.deps import get_engine_dep, get_session
from tablesync.api.middleware import error_response
from tablesync.db.job_store import JobStore
from tablesync.errors import ValidationError
from tablesync.models.job import JobStatus
from tablesync.sync.control import ControlPlane

router = APIRouter()


class ControlRequest(BaseModel):
    jobId: Optional[str] = None
    action: Optional[str] = None


@router.post("/control")
def control_job(request: ControlRequest, engine=Depends(get_engine_dep)):
    """Apply pause, resume or stop to a job. Takes effect at the next batch boundary."""
    result = ControlPlane(engine).apply(request.jobId, request.action)
    return result.to_response()


@router.api_route("/control", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def control_method_not_allowed():
    return error_response(405, "Method not allowed. Use POST.")


@router.get("")
def list_jobs(
    status: Optional[str] = None,
    tableId: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    if status is not None:
        valid = [s.value for s in JobStatus]
        if status not in valid:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(valid)}")
    jobs = JobStore(session).list(status=status, table_id=tableId, limit=limit)
    return {"jobs": [job.to_document() for job in jobs], "count": len(jobs)}


@router.get("/{job_id}")
def get_job(job_id: str, session: Session = Depends(get_session)):
    return JobStore(session).require(job_id).to_document()
