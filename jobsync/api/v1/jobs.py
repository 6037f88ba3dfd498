"""Job API: submit jobs, list and inspect them, cancel and delete."""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from jobsync.jobs.errors import (
    ErrorCategory,
    InvalidSubmission,
    StorageCapacityError,
    StoreError,
    SubmissionFailed,
    SubmissionRejected,
    classify_failure,
)
from jobsync.jobs.models import GenerationOptions, Job

router = APIRouter()

# Set by main.py during lifespan
_engine = None


def set_engine(engine):
    global _engine
    _engine = engine


def _require_engine():
    if _engine is None:
        raise HTTPException(status_code=503, detail="Job sync engine not initialized")
    return _engine


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobListResponse(BaseModel):
    jobs: List[Dict[str, Any]]
    total: int


def serialize_job(job: Job) -> Dict[str, Any]:
    response = {
        "job_id": job.id,
        "type": job.type.value,
        "status": job.status.value,
        "progress": {
            "stage": job.progress.stage,
            "percent": job.progress.percent,
            "message": job.progress.message,
            "current_step": job.progress.current_step,
            "total_steps": job.progress.total_steps,
            "eta": job.progress.eta,
        },
        "outputs": job.outputs,
        "manifest": job.manifest,
        "created_at": job.created_at.isoformat(),
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    category = classify_failure(job)
    if category is not None:
        response["error"] = job.error
        # Timeouts are expected outcomes, not alerts
        response["urgent"] = category != ErrorCategory.JOB_TIMEOUT
    return response


@router.post("/jobs", response_model=JobSubmitResponse)
async def submit_job(options: GenerationOptions):
    """Debit, persist and start a new generation job."""
    engine = _require_engine()
    try:
        job_id = await engine.submit(options)
    except SubmissionRejected as e:
        raise HTTPException(
            status_code=402, detail={"reason": e.reason.value, "message": str(e)}
        )
    except InvalidSubmission as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SubmissionFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return JobSubmitResponse(
        job_id=job_id,
        status="queued",
        message="Job submitted. Progress arrives by push or poll.",
    )


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    """Tracked jobs; a non-zero offset loads the next page from the store first."""
    engine = _require_engine()
    if offset:
        try:
            page, total = await engine.load_more(offset, limit)
        except StorageCapacityError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except StoreError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return JobListResponse(jobs=[serialize_job(j) for j in page], total=total)
    jobs = engine.jobs()
    return JobListResponse(jobs=[serialize_job(j) for j in jobs], total=len(jobs))


@router.post("/jobs/reload", response_model=JobListResponse)
async def reload_jobs(limit: Optional[int] = Query(None, ge=1, le=100)):
    engine = _require_engine()
    try:
        page, total = await engine.reload(limit)
    except StorageCapacityError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return JobListResponse(jobs=[serialize_job(j) for j in page], total=total)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    engine = _require_engine()
    job = engine.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return serialize_job(job)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    engine = _require_engine()
    if engine.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    await engine.cancel_job(job_id)
    return serialize_job(engine.get_job(job_id))


@router.delete("/jobs/{job_id}")
async def delete_job(job_id: str):
    engine = _require_engine()
    try:
        deleted = await engine.delete_job(job_id)
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"job_id": job_id, "deleted": True}


@router.delete("/jobs")
async def clear_finished_jobs():
    """Delete every completed or failed job."""
    engine = _require_engine()
    try:
        removed = await engine.clear_finished_jobs()
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"removed": removed}
