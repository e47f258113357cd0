"""Jobs API - submit, list, check status, cancel reconciliation jobs."""
from uuid import UUID
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone

from coursevault.database import get_db
from coursevault.models.job import Job
from coursevault.schemas.job import JobCreate, JobResponse
from coursevault.services.reconciler import JobOptions, is_destructive

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def submit_job(
    body: JobCreate,
    db: AsyncSession = Depends(get_db),
):
    """Queue a reconciliation job.

    There is no interactive confirmation over HTTP, so destructive runs
    must say force=true explicitly.
    """
    params = body.params.model_dump()
    if is_destructive(body.job_type, JobOptions.from_params(params)) and not params["force"]:
        raise HTTPException(400, f"{body.job_type} with clearAll requires force=true")
    job = Job(job_type=body.job_type, params=params)
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    status: Optional[str] = Query(None),
    job_type: Optional[str] = Query(None, alias="jobType"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List jobs, optionally filtered by status or type."""
    query = select(Job).order_by(desc(Job.created_at)).limit(limit).offset(offset)
    if status:
        query = query.where(Job.status == status)
    if job_type:
        query = query.where(Job.job_type == job_type)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get job status, progress and, once finished, the run summary."""
    job = await db.get(Job, job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return job


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """Cancel a queued or running job. A running job stops at the next item."""
    from coursevault.services.job_worker import mark_job_cancelled

    job = await db.get(Job, job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    if job.status in ("completed", "failed"):
        raise HTTPException(400, f"Cannot cancel job in '{job.status}' state")
    if job.status != "cancelled":
        job.status = "cancelled"
        job.completed_at = datetime.now(timezone.utc)
        await db.commit()
    mark_job_cancelled(job_id)
    return {"id": str(job_id), "status": "cancelled"}
