"""
Job Status API

Lookup of tracked pipeline jobs and aggregate job statistics.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from src.persistence import JobStatus, JobTracker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/jobs", tags=["Jobs"])


def get_tracker(request: Request) -> JobTracker:
    return request.app.state.tracker


class JobResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    queue: str
    attempts: int
    max_attempts: int
    payload: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    available_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    history: List[Dict[str, Any]] = []


class JobStatsResponse(BaseModel):
    total_jobs: int
    by_status: Dict[str, int]
    by_kind: Dict[str, Dict[str, int]]
    active: int
    success_rate: float
    avg_duration_seconds: float


# Registered before /{job_id} so "stats" is not read as an id
@router.get("/stats", response_model=JobStatsResponse)
def job_stats(tracker: JobTracker = Depends(get_tracker)):
    """Counts per status and per kind, success rate, mean duration."""
    return tracker.get_job_stats()


@router.get("", response_model=List[JobResponse])
def list_jobs(
    kind: Optional[str] = None,
    status: Optional[JobStatus] = None,
    queue: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    tracker: JobTracker = Depends(get_tracker),
):
    """Most recent jobs first."""
    jobs = tracker.list_jobs(kind=kind, status=status, queue=queue, limit=limit)
    return [job.to_dict() for job in jobs]


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, tracker: JobTracker = Depends(get_tracker)):
    """Full record of one job, including its transition history."""
    job = tracker.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job.to_dict()
