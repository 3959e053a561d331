"""Import job endpoints: trigger a slice, inspect a job, cancel it."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from efdloader.core.exceptions import EfdLoaderError, FileStoreError
from efdloader.ingest.scheduler import ChunkScheduler
from efdloader.models.job import CANCELLED_BY_USER, ImportJob
from efdloader.orchestration.dispatchers import LocalSliceDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])


def _scheduler(request: Request) -> ChunkScheduler:
    return request.app.state.scheduler


def _load(scheduler: ChunkScheduler, job_id: str) -> ImportJob:
    job = scheduler.job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return job


def _run_slice(scheduler: ChunkScheduler, job_id: str) -> None:
    """Run one slice; with in-process dispatch, keep going until nothing is queued."""
    try:
        scheduler.process(job_id)
        if isinstance(scheduler.dispatcher, LocalSliceDispatcher):
            ran = scheduler.dispatcher.drain(scheduler.process)
            logger.debug("Job %s: ran %d follow-up slices in process", job_id, ran)
    except EfdLoaderError:
        logger.exception("Job %s: background slice failed", job_id)


def _summary(job: ImportJob) -> dict:
    return {
        "job_id": job.job_id,
        "status": job.status,
        "progress": job.progress,
        "chunk_number": job.chunk_number,
        "bytes_processed": job.bytes_processed,
        "file_size": job.file_size,
        "total_lines_processed": job.total_lines_processed,
        "inserted": job.counts.inserted,
        "branches_created": job.counts.branches_created,
        "refresh_success": job.counts.refresh_success,
        "error_message": job.error_message,
        "completed_at": job.completed_at,
    }


@router.post("/{job_id}/process", status_code=status.HTTP_202_ACCEPTED)
async def process_job(job_id: str, request: Request, background: BackgroundTasks) -> dict:
    """Accept a job and run its next slice in the background."""
    scheduler = _scheduler(request)
    job = _load(scheduler, job_id)
    background.add_task(_run_slice, scheduler, job_id)
    return {"job_id": job_id, "status": job.status, "accepted": True}


@router.get("/{job_id}")
async def get_job(job_id: str, request: Request) -> dict:
    return _summary(_load(_scheduler(request), job_id))


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, request: Request) -> dict:
    """Cancel a pending or processing job and drop its uploaded file."""
    scheduler = _scheduler(request)
    job = _load(scheduler, job_id)
    if not scheduler.job_store.cancel_job(job_id, CANCELLED_BY_USER):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} is {job.status} and cannot be cancelled",
        )
    try:
        scheduler.file_store.delete(job.file_path)
    except FileStoreError:
        logger.warning("Job %s: could not delete %s", job_id, job.file_path, exc_info=True)
    return {"job_id": job_id, "status": "cancelled"}
