"""
Endpoints for tracking import job progress.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from backoffice.api.dependencies import get_tracker
from backoffice.api.schemas.shared import ImportJobInfo, ImportJobListResponse
from backoffice.domain.imports.jobs import STATUS_COMPLETED, ImportJob, ImportJobTracker
from backoffice.domain.imports.report import iter_error_report, report_file_name

router = APIRouter(tags=["import-jobs"])

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


def _get_job_or_404(tracker: ImportJobTracker, job_id: str) -> ImportJob:
    job = tracker.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _sse_event(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@router.get("/import-jobs/{job_id}", response_model=ImportJobInfo)
async def get_import_job_endpoint(job_id: str, tracker: ImportJobTracker = Depends(get_tracker)):
    job = _get_job_or_404(tracker, job_id)
    return ImportJobInfo(**job.to_dict())


@router.get("/import-jobs", response_model=ImportJobListResponse)
async def list_import_jobs_endpoint(
    status: Optional[str] = None,
    target_schema: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    tracker: ImportJobTracker = Depends(get_tracker),
):
    jobs = [
        job
        for job in tracker.list_jobs()
        if (status is None or job.status == status)
        and (target_schema is None or job.request.target_schema == target_schema)
    ]
    page = jobs[offset:offset + limit]
    return ImportJobListResponse(
        jobs=[ImportJobInfo(**job.to_dict(include_errors=False)) for job in page],
        total_count=len(jobs),
        limit=limit,
        offset=offset,
    )


@router.get("/import-jobs/{job_id}/events")
async def stream_import_job_events(job_id: str, tracker: ImportJobTracker = Depends(get_tracker)):
    """
    Server-sent events with the job's progress.

    The current snapshot is sent first, then every published update until the
    job reaches a terminal state.
    """
    job = _get_job_or_404(tracker, job_id)

    def event_stream():
        if job.is_terminal:
            yield _sse_event(job.to_dict(include_errors=False))
            return

        subscription = tracker.subscribe(job_id)
        try:
            yield _sse_event(job.to_dict(include_errors=False))
            while True:
                payload = subscription.get(timeout=KEEPALIVE_SECONDS)
                if payload is not None:
                    yield _sse_event(payload)
                    continue
                if subscription.closed:
                    break
                yield ": keep-alive\n\n"
        finally:
            tracker.unsubscribe(subscription)
            if subscription.dropped:
                logger.info("Progress stream for job %s dropped %d stale updates", job_id, subscription.dropped)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/import-jobs/{job_id}/errors.csv")
async def download_import_errors(job_id: str, tracker: ImportJobTracker = Depends(get_tracker)):
    """Error report for a completed job; 404 while running or when there is nothing to report."""
    job = _get_job_or_404(tracker, job_id)
    if job.status != STATUS_COMPLETED:
        raise HTTPException(status_code=404, detail="Error report is only available for completed jobs")
    errors = list(job.errors)
    if not errors:
        raise HTTPException(status_code=404, detail="Job completed without errors")

    return StreamingResponse(
        iter_error_report(errors),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report_file_name(job_id)}"'},
    )
