"""
Import submission endpoints.

Submissions are registered with the job tracker and processed in the
background; the response only carries the job id.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from backoffice.api.dependencies import get_source, get_tracker
from backoffice.api.schemas.shared import ImportSubmissionRequest, ImportSubmissionResponse
from backoffice.core.config import settings
from backoffice.domain.imports.jobs import DuplicateJobIdError, ImportJobTracker, ImportRequest
from backoffice.domain.imports.processors.file_ingestor import UnsupportedFormatError, detect_file_type
from backoffice.domain.imports.target_schemas import UnknownTargetSchemaError
from backoffice.integrations.storage import StorageError

router = APIRouter(tags=["imports"])

logger = logging.getLogger(__name__)


def _submit(tracker: ImportJobTracker, submission: ImportSubmissionRequest) -> ImportSubmissionResponse:
    request = ImportRequest(
        file_reference=submission.file_reference,
        file_name=submission.file_name,
        target_schema=submission.target_schema,
        idempotency_key=submission.idempotency_key,
        import_mode=submission.import_mode,
        job_id=submission.job_id,
        content_type=submission.content_type,
        to_number=submission.to_number,
    )
    try:
        job, created = tracker.submit(request)
    except DuplicateJobIdError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnknownTargetSchemaError as e:
        raise HTTPException(status_code=422, detail=str(e.args[0]))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ImportSubmissionResponse(job_id=job.job_id, status=job.status, created=created)


@router.post("/imports", status_code=202, response_model=ImportSubmissionResponse)
async def submit_import(
    submission: ImportSubmissionRequest,
    tracker: ImportJobTracker = Depends(get_tracker),
):
    """
    Queue an import for a file that is already staged.

    Returns immediately with the job id; resubmitting the same idempotency key
    returns the original job with ``created = false``.
    """
    logger.info(
        "Received import submission for '%s' -> %s (key=%s)",
        submission.file_name,
        submission.target_schema,
        submission.idempotency_key,
    )
    return _submit(tracker, submission)


@router.post("/imports/upload", status_code=202, response_model=ImportSubmissionResponse)
async def upload_and_import(
    file: UploadFile = File(...),
    target_schema: str = Form(...),
    idempotency_key: str = Form(...),
    import_mode: str = Form("amend"),
    job_id: Optional[str] = Form(None),
    to_number: Optional[str] = Form(None),
    tracker: ImportJobTracker = Depends(get_tracker),
    source=Depends(get_source),
):
    """
    Stage an uploaded file and queue its import in one call.

    Parameters:
    - file: CSV or Excel workbook
    - target_schema: Import target (e.g. ``pricelist``)
    - idempotency_key: Client key; repeats return the original job
    - import_mode: ``amend`` (default) or ``replace``
    - to_number: Transfer number for ``transfer-items`` imports
    """
    file_name = file.filename or "upload"
    try:
        detect_file_type(file_name)
    except UnsupportedFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    file_content = await file.read()
    max_bytes = settings.upload_max_file_size_mb * 1024 * 1024
    if len(file_content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {settings.upload_max_file_size_mb}MB upload limit",
        )

    try:
        submission = ImportSubmissionRequest(
            file_reference="pending",
            file_name=file_name,
            target_schema=target_schema,
            import_mode=import_mode,
            idempotency_key=idempotency_key,
            job_id=job_id,
            content_type=file.content_type,
            to_number=to_number,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    previous = tracker.get_by_idempotency_key(submission.idempotency_key)
    if previous is not None:
        logger.info("Upload for key %s matches job %s; skipping staging", submission.idempotency_key, previous.job_id)
        return ImportSubmissionResponse(job_id=previous.job_id, status=previous.status, created=False)

    existing = tracker.get(submission.job_id) if submission.job_id else None
    if existing is not None and existing.request.idempotency_key != submission.idempotency_key:
        raise HTTPException(status_code=409, detail=f"Job id '{submission.job_id}' is already registered")

    loop = asyncio.get_running_loop()
    try:
        staged = await loop.run_in_executor(None, source.stage_file, file_content, file_name)
    except StorageError as e:
        logger.error("Failed to stage upload '%s': %s", file_name, e)
        raise HTTPException(status_code=502, detail=str(e))

    logger.info("Staged upload '%s' as %s (%d bytes)", file_name, staged["file_reference"], len(file_content))
    submission = submission.model_copy(update={"file_reference": staged["file_reference"]})
    return _submit(tracker, submission)
