"""
Lab Upload Routes - Upload, status, results and debug info.
"""

import logging
import uuid
from pathlib import Path
from typing import List, Optional
from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException
from sqlmodel import Session, select
from rq import Queue

from backend.core.config import get_settings
from backend.core.database import get_session
from backend.core.queue import enqueue_lab_upload, get_queue
from backend.models.db import LabUpload
from workers.biomarker_pipeline.exceptions import InvalidTransitionError
from workers.biomarker_pipeline.models import LabUploadStatus, can_transition
from workers.biomarker_pipeline.ranges import SUPPORTED_GENDERS
from workers.biomarker_pipeline.repository import remove_pdf, store_pdf

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/lab-uploads", tags=["Lab Uploads"])

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}


def _get_upload_or_404(session: Session, upload_id: str) -> LabUpload:
    upload = session.get(LabUpload, upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Lab upload not found")
    return upload


def _set_status(session: Session, upload: LabUpload, target: LabUploadStatus, **fields) -> LabUpload:
    """Commit a status change through the same state machine the worker uses."""
    current = LabUploadStatus(upload.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Upload {upload.id}: cannot move from '{current.value}' to '{target.value}'"
        )
    upload.status = target.value
    for name, value in fields.items():
        setattr(upload, name, value)
    session.add(upload)
    session.commit()
    logger.info(f"Upload {upload.id}: {current.value} -> {target.value}")
    return upload


@router.post("", response_model=LabUpload, status_code=201)
async def create_lab_upload(
    file: UploadFile = File(...),
    skip_verification: bool = Form(False),
    subject_gender: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    queue: Queue = Depends(get_queue)
):
    """
    Upload a lab report PDF and queue it for processing.

    ``subject_gender`` (male/female) comes from the user's profile and
    takes precedence over whatever gender the report itself shows.
    """
    filename = file.filename or "lab-result.pdf"
    if file.content_type not in PDF_CONTENT_TYPES and not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    gender = subject_gender.strip().lower() if subject_gender and subject_gender.strip() else None
    if gender is not None and gender not in SUPPORTED_GENDERS + ("other",):
        raise HTTPException(status_code=400, detail=f"Invalid subject_gender '{subject_gender}'")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    upload_id = str(uuid.uuid4())
    upload = LabUpload(
        id=upload_id,
        filename=filename,
        storage_path="",
        file_size=len(content),
        status=LabUploadStatus.PENDING.value,
        skip_verification=skip_verification,
        subject_gender=gender,
    )
    session.add(upload)
    session.commit()

    # Store the PDF
    _set_status(session, upload, LabUploadStatus.UPLOADING)

    storage_dir = Path(settings.storage.base_path) / settings.storage.bucket
    try:
        location = store_pdf(storage_dir, upload_id, filename, content)
    except OSError as e:
        logger.error(f"Failed to store upload {upload_id}: {e}", exc_info=True)
        _set_status(session, upload, LabUploadStatus.ERROR, error_message=f"Failed to store PDF: {e}")
        raise HTTPException(status_code=500, detail="Failed to store uploaded file")

    upload.storage_path = str(location)
    session.add(upload)
    session.commit()
    session.refresh(upload)

    enqueue_lab_upload(queue, upload_id)
    logger.info(f"Queued lab upload {upload_id} ({filename}, {len(content)} bytes)")
    return upload


@router.get("", response_model=List[LabUpload])
def list_lab_uploads(
    status: Optional[str] = None,
    session: Session = Depends(get_session)
):
    """Get all lab uploads, newest first."""
    query = select(LabUpload).order_by(LabUpload.created_at.desc())
    if status:
        query = query.where(LabUpload.status == status)
    return session.exec(query).all()


@router.get("/{upload_id}", response_model=LabUpload)
def get_lab_upload(upload_id: str, session: Session = Depends(get_session)):
    """Get a lab upload with its status and, once complete, its results."""
    return _get_upload_or_404(session, upload_id)


@router.get("/{upload_id}/debug")
def get_lab_upload_debug(upload_id: str, session: Session = Depends(get_session)):
    """Per-stage timing, counts and match details for an upload."""
    upload = _get_upload_or_404(session, upload_id)
    if upload.debug_info is None:
        raise HTTPException(status_code=409, detail="Debug info is not available until processing finishes")
    return {
        "id": upload.id,
        "status": upload.status,
        "debugInfo": upload.debug_info
    }


@router.post("/{upload_id}/reprocess", response_model=LabUpload, status_code=201)
def reprocess_lab_upload(
    upload_id: str,
    skip_verification: Optional[bool] = None,
    session: Session = Depends(get_session),
    queue: Queue = Depends(get_queue)
):
    """
    Run the pipeline again on a finished upload's PDF.

    Finished uploads are never revisited; the rerun is a new upload
    sharing the same stored file.
    """
    source = _get_upload_or_404(session, upload_id)
    if not LabUploadStatus(source.status).is_terminal:
        raise HTTPException(status_code=409, detail=f"Lab upload is still processing ({source.status})")
    if not source.storage_path or not Path(source.storage_path).is_file():
        raise HTTPException(status_code=409, detail="Stored PDF is no longer available")

    new_id = str(uuid.uuid4())
    storage_dir = Path(settings.storage.base_path) / settings.storage.bucket
    location = store_pdf(storage_dir, new_id, source.filename, Path(source.storage_path).read_bytes())

    upload = LabUpload(
        id=new_id,
        filename=source.filename,
        storage_path=str(location),
        file_size=source.file_size,
        status=LabUploadStatus.PENDING.value,
        skip_verification=source.skip_verification if skip_verification is None else skip_verification,
        subject_gender=source.subject_gender,
    )
    session.add(upload)
    session.commit()
    session.refresh(upload)

    enqueue_lab_upload(queue, new_id)
    logger.info(f"Queued reprocessing of {upload_id} as {new_id}")
    return upload


@router.delete("/{upload_id}")
def delete_lab_upload(upload_id: str, session: Session = Depends(get_session)):
    """
    Delete an upload and its stored PDF.

    A pipeline still running for it finishes its in-flight model calls
    and then discards their results.
    """
    upload = _get_upload_or_404(session, upload_id)
    was_running = not LabUploadStatus(upload.status).is_terminal
    storage_path = upload.storage_path

    session.delete(upload)
    session.commit()
    remove_pdf(storage_path)

    logger.info(f"Deleted lab upload {upload_id} (was running: {was_running})")
    return {"id": upload_id, "deleted": True, "cancelled_processing": was_running}
