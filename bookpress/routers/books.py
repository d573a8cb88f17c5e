"""Book upload endpoints: enqueue an EPUB, report its status, cancel it."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from bookpress.config import Settings, get_settings
from bookpress.dependencies import get_jobs, get_processor
from bookpress.errors import AlreadyProcessing
from bookpress.models.book import JobStatus, UploadAccepted
from bookpress.services.jobs import BookJobs
from bookpress.services.pipeline import BookProcessor

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post(
    "/books",
    response_model=UploadAccepted,
    status_code=202,
    summary="Publish an EPUB as a series of linked pages",
    description=(
        "Send the raw `.epub` bytes as the request body. The book is processed "
        "in the background; poll `GET /books/{user_id}` for the page URLs.\n\n"
        "Only one book per user is processed at a time: a second upload while "
        "the first is running is rejected with 409."
    ),
)
@limiter.limit("5/minute")
async def upload_book(
    request: Request,
    user_id: str = Query(..., min_length=1, description="Caller-side user id."),
    filename: str = Query(..., min_length=1, description="Original file name, used as the title fallback."),
    settings: Settings = Depends(get_settings),
    jobs: BookJobs = Depends(get_jobs),
    processor: BookProcessor = Depends(get_processor),
) -> UploadAccepted:
    if settings.admin_ids and user_id not in settings.admin_ids:
        logger.warning("Upload rejected for user %s – not on the allow-list", user_id)
        raise HTTPException(status_code=403, detail="User is not allowed to upload books.")
    if not filename.lower().endswith(".epub"):
        raise HTTPException(status_code=400, detail="Only .epub files are supported.")

    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Request body is empty.")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File is too large.")

    try:
        jobs.submit(user_id, filename, lambda: processor.process_archive(data, filename))
    except AlreadyProcessing as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    logger.info("Upload accepted: %r (%d bytes) for user %s", filename, len(data), user_id)
    return UploadAccepted(user_id=user_id, filename=filename)


@router.get("/books/{user_id}", response_model=JobStatus, summary="Status of a user's latest book")
async def book_status(user_id: str, jobs: BookJobs = Depends(get_jobs)) -> JobStatus:
    status = jobs.status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No book submitted for this user.")
    return status


@router.delete("/books/{user_id}", status_code=202, summary="Cancel a user's running book")
async def cancel_book(user_id: str, jobs: BookJobs = Depends(get_jobs)) -> dict:
    if not jobs.cancel(user_id):
        raise HTTPException(status_code=404, detail="No book is being processed for this user.")
    logger.info("Cancellation requested for user %s", user_id)
    return {"user_id": user_id, "status": "cancelling"}
