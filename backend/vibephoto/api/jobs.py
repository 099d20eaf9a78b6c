"""Jobs API: create, poll, cancel and delete generation jobs.

Implements:
  POST   /api/jobs/images           : text-to-image generation
  POST   /api/jobs/upscales         : image upscale
  POST   /api/jobs/videos           : text/image-to-video generation
  GET    /api/jobs                  : list the user's jobs, newest first
  GET    /api/jobs/{job_id}         : poll a single job
  POST   /api/jobs/{job_id}/cancel  : cancel an in-flight job and refund it
  POST   /api/jobs/{job_id}/refresh : check the provider now
  DELETE /api/jobs/{job_id}         : delete a finished job and its media
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from vibephoto.api.errors import http_error
from vibephoto.api.schemas import (
    ImageJobRequest,
    JobListResponse,
    JobResponse,
    UpscaleJobRequest,
    VideoJobRequest,
)
from vibephoto.deps import get_current_user, get_services
from vibephoto.errors import StorageError, VibePhotoError
from vibephoto.models.job import JobKind
from vibephoto.models.user import User
from vibephoto.providers.base import JobSpec
from vibephoto.services.storage import job_prefix
from vibephoto.wiring import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


async def _create(services: Services, spec: JobSpec) -> JobResponse:
    try:
        job = await services.reconciler.create(spec)
    except VibePhotoError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post("/images", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_image_job(
    body: ImageJobRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    """Debit credits and start an image generation.

    Returns 402 when the balance is too low (no job is created).  A job whose
    submission the provider rejected is returned as FAILED and already refunded.
    """
    return await _create(services, body.to_spec(current_user.id))


@router.post("/upscales", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_upscale_job(
    body: UpscaleJobRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    return await _create(services, body.to_spec(current_user.id))


@router.post("/videos", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_video_job(
    body: VideoJobRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    return await _create(services, body.to_spec(current_user.id))


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get("", response_model=JobListResponse)
def list_jobs(
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
    kind: JobKind | None = Query(default=None),
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> JobListResponse:
    """List the authenticated user's jobs, newest first."""
    db = services.session_factory()
    try:
        jobs, total = services.jobs.list_for_owner(
            db, current_user.id, kind=kind, page=page, page_size=page_size
        )
        payload = [JobResponse.from_job(j) for j in jobs]
    finally:
        db.close()

    total_pages = max(1, (total + page_size - 1) // page_size)
    return JobListResponse(
        jobs=payload,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    """Return the current state of a single job owned by the caller."""
    try:
        job = services.reconciler.get(job_id, current_user.id)
    except VibePhotoError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


# ---------------------------------------------------------------------------
# Control
# ---------------------------------------------------------------------------


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    """Cancel an in-flight job. Returns 409 if it already finished."""
    try:
        job = await services.reconciler.cancel(job_id, current_user.id)
    except VibePhotoError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


@router.post("/{job_id}/refresh", response_model=JobResponse)
async def refresh_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JobResponse:
    """Ask the provider for the job's status instead of waiting for a sweep.

    Returns 503 when the provider cannot be reached; the job is unchanged.
    """
    try:
        job = await services.reconciler.refresh(job_id, current_user.id)
    except VibePhotoError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a finished job",
    description=(
        "Permanently deletes a job record and its stored media. "
        "Only jobs in a terminal state may be deleted."
    ),
)
def delete_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Response:
    """Returns 204 on success, 404/403 on ownership failures, 409 while in flight."""
    db = services.session_factory()
    try:
        job = services.jobs.get_by_id(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        if job.owner_id != current_user.id:
            raise HTTPException(status_code=403, detail="Forbidden")
        if not job.is_terminal:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Job cannot be deleted while it is still running",
            )
        services.jobs.delete(db, job)
    finally:
        db.close()

    # The row is gone; leftover media is only a storage cost
    try:
        services.storage.delete_prefix(job_prefix(current_user.id, job_id))
    except StorageError:
        logger.exception("Failed to delete stored media for job %s", job_id)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
