"""Provider webhook endpoint.

Replicate retries deliveries that do not get a 2xx, so anything we can
safely absorb (duplicates, unknown jobs) is acknowledged with 200.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from vibephoto.api.errors import http_error
from vibephoto.deps import get_services
from vibephoto.errors import VibePhotoError
from vibephoto.services.reconciler import ReconcileOutcome
from vibephoto.wiring import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/replicate")
async def replicate_webhook(
    request: Request,
    kind: str | None = Query(default=None),
    job_id: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> dict:
    body = await request.body()
    try:
        result = await services.webhooks.receive(body, request.headers, kind_hint=kind)
    except VibePhotoError as exc:
        raise http_error(exc) from exc

    if job_id and result.outcome is ReconcileOutcome.NOT_FOUND:
        logger.warning(
            "Webhook for job %s matched no external id",
            job_id,
            extra={"external_job_id": result.external_job_id},
        )
    return {"received": True, "outcome": result.outcome.value}
