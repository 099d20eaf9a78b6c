"""Webhook receiver: the push-path counterpart to the polling sweeper."""

import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from vibephoto.errors import InvalidInput, WebhookVerificationError
from vibephoto.models.job import JobKind
from vibephoto.services.reconciler import JobReconciler, ReconcileOutcome

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    outcome: ReconcileOutcome
    external_job_id: str


class WebhookReceiver:
    """Verify a provider notification and feed it to the reconciler.

    Redelivered notifications, and notifications for jobs a poll already
    settled, come back as ``IGNORED``; unknown jobs as ``NOT_FOUND``.  Both
    are acknowledged so the provider stops retrying.
    """

    def __init__(self, reconciler: JobReconciler) -> None:
        self._reconciler = reconciler

    async def receive(
        self,
        body: bytes,
        headers: Mapping[str, str],
        kind_hint: Optional[str] = None,
    ) -> WebhookResult:
        """Process one raw delivery.

        Raises:
            WebhookVerificationError: the signature did not verify.
            InvalidInput: the body is not a JSON object or has no job id.
        """
        kind = JobKind(kind_hint) if kind_hint in {k.value for k in JobKind} else JobKind.IMAGE
        adapter = self._reconciler.adapter_for(kind)

        if not adapter.verify_webhook(body, headers):
            logger.warning("Rejected webhook with invalid signature", extra={"kind": kind.value})
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise InvalidInput("Webhook body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise InvalidInput("Webhook body must be a JSON object")

        external_job_id, report = adapter.parse_webhook(payload)
        outcome = await self._reconciler.apply_status(
            external_job_id, report, source="webhook"
        )
        logger.info(
            "Webhook processed",
            extra={
                "external_job_id": external_job_id,
                "status": report.state.value,
                "outcome": outcome.value,
            },
        )
        return WebhookResult(outcome=outcome, external_job_id=external_job_id)
