"""Replicate predictions API client shared by every Replicate-hosted family.

Family subclasses only decide which model to call and how a ``JobSpec`` is
turned into the model's ``input`` object; submission, polling, cancellation
and webhook handling are identical across models.
"""

import base64
import hashlib
import hmac
import logging
import time
from abc import abstractmethod
from typing import Any, Mapping, Optional

import httpx

from vibephoto.errors import (
    AuthError,
    InvalidInput,
    ProviderTransientError,
    ProviderUnavailable,
    QuotaExceeded,
    RateLimited,
    SubmissionError,
)
from vibephoto.providers.base import JobSpec, ProviderAdapter, StatusReport, Submission
from vibephoto.services.status_mapper import ProviderState

logger = logging.getLogger(__name__)

# Signed webhook timestamps older than this are rejected as replays
WEBHOOK_TOLERANCE_SECONDS = 300


def normalize_outputs(output: Any) -> list[str]:
    """Flatten the shapes Replicate models return into a list of URLs."""
    if output is None:
        return []
    if isinstance(output, str):
        return [output]
    if isinstance(output, dict):
        images = output.get("images") or output.get("output")
        return normalize_outputs(images)
    if isinstance(output, (list, tuple)):
        return [item for item in output if isinstance(item, str) and item]
    return []


def classify_submit_error(status_code: int, detail: str) -> SubmissionError:
    """Map a non-2xx create-prediction response onto the submission taxonomy."""
    lowered = detail.lower()
    if status_code in (401, 403):
        return AuthError(f"Replicate rejected the API token ({status_code})")
    if status_code == 429:
        return RateLimited("Replicate rate limit exceeded")
    if status_code == 402 or "quota" in lowered or "billing" in lowered:
        return QuotaExceeded(detail or "Replicate quota exceeded")
    if status_code == 404:
        return InvalidInput(f"Model not found: {detail}")
    if status_code in (400, 422) or "input" in lowered or "validation" in lowered:
        return InvalidInput(detail or "Invalid input")
    return ProviderUnavailable(f"Replicate returned {status_code}: {detail}")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("title") or data)[:500]
    return str(data)[:500]


class ReplicateAdapter(ProviderAdapter):
    name = "replicate"

    BASE_URL = "https://api.replicate.com/v1"

    def __init__(
        self,
        api_token: str,
        model: str,
        *,
        webhook_secret: str = "",
        submit_timeout: float = 60.0,
        poll_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_token = api_token
        self.model = model
        self.webhook_secret = webhook_secret
        self.submit_timeout = submit_timeout
        self.poll_timeout = poll_timeout
        self._transport = transport

    @abstractmethod
    def build_input(self, spec: JobSpec) -> dict[str, Any]:
        """Translate a job spec into the model's ``input`` payload."""

    # ----- HTTP plumbing -----

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self._headers(),
            timeout=timeout,
            transport=self._transport,
        )

    def _create_request(self, spec: JobSpec, webhook_url: Optional[str]) -> tuple[str, dict]:
        payload: dict[str, Any] = {"input": self.build_input(spec)}
        if webhook_url:
            payload["webhook"] = webhook_url
            payload["webhook_events_filter"] = ["start", "completed"]
        # Pinned community models are addressed by version hash
        if ":" in self.model:
            payload["version"] = self.model.split(":", 1)[1]
            return "/predictions", payload
        return f"/models/{self.model}/predictions", payload

    def _report_from_prediction(self, data: dict[str, Any]) -> StatusReport:
        raw_status = data.get("status")
        state = ProviderState.parse(raw_status)
        error = data.get("error")
        return StatusReport(
            state=state,
            outputs=normalize_outputs(data.get("output")) if state is ProviderState.SUCCEEDED else [],
            error_message=str(error) if error else None,
            progress=100 if state is ProviderState.SUCCEEDED else None,
            raw_status=raw_status,
        )

    # ----- Capability interface -----

    async def submit(self, spec: JobSpec, webhook_url: Optional[str] = None) -> Submission:
        path, payload = self._create_request(spec, webhook_url)
        try:
            async with self._client(self.submit_timeout) as client:
                response = await client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable("Replicate request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Replicate unreachable: {exc}") from exc

        if response.status_code not in (200, 201, 202):
            detail = _error_detail(response)
            logger.warning(
                "Replicate rejected prediction",
                extra={"model": self.model, "status_code": response.status_code, "detail": detail},
            )
            raise classify_submit_error(response.status_code, detail)

        data = response.json()
        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderUnavailable("Replicate response did not include a prediction id")

        report = self._report_from_prediction(data)
        logger.info(
            "Replicate prediction created",
            extra={"model": self.model, "prediction_id": prediction_id, "status": report.raw_status},
        )
        return Submission(
            external_job_id=prediction_id,
            state=report.state,
            outputs=report.outputs,
            error_message=report.error_message,
        )

    async def poll_status(self, external_job_id: str) -> StatusReport:
        try:
            async with self._client(self.poll_timeout) as client:
                response = await client.get(f"/predictions/{external_job_id}")
        except httpx.HTTPError as exc:
            raise ProviderTransientError(f"Polling {external_job_id} failed: {exc}") from exc

        if response.status_code != 200:
            raise ProviderTransientError(
                f"Polling {external_job_id} returned {response.status_code}: {_error_detail(response)}"
            )
        return self._report_from_prediction(response.json())

    async def cancel(self, external_job_id: str) -> bool:
        try:
            async with self._client(self.poll_timeout) as client:
                response = await client.post(f"/predictions/{external_job_id}/cancel")
        except httpx.HTTPError:
            logger.warning("Replicate cancel failed", extra={"prediction_id": external_job_id}, exc_info=True)
            return False
        if response.status_code >= 400:
            logger.warning(
                "Replicate cancel rejected",
                extra={"prediction_id": external_job_id, "status_code": response.status_code},
            )
            return False
        return True

    # ----- Webhooks -----

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Check a Standard-Webhooks signature (``webhook-id``, ``webhook-timestamp``,
        ``webhook-signature``) against the configured ``whsec_`` secret.

        Without a configured secret every delivery is accepted, which is only
        appropriate for local development.
        """
        if not self.webhook_secret:
            logger.warning("Replicate webhook secret not configured; skipping verification")
            return True

        webhook_id = headers.get("webhook-id")
        timestamp = headers.get("webhook-timestamp")
        signature_header = headers.get("webhook-signature")
        if not (webhook_id and timestamp and signature_header):
            return False

        try:
            sent_at = int(timestamp)
        except ValueError:
            return False
        if abs(time.time() - sent_at) > WEBHOOK_TOLERANCE_SECONDS:
            return False

        secret = self.webhook_secret
        if secret.startswith("whsec_"):
            secret = secret[len("whsec_"):]
        try:
            key = base64.b64decode(secret)
        except ValueError:
            logger.error("Replicate webhook secret is not valid base64")
            return False

        signed = f"{webhook_id}.{timestamp}.".encode() + body
        expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()

        for candidate in signature_header.split():
            _, _, sig = candidate.partition(",")
            if sig and hmac.compare_digest(sig, expected):
                return True
        return False

    def parse_webhook(self, payload: dict[str, Any]) -> tuple[str, StatusReport]:
        prediction_id = payload.get("id")
        if not prediction_id:
            raise InvalidInput("Webhook payload has no prediction id")
        return str(prediction_id), self._report_from_prediction(payload)
