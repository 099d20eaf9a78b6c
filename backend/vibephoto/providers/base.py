"""Capability interface every provider family implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from vibephoto.models.job import JobKind
from vibephoto.services.status_mapper import ProviderState


@dataclass
class JobSpec:
    """What the user asked for. Validated and priced by ``services.pricing``."""

    kind: JobKind
    owner_id: int
    prompt: str = ""
    num_outputs: int = 1
    aspect_ratio: Optional[str] = None
    seed: Optional[int] = None
    source_image_url: Optional[str] = None
    scale_factor: Optional[int] = None
    duration: Optional[int] = None
    quality: Optional[str] = None
    negative_prompt: Optional[str] = None
    params: dict = field(default_factory=dict)


@dataclass
class Submission:
    external_job_id: str
    state: ProviderState
    outputs: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    estimated_seconds: Optional[int] = None


@dataclass
class StatusReport:
    state: ProviderState
    outputs: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    progress: Optional[int] = None
    raw_status: Optional[str] = None


class ProviderAdapter(ABC):
    """One implementation per provider family (image, upscale, video).

    Adapters never retry: transient failures surface as
    ``ProviderTransientError`` and the sweeper decides when to try again.
    """

    name: str
    kind: JobKind

    @abstractmethod
    async def submit(self, spec: JobSpec, webhook_url: Optional[str] = None) -> Submission:
        """Start a remote job. Raises a ``SubmissionError`` subclass on failure."""

    @abstractmethod
    async def poll_status(self, external_job_id: str) -> StatusReport:
        """Side-effect-free status read. Safe to call any number of times."""

    @abstractmethod
    async def cancel(self, external_job_id: str) -> bool:
        """Best-effort remote cancel. Returns False on failure, never raises."""

    # Webhook delivery is optional. An adapter that does not override these
    # rejects every delivery at verify_webhook, so parse_webhook is never
    # reached and the job is settled by polling alone.

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Authenticate a raw delivery. The default accepts nothing."""
        return False

    def parse_webhook(self, payload: dict[str, Any]) -> tuple[str, StatusReport]:
        """Extract ``(external_job_id, report)`` from a verified payload."""
        raise NotImplementedError(f"{self.name} does not accept webhooks")
