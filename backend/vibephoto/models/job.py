"""Generation job models.

Two concrete tables share one shape through ``JobMixin``:

* ``ImageJob`` -- text-to-image generations and upscales
* ``VideoJob`` -- image/text-to-video generations

State lifecycle (forward only, terminal states are sticky):

    PENDING → STARTING → PROCESSING → COMPLETED
                                    ↘ FAILED
    (any in-flight state)           ↘ CANCELLED

``STARTING`` is only ever entered by video jobs.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vibephoto.models import Base, utcnow


class JobKind(str, Enum):
    IMAGE = "image"
    UPSCALE = "upscale"
    VIDEO = "video"


class JobState(str, Enum):
    PENDING = "PENDING"
    STARTING = "STARTING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


IN_FLIGHT_STATES: tuple[JobState, ...] = (
    JobState.PENDING,
    JobState.STARTING,
    JobState.PROCESSING,
)
TERMINAL_STATES: frozenset[JobState] = frozenset(
    {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}
)

# Rank used to keep in-flight transitions forward-only
STATE_RANK: dict[JobState, int] = {
    JobState.PENDING: 0,
    JobState.STARTING: 1,
    JobState.PROCESSING: 2,
    JobState.COMPLETED: 3,
    JobState.FAILED: 3,
    JobState.CANCELLED: 3,
}


def _new_job_id() -> str:
    return uuid.uuid4().hex


class JobMixin:
    # --- Identity ---
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_job_id)
    # Assigned by the provider once submit() succeeds
    external_job_id: Mapped[str | None] = mapped_column(
        String(128), unique=True, index=True, default=None
    )
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    kind: Mapped[str] = mapped_column(String(20))

    # --- Status tracking ---
    state: Mapped[str] = mapped_column(
        String(20), default=JobState.PENDING.value, index=True
    )
    # Last raw status the provider reported (cosmetic)
    provider_status: Mapped[str | None] = mapped_column(String(30), default=None)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    last_polled_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    estimated_completion_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=None
    )

    # --- Request payload ---
    prompt: Mapped[str] = mapped_column(Text, default="")
    params: Mapped[dict | None] = mapped_column(JSON, default=None)
    source_image_url: Mapped[str | None] = mapped_column(String(2048), default=None)

    # --- Results (only set on entry into COMPLETED) ---
    result_urls: Mapped[list | None] = mapped_column(JSON, default=None)
    thumbnail_urls: Mapped[list | None] = mapped_column(JSON, default=None)

    # --- Failure (only set on entry into FAILED) ---
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    error_code: Mapped[str | None] = mapped_column(String(50), default=None)

    # --- Billing ---
    credits_reserved: Mapped[int] = mapped_column(Integer, default=0)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    @property
    def job_kind(self) -> JobKind:
        return JobKind(self.kind)

    @property
    def job_state(self) -> JobState:
        return JobState(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.job_state in TERMINAL_STATES


class ImageJob(JobMixin, Base):
    __tablename__ = "image_jobs"

    num_outputs: Mapped[int] = mapped_column(Integer, default=1)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="1:1")
    scale_factor: Mapped[int | None] = mapped_column(Integer, default=None)


class VideoJob(JobMixin, Base):
    __tablename__ = "video_jobs"

    duration: Mapped[int] = mapped_column(Integer, default=5)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="16:9")
    quality: Mapped[str] = mapped_column(String(20), default="standard")
    negative_prompt: Mapped[str | None] = mapped_column(Text, default=None)


Job = ImageJob | VideoJob

JOB_MODELS: tuple[type[ImageJob] | type[VideoJob], ...] = (ImageJob, VideoJob)


def model_for(kind: JobKind | str) -> type[ImageJob] | type[VideoJob]:
    """Return the table class that stores jobs of ``kind``."""
    return VideoJob if JobKind(kind) is JobKind.VIDEO else ImageJob
