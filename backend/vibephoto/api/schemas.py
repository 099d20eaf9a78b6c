"""Request and response schemas shared by the job routers."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from vibephoto.models.job import Job, JobKind
from vibephoto.providers.base import JobSpec
from vibephoto.services.status_mapper import to_provider_status


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ImageJobRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=2000)
    num_outputs: int = Field(default=1, ge=1, le=4)
    aspect_ratio: str = "1:1"
    seed: int | None = None
    params: dict = Field(default_factory=dict)

    def to_spec(self, owner_id: int) -> JobSpec:
        return JobSpec(
            kind=JobKind.IMAGE,
            owner_id=owner_id,
            prompt=self.prompt,
            num_outputs=self.num_outputs,
            aspect_ratio=self.aspect_ratio,
            seed=self.seed,
            params=self.params,
        )


class UpscaleJobRequest(BaseModel):
    image_url: str = Field(min_length=1)
    scale_factor: Literal[2, 4, 8] = 2
    prompt: str = ""
    seed: int | None = None
    params: dict = Field(default_factory=dict)

    def to_spec(self, owner_id: int) -> JobSpec:
        return JobSpec(
            kind=JobKind.UPSCALE,
            owner_id=owner_id,
            prompt=self.prompt,
            source_image_url=self.image_url,
            scale_factor=self.scale_factor,
            seed=self.seed,
            params=self.params,
        )


class VideoJobRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=1500)
    duration: Literal[5, 10] = 5
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "16:9"
    quality: Literal["standard", "pro"] = "standard"
    negative_prompt: str | None = None
    source_image_url: str | None = None

    def to_spec(self, owner_id: int) -> JobSpec:
        return JobSpec(
            kind=JobKind.VIDEO,
            owner_id=owner_id,
            prompt=self.prompt,
            duration=self.duration,
            aspect_ratio=self.aspect_ratio,
            quality=self.quality,
            negative_prompt=self.negative_prompt,
            source_image_url=self.source_image_url,
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    """Public representation of a job record."""

    id: str
    kind: str
    state: str
    provider_status: str
    progress: int
    prompt: str
    result_urls: list[str]
    thumbnail_urls: list[str]
    credits_reserved: int
    error_message: str | None
    error_code: str | None
    estimated_completion_at: datetime | None
    created_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            kind=job.kind,
            state=job.state,
            provider_status=job.provider_status or to_provider_status(job.state).value,
            progress=job.progress or 0,
            prompt=job.prompt,
            result_urls=job.result_urls or [],
            thumbnail_urls=job.thumbnail_urls or [],
            credits_reserved=job.credits_reserved,
            error_message=job.error_message,
            error_code=job.error_code,
            estimated_completion_at=job.estimated_completion_at,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
