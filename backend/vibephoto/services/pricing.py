"""Credit costs and completion estimates per job kind.

``quote()`` is also the input validator: every spec goes through it before
a job row or a debit is written.
"""

import math
from dataclasses import dataclass

from vibephoto.errors import InvalidInput
from vibephoto.models.job import JobKind
from vibephoto.providers.base import JobSpec

IMAGE_CREDITS_PER_OUTPUT = 10
IMAGE_SECONDS_PER_OUTPUT = 30
MAX_IMAGE_OUTPUTS = 4

UPSCALE_CREDITS_PER_IMAGE = 5
UPSCALE_BASE_SECONDS = 30
UPSCALE_TIME_MULTIPLIER: dict[int, float] = {2: 1.0, 4: 1.5, 8: 2.5}

VIDEO_BASE_CREDITS: dict[int, int] = {5: 20, 10: 40}
VIDEO_QUALITY_MULTIPLIER: dict[str, float] = {"standard": 1.0, "pro": 1.5}
VIDEO_ESTIMATED_SECONDS: dict[str, dict[int, int]] = {
    "standard": {5: 90, 10: 150},
    "pro": {5: 120, 10: 180},
}
VIDEO_ASPECT_RATIOS = ("16:9", "9:16", "1:1")
VIDEO_MAX_PROMPT_LENGTH = 1500


@dataclass(frozen=True)
class Quote:
    credits: int
    estimated_seconds: int


def _quote_image(spec: JobSpec) -> Quote:
    if not spec.prompt.strip():
        raise InvalidInput("Prompt is required")
    if not 1 <= spec.num_outputs <= MAX_IMAGE_OUTPUTS:
        raise InvalidInput(f"num_outputs must be between 1 and {MAX_IMAGE_OUTPUTS}")
    return Quote(
        credits=IMAGE_CREDITS_PER_OUTPUT * spec.num_outputs,
        estimated_seconds=IMAGE_SECONDS_PER_OUTPUT * spec.num_outputs,
    )


def _quote_upscale(spec: JobSpec) -> Quote:
    if not spec.source_image_url:
        raise InvalidInput("An image URL is required for upscaling")
    scale = spec.scale_factor or 2
    if scale not in UPSCALE_TIME_MULTIPLIER:
        raise InvalidInput("scale_factor must be 2, 4 or 8")
    return Quote(
        credits=UPSCALE_CREDITS_PER_IMAGE,
        estimated_seconds=math.ceil(UPSCALE_BASE_SECONDS * UPSCALE_TIME_MULTIPLIER[scale]),
    )


def _quote_video(spec: JobSpec) -> Quote:
    if not spec.prompt.strip():
        raise InvalidInput("Prompt is required")
    if len(spec.prompt) > VIDEO_MAX_PROMPT_LENGTH:
        raise InvalidInput(f"Prompt must be at most {VIDEO_MAX_PROMPT_LENGTH} characters")
    duration = spec.duration or 5
    quality = spec.quality or "standard"
    if duration not in VIDEO_BASE_CREDITS:
        raise InvalidInput("duration must be 5 or 10 seconds")
    if quality not in VIDEO_QUALITY_MULTIPLIER:
        raise InvalidInput("quality must be 'standard' or 'pro'")
    if spec.aspect_ratio and spec.aspect_ratio not in VIDEO_ASPECT_RATIOS:
        raise InvalidInput(f"aspect_ratio must be one of {', '.join(VIDEO_ASPECT_RATIOS)}")
    return Quote(
        credits=math.ceil(VIDEO_BASE_CREDITS[duration] * VIDEO_QUALITY_MULTIPLIER[quality]),
        estimated_seconds=VIDEO_ESTIMATED_SECONDS[quality][duration],
    )


def quote(spec: JobSpec) -> Quote:
    """Validate ``spec`` and return its credit cost and time estimate.

    Raises:
        InvalidInput: if the spec is outside what the model accepts.
    """
    kind = JobKind(spec.kind)
    if kind is JobKind.IMAGE:
        return _quote_image(spec)
    if kind is JobKind.UPSCALE:
        return _quote_upscale(spec)
    return _quote_video(spec)
