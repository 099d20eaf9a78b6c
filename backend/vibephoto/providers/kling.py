from typing import Any

from vibephoto.models.job import JobKind
from vibephoto.providers.base import JobSpec
from vibephoto.providers.replicate import ReplicateAdapter

DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distorted, watermark"


class KlingVideoAdapter(ReplicateAdapter):
    """Text/image-to-video on Kling. A source image switches to image-to-video."""

    kind = JobKind.VIDEO

    def build_input(self, spec: JobSpec) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": spec.prompt,
            "duration": spec.duration or 5,
            "aspect_ratio": spec.aspect_ratio or "16:9",
            "negative_prompt": spec.negative_prompt or DEFAULT_NEGATIVE_PROMPT,
        }
        if spec.source_image_url:
            payload["start_image"] = spec.source_image_url
        return payload
