from typing import Any

from vibephoto.models.job import JobKind
from vibephoto.providers.base import JobSpec
from vibephoto.providers.replicate import ReplicateAdapter

# Clarity defaults tuned for faithful upscales rather than creative re-renders
DEFAULT_SETTINGS: dict[str, Any] = {
    "creativity": 0.35,
    "resemblance": 0.6,
    "dynamic": 6,
    "num_inference_steps": 18,
    "output_format": "png",
}


class ClarityUpscaleAdapter(ReplicateAdapter):
    kind = JobKind.UPSCALE

    def build_input(self, spec: JobSpec) -> dict[str, Any]:
        payload = dict(DEFAULT_SETTINGS)
        payload.update(
            {k: v for k, v in spec.params.items() if k in DEFAULT_SETTINGS}
        )
        payload["image"] = spec.source_image_url
        payload["scale_factor"] = spec.scale_factor or 2
        if spec.prompt:
            payload["prompt"] = spec.prompt
        if spec.seed is not None:
            payload["seed"] = spec.seed
        return payload
