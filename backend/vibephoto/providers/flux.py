from typing import Any

from vibephoto.models.job import JobKind
from vibephoto.providers.base import JobSpec
from vibephoto.providers.replicate import ReplicateAdapter


class FluxImageAdapter(ReplicateAdapter):
    """Text-to-image generations on a FLUX model."""

    kind = JobKind.IMAGE

    def build_input(self, spec: JobSpec) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": spec.prompt,
            "num_outputs": spec.num_outputs,
            "aspect_ratio": spec.aspect_ratio or "1:1",
            "output_format": spec.params.get("output_format", "png"),
        }
        if spec.seed is not None:
            payload["seed"] = spec.seed
        for key in ("guidance", "num_inference_steps", "lora_scale"):
            if key in spec.params:
                payload[key] = spec.params[key]
        return payload
