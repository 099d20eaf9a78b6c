"""Provider selection, resolved once at process start from settings."""

from typing import Callable

from vibephoto.config import Settings
from vibephoto.models.job import JobKind
from vibephoto.providers.base import ProviderAdapter
from vibephoto.providers.clarity import ClarityUpscaleAdapter
from vibephoto.providers.flux import FluxImageAdapter
from vibephoto.providers.kling import KlingVideoAdapter


def _replicate(cls: type, model_attr: str) -> Callable[[Settings], ProviderAdapter]:
    def factory(settings: Settings) -> ProviderAdapter:
        return cls(
            settings.replicate_api_token,
            getattr(settings, model_attr),
            webhook_secret=settings.replicate_webhook_secret,
            submit_timeout=settings.provider_submit_timeout,
            poll_timeout=settings.provider_poll_timeout,
        )

    return factory


_FACTORIES: dict[tuple[JobKind, str], Callable[[Settings], ProviderAdapter]] = {
    (JobKind.IMAGE, "replicate"): _replicate(FluxImageAdapter, "image_model"),
    (JobKind.UPSCALE, "replicate"): _replicate(ClarityUpscaleAdapter, "upscale_model"),
    (JobKind.VIDEO, "replicate"): _replicate(KlingVideoAdapter, "video_model"),
}


def build_adapters(settings: Settings) -> dict[JobKind, ProviderAdapter]:
    """Instantiate one adapter per job kind.

    Raises:
        ValueError: if a configured provider name is not known for its kind.
    """
    selected = {
        JobKind.IMAGE: settings.image_provider,
        JobKind.UPSCALE: settings.upscale_provider,
        JobKind.VIDEO: settings.video_provider,
    }
    adapters: dict[JobKind, ProviderAdapter] = {}
    for kind, provider in selected.items():
        factory = _FACTORIES.get((kind, provider.lower()))
        if factory is None:
            raise ValueError(f"Unknown {kind.value} provider: {provider!r}")
        adapters[kind] = factory(settings)
    return adapters
