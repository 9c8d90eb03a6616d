"""
Generation Provider Registry

Maps provider names to factories and builds the configured provider.
"""

from typing import Callable, Dict, List, Optional

from .base import GenerationProvider, ProviderConfigError
from .mock_provider import MockJobProvider
from .replicate_provider import ReplicateJobProvider

from utils.logger import logger

ProviderFactory = Callable[..., GenerationProvider]


def _build_replicate(settings, **kwargs) -> GenerationProvider:
    return ReplicateJobProvider(
        api_token=settings.REPLICATE_API_TOKEN,
        api_base=settings.REPLICATE_API_BASE,
        photo_model=settings.REPLICATE_PHOTO_MODEL,
        video_model=settings.REPLICATE_VIDEO_MODEL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        **kwargs,
    )


def _build_mock(settings, **kwargs) -> GenerationProvider:
    return MockJobProvider(**kwargs)


_FACTORIES: Dict[str, ProviderFactory] = {
    "replicate": _build_replicate,
    "mock": _build_mock,
}


def register_provider(name: str, factory: ProviderFactory) -> None:
    """Register a provider factory under `name`"""
    _FACTORIES[name] = factory
    logger.debug(f"Registered generation provider: {name}")


def available_providers() -> List[str]:
    return sorted(_FACTORIES)


def create_provider(name: Optional[str] = None, settings=None, **kwargs) -> GenerationProvider:
    """
    Build a provider.

    Args:
        name: Provider name, or None for settings.JOB_PROVIDER
        settings: Settings object, or None for the global settings
        **kwargs: Passed to the provider constructor (e.g. clock, client)

    Raises:
        ProviderConfigError: If the provider is unknown or misconfigured
    """
    if settings is None:
        from config import settings

    target = (name or settings.JOB_PROVIDER).lower()
    factory = _FACTORIES.get(target)
    if factory is None:
        raise ProviderConfigError(
            f"Unknown generation provider: {target} (available: {', '.join(available_providers())})"
        )

    provider = factory(settings, **kwargs)
    logger.info(f"Using generation provider: {provider.name}")
    return provider
