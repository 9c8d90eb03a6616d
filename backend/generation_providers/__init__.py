"""
Generation Providers Package

External job providers for photo and video generation:
- Replicate (HTTP API) - production
- Mock (in-process, clock driven) - development and tests
"""

from .base import (
    GenerationProvider,
    ProviderJob,
    ProviderStatus,
    ProviderUnavailableError,
    ProviderRequestError,
    ProviderConfigError,
)
from .mock_provider import MockJobProvider
from .replicate_provider import ReplicateJobProvider
from .registry import create_provider, register_provider, available_providers

__all__ = [
    "GenerationProvider",
    "ProviderJob",
    "ProviderStatus",
    "ProviderUnavailableError",
    "ProviderRequestError",
    "ProviderConfigError",
    "MockJobProvider",
    "ReplicateJobProvider",
    "create_provider",
    "register_provider",
    "available_providers",
]
