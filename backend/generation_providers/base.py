"""
Generation Provider Base Classes

Abstract base class and data structures for external job providers.
A provider accepts a photo or video generation job, reports its status
when asked, and can be asked to cancel it. All providers must implement
this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

from models.job_record import JobKind


class ProviderStatus(str, Enum):
    """Job status as reported by the provider"""
    STARTING = "starting"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class ProviderUnavailableError(Exception):
    """Raised on network errors, 5xx and rate limiting; the caller may retry"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRequestError(Exception):
    """Raised when the provider rejects a request outright (4xx)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigError(Exception):
    """Raised when provider configuration is invalid"""
    pass


@dataclass
class ProviderJob:
    """Snapshot of a remote job"""
    job_id: str
    status: ProviderStatus
    result_ref: Optional[str] = None
    error_text: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ProviderStatus.SUCCEEDED,
            ProviderStatus.FAILED,
            ProviderStatus.CANCELED,
        )


class GenerationProvider(ABC):
    """
    Abstract base class for external generation job providers.

    Implementations raise ProviderUnavailableError for transient failures
    so the tracker keeps polling, and ProviderRequestError for requests
    the provider will never accept.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider identifier used in logs and the registry"""
        pass

    @abstractmethod
    async def create(self, kind: JobKind, input_ref: str, prompt: Optional[str] = None) -> ProviderJob:
        """
        Submit a new job.

        Args:
            kind: Photo or video
            input_ref: Reference to the source image (URL or data URI)
            prompt: Optional generation prompt

        Returns:
            ProviderJob with the provider-assigned job id
        """
        pass

    @abstractmethod
    async def get(self, job_id: str) -> ProviderJob:
        """Fetch the current status of a job"""
        pass

    @abstractmethod
    async def cancel(self, job_id: str) -> None:
        """Ask the provider to stop a job (best effort)"""
        pass

    async def aclose(self) -> None:
        """Release network resources"""
        return None
