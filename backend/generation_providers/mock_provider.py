"""
Mock Generation Provider

Deterministic in-process provider for development and tests. Job status
is derived from the injected clock: a job reports STARTING for the first
20% of its processing time, PROCESSING until 80%, FINALIZING until done,
then its outcome. No network calls are made.

Failures can be scripted:
- fail_next(error_text): the next created job fails with that text
- fail_next_create(exc): the next create() raises exc
- unavailable_polls: the next N get() calls raise ProviderUnavailableError
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Any

from models.job_record import JobKind
from utils.logger import logger
from utils.time_utils import utc_now

from .base import (
    GenerationProvider,
    ProviderJob,
    ProviderRequestError,
    ProviderStatus,
    ProviderUnavailableError,
)

# Simulated processing times (seconds)
PROCESSING_TIMES = {
    JobKind.PHOTO: 7.0,
    JobKind.VIDEO: 12.0,
}


@dataclass
class _MockJob:
    job_id: str
    kind: JobKind
    input_ref: str
    prompt: Optional[str]
    started_at: datetime
    duration: float
    error_text: Optional[str] = None
    canceled: bool = False


class MockJobProvider(GenerationProvider):
    """Clock-driven provider that never leaves the process"""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        processing_times: Optional[Dict[JobKind, float]] = None,
        unavailable_polls: int = 0,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self._clock = clock or utc_now
        self._processing_times = dict(PROCESSING_TIMES)
        if processing_times:
            self._processing_times.update(processing_times)
        self.unavailable_polls = unavailable_polls

        self._jobs: Dict[str, _MockJob] = {}
        self._counter = 0
        self._scripted_failures: Deque[str] = deque()
        self._create_errors: Deque[Exception] = deque()

        self.get_calls: List[str] = []
        self.cancel_calls: List[str] = []

    @property
    def name(self) -> str:
        return "mock"

    def fail_next(self, error_text: str):
        """Make the next created job end in failure with `error_text`"""
        self._scripted_failures.append(error_text)

    def fail_next_create(self, exc: Exception):
        """Make the next create() call raise `exc`"""
        self._create_errors.append(exc)

    @property
    def created_count(self) -> int:
        return self._counter

    async def create(self, kind: JobKind, input_ref: str, prompt: Optional[str] = None) -> ProviderJob:
        if self._create_errors:
            raise self._create_errors.popleft()

        kind = JobKind(kind)
        self._counter += 1
        job = _MockJob(
            job_id=f"mock_{self._counter}",
            kind=kind,
            input_ref=input_ref,
            prompt=prompt,
            started_at=self._clock(),
            duration=self._processing_times[kind],
            error_text=self._scripted_failures.popleft() if self._scripted_failures else None,
        )
        self._jobs[job.job_id] = job
        logger.debug(f"Mock {kind.value} job created: {job.job_id} ({job.duration:.0f}s)")
        return ProviderJob(job_id=job.job_id, status=ProviderStatus.STARTING)

    async def get(self, job_id: str) -> ProviderJob:
        self.get_calls.append(job_id)

        if self.unavailable_polls > 0:
            self.unavailable_polls -= 1
            raise ProviderUnavailableError("Mock provider temporarily unavailable", status_code=503)

        job = self._jobs.get(job_id)
        if job is None:
            raise ProviderRequestError(f"Unknown job: {job_id}", status_code=404)

        if job.canceled:
            return ProviderJob(job_id=job_id, status=ProviderStatus.CANCELED, error_text="canceled")

        elapsed = (self._clock() - job.started_at).total_seconds()
        progress = elapsed / job.duration if job.duration > 0 else 1.0

        if progress < 0.2:
            return ProviderJob(job_id=job_id, status=ProviderStatus.STARTING)
        if progress < 0.8:
            return ProviderJob(job_id=job_id, status=ProviderStatus.PROCESSING)
        if progress < 1.0:
            return ProviderJob(job_id=job_id, status=ProviderStatus.FINALIZING)
        if job.error_text:
            return ProviderJob(job_id=job_id, status=ProviderStatus.FAILED, error_text=job.error_text)
        return ProviderJob(
            job_id=job_id,
            status=ProviderStatus.SUCCEEDED,
            result_ref=f"mock://results/{job_id}",
        )

    async def cancel(self, job_id: str) -> None:
        self.cancel_calls.append(job_id)
        job = self._jobs.get(job_id)
        if job is not None:
            job.canceled = True
