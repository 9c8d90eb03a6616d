"""Core job tracking logic for Revive"""

from .job_store import JobStore
from .poll_scheduler import BackoffSchedule, CancelToken, PollTimer
from .failure_classifier import classify_failure, user_message
from .job_tracker import (
    GenerationJobTracker,
    GenerationProgress,
    KindPolicy,
    QuotaExceededError,
)

__all__ = [
    "JobStore",
    "BackoffSchedule",
    "CancelToken",
    "PollTimer",
    "classify_failure",
    "user_message",
    "GenerationJobTracker",
    "GenerationProgress",
    "KindPolicy",
    "QuotaExceededError",
]
