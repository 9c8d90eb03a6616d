"""
Job Record model - one tracked generation job per (owner, kind).

A record is created when a job is accepted by the provider, updated by the
poll loop, and dropped once the client has read its terminal state.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from utils.time_utils import parse_timestamp, to_iso


class JobKind(str, Enum):
    """The two kinds of generation the app runs"""
    PHOTO = "photo"
    VIDEO = "video"


class JobState(str, Enum):
    """
    Lifecycle of a tracked job.

    STARTING -> PROCESSING -> FINALIZING -> SUCCEEDED | FAILED,
    with EXPIRED reachable from any non-terminal state.
    """
    STARTING = "starting"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.EXPIRED)

    @property
    def rank(self) -> int:
        """Ordering used to keep states from moving backward"""
        return _STATE_RANK[self]


_STATE_RANK = {
    JobState.STARTING: 0,
    JobState.PROCESSING: 1,
    JobState.FINALIZING: 2,
    JobState.SUCCEEDED: 3,
    JobState.FAILED: 3,
    JobState.EXPIRED: 3,
}


class FailureReason(str, Enum):
    """Why a job (or a request to start one) did not produce a result"""
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PROVIDER_ERROR = "provider_error"
    EXPIRED = "expired"


@dataclass
class JobRecord:
    """Persisted state of one generation job"""
    job_id: str
    kind: JobKind
    owner_id: str
    input_ref: str
    created_at: datetime
    state: JobState = JobState.STARTING
    result_ref: Optional[str] = None
    last_polled_at: Optional[datetime] = None
    poll_attempts: int = 0
    failure_reason: Optional[FailureReason] = None
    error_text: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def key(self) -> str:
        return record_key(self.owner_id, self.kind)

    def elapsed_seconds(self, now: datetime) -> float:
        """Seconds since the job was created"""
        return max(0.0, (now - self.created_at).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "owner_id": self.owner_id,
            "input_ref": self.input_ref,
            "created_at": to_iso(self.created_at),
            "state": self.state.value,
            "result_ref": self.result_ref,
            "last_polled_at": to_iso(self.last_polled_at),
            "poll_attempts": self.poll_attempts,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error_text": self.error_text,
            "finished_at": to_iso(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        """Create from dictionary"""
        reason = data.get("failure_reason")
        return cls(
            job_id=data["job_id"],
            kind=JobKind(data["kind"]),
            owner_id=data["owner_id"],
            input_ref=data.get("input_ref", ""),
            created_at=parse_timestamp(data["created_at"]),
            state=JobState(data.get("state", JobState.STARTING.value)),
            result_ref=data.get("result_ref"),
            last_polled_at=parse_timestamp(data.get("last_polled_at")),
            poll_attempts=int(data.get("poll_attempts", 0)),
            failure_reason=FailureReason(reason) if reason else None,
            error_text=data.get("error_text"),
            finished_at=parse_timestamp(data.get("finished_at")),
        )


def record_key(owner_id: str, kind: JobKind) -> str:
    """Storage key for the single record an owner may hold per kind"""
    return f"{owner_id}:{JobKind(kind).value}"
