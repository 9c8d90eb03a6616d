"""Data models shared by the tracker and the job store"""

from .job_record import JobKind, JobState, FailureReason, JobRecord, record_key

__all__ = ["JobKind", "JobState", "FailureReason", "JobRecord", "record_key"]
