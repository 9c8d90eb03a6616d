"""
Generation Job Tracker

Starts photo/video generation jobs, polls the provider until they finish,
and keeps the usage ledger in step:
- One quota unit is reserved before the provider is contacted
- The unit is returned exactly once if the job fails, times out,
  expires or is cancelled; success keeps it
- Job state is persisted after every change, so a restarted process can
  resume() tracking at the back-off stage matching the elapsed time

State machine:
    STARTING -> PROCESSING -> FINALIZING -> SUCCEEDED | FAILED
    any non-terminal state -> EXPIRED once older than the kind's ceiling
States never move backward.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from backend.generation_providers.base import (
    GenerationProvider,
    ProviderJob,
    ProviderRequestError,
    ProviderStatus,
    ProviderUnavailableError,
)
from core.failure_classifier import classify_failure, user_message
from core.job_store import JobStore
from core.poll_scheduler import BackoffSchedule, CancelToken, PollTimer
from models.job_record import FailureReason, JobKind, JobRecord, JobState, record_key
from subscription.models import DenialReason, UsageCounter
from subscription.usage_ledger import UsageLedger
from utils.logger import logger
from utils.time_utils import utc_now


class QuotaExceededError(Exception):
    """Raised by start() when the ledger denies the reservation"""

    def __init__(
        self,
        owner_id: str,
        kind: JobKind,
        denial: DenialReason,
        counter: Optional[UsageCounter] = None,
    ):
        self.owner_id = owner_id
        self.kind = kind
        self.denial = denial
        self.counter = counter
        self.reason = FailureReason.QUOTA_EXCEEDED
        super().__init__(f"{kind.value} quota exceeded for {owner_id} ({denial.value})")


@dataclass(frozen=True)
class KindPolicy:
    """Per-kind tracking limits"""
    max_attempts: int
    expiry_seconds: float
    estimated_seconds: float
    finalizing_after_seconds: Optional[float] = None

    @classmethod
    def for_kind(cls, kind: JobKind, settings) -> "KindPolicy":
        if kind == JobKind.VIDEO:
            return cls(
                max_attempts=settings.VIDEO_MAX_POLL_ATTEMPTS,
                expiry_seconds=settings.VIDEO_EXPIRY_SECONDS,
                estimated_seconds=settings.VIDEO_ESTIMATED_SECONDS,
                finalizing_after_seconds=settings.VIDEO_FINALIZING_AFTER_SECONDS,
            )
        return cls(
            max_attempts=settings.PHOTO_MAX_POLL_ATTEMPTS,
            expiry_seconds=settings.PHOTO_EXPIRY_SECONDS,
            estimated_seconds=settings.PHOTO_ESTIMATED_SECONDS,
        )


PHASE_LABELS = {
    JobKind.VIDEO: {
        JobState.STARTING: "Starting video generation...",
        JobState.PROCESSING: "Processing video... This may take 2-5 minutes.",
        JobState.FINALIZING: "Finalizing video... Almost ready!",
        JobState.SUCCEEDED: "Video ready!",
    },
    JobKind.PHOTO: {
        JobState.STARTING: "Preparing your photo...",
        JobState.PROCESSING: "Restoring your photo...",
        JobState.FINALIZING: "Adding final touches...",
        JobState.SUCCEEDED: "Photo ready!",
    },
}


@dataclass
class GenerationProgress:
    """Read model for the UI"""
    is_generating: bool
    state: Optional[JobState]
    elapsed_seconds: float
    phase_label: str
    progress_percent: int
    job_id: Optional[str] = None
    result_ref: Optional[str] = None
    failure_reason: Optional[FailureReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_generating": self.is_generating,
            "state": self.state.value if self.state else None,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "phase_label": self.phase_label,
            "progress_percent": self.progress_percent,
            "job_id": self.job_id,
            "result_ref": self.result_ref,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
        }


class GenerationJobTracker:
    """
    Tracks generation jobs for many owners, one poll task per live job.

    All methods run on one event loop. State transitions happen in plain
    (non-awaiting) methods, so a transition and its ledger side effect
    are never interleaved with another coroutine.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        provider: GenerationProvider,
        store: Optional[JobStore] = None,
        settings=None,
        clock: Optional[Callable[[], datetime]] = None,
        timer: Optional[PollTimer] = None,
        schedule: Optional[BackoffSchedule] = None,
    ):
        if settings is None:
            from config import settings
        self._ledger = ledger
        self._provider = provider
        self._store = store or JobStore()
        self._clock = clock or utc_now
        self._timer = timer or PollTimer()
        self._schedule = schedule or BackoffSchedule.from_settings(settings)
        self._policies = {kind: KindPolicy.for_kind(kind, settings) for kind in JobKind}

        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancelToken] = {}
        self._start_locks: Dict[str, asyncio.Lock] = {}

    @property
    def schedule(self) -> BackoffSchedule:
        return self._schedule

    def policy(self, kind: JobKind) -> KindPolicy:
        return self._policies[JobKind(kind)]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        owner_id: str,
        kind: JobKind,
        input_ref: str,
        prompt: Optional[str] = None,
    ) -> JobRecord:
        """
        Start a job, or return the owner's in-flight job of this kind.

        Raises:
            QuotaExceededError: The ledger denied the reservation; the
                provider was not contacted.
            ProviderUnavailableError / ProviderRequestError: The provider
                refused the job; the reservation has been rolled back.
        """
        kind = JobKind(kind)
        key = record_key(owner_id, kind)
        lock = self._start_locks.setdefault(key, asyncio.Lock())

        async with lock:
            existing = self._store.get(owner_id, kind)
            if existing is not None and not existing.is_terminal:
                logger.info(f"{kind.value} job already in flight for {owner_id}: {existing.job_id}")
                self._ensure_polling(existing)
                return existing

            reservation = self._ledger.reserve(owner_id, kind)
            if not reservation.allowed:
                raise QuotaExceededError(owner_id, kind, reservation.reason, reservation.counter)

            try:
                job = await self._provider.create(kind, input_ref, prompt)
                record = JobRecord(
                    job_id=job.job_id,
                    kind=kind,
                    owner_id=owner_id,
                    input_ref=input_ref,
                    created_at=self._clock(),
                )
                self._store.save(record)
            except Exception as e:
                logger.error(f"Failed to start {kind.value} job for {owner_id}, returning credit: {e}")
                self._ledger.rollback(owner_id, kind)
                raise

            logger.info(f"Started {kind.value} job {record.job_id} for {owner_id}")
            self._launch(record, start_attempt=0)
            return record

    async def resume(self) -> List[JobRecord]:
        """
        Pick up every persisted non-terminal job after a restart.

        Jobs older than their kind's ceiling are expired (credit returned).
        The rest re-enter the poll loop at the back-off stage matching the
        time already elapsed, always with at least one poll left.
        """
        resumed = []
        now = self._clock()

        for record in self._store.non_terminal():
            if record.job_id in self._tasks:
                continue

            policy = self.policy(record.kind)
            elapsed = record.elapsed_seconds(now)
            if elapsed >= policy.expiry_seconds:
                logger.warning(
                    f"Job {record.job_id} is {elapsed:.0f}s old on resume, marking expired"
                )
                self._finalize(record, JobState.EXPIRED, FailureReason.EXPIRED)
                continue

            stage = self._stage_for(record, now)
            logger.info(f"Resuming {record.kind.value} job {record.job_id} at poll stage {stage}")
            self._launch(record, start_attempt=stage)
            resumed.append(record)

        return resumed

    async def cancel(self, job_id: str) -> Optional[JobRecord]:
        """
        Cancel a job: stop polling, return the credit, and ask the provider
        to stop. A status fetch already in flight is discarded.
        """
        record = self._store.get_by_job_id(job_id)
        if record is None or record.is_terminal:
            return record

        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()

        self._finalize(record, JobState.FAILED, FailureReason.CANCELLED, "Cancelled by user")

        try:
            await self._provider.cancel(job_id)
        except (ProviderUnavailableError, ProviderRequestError) as e:
            logger.warning(f"Remote cancel of {job_id} failed: {e}")

        return record

    def get_record(self, owner_id: str, kind: JobKind) -> Optional[JobRecord]:
        return self._store.get(owner_id, kind)

    def get_progress(self, owner_id: str, kind: JobKind) -> GenerationProgress:
        """Current progress for the owner's job of this kind"""
        kind = JobKind(kind)
        record = self._store.get(owner_id, kind)
        if record is None:
            return GenerationProgress(
                is_generating=False,
                state=None,
                elapsed_seconds=0.0,
                phase_label="",
                progress_percent=0,
            )

        now = self._clock()
        elapsed = record.elapsed_seconds(now)
        state = record.state
        if not state.is_terminal:
            state = self._displayed_state(record, state, now)

        if state == JobState.SUCCEEDED:
            percent = 100
            label = PHASE_LABELS[kind][state]
        elif state.is_terminal:
            percent = 0
            label = user_message(record.failure_reason or FailureReason.PROVIDER_ERROR)
        else:
            estimated = self.policy(kind).estimated_seconds
            percent = min(95, int(elapsed / estimated * 100)) if estimated else 0
            label = PHASE_LABELS[kind][state]

        return GenerationProgress(
            is_generating=not state.is_terminal,
            state=state,
            elapsed_seconds=elapsed,
            phase_label=label,
            progress_percent=percent,
            job_id=record.job_id,
            result_ref=record.result_ref,
            failure_reason=record.failure_reason,
        )

    async def wait(self, owner_id: str, kind: JobKind) -> Optional[JobRecord]:
        """Wait for the owner's current poll loop of this kind to end"""
        record = self._store.get(owner_id, kind)
        if record is None:
            return None
        task = self._tasks.get(record.job_id)
        if task is not None:
            await asyncio.shield(task)
        return self._store.get(owner_id, kind)

    def acknowledge(self, owner_id: str, kind: JobKind) -> bool:
        """Drop a terminal record once the client has shown its outcome"""
        record = self._store.get(owner_id, kind)
        if record is None or not record.is_terminal:
            return False
        self._store.delete(owner_id, kind)
        return True

    async def shutdown(self) -> None:
        """Stop all poll loops; persisted state is left for resume()"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._tokens.clear()
        logger.info(f"Job tracker stopped ({len(tasks)} poll loops)")

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def _stage_for(self, record: JobRecord, now: datetime) -> int:
        policy = self.policy(record.kind)
        stage = self._schedule.attempts_for_elapsed(record.elapsed_seconds(now))
        return min(stage, policy.max_attempts - 1)

    def _ensure_polling(self, record: JobRecord) -> None:
        if record.job_id not in self._tasks:
            self._launch(record, start_attempt=self._stage_for(record, self._clock()))

    def _launch(self, record: JobRecord, start_attempt: int) -> None:
        token = CancelToken()
        self._tokens[record.job_id] = token
        self._tasks[record.job_id] = asyncio.create_task(
            self._poll_loop(record, token, start_attempt),
            name=f"poll-{record.job_id}",
        )

    async def _poll_loop(self, record: JobRecord, token: CancelToken, start_attempt: int) -> None:
        policy = self.policy(record.kind)
        attempt = start_attempt

        try:
            while not token.cancelled and not record.is_terminal:
                if attempt >= policy.max_attempts:
                    logger.warning(f"Job {record.job_id} still running after {attempt} polls, giving up")
                    self._finalize(
                        record, JobState.FAILED, FailureReason.TIMEOUT,
                        f"No result after {attempt} polls",
                    )
                    return

                if await self._timer.wait(self._schedule.delay(attempt), token):
                    return

                now = self._clock()
                if record.elapsed_seconds(now) >= policy.expiry_seconds:
                    self._finalize(record, JobState.EXPIRED, FailureReason.EXPIRED)
                    return

                attempt += 1
                record.poll_attempts = attempt
                record.last_polled_at = now

                try:
                    job = await self._provider.get(record.job_id)
                except ProviderUnavailableError as e:
                    logger.warning(f"Poll {attempt} of {record.job_id} failed, will retry: {e}")
                    if not record.is_terminal:
                        self._store.save(record)
                    continue
                except ProviderRequestError as e:
                    if token.cancelled or record.is_terminal:
                        return
                    self._finalize(record, JobState.FAILED, FailureReason.PROVIDER_ERROR, str(e))
                    return

                if token.cancelled or record.is_terminal:
                    return
                self._apply(record, job)
        except Exception as e:
            logger.error(f"Polling {record.job_id} failed unexpectedly: {e!r}")
            if not token.cancelled:
                self._finalize(record, JobState.FAILED, FailureReason.PROVIDER_ERROR, str(e) or repr(e))
        finally:
            if self._tokens.get(record.job_id) is token:
                self._tokens.pop(record.job_id, None)
                self._tasks.pop(record.job_id, None)

    def _displayed_state(self, record: JobRecord, state: JobState, now: datetime) -> JobState:
        """Long-running PROCESSING jobs are shown as FINALIZING"""
        threshold = self.policy(record.kind).finalizing_after_seconds
        if state == JobState.PROCESSING and threshold is not None:
            if record.elapsed_seconds(now) >= threshold:
                return JobState.FINALIZING
        return state

    def _apply(self, record: JobRecord, job: ProviderJob) -> None:
        """Apply one status report to the record"""
        if job.status == ProviderStatus.SUCCEEDED:
            self._finalize(record, JobState.SUCCEEDED, result_ref=job.result_ref)
            return
        if job.status == ProviderStatus.FAILED:
            self._finalize(record, JobState.FAILED, classify_failure(job.error_text), job.error_text)
            return
        if job.status == ProviderStatus.CANCELED:
            self._finalize(record, JobState.FAILED, FailureReason.CANCELLED, job.error_text)
            return

        reported = {
            ProviderStatus.STARTING: JobState.STARTING,
            ProviderStatus.FINALIZING: JobState.FINALIZING,
        }.get(job.status, JobState.PROCESSING)
        reported = self._displayed_state(record, reported, self._clock())
        if reported.rank > record.state.rank:
            logger.debug(f"Job {record.job_id}: {record.state.value} -> {reported.value}")
            record.state = reported
        self._store.save(record)

    def _finalize(
        self,
        record: JobRecord,
        state: JobState,
        reason: Optional[FailureReason] = None,
        error_text: Optional[str] = None,
        result_ref: Optional[str] = None,
    ) -> bool:
        """
        Move a record to a terminal state. Only the first call has any
        effect, so the credit is returned at most once per job.
        """
        if record.is_terminal:
            return False

        record.state = state
        record.failure_reason = reason
        record.error_text = error_text
        record.result_ref = result_ref
        record.finished_at = self._clock()
        self._store.save(record)

        if state == JobState.SUCCEEDED:
            logger.info(f"Job {record.job_id} succeeded: {result_ref}")
            return True

        logger.warning(
            f"Job {record.job_id} ended {state.value} ({reason.value if reason else 'unknown'})"
            + (f": {error_text}" if error_text else "")
        )
        self._ledger.rollback(record.owner_id, record.kind)
        return True
