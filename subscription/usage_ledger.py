"""
Usage Ledger for Revive

Meters photo and video generations per owner against the owner's plan:
- One counter per (owner_id, kind), created lazily as a FREE counter
- Reservations are atomic per counter and return a value (allowed/denied)
- Stale billing cycles are reset on access
- Rollback returns a unit when a job fails or expires
- Transfers merge an alias owner's counter into the canonical owner

Counters are kept in memory and, when a storage path is configured,
written to a single JSON file with an atomic replace after every change.
"""

import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Any, List

from models.job_record import JobKind
from subscription.billing_cycle import BillingCycle, compute_cycle
from subscription.models import (
    DenialReason,
    PlanType,
    Reservation,
    UsageCounter,
    UsageLimits,
    UNLIMITED,
)
from utils.logger import logger
from utils.time_utils import utc_now


def _counter_key(owner_id: str, kind: JobKind) -> str:
    return f"{owner_id}:{JobKind(kind).value}"


class UsageLedger:
    """
    Per-owner usage counters with atomic reserve/rollback.

    Every mutation takes the lock of each counter it touches (in sorted
    key order when there are two), re-reads the row, applies the change
    and persists before releasing.
    """

    def __init__(
        self,
        storage_path: Optional[str] = None,
        settings=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if settings is None:
            from config import settings
        self._settings = settings
        self._clock = clock or utc_now
        self._storage_path = Path(storage_path) if storage_path else None

        self._rows: Dict[str, UsageCounter] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._store_lock = threading.Lock()

        self._load()
        logger.info(
            f"UsageLedger initialized with storage: {self._storage_path or 'memory'}"
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _load(self):
        """Load counters from disk; a missing file means an empty ledger"""
        if not self._storage_path or not self._storage_path.exists():
            return

        data = json.loads(self._storage_path.read_text())
        for row in data.get("counters", []):
            counter = UsageCounter.from_dict(row)
            self._rows[_counter_key(counter.owner_id, counter.kind)] = counter
        logger.info(f"Loaded {len(self._rows)} usage counters")

    def _write(self, rows: Dict[str, UsageCounter]):
        """Write every counter to disk (tmp file + atomic replace)"""
        if not self._storage_path:
            return

        snapshot = [counter.to_dict() for counter in rows.values()]
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        tmp.write_text(json.dumps({"counters": snapshot}, indent=2))
        tmp.replace(self._storage_path)

    def _put(self, *counters: UsageCounter, remove: Optional[str] = None):
        """
        Persist new versions of `counters` (and drop `remove`), then publish
        them in memory. A failed write leaves the in-memory rows untouched.
        """
        with self._store_lock:
            rows = dict(self._rows)
            for counter in counters:
                rows[_counter_key(counter.owner_id, counter.kind)] = counter
            if remove is not None:
                rows.pop(remove, None)
            self._write(rows)
            self._rows = rows

    def _row(self, key: str) -> Optional[UsageCounter]:
        """Working copy of a stored counter; callers publish it with `_put`"""
        counter = self._rows.get(key)
        return replace(counter) if counter else None

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    @contextmanager
    def _locked(self, *keys: str):
        """Hold the locks of all given counters, acquired in sorted order"""
        locks = [self._lock_for(key) for key in sorted(set(keys))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    # ------------------------------------------------------------------
    # Counter helpers
    # ------------------------------------------------------------------

    def _new_counter(self, owner_id: str, kind: JobKind, now: datetime) -> UsageCounter:
        """Fresh FREE counter anchored at its creation time"""
        limits = UsageLimits.for_plan(PlanType.FREE, self._settings)
        cycle = compute_cycle(now, PlanType.FREE, now)
        return UsageCounter(
            owner_id=owner_id,
            kind=kind,
            plan_type=PlanType.FREE,
            used=0,
            limit=limits.limit_for(kind),
            cycle_start=cycle.start,
            cycle_end=cycle.end,
            last_reset_at=now,
            anchor_date=now,
            daily_limit=limits.daily_limit_for(kind),
            usage_day=now.date().isoformat(),
            updated_at=now,
        )

    @staticmethod
    def _refresh(counter: UsageCounter, now: datetime):
        """Reset a stale cycle and roll the daily window over"""
        if counter.is_stale(now):
            cycle = compute_cycle(counter.anchor_date, counter.plan_type, now)
            logger.info(
                f"Billing cycle rolled for {counter.owner_id}/{counter.kind.value}: "
                f"{cycle.start.isoformat()} -> {cycle.end.isoformat()}"
            )
            counter.cycle_start = cycle.start
            counter.cycle_end = cycle.end
            counter.used = 0
            counter.last_reset_at = now

        today = now.date().isoformat()
        if counter.usage_day != today:
            counter.usage_day = today
            counter.used_today = 0

    def _is_entitled(self, counter: UsageCounter, now: datetime) -> bool:
        if counter.plan_type == PlanType.FREE:
            return True
        if not counter.is_active:
            return False
        return counter.expires_at is None or counter.expires_at > now

    def _effective_limits(self, counter: UsageCounter, now: datetime):
        """(cycle limit, daily limit) to gate with; lapsed paid plans fall back to FREE"""
        if self._is_entitled(counter, now):
            return counter.limit, counter.daily_limit
        free = UsageLimits.for_plan(PlanType.FREE, self._settings)
        return free.limit_for(counter.kind), None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def reserve(self, owner_id: str, kind: JobKind) -> Reservation:
        """
        Reserve one unit of quota.

        Returns an allowed Reservation after incrementing `used`, or a
        denied one (QUOTA_EXCEEDED / DAILY_LIMIT_REACHED) with no change
        to `used`.
        """
        kind = JobKind(kind)
        key = _counter_key(owner_id, kind)

        with self._locked(key):
            now = self._clock()
            counter = self._row(key)
            if counter is None:
                counter = self._new_counter(owner_id, kind, now)
                logger.info(f"Created FREE {kind.value} counter for {owner_id}")
            self._refresh(counter, now)

            limit, daily_limit = self._effective_limits(counter, now)

            if limit != UNLIMITED and counter.used >= limit:
                self._put(counter)
                logger.info(
                    f"Reservation denied for {owner_id}/{kind.value}: "
                    f"{counter.used}/{limit} used this cycle"
                )
                return Reservation.deny(DenialReason.QUOTA_EXCEEDED, replace(counter))

            if daily_limit is not None and counter.used_today >= daily_limit:
                self._put(counter)
                logger.info(
                    f"Reservation denied for {owner_id}/{kind.value}: "
                    f"daily limit {daily_limit} reached"
                )
                return Reservation.deny(DenialReason.DAILY_LIMIT_REACHED, replace(counter))

            counter.used += 1
            counter.used_today += 1
            counter.updated_at = now
            self._put(counter)

        logger.info(f"Reserved {kind.value} for {owner_id}: used={counter.used} limit={counter.limit}")
        return Reservation.allow(replace(counter))

    def rollback(self, owner_id: str, kind: JobKind) -> Optional[UsageCounter]:
        """Return one unit; `used` never drops below zero"""
        kind = JobKind(kind)
        key = _counter_key(owner_id, kind)

        with self._locked(key):
            counter = self._row(key)
            if counter is None:
                logger.warning(f"Rollback for unknown counter {owner_id}/{kind.value}")
                return None

            now = self._clock()
            counter.used = max(0, counter.used - 1)
            if counter.usage_day == now.date().isoformat():
                counter.used_today = max(0, counter.used_today - 1)
            counter.updated_at = now
            self._put(counter)

        logger.info(f"Rolled back {kind.value} for {owner_id}: used={counter.used}")
        return replace(counter)

    def merge_into(self, canonical_owner_id: str, alias_owner_id: str, kind: JobKind) -> Optional[UsageCounter]:
        """
        Fold an alias counter into the canonical owner's counter.

        The canonical row takes the alias's plan and cycle, keeps the larger
        `used`, and the alias row is deleted. A missing alias row is a no-op,
        which makes repeated merges harmless.
        """
        kind = JobKind(kind)
        canonical_key = _counter_key(canonical_owner_id, kind)
        alias_key = _counter_key(alias_owner_id, kind)

        if canonical_key == alias_key:
            return self.get_counter(canonical_owner_id, kind)

        with self._locked(canonical_key, alias_key):
            alias = self._rows.get(alias_key)
            canonical = self._rows.get(canonical_key)
            if alias is None:
                return replace(canonical) if canonical else None

            now = self._clock()
            used_today = alias.used_today
            if canonical and canonical.usage_day == alias.usage_day:
                used_today = max(canonical.used_today, alias.used_today)

            merged = replace(
                alias,
                owner_id=canonical_owner_id,
                used=max(alias.used, canonical.used if canonical else 0),
                used_today=used_today,
                updated_at=now,
            )

            self._put(merged, remove=alias_key)

        logger.info(
            f"Merged {kind.value} usage {alias_owner_id} -> {canonical_owner_id}: used={merged.used}"
        )
        return replace(merged)

    def upsert_plan(
        self,
        owner_id: str,
        kind: JobKind,
        plan_type: PlanType,
        cycle: BillingCycle,
        anchor_date: datetime,
        expires_at: Optional[datetime] = None,
        keep_usage: bool = False,
    ) -> UsageCounter:
        """
        Write plan, limits and cycle for an owner.

        `used` is reset when the stored cycle start differs from `cycle.start`.
        With `keep_usage`, it is only reset once `cycle` begins at or after
        the stored cycle end, so usage merged from another owner survives a
        re-anchored cycle.
        """
        kind = JobKind(kind)
        plan_type = PlanType(plan_type)
        key = _counter_key(owner_id, kind)
        limits = UsageLimits.for_plan(plan_type, self._settings)

        with self._locked(key):
            now = self._clock()
            counter = self._row(key)
            if counter is None:
                counter = self._new_counter(owner_id, kind, now)
                counter.cycle_start = cycle.start

            if keep_usage:
                new_cycle = cycle.start >= counter.cycle_end
            else:
                new_cycle = counter.cycle_start != cycle.start

            if new_cycle:
                logger.info(
                    f"Resetting {kind.value} usage for {owner_id}: new cycle "
                    f"{cycle.start.isoformat()} (was {counter.cycle_start.isoformat()})"
                )
                counter.used = 0
                counter.used_today = 0
                counter.last_reset_at = now

            counter.plan_type = plan_type
            counter.limit = limits.limit_for(kind)
            counter.daily_limit = limits.daily_limit_for(kind)
            counter.cycle_start = cycle.start
            counter.cycle_end = cycle.end
            counter.anchor_date = anchor_date
            counter.is_active = True
            counter.expires_at = expires_at
            counter.updated_at = now
            self._put(counter)

        logger.info(
            f"Plan {plan_type.value} applied to {owner_id}/{kind.value}: "
            f"limit={counter.limit} cycle_start={cycle.start.isoformat()}"
        )
        return replace(counter)

    def mark_inactive(self, owner_id: str, kind: JobKind) -> Optional[UsageCounter]:
        """Flag a counter as no longer entitled; usage is kept"""
        kind = JobKind(kind)
        key = _counter_key(owner_id, kind)

        with self._locked(key):
            counter = self._row(key)
            if counter is None:
                return None
            now = self._clock()
            counter.is_active = False
            counter.expires_at = now
            counter.updated_at = now
            self._put(counter)

        logger.info(f"Marked {owner_id}/{kind.value} inactive")
        return replace(counter)

    def get_counter(self, owner_id: str, kind: JobKind) -> Optional[UsageCounter]:
        """Snapshot of a counter, or None when the owner has none yet"""
        key = _counter_key(owner_id, JobKind(kind))
        with self._locked(key):
            counter = self._rows.get(key)
            return replace(counter) if counter else None

    def owners(self) -> List[str]:
        with self._store_lock:
            return sorted({counter.owner_id for counter in self._rows.values()})

    def get_usage_summary(self, owner_id: str) -> Dict[str, Any]:
        """
        Usage for display: one entry per kind with used, limit, remaining
        and the current cycle. Missing counters report FREE defaults.
        """
        now = self._clock()
        summary: Dict[str, Any] = {"owner_id": owner_id}

        for kind in JobKind:
            counter = self.get_counter(owner_id, kind)
            if counter is None:
                counter = self._new_counter(owner_id, kind, now)
            else:
                self._refresh(counter, now)

            limit, daily_limit = self._effective_limits(counter, now)
            summary[kind.value] = {
                "plan_type": counter.plan_type.value,
                "is_active": self._is_entitled(counter, now),
                "used": counter.used,
                "limit": limit,
                "remaining": UNLIMITED if limit == UNLIMITED else max(0, limit - counter.used),
                "daily_limit": daily_limit,
                "used_today": counter.used_today,
                "cycle_start": counter.cycle_start.isoformat(),
                "cycle_end": counter.cycle_end.isoformat(),
            }

        return summary
