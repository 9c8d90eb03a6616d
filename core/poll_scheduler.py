"""
Poll scheduling primitives for the job tracker.

- BackoffSchedule: fixed interval for the first polls, then multiplicative
  back-off up to a ceiling
- CancelToken: cooperative cancellation flag a poll loop can wait on
- PollTimer: sleeps between polls, waking early when the token is set
"""

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffSchedule:
    """
    Delay before poll `n` (0-based):
        initial_interval                                   for n < fixed_attempts
        min(initial_interval * factor ** (n - fixed_attempts + 1), max_interval)
    """
    initial_interval: float = 1.0
    fixed_attempts: int = 10
    factor: float = 1.2
    max_interval: float = 3.0

    @classmethod
    def from_settings(cls, settings) -> "BackoffSchedule":
        return cls(
            initial_interval=settings.POLL_INITIAL_INTERVAL,
            fixed_attempts=settings.POLL_FIXED_ATTEMPTS,
            factor=settings.POLL_BACKOFF_FACTOR,
            max_interval=settings.POLL_MAX_INTERVAL,
        )

    def delay(self, attempt: int) -> float:
        if attempt < self.fixed_attempts:
            return self.initial_interval
        grown = self.initial_interval * self.factor ** (attempt - self.fixed_attempts + 1)
        return min(grown, self.max_interval)

    def elapsed_for_attempts(self, attempts: int) -> float:
        """Total wait time of the first `attempts` polls"""
        return sum(self.delay(n) for n in range(attempts))

    def attempts_for_elapsed(self, elapsed: float, limit: int = 10_000) -> int:
        """
        Number of polls that would have fired within `elapsed` seconds.

        Used on resume so a restarted loop picks up at the matching stage.
        """
        total = 0.0
        for attempt in range(limit):
            total += self.delay(attempt)
            if total > elapsed:
                return attempt
        return limit


class CancelToken:
    """Cooperative cancellation for one poll loop"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class PollTimer:
    """Real-time timer used between polls"""

    async def wait(self, delay: float, token: CancelToken) -> bool:
        """
        Sleep for `delay` seconds.

        Returns True when woken early by cancellation.
        """
        if token.cancelled:
            return True
        try:
            await asyncio.wait_for(token.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
