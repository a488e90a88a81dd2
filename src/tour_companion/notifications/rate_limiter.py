"""Fixed-window rate limiting with periodic sweep of expired records."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitRecord:
    """Request count for one key within the current window."""
    count: int
    reset_time: int  # epoch milliseconds


class RateLimiter:
    """Per-key fixed-window request counter.

    Bursts straddling a window boundary are accepted. Expired records are
    reset inline on access, so the sweep only bounds memory.
    """

    def __init__(self, sweep_interval_seconds: float = 300,
                 clock: Callable[[], int] = _now_ms):
        """Initialize the rate limiter.

        Args:
            sweep_interval_seconds: How often the background sweep runs
            clock: Millisecond clock
        """
        self._records: Dict[str, RateLimitRecord] = {}
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._periodic_sweep())
            logger.info(f"Rate limiter started with sweep every {self._sweep_interval}s")

    async def stop(self) -> None:
        """Stop the periodic sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("Rate limiter stopped")

    def allow(self, key: str, max_requests: int, window_ms: int) -> bool:
        """Count an attempt against a key's budget.

        Args:
            key: Opaque key, usually action plus actor identity
            max_requests: Attempts allowed per window
            window_ms: Window length in milliseconds

        Returns:
            True if the attempt is within budget, False otherwise
        """
        now = self._clock()

        with self._lock:
            record = self._records.get(key)

            if record is None:
                record = RateLimitRecord(count=0, reset_time=now + window_ms)
                self._records[key] = record
            elif now > record.reset_time:
                self._records[key] = RateLimitRecord(count=1, reset_time=now + window_ms)
                return True

            if record.count >= max_requests:
                return False

            record.count += 1
            return True

    def sweep_expired(self) -> int:
        """Remove records whose window has passed.

        Returns:
            Number of records removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, record in self._records.items() if now > record.reset_time]
            for key in expired:
                del self._records[key]

        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit records")
        return len(expired)

    def get_record(self, key: str) -> Optional[RateLimitRecord]:
        """Get a copy of the record for a key (for testing/monitoring)."""
        with self._lock:
            record = self._records.get(key)
            return RateLimitRecord(record.count, record.reset_time) if record else None

    def get_record_count(self) -> int:
        """Get the number of tracked keys (for testing/monitoring)."""
        return len(self._records)

    async def _periodic_sweep(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error during periodic rate limit sweep: {e}")
