"""Continuous-skip circuit breaker and the auto-stop marker it persists"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from movie_aggregator.db.cache import Cache
from movie_aggregator.models.crawler import AutoStopMarker, MergeOutcome

logger = logging.getLogger(__name__)

AUTO_STOP_TTL_SECONDS = 48 * 60 * 60
AUTO_STOP_COOLDOWN = timedelta(hours=20)


class CircuitBreaker:
    """Counts consecutive "no update" outcomes.

    `record` is a pure function of the outcome stream: SKIPPED increments,
    CREATED/UPDATED resets, and it returns True exactly when the counter
    reaches the threshold.
    """

    def __init__(self, max_continuous_skips: int):
        self.max_continuous_skips = max_continuous_skips
        self.continuous_skips = 0
        self.trip_count = 0

    def reset(self) -> None:
        self.continuous_skips = 0

    def record(self, outcome: MergeOutcome) -> bool:
        if outcome == MergeOutcome.SKIPPED:
            self.continuous_skips += 1
        else:
            self.continuous_skips = 0

        if self.max_continuous_skips > 0 and self.continuous_skips == self.max_continuous_skips:
            self.trip_count += 1
            return True
        return False

    @property
    def tripped(self) -> bool:
        return self.max_continuous_skips > 0 and self.continuous_skips >= self.max_continuous_skips


def auto_stop_key(source_name: str) -> str:
    return f"crawler:{source_name}:auto-stopped"


class AutoStopGuard:
    """Reads and writes the per-source AutoStopMarker in the cache"""

    def __init__(self, cache: Cache, source_name: str, cooldown: timedelta = AUTO_STOP_COOLDOWN):
        self.cache = cache
        self.source_name = source_name
        self.cooldown = cooldown

    @property
    def key(self) -> str:
        return auto_stop_key(self.source_name)

    async def mark(self, now: Optional[datetime] = None) -> AutoStopMarker:
        marker = AutoStopMarker(
            source_name=self.source_name,
            stopped_at=now or datetime.now(timezone.utc),
        )
        try:
            await self.cache.set(self.key, marker.stopped_at.isoformat(), AUTO_STOP_TTL_SECONDS)
        except Exception as e:
            logger.error(f"[{self.source_name}] Failed to persist auto-stop marker: {e}")
        return marker

    async def get(self) -> Optional[AutoStopMarker]:
        try:
            value = await self.cache.get(self.key)
        except Exception as e:
            logger.error(f"[{self.source_name}] Failed to read auto-stop marker: {e}")
            return None
        if not value:
            return None
        try:
            stopped_at = datetime.fromisoformat(str(value))
        except ValueError:
            logger.warning(f"[{self.source_name}] Ignoring unreadable auto-stop marker: {value!r}")
            return None
        if stopped_at.tzinfo is None:
            stopped_at = stopped_at.replace(tzinfo=timezone.utc)
        return AutoStopMarker(source_name=self.source_name, stopped_at=stopped_at)

    async def remaining_cooldown(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time left before triggers are accepted again, or None when not suspended"""
        marker = await self.get()
        if marker is None:
            return None
        remaining = marker.stopped_at + self.cooldown - (now or datetime.now(timezone.utc))
        if remaining <= timedelta(0):
            return None
        return remaining

    async def clear(self) -> None:
        try:
            await self.cache.delete(self.key)
        except Exception as e:
            logger.error(f"[{self.source_name}] Failed to clear auto-stop marker: {e}")
