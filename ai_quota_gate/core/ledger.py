"""
Usage ledger for upstream API consumption.

The ledger is the only source of truth for how much quota is left. It keeps
a per-day call counter and a trailing one-hour window of call instants,
persisted through a UsageStore so counts survive restarts within the same
provider day.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from .clock import SystemClock
from .reset_window import DEFAULT_RESET_TIMEZONE, next_reset_instant, provider_day
from ai_quota_gate.storage.models import UsageRecord
from ai_quota_gate.storage.repository import UsageStore

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "api_usage"
RECENT_WINDOW = timedelta(hours=1)

# Upgrade hint thresholds
SUGGEST_UPGRADE_DAILY_COUNT = 20
SUGGEST_UPGRADE_LIMIT_HITS = 3


@dataclass(frozen=True)
class QuotaSnapshot:
    """Read-only view of quota state for display."""
    daily_used: int
    daily_limit: int
    remaining: int
    queue_depth: int
    next_reset_instant: datetime


class UsageLedger:
    """Durable, monotonic record of API calls.

    All writes go through UsageStore.update, so the read-modify-write of a
    call is atomic with respect to other writers of the same store.
    """

    def __init__(
        self,
        store: UsageStore,
        daily_limit: int = 25,
        clock: Optional[SystemClock] = None,
        key: str = DEFAULT_STORAGE_KEY,
        reset_timezone: str = DEFAULT_RESET_TIMEZONE,
    ):
        """Initialize the ledger.

        Args:
            store: Persistence port holding the usage record
            daily_limit: Calls allowed per provider day
            clock: Time source (defaults to SystemClock)
            key: Name of the record in the store
            reset_timezone: Timezone whose midnight starts a new day
        """
        self.store = store
        self.daily_limit = daily_limit
        self.clock = clock or SystemClock()
        self.key = key
        self.reset_timezone = reset_timezone

    def _normalize(self, record: UsageRecord, now: datetime) -> UsageRecord:
        """Roll the day over and prune the recent window as of `now`."""
        today = provider_day(now, self.reset_timezone)
        if record.date != today:
            # Recent instants still count toward the per-minute window
            record = UsageRecord(date=today, recent_timestamps=record.recent_timestamps)

        cutoff = now - RECENT_WINDOW
        recent = tuple(ts for ts in record.recent_timestamps if ts > cutoff)
        if recent != record.recent_timestamps:
            record = replace(record, recent_timestamps=recent)
        return record

    def current_record(self) -> UsageRecord:
        """Current usage as of now, without writing anything."""
        now = self.clock.now()
        return self._normalize(UsageRecord.from_dict(self.store.load(self.key)), now)

    def record_call(self) -> UsageRecord:
        """Count one upstream call made now and persist the result.

        Returns:
            The updated record
        """
        now = self.clock.now()

        def mutate(raw):
            record = self._normalize(UsageRecord.from_dict(raw), now)
            record = replace(
                record,
                daily_count=record.daily_count + 1,
                recent_timestamps=record.recent_timestamps + (now,),
            )
            return record.to_dict()

        updated = UsageRecord.from_dict(self.store.update(self.key, mutate))
        logger.debug(
            "Recorded call %d/%d for %s", updated.daily_count, self.daily_limit, updated.date
        )
        return updated

    def record_limit_hit(self) -> UsageRecord:
        """Count an admission rejection for today's upgrade hint."""
        now = self.clock.now()

        def mutate(raw):
            record = self._normalize(UsageRecord.from_dict(raw), now)
            return replace(record, limit_hits=record.limit_hits + 1).to_dict()

        return UsageRecord.from_dict(self.store.update(self.key, mutate))

    def calls_within(self, seconds: float) -> int:
        """Number of recorded calls in the trailing `seconds`."""
        now = self.clock.now()
        cutoff = now - timedelta(seconds=seconds)
        return sum(1 for ts in self.current_record().recent_timestamps if ts > cutoff)

    def snapshot(self, queue_depth: int = 0) -> QuotaSnapshot:
        """Quota view for display; never mutates the record.

        Args:
            queue_depth: Pending operations to report alongside the counts
        """
        now = self.clock.now()
        record = self._normalize(UsageRecord.from_dict(self.store.load(self.key)), now)
        return QuotaSnapshot(
            daily_used=record.daily_count,
            daily_limit=self.daily_limit,
            remaining=max(0, self.daily_limit - record.daily_count),
            queue_depth=queue_depth,
            next_reset_instant=next_reset_instant(now, self.reset_timezone),
        )

    def should_suggest_upgrade(self) -> bool:
        """True when today's usage pattern suggests a paid tier."""
        record = self.current_record()
        return (
            record.daily_count >= SUGGEST_UPGRADE_DAILY_COUNT
            or record.limit_hits >= SUGGEST_UPGRADE_LIMIT_HITS
        )
