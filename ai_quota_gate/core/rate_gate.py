"""
Admission control for upstream calls.

Decides from the usage ledger whether a new call may start now.

Policy Order:
1. Daily quota - Rejects once today's calls reach the daily limit
2. Per-minute limit - Rejects while the trailing minute is full
3. Otherwise the call is allowed
"""

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .ledger import UsageLedger
from .reset_window import seconds_until_reset

PER_MINUTE_WINDOW = timedelta(seconds=60)

REASON_DAILY_EXHAUSTED = "daily quota exhausted"
REASON_PER_MINUTE = "per-minute limit reached"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check."""
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @property
    def daily_exhausted(self) -> bool:
        return not self.allowed and self.reason is not None and self.reason.startswith(
            REASON_DAILY_EXHAUSTED
        )


class RateGate:
    """Stateless admission policy over a UsageLedger."""

    def __init__(self, ledger: UsageLedger, daily_limit: int = 25, per_minute_limit: int = 5):
        self.ledger = ledger
        self.daily_limit = daily_limit
        self.per_minute_limit = per_minute_limit

    def can_admit(self) -> AdmissionDecision:
        """Check whether a call may be admitted now.

        Returns:
            AdmissionDecision; rejected decisions carry a reason and the
            number of seconds after which the check may pass
        """
        now = self.ledger.clock.now()
        record = self.ledger.current_record()

        # 1. Daily quota
        if record.daily_count >= self.daily_limit:
            wait = seconds_until_reset(now, self.ledger.reset_timezone)
            return AdmissionDecision(
                allowed=False,
                reason=(
                    f"{REASON_DAILY_EXHAUSTED}: {record.daily_count}/{self.daily_limit} "
                    f"calls used, resets in {wait}s"
                ),
                retry_after_seconds=wait,
            )

        # 2. Per-minute limit
        cutoff = now - PER_MINUTE_WINDOW
        in_window = [ts for ts in record.recent_timestamps if ts > cutoff]
        if len(in_window) >= self.per_minute_limit:
            # The window clears once enough of its oldest calls age out
            releasing = in_window[len(in_window) - self.per_minute_limit]
            wait = max(1, math.ceil((releasing - cutoff).total_seconds()))
            return AdmissionDecision(
                allowed=False,
                reason=f"{REASON_PER_MINUTE}: retry after {wait}s",
                retry_after_seconds=wait,
            )

        return AdmissionDecision(allowed=True)
