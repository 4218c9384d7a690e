"""
Time source for the gateway.

All components read "now" and suspend through a clock object so that
ledger bookkeeping, dispatch spacing and retry backoff share one notion
of time.
"""

import asyncio
from datetime import datetime, timezone


class SystemClock:
    """Wall clock backed by the system time and asyncio.sleep."""

    def now(self) -> datetime:
        """Current instant as a timezone-aware UTC datetime."""
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
