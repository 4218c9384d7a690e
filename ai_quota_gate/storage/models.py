"""
Data models for storage layer.

Defines the persisted usage record and its structured (JSON) shape.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class UsageRecord:
    """Durable record of upstream API consumption for one provider day.

    `recent_timestamps` holds call instants (ordered, oldest first) and is
    pruned to the trailing hour whenever the ledger reads or writes it.
    `limit_hits` counts admission rejections on the same day.
    """
    date: Optional[date] = None
    daily_count: int = 0
    recent_timestamps: Tuple[datetime, ...] = field(default_factory=tuple)
    limit_hits: int = 0

    def __post_init__(self):
        """Validate counters are non-negative."""
        if self.daily_count < 0:
            raise ValueError("daily_count must be >= 0")
        if self.limit_hits < 0:
            raise ValueError("limit_hits must be >= 0")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "date": self.date.isoformat() if self.date else None,
            "daily_count": self.daily_count,
            "recent_timestamps": [ts.timestamp() for ts in self.recent_timestamps],
            "limit_hits": self.limit_hits,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UsageRecord":
        """Rebuild a record from `to_dict()` output.

        Missing or empty data yields a fresh record.
        """
        if not data:
            return cls()

        raw_date = data.get("date")
        timestamps = tuple(
            datetime.fromtimestamp(float(ts), tz=timezone.utc)
            for ts in data.get("recent_timestamps") or []
        )
        return cls(
            date=date.fromisoformat(raw_date) if raw_date else None,
            daily_count=int(data.get("daily_count", 0)),
            recent_timestamps=tuple(sorted(timestamps)),
            limit_hits=int(data.get("limit_hits", 0)),
        )
