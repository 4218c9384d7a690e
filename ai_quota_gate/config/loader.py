"""
Configuration management and loading.

Handles gateway limits, retry policy and provider settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ai_quota_gate.core.errors import (
    DEFAULT_UPSTREAM_RETRY_AFTER_SECONDS,
    SUPPORTED_LOCALES,
    ErrorKind,
)
from ai_quota_gate.core.ledger import DEFAULT_STORAGE_KEY
from ai_quota_gate.core.reset_window import DEFAULT_RESET_TIMEZONE

DEFAULT_RETRYABLE_KINDS = frozenset({
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.UPSTREAM_UNAVAILABLE,
})

# Kinds that cannot succeed on a retry with the same input
NEVER_RETRYABLE_KINDS = frozenset({
    ErrorKind.INVALID_CREDENTIALS,
    ErrorKind.AUTH_FAILURE,
    ErrorKind.MALFORMED_REQUEST,
})


@dataclass(frozen=True)
class GatewayConfig:
    """Limits and retry policy for the request gateway."""
    daily_limit: int = 25
    per_minute_limit: int = 5
    min_dispatch_interval_ms: int = 12000
    max_retries: int = 3
    retry_backoff_schedule_ms: Tuple[int, ...] = (1000, 3000, 5000)
    retryable_kinds: FrozenSet[ErrorKind] = field(default=DEFAULT_RETRYABLE_KINDS)
    reset_timezone: str = DEFAULT_RESET_TIMEZONE
    storage_key: str = DEFAULT_STORAGE_KEY
    locale: str = "en"
    upstream_retry_after_seconds: int = DEFAULT_UPSTREAM_RETRY_AFTER_SECONDS

    def __post_init__(self):
        """Validate limits, schedule and provider settings."""
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        if self.per_minute_limit <= 0:
            raise ValueError("per_minute_limit must be > 0")
        if self.min_dispatch_interval_ms < 0:
            raise ValueError("min_dispatch_interval_ms must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not self.retry_backoff_schedule_ms:
            raise ValueError("retry_backoff_schedule_ms must not be empty")
        if any(delay < 0 for delay in self.retry_backoff_schedule_ms):
            raise ValueError("retry_backoff_schedule_ms entries must be >= 0")
        if list(self.retry_backoff_schedule_ms) != sorted(self.retry_backoff_schedule_ms):
            raise ValueError("retry_backoff_schedule_ms must be non-decreasing")
        forbidden = self.retryable_kinds & NEVER_RETRYABLE_KINDS
        if forbidden:
            names = sorted(kind.value for kind in forbidden)
            raise ValueError(f"retryable_kinds cannot include {names}")
        if self.locale not in SUPPORTED_LOCALES:
            raise ValueError(f"locale must be one of: {sorted(SUPPORTED_LOCALES)}")
        if not self.storage_key:
            raise ValueError("storage_key must not be empty")
        if self.upstream_retry_after_seconds < 0:
            raise ValueError("upstream_retry_after_seconds must be >= 0")
        try:
            ZoneInfo(self.reset_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown reset_timezone: {self.reset_timezone}")

    @property
    def min_dispatch_interval(self) -> float:
        """Minimum spacing between dispatches, in seconds."""
        return self.min_dispatch_interval_ms / 1000

    def backoff_delay(self, retry_count: int) -> float:
        """Delay in seconds before retry number `retry_count` (1-based)."""
        schedule = self.retry_backoff_schedule_ms
        index = min(max(retry_count, 1), len(schedule)) - 1
        return schedule[index] / 1000

    def classifier_options(self) -> Dict[str, Any]:
        """Keyword arguments for the error classifier."""
        return {
            "locale": self.locale,
            "daily_limit": self.daily_limit,
            "per_minute_limit": self.per_minute_limit,
            "reset_timezone": self.reset_timezone,
            "upstream_retry_after_seconds": self.upstream_retry_after_seconds,
        }


_INT_KEYS = {
    "daily_limit",
    "per_minute_limit",
    "min_dispatch_interval_ms",
    "max_retries",
    "upstream_retry_after_seconds",
}
_STR_KEYS = {"reset_timezone", "storage_key", "locale"}
ALLOWED_KEYS = _INT_KEYS | _STR_KEYS | {"retry_backoff_schedule_ms", "retryable_kinds"}


def load_gateway_config(path: str) -> GatewayConfig:
    """Load and validate gateway configuration from YAML file.

    Strict validation ensures no silent misconfiguration that could push
    the client over the provider's limits.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GatewayConfig object; an empty file yields defaults

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return GatewayConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}

    for key in _INT_KEYS & raw_config.keys():
        value = raw_config[key]
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"'{key}' must be an integer")
        values[key] = value

    for key in _STR_KEYS & raw_config.keys():
        value = raw_config[key]
        if not isinstance(value, str):
            raise ValueError(f"'{key}' must be a string")
        values[key] = value

    if "retry_backoff_schedule_ms" in raw_config:
        values["retry_backoff_schedule_ms"] = _parse_schedule(
            raw_config["retry_backoff_schedule_ms"]
        )

    if "retryable_kinds" in raw_config:
        values["retryable_kinds"] = _parse_kinds(raw_config["retryable_kinds"])

    return GatewayConfig(**values)


def _parse_schedule(data: Any) -> Tuple[int, ...]:
    """Parse the backoff schedule list.

    Raises:
        ValueError: If the schedule is not a list of integers
    """
    if not isinstance(data, list):
        raise ValueError("'retry_backoff_schedule_ms' must be a list")
    for delay in data:
        if not isinstance(delay, int) or isinstance(delay, bool):
            raise ValueError("'retry_backoff_schedule_ms' entries must be integers")
    return tuple(data)


def _parse_kinds(data: Any) -> FrozenSet[ErrorKind]:
    """Parse retryable error kind names.

    Raises:
        ValueError: If a name is not a known ErrorKind
    """
    if not isinstance(data, list):
        raise ValueError("'retryable_kinds' must be a list")

    kinds = set()
    for name in data:
        if not isinstance(name, str):
            raise ValueError("'retryable_kinds' entries must be strings")
        try:
            kinds.add(ErrorKind(name.lower()))
        except ValueError:
            valid_kinds = [kind.value for kind in ErrorKind]
            raise ValueError(f"'retryable_kinds' entries must be one of: {valid_kinds}")
    return frozenset(kinds)
