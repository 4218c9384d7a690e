"""
Error classification for upstream failures.

Every failure coming back from the upstream provider is mapped to exactly
one ErrorKind carrying a ready-to-display message and a recommended next
action. Callers never see raw transport errors.

Classification Order:
1. Status code (429, 400, 401/403, 500/502/503)
2. Content policy signal (message text or finish reason)
3. Unknown
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .reset_window import DEFAULT_RESET_TIMEZONE, seconds_until_reset

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_RETRY_AFTER_SECONDS = 30

# Finish reasons that mean the provider refused on content grounds
POLICY_FINISH_REASONS = frozenset({
    "SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "IMAGE_SAFETY",
    "CONTENT_FILTER",
})

# Provider status words that stand in for an HTTP status in error text
_STATUS_WORDS = {
    "RESOURCE_EXHAUSTED": 429,
    "UNAVAILABLE": 503,
    "PERMISSION_DENIED": 403,
    "UNAUTHENTICATED": 401,
    "INVALID_ARGUMENT": 400,
}

_STATUS_IN_TEXT = re.compile(r"\b([45]\d\d)\b")


class ErrorKind(Enum):
    """Exhaustive set of failure kinds surfaced to callers."""
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_CREDENTIALS = "invalid_credentials"
    AUTH_FAILURE = "auth_failure"
    MALFORMED_REQUEST = "malformed_request"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    UNKNOWN = "unknown"


class RecommendedAction(Enum):
    """What the caller should do next."""
    RETRY = "retry"
    WAIT_AND_RETRY = "wait_and_retry"
    UPGRADE_QUOTA = "upgrade_quota"
    FIX_CREDENTIALS = "fix_credentials"


MESSAGES = {
    "en": {
        ErrorKind.QUOTA_EXCEEDED: (
            "The free-tier quota has been exceeded.\n"
            "- Limits: {per_minute} requests per minute, {daily} per day\n"
            "- Quota resets in about {hours} hour(s)\n"
            "- Upgrade to a paid tier or wait for the reset."
        ),
        ErrorKind.INVALID_CREDENTIALS: (
            "The API key is not valid. Enter a correct key in the settings."
        ),
        ErrorKind.AUTH_FAILURE: (
            "API key authentication failed. Check the API key in the settings."
        ),
        ErrorKind.MALFORMED_REQUEST: (
            "The request is not well formed. Check the image format and the prompt."
        ),
        ErrorKind.UPSTREAM_UNAVAILABLE: (
            "The provider is having a temporary problem. Please try again shortly."
        ),
        ErrorKind.CONTENT_POLICY_VIOLATION: (
            "The request violates the provider's content policy. Try different content."
        ),
        ErrorKind.UNKNOWN: (
            "An unknown error occurred. Please try again shortly."
        ),
    },
    "ko": {
        ErrorKind.QUOTA_EXCEEDED: (
            "무료 등급 할당량을 초과했습니다.\n"
            "• 무료 제한: 분당 {per_minute}개, 일일 {daily}개 요청\n"
            "• 리셋 시간: 약 {hours}시간 후\n"
            "• 해결 방법: 유료 등급으로 업그레이드하거나 리셋을 기다려주세요."
        ),
        ErrorKind.INVALID_CREDENTIALS: (
            "API 키가 유효하지 않습니다. 설정에서 올바른 키를 입력해주세요."
        ),
        ErrorKind.AUTH_FAILURE: (
            "API 키 인증에 실패했습니다. 설정에서 API 키를 확인해주세요."
        ),
        ErrorKind.MALFORMED_REQUEST: (
            "요청 형식이 올바르지 않습니다. 이미지 형식이나 프롬프트를 확인해주세요."
        ),
        ErrorKind.UPSTREAM_UNAVAILABLE: (
            "서버에 일시적인 문제가 있습니다. 잠시 후 다시 시도해주세요."
        ),
        ErrorKind.CONTENT_POLICY_VIOLATION: (
            "요청이 콘텐츠 정책을 위반했습니다. 다른 내용으로 시도해주세요."
        ),
        ErrorKind.UNKNOWN: (
            "알 수 없는 오류가 발생했습니다. 잠시 후 다시 시도해주세요."
        ),
    },
}

PER_MINUTE_MESSAGES = {
    "en": "The per-minute request limit ({limit}) has been reached. Try again in {seconds} seconds.",
    "ko": "분당 요청 제한({limit}개)에 도달했습니다. {seconds}초 후 다시 시도해주세요.",
}

SUPPORTED_LOCALES = frozenset(MESSAGES)

HELP_URLS = {
    RecommendedAction.UPGRADE_QUOTA: "https://aistudio.google.com/app/plan",
    RecommendedAction.FIX_CREDENTIALS: "https://aistudio.google.com/app/apikey",
}
TROUBLESHOOTING_URL = "https://ai.google.dev/gemini-api/docs/troubleshooting"


@dataclass(frozen=True)
class ClassifiedError:
    """Immutable, display-ready description of a failure."""
    kind: ErrorKind
    raw_code: int
    raw_message: str
    user_message: str
    recommended_action: RecommendedAction
    retry_after_seconds: Optional[int] = None


class UpstreamFailure(Exception):
    """Structured failure raised by API invokers.

    Carries the provider status code and, when the provider stopped a
    generation early, its finish reason.
    """
    def __init__(
        self,
        status_code: int,
        message: str,
        detail: Optional[str] = None,
        finish_reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.detail = detail
        self.finish_reason = finish_reason


class GatewayError(Exception):
    """Raised to callers when an operation fails terminally."""
    def __init__(self, error: ClassifiedError):
        super().__init__(error.user_message)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


class QueueCancelledError(Exception):
    """Raised for operations dropped by RequestQueue.cancel_all()."""


def classify_failure(
    status_code: int,
    message: str,
    finish_reason: Optional[str] = None,
    *,
    now: datetime,
    locale: str = "en",
    daily_limit: int = 25,
    per_minute_limit: int = 5,
    reset_timezone: str = DEFAULT_RESET_TIMEZONE,
    upstream_retry_after_seconds: int = DEFAULT_UPSTREAM_RETRY_AFTER_SECONDS,
) -> ClassifiedError:
    """Map a raw status code and message to a ClassifiedError.

    The mapping is total: every input yields exactly one kind.

    Args:
        status_code: HTTP-style status code (0 when unknown)
        message: Raw error message from the provider
        finish_reason: Generation finish reason, if the provider sent one
        now: Current instant, used for the quota reset countdown
        locale: Language for the user-facing message
        daily_limit: Daily request limit quoted in the quota message
        per_minute_limit: Per-minute request limit quoted in the quota message
        reset_timezone: Timezone of the provider's daily reset
        upstream_retry_after_seconds: Suggested wait for upstream outages

    Returns:
        ClassifiedError for the failure
    """
    messages = MESSAGES.get(locale, MESSAGES["en"])
    message = message or ""
    retry_after = None

    if status_code == 429:
        kind = ErrorKind.QUOTA_EXCEEDED
        action = RecommendedAction.UPGRADE_QUOTA
        retry_after = seconds_until_reset(now, reset_timezone)
    elif status_code == 400 and "API key" in message:
        kind = ErrorKind.INVALID_CREDENTIALS
        action = RecommendedAction.FIX_CREDENTIALS
    elif status_code == 400:
        kind = ErrorKind.MALFORMED_REQUEST
        action = RecommendedAction.RETRY
    elif status_code in (401, 403):
        kind = ErrorKind.AUTH_FAILURE
        action = RecommendedAction.FIX_CREDENTIALS
    elif status_code in (500, 502, 503):
        kind = ErrorKind.UPSTREAM_UNAVAILABLE
        action = RecommendedAction.WAIT_AND_RETRY
        retry_after = upstream_retry_after_seconds
    elif "policy" in message or _is_policy_finish(finish_reason):
        kind = ErrorKind.CONTENT_POLICY_VIOLATION
        action = RecommendedAction.RETRY
    else:
        kind = ErrorKind.UNKNOWN
        action = RecommendedAction.RETRY

    user_message = messages[kind]
    if kind == ErrorKind.QUOTA_EXCEEDED:
        user_message = user_message.format(
            per_minute=per_minute_limit,
            daily=daily_limit,
            hours=-(-retry_after // 3600),
        )

    return ClassifiedError(
        kind=kind,
        raw_code=status_code,
        raw_message=message,
        user_message=user_message,
        recommended_action=action,
        retry_after_seconds=retry_after,
    )


def classify_exception(exc: BaseException, *, now: datetime, **options) -> ClassifiedError:
    """Classify any exception raised by an invoker.

    UpstreamFailure is read directly. Other exceptions are inspected for a
    status attribute, then their text is searched for a status code or a
    provider status word.

    Args:
        exc: Exception raised while invoking the upstream API
        now: Current instant
        **options: Forwarded to classify_failure

    Returns:
        ClassifiedError for the exception
    """
    if isinstance(exc, GatewayError):
        return exc.error

    if isinstance(exc, UpstreamFailure):
        return classify_failure(
            exc.status_code, exc.message, exc.finish_reason, now=now, **options
        )

    message = str(exc) or type(exc).__name__
    status_code = _status_from_attributes(exc)
    if status_code is None:
        status_code = _status_from_text(message)

    if status_code == 0:
        logger.debug("No status code found on %s", type(exc).__name__)
    return classify_failure(status_code, message, now=now, **options)


def admission_error(
    reason: str,
    retry_after_seconds: Optional[int],
    daily_exhausted: bool,
    *,
    now: datetime,
    locale: str = "en",
    daily_limit: int = 25,
    per_minute_limit: int = 5,
    reset_timezone: str = DEFAULT_RESET_TIMEZONE,
    upstream_retry_after_seconds: int = DEFAULT_UPSTREAM_RETRY_AFTER_SECONDS,
) -> ClassifiedError:
    """QuotaExceeded error for a call the rate gate refused to admit.

    A full daily quota reads like a provider 429. A full per-minute window
    only asks the user to wait.
    """
    if daily_exhausted:
        error = classify_failure(
            429,
            reason,
            now=now,
            locale=locale,
            daily_limit=daily_limit,
            per_minute_limit=per_minute_limit,
            reset_timezone=reset_timezone,
            upstream_retry_after_seconds=upstream_retry_after_seconds,
        )
        return replace(error, retry_after_seconds=retry_after_seconds)

    template = PER_MINUTE_MESSAGES.get(locale, PER_MINUTE_MESSAGES["en"])
    return ClassifiedError(
        kind=ErrorKind.QUOTA_EXCEEDED,
        raw_code=429,
        raw_message=reason,
        user_message=template.format(limit=per_minute_limit, seconds=retry_after_seconds),
        recommended_action=RecommendedAction.WAIT_AND_RETRY,
        retry_after_seconds=retry_after_seconds,
    )


def help_url(action: RecommendedAction) -> str:
    """Page where the user can act on a recommendation."""
    return HELP_URLS.get(action, TROUBLESHOOTING_URL)


def _is_policy_finish(finish_reason: Optional[str]) -> bool:
    return bool(finish_reason) and finish_reason.upper() in POLICY_FINISH_REASONS


def _status_from_attributes(exc: BaseException) -> Optional[int]:
    candidates = [
        getattr(exc, "status_code", None),
        getattr(exc, "status", None),
        getattr(exc, "code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ]
    for value in candidates:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def _status_from_text(message: str) -> int:
    for word, code in _STATUS_WORDS.items():
        if word in message:
            return code
    match = _STATUS_IN_TEXT.search(message)
    if match:
        return int(match.group(1))
    return 0
