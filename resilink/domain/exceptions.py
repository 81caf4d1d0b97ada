"""Error taxonomy for the resilience layer.

Every error carries an ``ErrorKind`` tag set where the failure happens.
Retry and fallback decisions compare kinds, they never inspect messages.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Classification tag attached to every resilience error."""
    UPSTREAM_FAILURE = "upstream_failure"      # 5xx, connection failure
    RATE_LIMITED = "rate_limited"              # 429 without quota details
    SERVICE_UNAVAILABLE = "service_unavailable"  # 503, cold start
    TIMEOUT = "timeout"
    QUOTA_EXHAUSTED = "quota_exhausted"
    REQUEST_REJECTED = "request_rejected"      # other 4xx
    CONFIGURATION = "configuration"
    NON_CRITICAL_SIDE_EFFECT = "non_critical_side_effect"


FALLBACK_ELIGIBLE_KINDS = frozenset({
    ErrorKind.QUOTA_EXHAUSTED,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT,
    ErrorKind.UPSTREAM_FAILURE,
})

# Kinds that must not be retried: a retry would fail the same way.
NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.QUOTA_EXHAUSTED,
    ErrorKind.CONFIGURATION,
    ErrorKind.REQUEST_REJECTED,
})


class ResilienceError(Exception):
    """Base class for all errors raised by the resilience layer."""

    kind: ErrorKind = ErrorKind.UPSTREAM_FAILURE

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TransientUpstreamError(ResilienceError):
    """Upstream failed in a way that may succeed on a later attempt."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UPSTREAM_FAILURE,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, kind)
        self.status_code = status_code


class UpstreamTimeoutError(TransientUpstreamError):
    """The network call did not finish within its timeout."""

    def __init__(self, message: str, timeout_s: Optional[float] = None):
        super().__init__(message, ErrorKind.TIMEOUT)
        self.timeout_s = timeout_s


class UpstreamRequestError(ResilienceError):
    """Upstream rejected the request itself (4xx other than 429)."""

    kind = ErrorKind.REQUEST_REJECTED

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class QuotaExhaustedError(ResilienceError):
    """Usage of a metered resource reached the critical threshold."""

    kind = ErrorKind.QUOTA_EXHAUSTED

    def __init__(self, message: str, resource: Optional[str] = None, used: int = 0, limit: int = 0):
        super().__init__(message)
        self.resource = resource
        self.used = used
        self.limit = limit


class ConfigurationError(ResilienceError):
    """Invalid options or an unknown resource name. Always fatal to the call."""

    kind = ErrorKind.CONFIGURATION


class NonCriticalSideEffectError(ResilienceError):
    """Failure of an auxiliary call whose outcome the caller does not need."""

    kind = ErrorKind.NON_CRITICAL_SIDE_EFFECT

    def __init__(self, message: str, operation: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.operation = operation
        self.cause = cause


def error_kind(error: BaseException) -> Optional[ErrorKind]:
    """Returns the kind tag of an error, or None for foreign exceptions."""
    if isinstance(error, ResilienceError):
        return error.kind
    return None


def is_fallback_eligible(error: BaseException) -> bool:
    """True when the error may be masked with a fallback value."""
    return error_kind(error) in FALLBACK_ELIGIBLE_KINDS


def is_retryable(error: BaseException) -> bool:
    """Retry condition used for upstream calls: everything except quota,
    configuration and rejected-request errors."""
    return error_kind(error) not in NON_RETRYABLE_KINDS
