"""Exceptions raised by the scan-to-grade pipeline."""

from enum import Enum
from typing import Optional


class ScanGradeError(Exception):
    """Base class for pipeline errors. `message` is safe to show a teacher."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(ScanGradeError):
    """No image, or an image that cannot be read. Never retried."""
    pass


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate-limited"
    QUOTA_EXHAUSTED = "quota-exhausted"
    ORACLE_UNAVAILABLE = "oracle-unavailable"
    INVALID_RESPONSE = "invalid-response"
    REJECTED = "rejected"


RETRYABLE_REASONS = {
    FailureReason.TIMEOUT,
    FailureReason.RATE_LIMITED,
    FailureReason.ORACLE_UNAVAILABLE,
    FailureReason.INVALID_RESPONSE,
}

_FAILURE_MESSAGES = {
    FailureReason.TIMEOUT: "The grading service took too long to respond. Please try again.",
    FailureReason.RATE_LIMITED: "Rate limit exceeded. Please wait a moment and try again.",
    FailureReason.QUOTA_EXHAUSTED: "API quota exceeded. Check your billing settings or add credits.",
    FailureReason.ORACLE_UNAVAILABLE: "The grading service is temporarily unavailable. Please try again.",
    FailureReason.INVALID_RESPONSE: "The grading service returned an unreadable answer. Please try again.",
    FailureReason.REJECTED: "The grading service rejected the request. Check your API key and settings.",
}


class GradingFailure(ScanGradeError):
    """A grading strategy invocation failed."""

    def __init__(
        self,
        reason: FailureReason,
        detail: str = "",
        strategy: Optional[str] = None,
        attempts: int = 1,
    ):
        super().__init__(_FAILURE_MESSAGES[reason])
        self.reason = reason
        self.detail = detail
        self.strategy = strategy
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.reason in RETRYABLE_REASONS

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "detail": self.detail,
            "strategy": self.strategy,
            "attempts": self.attempts,
            "message": self.message,
        }

    def __str__(self) -> str:
        base = f"{self.reason.value}: {self.message}"
        return f"{base} ({self.detail})" if self.detail else base


class PolicyViolation(ScanGradeError):
    """Progression is blocked until the teacher supplies something."""
    pass


class InvalidTransition(PolicyViolation):
    """A session was asked to move to a state it cannot reach."""
    pass


class AdjudicationRequired(PolicyViolation):
    """Two outcomes disagree too much to pick one automatically."""
    pass


class SessionStorageError(ScanGradeError):
    """Reading or writing the durable session slot failed."""
    pass
