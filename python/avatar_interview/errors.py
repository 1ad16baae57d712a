"""
Error taxonomy for the interview session orchestrator.

Every domain failure raised by the provider client, the round catalog or
the orchestrator derives from InterviewSessionError and carries a stable
error_code that outer surfaces can map to their own status codes.
"""

from __future__ import annotations


__all__ = [
    "InterviewSessionError",
    "InterviewValidationError",
    "NoInterviewerAvailableError",
    "RoundAlreadyCompletedError",
    "NoActiveRoundError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "InvalidOperationError",
]


class InterviewSessionError(Exception):
    """Base exception for interview session errors."""

    error_code = "INTERVIEW_SESSION_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)


class InterviewValidationError(InterviewSessionError):
    """Raised when required input is missing or cannot be resolved."""

    error_code = "VALIDATION_ERROR"


class NoInterviewerAvailableError(InterviewSessionError):
    """Raised when no ready avatar is bound to the requested round."""

    error_code = "NO_INTERVIEWER_AVAILABLE"

    def __init__(self, round_id: str | None, message: str | None = None) -> None:
        self.round_id = round_id
        super().__init__(
            message
            or f"No AI interviewer available for round '{round_id}'. Please try again later."
        )


class RoundAlreadyCompletedError(InterviewSessionError):
    """Raised when a completed round is started again."""

    error_code = "ROUND_ALREADY_COMPLETED"

    def __init__(self, round_id: str) -> None:
        self.round_id = round_id
        super().__init__(f"Round '{round_id}' has already been completed.")


class NoActiveRoundError(InterviewSessionError):
    """Raised when an operation requires an active round."""

    error_code = "NO_ACTIVE_ROUND"

    def __init__(self, message: str = "No active round. Start a round first.") -> None:
        super().__init__(message)


class ProviderError(InterviewSessionError):
    """
    Raised when the video-avatar provider rejects a request.

    Attributes:
        status_code: Upstream HTTP status, or None for transport failures.
    """

    error_code = "PROVIDER_ERROR"

    def __init__(self, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        label = f"{status_code}" if status_code is not None else "transport"
        super().__init__(f"Provider API error: {label} - {message}")
        self.detail = message


class ProviderNotConfiguredError(InterviewSessionError):
    """Raised when the provider client is built without a usable API key."""

    error_code = "PROVIDER_NOT_CONFIGURED"

    def __init__(self, message: str = "TAVUS_API_KEY is not configured.") -> None:
        super().__init__(message)


class InvalidOperationError(RuntimeError):
    """Raised when the orchestrator is misused: overlapping start/end or use after teardown."""

    error_code = "INVALID_OPERATION"
