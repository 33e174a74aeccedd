# =============================================================================
# Error Taxonomy: typed failures for the analysis pipeline
# =============================================================================
#
# Every error carries the HTTP status the API layer should answer with, a
# stable machine-readable code, and optional retry hints. Provider SDK
# exceptions are translated into these types in app/services/llm.py so the
# rest of the code never imports openai/anthropic exception classes.
#
# PROPAGATION:
#   - MalformedProviderResponse for a single document is absorbed by the
#     analyst into a fallback finding.
#   - Budget errors (RateLimited, ServiceOverloaded, QueueTimeout) for one
#     document become a fallback finding in the orchestrator; they reach
#     the session boundary only when every document failed.
#   - ProviderConfigError and InvalidTransition always propagate to the
#     session boundary (progressive controller or API handler).
# =============================================================================

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for all pipeline errors."""

    code = "ANALYSIS_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.suggestion = suggestion

    def to_detail(self) -> dict:
        """Serialisable error body for API responses."""
        detail: dict = {"error": self.message, "code": self.code}
        if self.retry_after is not None:
            detail["retry_after"] = self.retry_after
        if self.suggestion:
            detail["suggestion"] = self.suggestion
        return detail


class ValidationError(AnalysisError):
    """Bad document ids or empty input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ProviderConfigError(AnalysisError):
    """Missing or rejected provider credentials. Never retried."""

    code = "PROVIDER_NOT_CONFIGURED"
    status_code = 503


class RateLimited(AnalysisError):
    """Provider answered 429, or a local daily allowance is exhausted."""

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded.",
        *,
        retry_after: float | None = 60.0,
        suggestion: str | None = (
            "Consider upgrading to a higher provider tier for larger limits."
        ),
    ) -> None:
        super().__init__(message, retry_after=retry_after, suggestion=suggestion)


class ServiceOverloaded(AnalysisError):
    """Provider 5xx, or the local queue is full."""

    code = "SERVICE_OVERLOADED"
    status_code = 503

    def __init__(
        self,
        message: str = "Service temporarily overloaded. Please try again in a few minutes.",
        *,
        retry_after: float | None = 300.0,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message, retry_after=retry_after, suggestion=suggestion)


class RequestTimeout(AnalysisError):
    """The provider did not answer in time."""

    code = "REQUEST_TIMEOUT"
    status_code = 408

    def __init__(
        self,
        message: str = "Analysis request timed out. Please try again.",
        *,
        retry_after: float | None = None,
        suggestion: str | None = "Try analyzing fewer documents at once.",
    ) -> None:
        super().__init__(message, retry_after=retry_after, suggestion=suggestion)


class MalformedProviderResponse(AnalysisError):
    """Function-call arguments missing or violating the declared schema."""

    code = "MALFORMED_PROVIDER_RESPONSE"
    status_code = 502


class QueueTimeout(AnalysisError):
    """A queued request waited longer than its max_wait_time."""

    code = "QUEUE_TIMEOUT"
    status_code = 408

    def __init__(
        self,
        message: str = "Request timed out while waiting in the queue.",
        *,
        retry_after: float | None = None,
        suggestion: str | None = "Try again shortly or analyze fewer documents at once.",
    ) -> None:
        super().__init__(message, retry_after=retry_after, suggestion=suggestion)


class InvalidTransition(AnalysisError):
    """Attempted to move an analysis session out of a terminal state."""

    code = "INVALID_TRANSITION"
    status_code = 409
