"""Error types for the annotation pipeline."""

from __future__ import annotations


class AvesError(Exception):
    """Base exception for the annotation pipeline."""


class InvalidInput(AvesError):
    """Raised when a caller passes bad arguments (e.g. an empty batch)."""


class NotFound(AvesError):
    """Raised when a job or item id is unknown."""


class RateLimitTimeout(AvesError):
    """Raised when no rate-limit token was acquired before the timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No rate-limit token available within {timeout:.2f}s")


class VisionServiceError(AvesError):
    """Raised when a vision-AI service call fails."""

    def __init__(
        self,
        provider: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class TransientServiceError(VisionServiceError):
    """Retryable fault: timeouts, overload, 5xx, rate-limit rejections."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(provider, message, retryable=True, status_code=status_code)


class PermanentServiceError(VisionServiceError):
    """Non-retryable fault: 4xx, malformed request, unparseable response."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(provider, message, retryable=False, status_code=status_code)


class InvalidFeedback(AvesError):
    """Raised when a review submission is malformed."""
