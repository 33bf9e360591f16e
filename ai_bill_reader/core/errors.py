"""
Error taxonomy for bill extraction.

None of these errors are retried automatically. The caller decides whether
to resubmit the image.
"""

from typing import Optional


class BillReaderError(Exception):
    """Base class for every error raised by the extraction core."""


class RateLimitExceeded(BillReaderError):
    """Raised when the request window is full; no provider call was made."""

    def __init__(self, retry_after_seconds: int):
        super().__init__(
            f"Rate limit exceeded. Please try again in {retry_after_seconds} seconds."
        )
        self.retry_after_seconds = retry_after_seconds


class ConfigurationError(BillReaderError):
    """Missing credential, endpoint or model, or an unknown provider."""


class InvalidImageError(BillReaderError, ValueError):
    """The image is not a base64 data URI; nothing was sent or recorded."""


class AnalysisFailedError(BillReaderError):
    """The provider could not produce a usable bill.

    The message is safe to show to end users; root causes are logged.
    """


class ProviderTransportError(AnalysisFailedError):
    """The provider could not be reached at all."""


class ProviderResponseError(AnalysisFailedError):
    """The provider answered with an error status or an unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(AnalysisFailedError):
    """The provider's JSON does not have the shape of a bill."""
