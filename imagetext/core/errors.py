"""Error taxonomy for the OCR service and the HTTP layer.

Every error carries a stable, user-readable ``message``. Raw engine errors are
chained as ``__cause__`` and logged, never shown to the end user.
"""
from __future__ import annotations


class OCRServiceError(Exception):
    default_message = "Unexpected OCR service error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InitializationError(OCRServiceError):
    """Engine construction failed. Retryable."""

    default_message = "OCR service is still loading. Please wait a moment and try again."


class ExtractionError(OCRServiceError):
    """Recognition failed for the given image. Retryable with another image."""

    default_message = "Failed to extract text. Please try with a different image."


class LifecycleError(OCRServiceError):
    """Operation invoked on a terminated service. Not retryable."""

    default_message = "OCR service has been shut down."


class ConcurrencyError(OCRServiceError):
    default_message = "Another image is already being processed. Please wait for it to finish."


class InvalidImageError(OCRServiceError):
    default_message = "Please select a valid image file (JPG, PNG, GIF, etc.)"

    def __init__(self, message: str | None = None, *, too_large: bool = False) -> None:
        super().__init__(message)
        self.too_large = too_large
