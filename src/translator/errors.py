"""Error taxonomy for subtitle translation jobs.

Per-batch errors (transient, quota, mismatch, fatal API) are raised by the
translation clients and consumed by the retry controller; they never abort a
job. JobValidationError is raised before any batch work and aborts the job.
"""

from typing import List, Optional


class TranslationError(Exception):
    """Base class for all translation engine errors."""


class TransientServerError(TranslationError):
    """The remote API is temporarily unavailable (HTTP 503 or transport failure)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class QuotaExceededError(TranslationError):
    """The remote API rejected the request with a rate-limit/quota error (HTTP 429)."""

    def __init__(self, message: str, status_code: Optional[int] = 429):
        self.status_code = status_code
        super().__init__(message)


class FatalApiError(TranslationError):
    """
    Non-recoverable API failure.

    Raised for any non-2xx status other than 503/429 and for response bodies
    that lack a non-empty generated-text field.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SegmentCountMismatchError(TranslationError, ValueError):
    """
    Exception raised when the number of translated segments doesn't match the expected count.

    This is typically caused by the model merging, splitting or dropping
    segments, or by a truncated response. The whole batch result is
    discarded; the retry controller decides whether to retry or split.
    """

    def __init__(
        self,
        expected_count: int,
        actual_count: int,
        batch_label: Optional[str] = None,
        response_sample: Optional[str] = None,
    ):
        """
        Initialize the error with detailed context.

        Args:
            expected_count: Expected number of translated segments
            actual_count: Actual number of segments received
            batch_label: Label of the batch being translated (if available)
            response_sample: Sample of the API response for debugging
        """
        self.expected_count = expected_count
        self.actual_count = actual_count
        self.batch_label = batch_label
        self.response_sample = response_sample

        difference = expected_count - actual_count
        detail = f"missing {difference}" if difference > 0 else f"extra {-difference}"
        message = (
            f"Segment count mismatch: expected {expected_count} segments, "
            f"but got {actual_count} ({detail})"
        )
        if batch_label is not None:
            message += f" in batch {batch_label}"

        super().__init__(message)


class JobValidationError(TranslationError, ValueError):
    """
    Job configuration or input rejected before any network call.

    Covers delays below their minimum, chunk count < 1, and missing
    subtitle content or API key.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or [message]
        super().__init__(message)
