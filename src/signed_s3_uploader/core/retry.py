"""Retry budget and backoff shared by every network phase of an upload."""

from dataclasses import dataclass

from .models import UploadStatus

DEFAULT_BASE_DELAY = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff with a per-operation attempt budget.

    The first try is attempt 0, so an operation gets ``max_retries`` retries and
    ``max_retries + 1`` tries in total.
    """

    max_retries: int = 5
    base_delay: float = DEFAULT_BASE_DELAY

    def can_retry(self, attempts: int, status: UploadStatus) -> bool:
        """Return whether an operation that has been retried ``attempts`` times may go again."""
        if status in (UploadStatus.CANCELLED, UploadStatus.FAILED):
            return False
        return attempts < self.max_retries

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return attempt * self.base_delay
