"""Exception types for region assignment and analytics."""

from typing import Optional


class RegionsError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(RegionsError):
    """Configuration or geography catalog is missing or malformed."""


class BoundaryMissing(RegionsError):
    """A region has no boundary polygon, so it cannot be classified geometrically."""

    def __init__(self, region: str):
        super().__init__(f"No boundary polygon available for region '{region}'")
        self.region = region


class PageFetchFailure(RegionsError):
    """
    A paginated request failed after exhausting its retries.

    The owning fetch is aborted; partial results are never returned as a
    complete row set.
    """

    def __init__(
        self,
        table: str,
        start: int,
        attempts: int,
        cause: Optional[BaseException] = None,
    ):
        message = f"Page fetch failed on {table} at offset {start} after {attempts} attempt(s)"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.table = table
        self.start = start
        self.attempts = attempts
        self.cause = cause


class StaleTruncationSignature(UserWarning):
    """
    A computed total exactly equals a legacy per-request row limit.

    Logged for manual audit; never raised and never auto-corrected.
    """
