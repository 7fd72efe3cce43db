"""Custom exceptions for BuildLens."""


class BuildLensError(Exception):
    """Base class for BuildLens errors."""


class InvalidQueryError(BuildLensError, ValueError):
    """Raised when a query is missing a required filter or gets a non-positive count."""


class ContentEncodingError(BuildLensError):
    """Raised when a message document cannot be serialized for storage."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Failed to serialize {field} to JSON: {reason}")


class UnsafeDeletionError(BuildLensError):
    """Raised when a bulk deletion is unbounded or exceeds the safety limit."""


class UpstreamUnavailableError(BuildLensError):
    """Raised when the CI server cannot be reached or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
