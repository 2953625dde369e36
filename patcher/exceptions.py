"""Custom exception classes for the patch mirror server."""


class PatcherException(Exception):
    """
    Base exception class for all patch mirror errors.
    """
    pass


class ChunkNotFoundError(PatcherException):
    """
    Raised when a chunk handle is unknown or has already expired.
    """
    pass


class RateLimitedError(PatcherException):
    """
    Raised when a client exceeds its planning request budget.
    """
    pass


class InvalidWebhookKeyError(PatcherException):
    """
    Raised when the update webhook is called with a missing or wrong key.
    """
    pass


class ScratchUnavailableError(PatcherException):
    """
    Raised when the scratch directory or a scratch archive cannot be created.
    """
    pass


class SourceSyncError(PatcherException):
    """
    Raised when cloning or pulling the upstream repository fails.
    """
    pass
