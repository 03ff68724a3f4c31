class FeedSyncError(Exception):
    """Base class for pipeline errors."""


class CatalogAPIError(FeedSyncError):
    """Network error or non-success response from the catalog API. Retried at the job layer."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(CatalogAPIError):
    """The catalog API answered 429 Too Many Requests."""

    def __init__(self, message, retry_after=None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class MissingCredentialsError(FeedSyncError):
    """The shop has no catalog API credentials or the API rejected them. Terminal, not a failure."""


class ResolutionError(FeedSyncError):
    """A single record could not be resolved into feed attributes."""


class StorageError(FeedSyncError):
    """Blob storage upload failed or storage is not configured."""


class ArtifactPipelineError(FeedSyncError):
    """Serialization, compression or upload of a feed artifact failed."""
