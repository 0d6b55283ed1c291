"""Custom exceptions for the cache invalidation pipeline."""

from typing import Iterable, Optional


class InvalidationPipelineError(Exception):
    """Base exception for invalidation pipeline errors."""

    pass


class ConfigurationError(InvalidationPipelineError):
    """Configuration or environment variable errors."""

    pass


class PathValidationError(InvalidationPipelineError):
    """Requested path is malformed and can never be invalidated."""

    pass


class QueueUnavailableError(InvalidationPipelineError):
    """SQS operation errors."""

    pass


class CDNInvalidationError(InvalidationPipelineError):
    """CloudFront invalidation call failed; safe to retry later."""

    pass


class RateLimitedError(CDNInvalidationError):
    """CloudFront throttled the call or too many invalidations are in progress."""

    pass


class ProviderTimeoutError(CDNInvalidationError):
    """CloudFront call timed out or the endpoint was unreachable."""

    pass


class InvalidPathsError(InvalidationPipelineError):
    """CloudFront rejected one or more paths as invalid.

    ``failed_paths`` names the rejected paths. When ``invalidation_id`` is set
    the provider accepted the remaining paths under that invalidation.
    """

    def __init__(self, message: str, failed_paths: Iterable[str], invalidation_id: Optional[str] = None):
        super().__init__(message)
        self.failed_paths = frozenset(failed_paths)
        self.invalidation_id = invalidation_id
