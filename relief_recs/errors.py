"""
Error taxonomy for the recommendation engine.

Provider errors are raised by the directory client and absorbed into
partial results by batch stages. Only AllSourcesFailed propagates to the
request level. CacheUnavailable never leaves the cache facade.
"""

from typing import Any, Optional


class RecommendationError(Exception):
    """Base class for engine errors."""

    code = "RECOMMENDATION_ERROR"


class ProviderError(RecommendationError):
    """A directory provider call failed."""

    code = "PROVIDER_ERROR"
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ProviderRateLimited(ProviderError):
    """HTTP 429 from the directory."""

    code = "PROVIDER_RATE_LIMITED"
    retryable = True

    def __init__(self, message: str, retry_after: Optional[str] = None, **kwargs):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class ProviderUnavailable(ProviderError):
    """Directory is down, slow, or unreachable."""

    code = "PROVIDER_UNAVAILABLE"
    retryable = True


class ProviderServerError(ProviderUnavailable):
    """HTTP 5xx from the directory."""

    code = "PROVIDER_SERVER_ERROR"


class ProviderTimeout(ProviderUnavailable):
    code = "PROVIDER_TIMEOUT"


class ProviderNetworkError(ProviderUnavailable):
    code = "PROVIDER_NETWORK_ERROR"


class ProviderNotFound(ProviderError):
    """HTTP 404. The term or identifier simply yields nothing."""

    code = "PROVIDER_NOT_FOUND"


class ProviderClientError(ProviderError):
    """HTTP 4xx other than 404/429. Retrying would not help."""

    code = "PROVIDER_CLIENT_ERROR"


class ProviderResponseError(ProviderError):
    """Response body was not the JSON shape we expect."""

    code = "PROVIDER_RESPONSE_ERROR"


class AllSourcesFailed(RecommendationError):
    """
    Every candidate-generation call failed.

    Distinct from "zero relevant candidates": an outage must never look like
    an empty result set.
    """

    code = "ALL_SOURCES_FAILED"

    def __init__(self, message: str, failures: Optional[list[str]] = None, debug: Optional[Any] = None):
        super().__init__(message)
        self.failures = failures or []
        self.debug = debug


class CacheUnavailable(RecommendationError):
    """Cache backend could not be read or written."""

    code = "CACHE_UNAVAILABLE"


class DeadlineExceeded(RecommendationError):
    """The request deadline expired before this sub-call finished."""

    code = "DEADLINE_EXCEEDED"
