"""
Error taxonomy for AI providers and the orchestrator.

Provider errors are recovered by the orchestrator's attempt loop and never
reach callers directly. Only OrchestrationError subclasses propagate.
"""
from enum import Enum
from typing import Optional


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    CONTENT_FILTERED = "content_filtered"
    INVALID_REQUEST = "invalid_request"
    MODEL_NOT_FOUND = "model_not_found"


class ProviderError(Exception):
    """Base error raised by a provider's generate()."""

    kind: ProviderErrorKind = ProviderErrorKind.UNAVAILABLE
    default_status_code: int = 500

    def __init__(
        self,
        provider: str,
        message: str,
        kind: Optional[ProviderErrorKind] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        if kind is not None:
            self.kind = kind
        self.status_code = status_code if status_code is not None else self.default_status_code


class RateLimitError(ProviderError):
    kind = ProviderErrorKind.RATE_LIMITED
    default_status_code = 429

    def __init__(self, provider: str, message: str = "Rate limit exceeded"):
        super().__init__(provider, message)


class ServiceUnavailableError(ProviderError):
    kind = ProviderErrorKind.UNAVAILABLE
    default_status_code = 503

    def __init__(self, provider: str, message: str = "Service temporarily unavailable"):
        super().__init__(provider, message)


class ContentFilterError(ProviderError):
    kind = ProviderErrorKind.CONTENT_FILTERED
    default_status_code = 400

    def __init__(self, provider: str, message: str = "Content filtered by safety checks"):
        super().__init__(provider, message)


class InvalidRequestError(ProviderError):
    kind = ProviderErrorKind.INVALID_REQUEST
    default_status_code = 400

    def __init__(self, provider: str, message: str = "Invalid request parameters"):
        super().__init__(provider, message)


class ModelNotFoundError(ProviderError):
    kind = ProviderErrorKind.MODEL_NOT_FOUND
    default_status_code = 404

    def __init__(self, provider: str, model: str):
        super().__init__(provider, f"Model {model} not found or not accessible")
        self.model = model


class OrchestrationError(Exception):
    """Fatal orchestration condition; callers should treat it as an operational alert."""


class NoHealthyProvidersError(OrchestrationError):
    """Raised when no registered provider may currently be attempted."""

    def __init__(self, message: str = "No healthy AI providers available"):
        super().__init__(message)


class AllProvidersFailedError(OrchestrationError):
    """Raised only when every candidate, including the fallback, has failed."""

    def __init__(self, attempted: list, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All AI providers failed ({', '.join(attempted)}){detail}")
        self.attempted = attempted
        self.last_error = last_error


def error_kind_of(exc: BaseException) -> str:
    """Label used for logs and metrics."""
    if isinstance(exc, ProviderError):
        return exc.kind.value
    return "unexpected_error"
