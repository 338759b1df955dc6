"""
Custom exceptions for imgrouter.

This module defines all custom exceptions used throughout the package. Every
exception carries an ``ErrorKind`` so failed generation results can report
what went wrong, a ``retryable`` flag consulted by the retry executor, and the
``http_status`` an HTTP handler should answer with.
"""

from decimal import Decimal
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failure, shared by exceptions and GenerationResult."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNSUPPORTED = "unsupported"
    UNAVAILABLE = "unavailable"
    REMOTE = "remote"
    AUTHENTICATION = "authentication"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    INVALID_PAYLOAD = "invalid_payload"
    CONTENT_MODERATED = "content_moderated"
    REQUEST_MODERATED = "request_moderated"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"


class ImgrouterError(Exception):
    """Base exception for all imgrouter errors."""

    kind: ErrorKind = ErrorKind.REMOTE
    retryable: bool = False
    http_status: int = 500


class ValidationError(ImgrouterError):
    """Raised when a request is rejected before any provider is touched."""

    kind = ErrorKind.VALIDATION
    http_status = 400

    def __init__(self, message: str, field: str = "") -> None:
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Name of the field that failed validation (optional)
        """
        self.field = field
        super().__init__(message)


class ConfigurationError(ImgrouterError):
    """Raised when there is a configuration problem."""

    kind = ErrorKind.CONFIGURATION
    http_status = 500


class UnsupportedStyleError(ImgrouterError):
    """Raised when no provider (or the called provider) supports a style."""

    kind = ErrorKind.UNSUPPORTED
    http_status = 422

    def __init__(self, message: str, style: str = "", provider: str = "") -> None:
        self.style = style
        self.provider = provider
        super().__init__(message)


class NoHealthyProvidersError(ImgrouterError):
    """Raised when health filtering leaves no provider to use."""

    kind = ErrorKind.UNAVAILABLE
    http_status = 503


class BudgetExceededError(NoHealthyProvidersError):
    """Raised when every healthy provider costs more than the requested max cost."""

    def __init__(self, message: str, max_cost: Decimal | None = None) -> None:
        self.max_cost = max_cost
        super().__init__(message)


class NoSuitableProviderError(NoHealthyProvidersError):
    """Raised when fallback is disabled and the best candidate scores at or below zero."""

    pass


class RemoteError(ImgrouterError):
    """Raised when a provider was contacted but returned an error or bad payload."""

    kind = ErrorKind.REMOTE
    http_status = 502

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int = 0,
        response: str = "",
    ) -> None:
        """
        Initialize remote error.

        Args:
            message: Error message
            provider: Name of the provider that failed
            status_code: HTTP status code (if applicable)
            response: Raw API response (if available)
        """
        self.provider = provider
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class AuthenticationError(RemoteError):
    """API key or token rejected."""

    kind = ErrorKind.AUTHENTICATION


class InsufficientCreditsError(RemoteError):
    """Account has no credits left."""

    kind = ErrorKind.INSUFFICIENT_CREDITS


class RateLimitedError(RemoteError):
    """Remote (or local) rate limit hit."""

    kind = ErrorKind.RATE_LIMITED
    retryable = True
    http_status = 429


class ServerError(RemoteError):
    """5xx from the remote service, including cold-start 503s."""

    kind = ErrorKind.SERVER
    retryable = True


class InvalidPayloadError(RemoteError):
    """Remote answered successfully but the payload is empty or not an image."""

    kind = ErrorKind.INVALID_PAYLOAD


class ContentModeratedError(RemoteError):
    """Generated content was blocked; the work was performed and is charged."""

    kind = ErrorKind.CONTENT_MODERATED
    http_status = 422

    def __init__(self, message: str, provider: str = "", cost: Decimal = Decimal("0")) -> None:
        self.cost = cost
        super().__init__(message, provider=provider)


class RequestModeratedError(RemoteError):
    """Request was blocked before any work was done."""

    kind = ErrorKind.REQUEST_MODERATED
    http_status = 422


class NetworkError(ImgrouterError):
    """Raised when a network operation fails."""

    kind = ErrorKind.NETWORK
    retryable = True
    http_status = 502

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize network error.

        Args:
            message: Error message
            original_error: The underlying exception that caused this error
        """
        self.original_error = original_error
        super().__init__(message)


class RequestTimeoutError(ImgrouterError):
    """Raised when a single attempt exceeds its deadline."""

    kind = ErrorKind.TIMEOUT
    retryable = True
    http_status = 408


class PollingTimeoutError(RequestTimeoutError):
    """Raised when a submit-then-poll provider exhausts its poll attempts."""

    retryable = False


class CircuitOpenError(ImgrouterError):
    """Raised when a circuit breaker rejects a call without contacting the service."""

    kind = ErrorKind.CIRCUIT_OPEN
    http_status = 503

    def __init__(self, message: str, breaker: str = "") -> None:
        self.breaker = breaker
        super().__init__(message)


class CancellationError(ImgrouterError):
    """Raised when an operation is cancelled by the user."""

    pass
