"""
Custom exceptions for the portfolio sync service.

Only MissingCredentialsError and ApiResponseError (for the portfolio and
trade-history calls) ever reach callers as user-visible failures. The rest
are raised internally and absorbed where the pipeline degrades to empty
results or memory-only caching.
"""


class PortfolioSyncError(Exception):
    """Base exception for all portfolio sync errors."""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class MissingCredentialsError(PortfolioSyncError):
    """
    Raised before any I/O when no API key pair is configured.

    Kept distinct from transport and API failures so callers can prompt for
    setup instead of showing a generic error.
    """

    def __init__(self, message: str = "No API keys configured", details: dict = None):
        super().__init__(message, error_code="MISSING_CREDENTIALS", details=details)


class ApiResponseError(PortfolioSyncError):
    """
    Raised when the trading API answers with a non-success status.

    The message carries the status code and response body verbatim, which is
    what gets shown to the user for a failed portfolio or trade-history call.
    """

    def __init__(
        self,
        status: int,
        body: str = "",
        context: str = "API",
        path: str = None,
        details: dict = None
    ):
        super().__init__(
            f"{context} error {status}: {body}",
            error_code="API_RESPONSE_ERROR",
            details=details
        )
        self.status = status
        self.body = body
        self.context = context
        self.path = path

    def with_context(self, context: str) -> "ApiResponseError":
        """Return a copy whose message names the failed operation."""
        return ApiResponseError(
            status=self.status,
            body=self.body,
            context=context,
            path=self.path,
            details=self.details
        )

    @property
    def is_retryable(self) -> bool:
        return self.status in (429, 502, 503, 504)


class NetworkError(PortfolioSyncError):
    """
    Raised for transport failures: connection errors, timeouts, bad JSON.

    Examples: DNS resolution failure, connection reset, request timeout.
    """

    def __init__(self, message: str = "Network error occurred", details: dict = None):
        super().__init__(message, error_code="NETWORK_ERROR", details=details)


class NormalizationError(PortfolioSyncError):
    """Raised when a single upstream record cannot be coerced to its entity."""

    def __init__(self, message: str, entity: str = None, field: str = None, details: dict = None):
        super().__init__(message, error_code="NORMALIZATION_ERROR", details=details)
        self.entity = entity
        self.field = field


class StorageError(PortfolioSyncError):
    """Raised when the local storage backend cannot persist a write."""

    def __init__(self, message: str = "Storage write failed", details: dict = None):
        super().__init__(message, error_code="STORAGE_ERROR", details=details)


class StorageQuotaExceededError(StorageError):
    """Raised when a write would push the storage past its byte quota."""

    def __init__(self, required: int, quota: int, details: dict = None):
        super().__init__(
            f"Storage quota exceeded: {required} bytes required, quota is {quota}",
            details=details
        )
        self.error_code = "STORAGE_QUOTA_EXCEEDED"
        self.required = required
        self.quota = quota
