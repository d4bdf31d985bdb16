"""Custom exception classes for the application.

Provides a hierarchy of exceptions for consistent error handling
across the application with appropriate HTTP status codes.

Provider errors carry a ``retryable`` flag that the retry engine uses to
decide whether another attempt is worthwhile.
"""

from decimal import Decimal


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, status_code: int = 500) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found exception.

    Raised when a requested resource does not exist.
    """

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} with id {identifier} not found",
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(AppException):
    """Input validation failed exception.

    Raised when input data fails validation rules. Never retried.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, status_code=422)


class InsufficientFundsError(AppException):
    """Insufficient wallet balance exception.

    Raised when a withdrawal cannot be accepted because the wallet
    balance does not cover the requested amount.
    """

    def __init__(
        self,
        wallet_id: str,
        required: Decimal,
        available: Decimal,
    ) -> None:
        super().__init__(
            message=(
                f"Insufficient funds in wallet {wallet_id}: "
                f"required {required}, available {available}"
            ),
            status_code=400,
        )
        self.wallet_id = wallet_id
        self.required = required
        self.available = available


class InvalidSignatureError(AppException):
    """Webhook signature did not match the shared secret."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message=message, status_code=401)


class InvariantViolationError(AppException):
    """Ledger state disagrees with the recorded transactions.

    Never corrected automatically; surfaced to operators.
    """

    def __init__(self, wallet_id: str, expected: Decimal, actual: Decimal) -> None:
        super().__init__(
            message=(
                f"Wallet {wallet_id} balance {actual} does not match "
                f"transaction ledger total {expected}"
            ),
            status_code=500,
        )
        self.wallet_id = wallet_id
        self.expected = expected
        self.actual = actual


class ProviderError(AppException):
    """Base class for failures talking to the payment provider."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        provider_status: int | None = None,
    ) -> None:
        super().__init__(message=message, status_code=status_code)
        self.provider_status = provider_status


class ProviderAuthError(ProviderError):
    """Provider rejected our credentials. Needs operator attention."""

    def __init__(self, message: str = "Payment service configuration error", provider_status: int | None = None) -> None:
        super().__init__(message, status_code=502, provider_status=provider_status)


class ProviderRateLimitError(ProviderError):
    """Provider answered 429."""

    retryable = True

    def __init__(self, retry_after: float | None = None) -> None:
        super().__init__(
            "Too many requests to payment provider. Please try again in a few minutes.",
            status_code=429,
            provider_status=429,
        )
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its timeout."""

    retryable = True

    def __init__(self, message: str = "Payment service timeout. Please try again.") -> None:
        super().__init__(message, status_code=504)


class ProviderUnavailableError(ProviderError):
    """Provider returned 5xx or the connection failed."""

    retryable = True

    def __init__(self, message: str = "Payment service temporarily unavailable", provider_status: int | None = None) -> None:
        super().__init__(message, status_code=502, provider_status=provider_status)


class ProviderInsufficientBalanceError(ProviderError):
    """Provider-side balance cannot cover a transfer yet."""

    retryable = True

    def __init__(self, message: str = "Insufficient funds in payment gateway. Please contact support.") -> None:
        super().__init__(message, status_code=502)


class ProviderRejectedError(ProviderError):
    """Provider refused the request (4xx other than 429). Terminal."""

    def __init__(self, message: str, provider_status: int | None = None) -> None:
        super().__init__(message, status_code=502, provider_status=provider_status)


class ReceivingAccountUnavailableError(ProviderError):
    """No candidate bank could issue a dedicated receiving account."""

    def __init__(self, last_error: str | None = None) -> None:
        super().__init__(
            "Payment service temporarily unavailable. Please try again later.",
            status_code=503,
        )
        self.last_error = last_error


class RetryExhaustedError(AppException):
    """A retryable operation kept failing until the attempt budget ran out."""

    def __init__(self, operation: str, attempts: int, last_error: Exception | None) -> None:
        super().__init__(
            message=f"{operation} failed after {attempts} attempts: {last_error}",
            status_code=502,
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
