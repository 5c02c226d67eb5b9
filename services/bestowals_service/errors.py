"""Error taxonomy for the bestowals service.

Every error carries the HTTP status it maps to and the message that may be
shown to the caller. 5xx errors never expose their detail; the exception
handler in ``app.main`` replaces it with ``GENERIC_FAILURE_MESSAGE``.
"""

from typing import Iterable, Optional

GENERIC_FAILURE_MESSAGE = (
    "Payment processing failed, please try again or contact support."
)


class BestowalError(Exception):
    """Base class for all handled bestowal errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    @property
    def public_message(self) -> str:
        if self.status_code >= 500:
            return GENERIC_FAILURE_MESSAGE
        return self.message


class ValidationError(BestowalError):
    status_code = 400

    def __init__(self, fields: Iterable[str], message: str = "Invalid request"):
        self.fields = sorted(set(fields))
        super().__init__(message)


class AuthenticationError(BestowalError):
    status_code = 401


class AuthorizationError(BestowalError):
    status_code = 403


class NotFoundError(BestowalError):
    status_code = 404


class InvalidStateError(BestowalError):
    status_code = 400


class IdempotencyConflictError(BestowalError):
    status_code = 409

    def __init__(
        self, message: str = "A request with this idempotency key is in progress"
    ):
        super().__init__(message)


class ConfigurationError(BestowalError):
    """Missing organization wallet or provider credentials."""

    status_code = 500


class WalletResolutionError(BestowalError):
    """No payable wallet for a recipient.

    Sower failures are operator problems (500); an optional grower that cannot
    be paid is the caller's problem (400).
    """

    def __init__(self, message: str, *, role: str = "sower"):
        self.role = role
        super().__init__(message, status_code=500 if role == "sower" else 400)


class AmountMismatchError(BestowalError):
    status_code = 400

    def __init__(self, expected, reported):
        self.expected = expected
        self.reported = reported
        super().__init__("Amount verification failed")


class WebhookVerificationError(BestowalError):
    status_code = 400


class PaymentProviderError(BestowalError):
    """Upstream provider failure. Detail is kept for logs only."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        provider_status: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.provider = provider
        self.provider_status = provider_status
        self.response_data = response_data or {}
        super().__init__(message)
