"""Service error hierarchy for AI provider, payment and ledger operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (500, 502, 503, 504)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Malformed provider responses
    - Configuration errors
    """

    pass


# AI provider errors
class ProviderNetworkError(TransientError):
    """Network timeout or connection failure talking to the AI provider."""

    pass


class ProviderRateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class ProviderAuthError(PermanentError):
    """Authentication failure (401, 403)."""

    pass


class ProviderValidationError(PermanentError):
    """Bad request (400) or a response that cannot be interpreted."""

    pass


# Result storage errors
class ResultStorageError(TransientError):
    """Generated image could not be downloaded, decoded or stored."""

    pass


# Payment provider errors
class PaymentProviderError(ServiceError):
    """Stripe API call failed."""

    pass


class InvalidSignatureError(PermanentError):
    """Webhook signature is missing, malformed, or does not verify."""

    pass


# Ledger and catalog errors
class InsufficientCreditsError(PermanentError):
    """Debit would make the user's balance negative."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")


class CreditPackNotFoundError(PermanentError):
    """Credit pack does not exist or is not on sale."""

    pass


class PurchaseNotFoundError(PermanentError):
    """No purchase entry matches a refunded payment."""

    pass


class JobNotFoundError(PermanentError):
    """Job id does not exist (or belongs to another user)."""

    pass
