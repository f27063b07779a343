"""
Application exceptions

Every business error derives from ``AppError``; ``storefront.main`` renders
them all through a single handler into the standard envelope
``{"code": ..., "message": ..., "data": None}``.

Payment errors carry fixed codes so the storefront can tell them apart:

- 400101 invalid order/user input before any provider call
- 400102 authenticated webhook body that cannot be parsed
- 400103 provider declined a synchronous charge
- 401101 webhook signature mismatch
- 403101 order belongs to another user
- 404101 reference does not resolve to an order
- 409101 forbidden order status transition
- 500101 provider not configured
- 502101 provider lookup failed (verify)
- 502102 provider call failed (initialize, charge)
"""
from __future__ import annotations


class AppError(Exception):
    """
    Base application error

    Carries:
    - code: business error code (the storefront switches on it)
    - message: human readable message
    - status_code: HTTP status used in the response

    Example:
        raise AppError(code=404101, message="Order not found", status_code=404)
    """

    default_code = 500000
    default_message = "Internal error"
    default_status_code = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        code: int | None = None,
        status_code: int | None = None,
    ) -> None:
        """
        Args:
            message: error message, defaults to the class message
            code: business error code, defaults to the class code
            status_code: HTTP status, defaults to the class status
        """
        self.code = code if code is not None else self.default_code
        self.message = message if message is not None else self.default_message
        self.status_code = status_code if status_code is not None else self.default_status_code
        super().__init__(self.message)


class InvalidInputError(AppError):
    """Order or user data rejected before any network call."""
    default_code = 400101
    default_message = "Invalid payment input"
    default_status_code = 400


class InvalidPayloadError(AppError):
    default_code = 400102
    default_message = "Invalid webhook payload"
    default_status_code = 400


class PaymentDeclinedError(AppError):
    default_code = 400103
    default_message = "Payment was not successful"
    default_status_code = 400


class InvalidSignatureError(AppError):
    """Webhook signature did not match; nothing downstream may run."""
    default_code = 401101
    default_message = "Invalid webhook signature"
    default_status_code = 401


class OrderAccessDenied(AppError):
    default_code = 403101
    default_message = "Not authorized to access this order"
    default_status_code = 403


class OrderNotFoundError(AppError):
    default_code = 404101
    default_message = "Order not found"
    default_status_code = 404


class InvalidStatusTransition(AppError):
    default_code = 409101
    default_message = "Order status transition not allowed"
    default_status_code = 409


class ProviderNotConfiguredError(AppError):
    default_code = 500101
    default_message = "Payment provider not configured"
    default_status_code = 500


class VerificationError(AppError):
    """
    Provider lookup failed

    Recoverable: the verify endpoint absorbs it and reports the payment as
    still pending instead of failing the request.
    """
    default_code = 502101
    default_message = "Payment verification failed"
    default_status_code = 502


class ProviderRequestError(AppError):
    """Provider call made on the customer's behalf (initialize, charge) failed."""
    default_code = 502102
    default_message = "Payment provider request failed"
    default_status_code = 502
