"""
Enumerations

Every enum inherits from both ``str`` and ``Enum`` so values serialise as plain
strings in JSON responses and in the database, while still giving type safety
in the code.
"""
from enum import Enum


class OrderStatus(str, Enum):
    """
    Order lifecycle

    - pending: created at checkout, waiting for payment
    - processing: payment confirmed, stock decremented
    - shipped: handed to the courier
    - delivered: received by the customer
    - cancelled: abandoned before payment
    """
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentProvider(str, Enum):
    """Supported payment providers."""
    paystack = "paystack"
    yoco = "yoco"
    payfast = "payfast"


class PaymentStatus(str, Enum):
    """
    Normalised provider payment outcome

    Each provider reports its own vocabulary ("success", "completed",
    "COMPLETE", ...); the clients map them onto these three values.
    """
    success = "success"
    pending = "pending"
    failed = "failed"


class PaymentEventSource(str, Enum):
    """Which path delivered a payment confirmation."""
    webhook = "webhook"
    verify = "verify"
    charge = "charge"


class ReconciliationState(str, Enum):
    """
    Result of a reconciliation attempt

    - applied: order moved to processing and stock decremented
    - duplicate: the payment was already reconciled; nothing changed
    - not_successful: the provider did not report success; nothing changed
    """
    applied = "applied"
    duplicate = "duplicate"
    not_successful = "not_successful"
