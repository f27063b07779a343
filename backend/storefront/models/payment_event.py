"""
Payment event model

Idempotency record for reconciled payments.
"""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from storefront.enums import PaymentEventSource, PaymentProvider

from .base import utc_now


class PaymentEvent(SQLModel, table=True):
    """
    One reconciled payment

    Written in the same transaction that moves the order to processing. The
    unique ``(provider, transaction_id)`` pair makes a second webhook
    delivery, or a verify racing a webhook, fail at insert time instead of
    decrementing stock twice.

    Fields:
    - provider: payment provider
    - transaction_id: provider transaction id (Paystack reference, Yoco
      checkout/charge id, PayFast pf_payment_id)
    - order_id: order the payment was applied to
    - source: webhook, verify or charge
    - event_type: provider event name, when there is one
    - payload: raw provider data, kept for audit
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint("provider", "transaction_id", name="uq_payment_events_provider_tx"),
    )

    id: int | None = Field(default=None, primary_key=True)
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    transaction_id: str = Field(sa_column=Column(String(128), nullable=False))
    order_id: str = Field(sa_column=Column(String(36), index=True, nullable=False))
    source: PaymentEventSource = Field(sa_column=Column(String(16), nullable=False))
    event_type: str | None = Field(default=None, max_length=64)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
