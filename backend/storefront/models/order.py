"""
Order models

An order is created ``pending`` at checkout and only moves forward:
pending -> processing -> shipped -> delivered, or pending -> cancelled.
Transitions go through ``storefront.crud.orders.transition_status``.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlmodel import Field, SQLModel

from storefront.enums import OrderStatus, PaymentProvider

from .base import new_uuid, utc_now


class Order(SQLModel, table=True):
    """
    Customer order

    Fields:
    - id: UUID string
    - user_id: owner (foreign key)
    - total: order total in major units, two decimal places
    - status: lifecycle state, see module docstring
    - recipient_name .. delivery_instructions: delivery address
    - tracking_number: courier tracking number, set when shipped
    - payment_reference: provider token; the lookup token after
      initialisation, the provider transaction id once paid
    - payment_provider: provider the order was initialised with
    - paid_at: when the payment was reconciled
    """
    __tablename__ = "orders"
    id: str = Field(
        default_factory=new_uuid,
        sa_column=Column(String(36), primary_key=True),
    )
    user_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )

    total: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    status: OrderStatus = Field(
        default=OrderStatus.pending,
        sa_column=Column(String(16), nullable=False, index=True),
    )

    recipient_name: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)
    address_line1: str | None = Field(default=None, max_length=255)
    address_line2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=128)
    province: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=16)
    delivery_instructions: str | None = Field(default=None, max_length=1000)
    tracking_number: str | None = Field(default=None, max_length=64)

    payment_reference: str | None = Field(
        default=None, sa_column=Column(String(128), index=True, nullable=True)
    )
    payment_provider: PaymentProvider | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )
    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class OrderItem(SQLModel, table=True):
    """
    Line item of an order

    ``price`` is the unit price at checkout. ``product_id`` is nulled when
    the product is deleted, so stock updates must tolerate a missing product.
    """
    __tablename__ = "order_items"
    id: int | None = Field(default=None, primary_key=True)
    order_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    product_id: int | None = Field(
        default=None,
        sa_column=Column(
            Integer, ForeignKey("products.id", ondelete="SET NULL"), index=True, nullable=True
        ),
    )
    quantity: int = Field(default=1, ge=1)
    size: str = Field(sa_column=Column(String(32), nullable=False))
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
