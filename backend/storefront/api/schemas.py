"""
API request/response schemas

Pydantic models for the HTTP surface; these are not tables. Field names
are snake_case in Python and camelCase on the wire (``orderId``,
``redirectUrl``), which is what the storefront sends and reads.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.enums import OrderStatus, PaymentProvider, PaymentStatus

# ============================================================
# Common
# ============================================================


class CamelModel(BaseModel):
    """Accepts both spellings on input; routes dump with ``by_alias=True``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TokenPayload(BaseModel):
    """
    JWT payload

    ``sub`` carries the user id.
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    Response wrapper used by every endpoint

    - code: 0 on success, business error code otherwise
    - message: "success" or the error description
    - data: payload on success, None on error

    Examples:
        {"code": 0, "message": "success", "data": {...}}
        {"code": 404101, "message": "Order not found", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


# ============================================================
# Payments
# ============================================================


class PaymentCreateRequest(CamelModel):
    """Start a payment; ``provider`` defaults to ``PAYMENT_PROVIDER``."""
    order_id: str = Field(min_length=1, max_length=64)
    provider: PaymentProvider | None = None


class ChargeRequest(CamelModel):
    """Yoco inline card token charge."""
    token: str = Field(min_length=1, max_length=256)
    order_id: str = Field(min_length=1, max_length=64)


class PaymentCreateData(CamelModel):
    redirect_url: str | None = None
    reference: str
    access_code: str | None = None
    provider: PaymentProvider


class ChargeData(CamelModel):
    order_id: str
    charge_id: str | None = None


class OrderItemData(CamelModel):
    id: int | None = None
    product_id: int | None = None
    size: str
    quantity: int
    price: Decimal


class OrderData(CamelModel):
    """Order as the storefront sees it."""
    id: str
    status: OrderStatus
    total: Decimal
    payment_reference: str | None = None
    payment_provider: PaymentProvider | None = None
    paid_at: datetime | None = None
    tracking_number: str | None = None
    created_at: datetime
    items: list[OrderItemData] = []


class StockFailureData(CamelModel):
    item_id: int | None = None
    product_id: int | None = None
    size: str
    reason: str


class VerificationData(CamelModel):
    """Provider view of the payment; ``status`` is pending when the provider could not answer."""
    status: PaymentStatus
    provider_transaction_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime | None = None
    message: str | None = None


class VerifyData(CamelModel):
    success: bool
    order: OrderData
    verification: VerificationData
    stock_failures: list[StockFailureData] = []


class OrderResultData(CamelModel):
    success: bool = True
    order: OrderData


class WebhookAckData(CamelModel):
    received: bool = True
    reconciled: bool = False
    duplicate: bool = False
