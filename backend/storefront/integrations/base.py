"""
Payment provider integration base

Each provider client wraps one provider's HTTP contract (auth headers,
endpoint shapes, amount units, signature scheme) behind the same three
operations:

- initialize(order, user): start a payment, return where to send the buyer
- verify(reference): ask the provider for the state of a payment
- handle_webhook(raw_body, headers): authenticate and normalise a callback

Clients are built once from a frozen config object (see
``storefront.api.deps``) and never touch the database.

``transport`` is passed straight to ``httpx.Client``; tests inject an
``httpx.MockTransport`` there.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from storefront.api.errors import (
    InvalidInputError,
    InvalidPayloadError,
    ProviderNotConfiguredError,
    ProviderRequestError,
    VerificationError,
)
from storefront.enums import PaymentProvider, PaymentStatus
from storefront.models import Order, User
from storefront.services.money import from_minor_units, parse_total
from storefront.services.references import build_composite_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Settings shared by every provider."""
    currency: str = "ZAR"
    timeout: float = 10.0


@dataclass(frozen=True)
class InitializeResult:
    """
    Outcome of starting a payment

    - reference: composite correlation string ``order_<id>_<ms>``
    - provider_reference: token the provider lookup API accepts; the caller
      stores it as the order's payment reference
    - redirect_url: hosted payment page
    - access_code: client-side token for inline widgets (Paystack)
    """
    reference: str
    provider_reference: str
    redirect_url: str | None = None
    access_code: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class VerificationResult:
    """
    Provider view of a payment

    ``status`` is one of success/pending/failed; a failed payment is a valid
    answer, not an error.
    """
    status: PaymentStatus
    provider_transaction_id: str | None = None
    order_reference: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime | None = None
    message: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Authenticated provider callback

    ``status`` is None for event types the service does not act on; those
    are acknowledged without touching any order.
    """
    event_type: str
    provider_transaction_id: str | None = None
    order_reference: str | None = None
    status: PaymentStatus | None = None
    amount: Decimal | None = None
    paid_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def as_verification(self) -> VerificationResult:
        """Webhook outcome in the shape reconciliation consumes."""
        return VerificationResult(
            status=self.status or PaymentStatus.pending,
            provider_transaction_id=self.provider_transaction_id,
            order_reference=self.order_reference,
            amount=self.amount,
            paid_at=self.paid_at,
            raw=self.raw,
        )


@dataclass(frozen=True)
class ChargeResult:
    """Synchronous card charge outcome."""
    charge_id: str | None
    status: str
    raw: dict[str, Any] | None = None

    @property
    def successful(self) -> bool:
        return self.status == "successful"


def epoch_ms() -> int:
    return int(time.time() * 1000)


def parse_timestamp(value: Any) -> datetime | None:
    """ISO 8601 provider timestamp to an aware datetime; None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable provider timestamp: {value}")
        return None


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup over any mapping."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


class ProviderClient:
    """
    Common plumbing for provider clients

    Subclasses set ``provider`` and implement the three operations.
    """

    provider: PaymentProvider

    def __init__(self, config: ProviderConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport

    @property
    def name(self) -> str:
        return self.provider.value

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.config.timeout, transport=self._transport)

    def _require(self, value: str | None, setting: str) -> str:
        if not value:
            raise ProviderNotConfiguredError(f"{setting} not configured")
        return value

    def _amount(
        self,
        minor: Any,
        error_cls: type[VerificationError] | type[InvalidPayloadError],
    ) -> Decimal | None:
        """Provider minor-unit amount as a Decimal; None when absent."""
        if minor is None:
            return None
        try:
            return from_minor_units(minor)
        except (ValueError, TypeError, ArithmeticError):
            raise error_cls(f"{self.name} sent a non-numeric amount: {minor!r}")

    def check_source(self, client_ip: str | None) -> None:
        """Reject callbacks from addresses the provider does not send from."""

    def _validate_order(self, order: Order) -> Decimal:
        if order is None or not order.id:
            raise InvalidInputError("Invalid order data")
        return parse_total(order.total)

    def _validate_checkout(self, order: Order, user: User) -> Decimal:
        """
        Check what every provider needs before a network call

        Returns:
            the order total as a positive Decimal

        Raises:
            InvalidInputError: missing order id, bad total or missing email
        """
        total = self._validate_order(order)
        if user is None or not user.email:
            raise InvalidInputError("Invalid user data: email is required")
        return total

    def _new_reference(self, order: Order) -> str:
        return build_composite_reference(str(order.id), epoch_ms())

    def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[VerificationError] | type[ProviderRequestError] = ProviderRequestError,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Send a request and return the decoded JSON object

        ``httpx.TimeoutException`` is left to the caller: a verify that times
        out is reported as pending, not as a failure.

        Raises:
            VerificationError | ProviderRequestError: transport error, non-2xx
                status or a body that is not a JSON object
        """
        try:
            with self._client() as client:
                r = client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as e:
            logger.error(f"{self.name} {method} {url} failed: {e}")
            raise error_cls(f"{self.name} request error: {e}")

        if r.status_code >= 400:
            logger.error(f"{self.name} {method} {url} returned {r.status_code}: {r.text[:500]}")
            raise error_cls(f"{self.name} returned HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError:
            raise error_cls(f"{self.name} returned an invalid response")
        if not isinstance(data, dict):
            raise error_cls(f"{self.name} returned an invalid response")
        return data

    def _pending_after_timeout(self, reference: str, exc: Exception) -> VerificationResult:
        logger.warning(f"{self.name} verify timed out for {reference}: {exc}")
        return VerificationResult(
            status=PaymentStatus.pending,
            order_reference=reference,
            message="Provider timed out; payment still pending",
        )

    def initialize(self, order: Order, user: User) -> InitializeResult:
        raise NotImplementedError

    def verify(self, reference: str) -> VerificationResult:
        raise NotImplementedError

    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        raise NotImplementedError
