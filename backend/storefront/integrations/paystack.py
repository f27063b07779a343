"""
Paystack integration

Docs: https://paystack.com/docs/api/transaction/
Webhooks: https://paystack.com/docs/payments/webhooks/

- initialize: POST /transaction/initialize, amount in cents, returns the
  hosted checkout URL and an access code for the inline popup
- verify: GET /transaction/verify/<reference>
- webhook: ``x-paystack-signature`` is the HMAC-SHA512 hex digest of the
  raw body keyed with the secret key; ``charge.success`` is the only event
  acted on
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from storefront.api.errors import (
    InvalidPayloadError,
    InvalidSignatureError,
    ProviderRequestError,
    VerificationError,
)
from storefront.enums import PaymentProvider, PaymentStatus
from storefront.models import Order, User
from storefront.services.money import to_minor_units

from .base import (
    InitializeResult,
    ProviderClient,
    ProviderConfig,
    VerificationResult,
    WebhookEvent,
    header,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS = "charge.success"

_FAILED_STATUSES = {"failed", "abandoned", "reversed"}


@dataclass(frozen=True)
class PaystackConfig(ProviderConfig):
    secret_key: str | None = None
    public_key: str | None = None
    base_url: str = "https://api.paystack.co"
    callback_url: str | None = None


class PaystackClient(ProviderClient):
    """Paystack transactions API client."""

    provider = PaymentProvider.paystack
    config: PaystackConfig

    def _headers(self) -> dict[str, str]:
        secret = self._require(self.config.secret_key, "Paystack secret key")
        return {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def initialize(self, order: Order, user: User) -> InitializeResult:
        """
        Start a Paystack transaction

        The composite reference is both our correlation string and the
        Paystack transaction reference, so it doubles as the lookup token.

        Raises:
            InvalidInputError: bad order total or missing email
            ProviderRequestError: Paystack unreachable or refused the request
        """
        total = self._validate_checkout(order, user)
        reference = self._new_reference(order)
        payload: dict[str, Any] = {
            "email": user.email,
            "amount": to_minor_units(total),
            "currency": self.config.currency,
            "reference": reference,
            "metadata": {"order_id": str(order.id)},
        }
        if self.config.callback_url:
            payload["callback_url"] = self.config.callback_url

        logger.info(f"Paystack initialize for order {order.id} reference={reference}")
        try:
            data = self._request(
                "POST", self._url("/transaction/initialize"), json=payload, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"Paystack initialize timed out: {e}")

        body = data.get("data")
        if not data.get("status") or not isinstance(body, dict) or not body.get("authorization_url"):
            logger.error(f"Paystack initialize rejected for order {order.id}: {data.get('message')}")
            raise ProviderRequestError(f"Paystack initialize failed: {data.get('message')}")

        return InitializeResult(
            reference=str(body.get("reference") or reference),
            provider_reference=str(body.get("reference") or reference),
            redirect_url=body.get("authorization_url"),
            access_code=body.get("access_code"),
            raw=data,
        )

    def verify(self, reference: str) -> VerificationResult:
        """
        Look a transaction up by reference

        Raises:
            VerificationError: Paystack unreachable, non-2xx or ``status: false``
        """
        url = self._url(f"/transaction/verify/{quote(reference, safe='')}")
        try:
            data = self._request("GET", url, headers=self._headers(), error_cls=VerificationError)
        except httpx.TimeoutException as e:
            return self._pending_after_timeout(reference, e)

        body = data.get("data")
        if not data.get("status") or not isinstance(body, dict):
            raise VerificationError(f"Paystack verify failed: {data.get('message')}")

        provider_status = str(body.get("status") or "").lower()
        if provider_status == "success":
            status = PaymentStatus.success
        elif provider_status in _FAILED_STATUSES:
            status = PaymentStatus.failed
        else:
            status = PaymentStatus.pending

        amount = body.get("amount")
        return VerificationResult(
            status=status,
            provider_transaction_id=str(body.get("reference") or reference),
            order_reference=_order_reference(body) or reference,
            amount=self._amount(amount, VerificationError),
            currency=body.get("currency"),
            paid_at=parse_timestamp(body.get("paid_at") or body.get("paidAt")),
            message=body.get("gateway_response"),
            raw=data,
        )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        secret = self._require(self.config.secret_key, "Paystack secret key")
        if not signature:
            return False
        expected = hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected.encode(), signature.strip().lower().encode())

    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """
        Authenticate and normalise a Paystack event

        Raises:
            InvalidSignatureError: missing or wrong ``x-paystack-signature``
            InvalidPayloadError: body is not a JSON event
        """
        if not self.verify_signature(raw_body, header(headers, SIGNATURE_HEADER)):
            logger.warning("Paystack webhook rejected: invalid signature")
            raise InvalidSignatureError()

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise InvalidPayloadError("Paystack webhook body is not valid JSON")
        if not isinstance(payload, dict) or not payload.get("event"):
            raise InvalidPayloadError("Paystack webhook body has no event")

        event_type = str(payload["event"])
        body = payload.get("data")
        if event_type != CHARGE_SUCCESS:
            logger.info(f"Paystack event {event_type} acknowledged without action")
            return WebhookEvent(event_type=event_type, raw=payload)
        if not isinstance(body, dict) or not body.get("reference"):
            raise InvalidPayloadError("Paystack charge event has no reference")

        reference = str(body["reference"])
        amount = body.get("amount")
        return WebhookEvent(
            event_type=event_type,
            provider_transaction_id=reference,
            order_reference=_order_reference(body) or reference,
            status=PaymentStatus.success,
            amount=self._amount(amount, InvalidPayloadError),
            paid_at=parse_timestamp(body.get("paid_at") or body.get("paidAt")),
            raw=payload,
        )


def _order_reference(body: dict[str, Any]) -> str | None:
    """The reference itself; the metadata order id only when the reference is missing."""
    if body.get("reference"):
        return str(body["reference"])
    metadata = body.get("metadata")
    if isinstance(metadata, dict) and metadata.get("order_id"):
        return str(metadata["order_id"])
    return None
