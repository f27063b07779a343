"""
Yoco integration

Docs: https://developer.yoco.com/online/checkout/
Webhooks: https://developer.yoco.com/online/resources/webhooks

Two payment paths:

- hosted checkout: POST /checkouts returns ``redirectUrl`` and a checkout
  ``id``; the id is the lookup token for GET /checkouts/<id> and comes back
  as ``metadata.checkoutId`` in the ``payment.succeeded`` webhook
- inline card token: POST to the charges API with ``X-Auth-Secret-Key``

Webhooks are signed Standard Webhooks style: ``webhook-signature`` holds
``v1,<base64 HMAC-SHA256>`` of ``"<webhook-id>.<webhook-timestamp>.<body>"``
keyed with the base64 part of the ``whsec_`` secret.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from storefront.api.errors import (
    InvalidPayloadError,
    InvalidSignatureError,
    ProviderNotConfiguredError,
    ProviderRequestError,
    VerificationError,
)
from storefront.enums import PaymentProvider, PaymentStatus
from storefront.models import Order, User
from storefront.services.money import to_minor_units

from .base import (
    ChargeResult,
    InitializeResult,
    ProviderClient,
    ProviderConfig,
    VerificationResult,
    WebhookEvent,
    header,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"

_CHECKOUT_FAILED_STATUSES = {"expired", "cancelled", "failed"}


@dataclass(frozen=True)
class YocoConfig(ProviderConfig):
    secret_key: str | None = None
    public_key: str | None = None
    webhook_secret: str | None = None
    base_url: str = "https://payments.yoco.com/api"
    charge_url: str = "https://online.yoco.com/v1/charges/"
    success_url: str | None = None
    cancel_url: str | None = None
    failure_url: str | None = None
    # Max age of a webhook timestamp; 0 disables the check
    webhook_tolerance_seconds: int = 300


class YocoClient(ProviderClient):
    """Yoco checkout and charges API client."""

    provider = PaymentProvider.yoco
    config: YocoConfig

    def _headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        secret = self._require(self.config.secret_key, "Yoco secret key")
        headers = {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def initialize(self, order: Order, user: User) -> InitializeResult:
        """
        Create a hosted checkout

        Raises:
            InvalidInputError: bad order total or missing email
            ProviderRequestError: Yoco unreachable or no redirect URL returned
        """
        total = self._validate_checkout(order, user)
        reference = self._new_reference(order)
        payload: dict[str, Any] = {
            "amount": to_minor_units(total),
            "currency": self.config.currency,
            "metadata": {
                "order_id": str(order.id),
                "reference": reference,
                "customer_email": user.email,
            },
        }
        for key, value in (
            ("successUrl", self.config.success_url),
            ("cancelUrl", self.config.cancel_url),
            ("failureUrl", self.config.failure_url),
        ):
            if value:
                payload[key] = value

        logger.info(f"Yoco checkout for order {order.id} reference={reference}")
        try:
            data = self._request(
                "POST",
                self._url("/checkouts"),
                json=payload,
                headers=self._headers(idempotency_key=reference),
            )
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"Yoco checkout timed out: {e}")

        checkout_id = data.get("id")
        redirect_url = data.get("redirectUrl")
        if not checkout_id or not redirect_url:
            logger.error(f"Yoco checkout for order {order.id} returned no redirect: {data}")
            raise ProviderRequestError("Yoco checkout returned no redirect URL")

        return InitializeResult(
            reference=reference,
            provider_reference=str(checkout_id),
            redirect_url=str(redirect_url),
            raw=data,
        )

    def verify(self, reference: str) -> VerificationResult:
        """
        Look a checkout up by id

        Raises:
            VerificationError: Yoco unreachable, unknown checkout or bad body
        """
        url = self._url(f"/checkouts/{quote(reference, safe='')}")
        try:
            data = self._request("GET", url, headers=self._headers(), error_cls=VerificationError)
        except httpx.TimeoutException as e:
            return self._pending_after_timeout(reference, e)

        if not data.get("id"):
            raise VerificationError("Yoco verify returned no checkout")

        checkout_status = str(data.get("status") or "").lower()
        if checkout_status == "completed":
            status = PaymentStatus.success
        elif checkout_status in _CHECKOUT_FAILED_STATUSES:
            status = PaymentStatus.failed
        else:
            status = PaymentStatus.pending

        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        amount = data.get("amount")
        return VerificationResult(
            status=status,
            provider_transaction_id=str(data["id"]),
            order_reference=str(metadata.get("order_id") or data["id"]),
            amount=self._amount(amount, VerificationError),
            currency=data.get("currency"),
            raw=data,
        )

    def charge(self, token: str, order: Order) -> ChargeResult:
        """
        Charge a card token from the inline widget

        A declined card is a valid answer: 4xx responses come back as a
        ``ChargeResult`` whose status is not ``successful``.

        Raises:
            InvalidInputError: bad order total
            ProviderRequestError: Yoco unreachable, timed out or 5xx
        """
        total = self._validate_order(order)
        secret = self._require(self.config.secret_key, "Yoco secret key")
        payload = {
            "token": token,
            "amountInCents": to_minor_units(total),
            "currency": self.config.currency,
            "metadata": {"order_id": str(order.id)},
        }
        logger.info(f"Yoco charge for order {order.id}")
        try:
            with self._client() as client:
                r = client.post(
                    self.config.charge_url,
                    json=payload,
                    headers={"X-Auth-Secret-Key": secret, "Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Yoco charge for order {order.id} failed: {e}")
            raise ProviderRequestError(f"Yoco charge error: {e}")

        if r.status_code >= 500:
            logger.error(f"Yoco charge for order {order.id} returned {r.status_code}")
            raise ProviderRequestError(f"Yoco returned HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError:
            raise ProviderRequestError("Yoco charge returned an invalid response")
        if not isinstance(data, dict):
            raise ProviderRequestError("Yoco charge returned an invalid response")

        status = str(data.get("status") or ("failed" if r.status_code >= 400 else ""))
        if status != "successful":
            logger.warning(
                f"Yoco charge for order {order.id} not successful: "
                f"{data.get('errorCode') or status} {data.get('displayMessage') or ''}"
            )
        return ChargeResult(
            charge_id=str(data["id"]) if data.get("id") else None,
            status=status,
            raw=data,
        )

    def _signing_key(self) -> bytes:
        secret = self.config.webhook_secret
        if not secret:
            raise ProviderNotConfiguredError("Yoco webhook secret not configured")
        encoded = secret.split("_", 1)[1] if secret.startswith("whsec_") else secret
        try:
            return base64.b64decode(encoded)
        except (binascii.Error, ValueError):
            raise ProviderNotConfiguredError("Yoco webhook secret is not valid base64")

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        webhook_id = header(headers, "webhook-id")
        timestamp = header(headers, "webhook-timestamp")
        signatures = header(headers, "webhook-signature")
        if not webhook_id or not timestamp or not signatures:
            return False

        key = self._signing_key()
        signed = f"{webhook_id}.{timestamp}.".encode() + raw_body
        expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest())

        matched = False
        # Several space separated "v1,<sig>" entries during secret rotation
        for entry in signatures.split():
            version, _, candidate = entry.partition(",")
            if version == "v1" and hmac.compare_digest(expected, candidate.encode()):
                matched = True
        if not matched:
            return False

        tolerance = self.config.webhook_tolerance_seconds
        if tolerance:
            try:
                age = abs(time.time() - int(timestamp))
            except ValueError:
                return False
            if age > tolerance:
                logger.warning(f"Yoco webhook {webhook_id} timestamp outside tolerance")
                return False
        return True

    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """
        Authenticate and normalise a Yoco event

        Raises:
            InvalidSignatureError: missing headers, bad signature or stale timestamp
            InvalidPayloadError: body is not a JSON event
        """
        if not self.verify_signature(raw_body, headers):
            logger.warning("Yoco webhook rejected: invalid signature")
            raise InvalidSignatureError()

        try:
            event = json.loads(raw_body)
        except ValueError:
            raise InvalidPayloadError("Yoco webhook body is not valid JSON")
        if not isinstance(event, dict) or not event.get("type"):
            raise InvalidPayloadError("Yoco webhook body has no type")

        event_type = str(event["type"])
        if event_type not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
            logger.info(f"Yoco event {event_type} acknowledged without action")
            return WebhookEvent(event_type=event_type, raw=event)

        payment = event.get("payload")
        if not isinstance(payment, dict):
            raise InvalidPayloadError("Yoco payment event has no payload")
        metadata = payment.get("metadata") if isinstance(payment.get("metadata"), dict) else {}
        transaction_id = metadata.get("checkoutId") or payment.get("id")
        if not transaction_id:
            raise InvalidPayloadError("Yoco payment event has no checkout or payment id")

        amount = payment.get("amount")
        return WebhookEvent(
            event_type=event_type,
            provider_transaction_id=str(transaction_id),
            order_reference=str(metadata.get("order_id") or transaction_id),
            status=PaymentStatus.success if event_type == PAYMENT_SUCCEEDED else PaymentStatus.failed,
            amount=self._amount(amount, InvalidPayloadError),
            paid_at=parse_timestamp(payment.get("createdDate") or event.get("createdDate")),
            raw=event,
        )
