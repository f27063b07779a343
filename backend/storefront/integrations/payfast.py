"""
PayFast integration

Docs: https://developers.payfast.co.za/docs

- initialize: no API call; the buyer is redirected to the process URL with
  the signed checkout fields as query parameters
- verify: GET /process/query/<m_payment_id> on the merchant API, signed
  with the merchant headers
- webhook (ITN): form-encoded POST to the notify URL; the ``signature``
  field is the MD5 of every other posted field, in posted order, plus the
  passphrase when one is configured

Amounts travel in major units as a two-place string.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import parse_qsl, quote, quote_plus, urlencode

import httpx

from storefront.api.errors import (
    InvalidInputError,
    InvalidPayloadError,
    InvalidSignatureError,
    VerificationError,
)
from storefront.enums import PaymentProvider, PaymentStatus
from storefront.models import Order, User
from storefront.services.money import CENT, format_major

from .base import (
    InitializeResult,
    ProviderClient,
    ProviderConfig,
    VerificationResult,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

ITN_EVENT = "itn"

# Checkout fields in the order PayFast signs them
CHECKOUT_FIELDS = (
    "merchant_id",
    "merchant_key",
    "return_url",
    "cancel_url",
    "notify_url",
    "name_first",
    "name_last",
    "email_address",
    "m_payment_id",
    "amount",
    "item_name",
    "custom_str1",
    "email_confirmation",
    "confirmation_address",
)

_STATUS_MAP = {
    "COMPLETE": PaymentStatus.success,
    "FAILED": PaymentStatus.failed,
    "CANCELLED": PaymentStatus.failed,
}


@dataclass(frozen=True)
class PayFastConfig(ProviderConfig):
    merchant_id: str | None = None
    merchant_key: str | None = None
    passphrase: str | None = None
    process_url: str = "https://sandbox.payfast.co.za/eng/process"
    api_url: str = "https://api.payfast.co.za"
    return_url: str | None = None
    cancel_url: str | None = None
    notify_url: str | None = None
    sandbox: bool = True
    valid_ips: tuple[str, ...] = ()


def signature_string(pairs: list[tuple[str, str]], passphrase: str | None) -> str:
    """``k=v&...`` with values stripped and url-encoded, empty values skipped."""
    parts = [
        f"{key}={quote_plus(value.strip())}" for key, value in pairs if value and value.strip()
    ]
    if passphrase:
        parts.append(f"passphrase={quote_plus(passphrase.strip())}")
    return "&".join(parts)


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode()).hexdigest()


class PayFastClient(ProviderClient):
    """PayFast redirect checkout, ITN and query API."""

    provider = PaymentProvider.payfast
    config: PayFastConfig

    def checkout_fields(self, order: Order, user: User, reference: str) -> list[tuple[str, str]]:
        """
        Signed checkout fields in PayFast order

        Raises:
            InvalidInputError: bad total, missing email or missing name
            ProviderNotConfiguredError: merchant credentials not set
        """
        total = self._validate_checkout(order, user)
        if not user.name or not user.name.strip():
            raise InvalidInputError("Invalid user data: name is required")

        first, _, last = user.name.strip().partition(" ")
        values = {
            "merchant_id": self._require(self.config.merchant_id, "PayFast merchant id"),
            "merchant_key": self._require(self.config.merchant_key, "PayFast merchant key"),
            "return_url": self.config.return_url or "",
            "cancel_url": self.config.cancel_url or "",
            "notify_url": self.config.notify_url or "",
            "name_first": first,
            "name_last": last.strip(),
            "email_address": user.email,
            "m_payment_id": str(order.id),
            "amount": format_major(total),
            "item_name": f"Order #{order.id}",
            "custom_str1": reference,
            "email_confirmation": "1",
            "confirmation_address": user.email,
        }
        pairs = [(key, values[key]) for key in CHECKOUT_FIELDS if values[key]]
        pairs.append(("signature", md5_hex(signature_string(pairs, self.config.passphrase))))
        return pairs

    def initialize(self, order: Order, user: User) -> InitializeResult:
        reference = self._new_reference(order)
        pairs = self.checkout_fields(order, user, reference)
        redirect_url = f"{self.config.process_url}?{urlencode(pairs)}"
        logger.info(f"PayFast checkout for order {order.id} reference={reference}")
        return InitializeResult(
            reference=reference,
            provider_reference=str(order.id),
            redirect_url=redirect_url,
            raw=dict(pairs),
        )

    def _api_headers(self) -> dict[str, str]:
        """Merchant API headers; the signature covers them sorted by name."""
        headers = {
            "merchant-id": self._require(self.config.merchant_id, "PayFast merchant id"),
            "version": "v1",
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
        }
        signed = dict(headers)
        if self.config.passphrase:
            signed["passphrase"] = self.config.passphrase
        headers["signature"] = md5_hex(
            "&".join(f"{key}={quote_plus(signed[key].strip())}" for key in sorted(signed))
        )
        return headers

    def verify(self, reference: str) -> VerificationResult:
        """
        Query a payment by ``m_payment_id`` (the order id)

        Raises:
            VerificationError: API unreachable, non-2xx or an error body
        """
        url = f"{self.config.api_url.rstrip('/')}/process/query/{quote(reference, safe='')}"
        params = {"testing": "true"} if self.config.sandbox else None
        try:
            data = self._request(
                "GET", url, params=params, headers=self._api_headers(), error_cls=VerificationError
            )
        except httpx.TimeoutException as e:
            return self._pending_after_timeout(reference, e)

        if str(data.get("status") or "").lower() != "success":
            raise VerificationError(f"PayFast query failed: {data.get('data') or data.get('status')}")
        body = data.get("data")
        payment = body.get("response", body) if isinstance(body, dict) else None
        if not isinstance(payment, dict):
            raise VerificationError("PayFast query returned no payment")

        provider_status = str(payment.get("payment_status") or payment.get("status") or "").upper()
        pf_payment_id = payment.get("pf_payment_id")
        return VerificationResult(
            status=_STATUS_MAP.get(provider_status, PaymentStatus.pending),
            provider_transaction_id=str(pf_payment_id) if pf_payment_id else None,
            order_reference=str(payment.get("m_payment_id") or reference),
            amount=_parse_amount(payment.get("amount_gross") or payment.get("amount")),
            message=provider_status or None,
            raw=data,
        )

    def verify_signature(self, raw_body: bytes) -> bool:
        """
        Check the ITN signature over the raw body

        The signed string is the posted body with the ``signature`` field
        removed, exactly as received, plus ``&passphrase=`` when configured.
        """
        try:
            text = raw_body.decode()
        except UnicodeDecodeError:
            return False
        fields = text.split("&")
        received = [f for f in fields if f.startswith("signature=")]
        if len(received) != 1:
            return False
        signed = "&".join(f for f in fields if not f.startswith("signature="))
        if self.config.passphrase:
            signed = f"{signed}&passphrase={quote_plus(self.config.passphrase.strip())}"
        expected = md5_hex(signed)
        candidate = received[0].partition("=")[2].strip().lower()
        return hmac.compare_digest(expected.encode(), candidate.encode())

    def check_source(self, client_ip: str | None) -> None:
        """
        Reject an ITN whose sender is not a PayFast address

        Skipped in sandbox mode, where the callbacks come from test tooling.

        Raises:
            InvalidSignatureError: address missing or not on the allow-list
        """
        if self.config.sandbox:
            return
        if not client_ip or client_ip not in self.config.valid_ips:
            logger.warning(f"PayFast ITN rejected: source address {client_ip} not allowed")
            raise InvalidSignatureError("ITN source address not allowed")

    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """
        Authenticate and normalise an ITN

        Raises:
            InvalidSignatureError: signature missing or wrong
            InvalidPayloadError: no ``m_payment_id`` or ``payment_status``
        """
        if not self.verify_signature(raw_body):
            logger.warning("PayFast ITN rejected: invalid signature")
            raise InvalidSignatureError()

        fields: dict[str, Any] = dict(parse_qsl(raw_body.decode(), keep_blank_values=True))
        order_id = fields.get("m_payment_id")
        payment_status = str(fields.get("payment_status") or "").upper()
        if not order_id or not payment_status:
            raise InvalidPayloadError("PayFast ITN is missing m_payment_id or payment_status")

        merchant_id = self.config.merchant_id
        if merchant_id and fields.get("merchant_id") and fields["merchant_id"] != merchant_id:
            raise InvalidPayloadError("PayFast ITN is for another merchant")

        pf_payment_id = fields.get("pf_payment_id")
        return WebhookEvent(
            event_type=ITN_EVENT,
            provider_transaction_id=str(pf_payment_id or order_id),
            order_reference=str(order_id),
            status=_STATUS_MAP.get(payment_status, PaymentStatus.pending),
            amount=_parse_amount(fields.get("amount_gross")),
            raw=fields,
        )


def _parse_amount(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value)).quantize(CENT)
    except InvalidOperation:
        logger.warning(f"Unparseable PayFast amount: {value}")
        return None
