"""
Provider client registry

Builds one client per provider from ``Settings`` at start-up. Routes get the
registry through ``storefront.api.deps.ProvidersDep`` and pick a client by
name, by the provider stored on the order, or (for webhooks) by the
signature headers the callback carries.
"""
from __future__ import annotations

from collections.abc import Mapping

import httpx

from storefront.api.errors import InvalidInputError, ProviderNotConfiguredError
from storefront.core.config import Settings
from storefront.enums import PaymentProvider

from .base import ProviderClient
from .payfast import PayFastClient, PayFastConfig
from .paystack import SIGNATURE_HEADER as PAYSTACK_SIGNATURE_HEADER
from .paystack import PaystackClient, PaystackConfig
from .yoco import YocoClient, YocoConfig


class ProviderRegistry:
    """Provider clients keyed by ``PaymentProvider``."""

    def __init__(self, clients: Mapping[PaymentProvider, ProviderClient], default: PaymentProvider) -> None:
        self._clients = dict(clients)
        self.default = default

    def get(self, provider: PaymentProvider | str | None = None) -> ProviderClient:
        """
        Client for ``provider``, or the default one

        Raises:
            InvalidInputError: unknown provider name
            ProviderNotConfiguredError: provider has no client
        """
        if provider is None:
            key = self.default
        else:
            try:
                key = PaymentProvider(provider)
            except ValueError:
                raise InvalidInputError(f"Unknown payment provider: {provider}")
        client = self._clients.get(key)
        if client is None:
            raise ProviderNotConfiguredError(f"{key.value} is not configured")
        return client

    def yoco(self) -> YocoClient:
        client = self.get(PaymentProvider.yoco)
        if not isinstance(client, YocoClient):
            raise ProviderNotConfiguredError("yoco card charges are not configured")
        return client

    def detect(self, headers: Mapping[str, str], content_type: str | None = None) -> ProviderClient:
        """Guess the sender of a webhook from its headers."""
        lowered = {key.lower() for key in headers.keys()}
        if PAYSTACK_SIGNATURE_HEADER in lowered:
            return self.get(PaymentProvider.paystack)
        if "webhook-signature" in lowered:
            return self.get(PaymentProvider.yoco)
        if content_type and content_type.startswith("application/x-www-form-urlencoded"):
            return self.get(PaymentProvider.payfast)
        return self.get()


def build_provider_registry(
    settings: Settings, *, transport: httpx.BaseTransport | None = None
) -> ProviderRegistry:
    """Construct every provider client from settings."""
    timeout = settings.PROVIDER_HTTP_TIMEOUT_SECONDS
    currency = settings.PAYMENT_CURRENCY
    clients: dict[PaymentProvider, ProviderClient] = {
        PaymentProvider.paystack: PaystackClient(
            PaystackConfig(
                currency=currency,
                timeout=timeout,
                secret_key=settings.paystack_secret_key,
                public_key=settings.paystack_public_key,
                base_url=settings.PAYSTACK_BASE_URL,
                callback_url=settings.PAYSTACK_CALLBACK_URL,
            ),
            transport=transport,
        ),
        PaymentProvider.yoco: YocoClient(
            YocoConfig(
                currency=currency,
                timeout=timeout,
                secret_key=settings.yoco_secret_key,
                public_key=settings.yoco_public_key,
                webhook_secret=settings.YOCO_WEBHOOK_SECRET,
                base_url=settings.YOCO_BASE_URL,
                charge_url=settings.YOCO_CHARGE_URL,
                success_url=settings.YOCO_SUCCESS_URL,
                cancel_url=settings.YOCO_CANCEL_URL,
                failure_url=settings.YOCO_FAILURE_URL,
            ),
            transport=transport,
        ),
        PaymentProvider.payfast: PayFastClient(
            PayFastConfig(
                currency=currency,
                timeout=timeout,
                merchant_id=settings.PAYFAST_MERCHANT_ID,
                merchant_key=settings.PAYFAST_MERCHANT_KEY,
                passphrase=settings.PAYFAST_PASSPHRASE,
                process_url=(
                    settings.PAYFAST_PROCESS_URL
                    if settings.payments_live
                    else settings.PAYFAST_SANDBOX_PROCESS_URL
                ),
                api_url=settings.PAYFAST_API_URL,
                return_url=settings.PAYFAST_RETURN_URL,
                cancel_url=settings.PAYFAST_CANCEL_URL,
                notify_url=settings.PAYFAST_NOTIFY_URL,
                sandbox=not settings.payments_live,
                valid_ips=tuple(settings.PAYFAST_VALID_IPS),
            ),
            transport=transport,
        ),
    }
    return ProviderRegistry(clients, default=PaymentProvider(settings.PAYMENT_PROVIDER))
