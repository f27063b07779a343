"""
Payment reference parsing

A reference arriving at the verify endpoint or inside a webhook can be one
of three things:

- a bare order id (UUID)
- the composite correlation string ``order_<uuid>_<epoch ms>`` created at
  initialisation
- an opaque provider token (Yoco checkout id, PayFast payment id, ...)

It is parsed once at the boundary; lookups then switch on the type.
"""
import re
from dataclasses import dataclass

from storefront.api.errors import InvalidInputError

UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

_RAW_RE = re.compile(rf"^{UUID_PATTERN}$")
_COMPOSITE_RE = re.compile(rf"^order_(?P<order_id>{UUID_PATTERN})_(?P<timestamp>\d+)$")


@dataclass(frozen=True)
class RawReference:
    """A bare order id."""
    order_id: str

    @property
    def value(self) -> str:
        return self.order_id


@dataclass(frozen=True)
class CompositeReference:
    """
    ``order_<order_id>_<timestamp>``

    ``timestamp`` keeps the digits exactly as received, leading zeros
    included, so ``value`` matches the stored reference byte for byte.
    """
    order_id: str
    timestamp: str

    @property
    def value(self) -> str:
        return f"order_{self.order_id}_{self.timestamp}"


@dataclass(frozen=True)
class ProviderOpaqueReference:
    """Anything else: only meaningful to the provider that issued it."""
    value: str


PaymentReference = RawReference | CompositeReference | ProviderOpaqueReference


def parse_reference(value: str | None) -> PaymentReference:
    """
    Classify a payment reference

    Raises:
        InvalidInputError: empty or blank reference
    """
    text = (value or "").strip()
    if not text:
        raise InvalidInputError("Payment reference is required")

    match = _COMPOSITE_RE.match(text)
    if match:
        return CompositeReference(
            order_id=match.group("order_id"), timestamp=match.group("timestamp")
        )
    if _RAW_RE.match(text):
        return RawReference(order_id=text)
    return ProviderOpaqueReference(value=text)


def build_composite_reference(order_id: str, timestamp_ms: int) -> str:
    """Correlation string sent to the provider at initialisation."""
    return CompositeReference(order_id=order_id, timestamp=str(timestamp_ms)).value
