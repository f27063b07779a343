"""
Payment flows

Orchestration behind the ``/payments`` routes: each function takes the
request session, the provider client and the caller, and returns plain
results for the route to wrap.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlmodel import Session

from storefront.api.errors import (
    AppError,
    InvalidStatusTransition,
    OrderAccessDenied,
    OrderNotFoundError,
    PaymentDeclinedError,
    ProviderNotConfiguredError,
    VerificationError,
)
from storefront.crud import orders as orders_crud
from storefront.enums import OrderStatus, PaymentEventSource, PaymentStatus
from storefront.integrations.base import (
    ChargeResult,
    InitializeResult,
    ProviderClient,
    VerificationResult,
)
from storefront.integrations.registry import ProviderRegistry
from storefront.integrations.yoco import YocoClient
from storefront.models import Order, User
from storefront.services.reconciliation import (
    ReconciliationOutcome,
    locate_order,
    reconcile,
)
from storefront.services.references import CompositeReference, RawReference, parse_reference

logger = logging.getLogger(__name__)

_VERIFY_ERRORS = (VerificationError, ProviderNotConfiguredError)


@dataclass(frozen=True)
class VerifyOutcome:
    """What the verify endpoint reports; ``error`` is set when the provider could not answer."""
    order: Order
    verification: VerificationResult
    reconciliation: ReconciliationOutcome | None = None
    error: str | None = None


@dataclass(frozen=True)
class WebhookAck:
    received: bool = True
    reconciled: bool = False
    duplicate: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {"received": self.received, "reconciled": self.reconciled, "duplicate": self.duplicate}


def ensure_owner(order: Order, user: User) -> None:
    """
    Raises:
        OrderAccessDenied: the order belongs to someone else and ``user`` is not an admin
    """
    if order.user_id != user.id and not user.is_admin:
        raise OrderAccessDenied()


def get_owned_order(session: Session, reference: str, user: User) -> Order:
    """
    Order for a reference, checked against the caller

    Raises:
        OrderNotFoundError: nothing matches
        OrderAccessDenied: not the caller's order
    """
    order = locate_order(session, reference)
    if order is None:
        raise OrderNotFoundError()
    ensure_owner(order, user)
    return order


def _ensure_pending(order: Order) -> None:
    if OrderStatus(order.status) != OrderStatus.pending:
        raise InvalidStatusTransition(f"Order is {OrderStatus(order.status).value}, not awaiting payment")


def start_payment(session: Session, client: ProviderClient, order_id: str, user: User) -> InitializeResult:
    """
    Initialise a payment for a pending order

    The provider lookup token is stored on the order so a later verify or
    webhook can find it.
    """
    order = get_owned_order(session, order_id, user)
    _ensure_pending(order)
    result = client.initialize(order, user)
    orders_crud.set_payment_reference(
        session=session, order=order, reference=result.provider_reference, provider=client.provider
    )
    logger.info(f"Payment started for order {order.id} with {client.name}: {result.reference}")
    return result


def charge_order(
    session: Session, client: YocoClient, token: str, order_id: str, user: User
) -> tuple[ReconciliationOutcome, ChargeResult]:
    """
    Charge a card token and reconcile the order on success

    Raises:
        PaymentDeclinedError: Yoco did not report ``successful``
    """
    order = get_owned_order(session, order_id, user)
    _ensure_pending(order)
    charge = client.charge(token, order)
    if not charge.successful:
        raise PaymentDeclinedError(f"Payment was not successful: {charge.status}")

    outcome = reconcile(
        session,
        str(order.id),
        VerificationResult(
            status=PaymentStatus.success,
            provider_transaction_id=charge.charge_id,
            order_reference=str(order.id),
            raw=charge.raw,
        ),
        provider=client.provider,
        source=PaymentEventSource.charge,
        event_type="charge",
    )
    return outcome, charge


def verify_payment(
    session: Session,
    providers: ProviderRegistry,
    reference: str,
    *,
    user: User,
    provider: str | None = None,
) -> VerifyOutcome:
    """
    Ask the provider about a payment and reconcile the order

    The provider is ``provider`` when given, else the one the order was
    initialised with. Provider failures, including a provider that is not
    configured, never fail the request: the outcome then carries a pending
    verification and the order as it is.

    Raises:
        InvalidInputError: blank reference
        OrderNotFoundError: reference matches no order
        OrderAccessDenied: not the caller's order
    """
    parsed = parse_reference(reference)
    order = locate_order(session, parsed)
    if order is None:
        raise OrderNotFoundError(f"No order matches reference {reference}")
    ensure_owner(order, user)

    # The provider only knows its own token, not our order id.
    if isinstance(parsed, RawReference):
        token = order.payment_reference or parsed.order_id
    else:
        token = parsed.value

    try:
        client = providers.get(provider or order.payment_provider)
    except ProviderNotConfiguredError as e:
        return _unverified(session, order, token, e)

    try:
        result = client.verify(token)
    except _VERIFY_ERRORS as e:
        stored = order.payment_reference
        if isinstance(parsed, CompositeReference) and stored and stored != token:
            logger.info(f"Verify of {token} failed, retrying with stored reference {stored}")
            try:
                result = client.verify(stored)
            except _VERIFY_ERRORS as retry_error:
                return _unverified(session, order, token, retry_error)
        else:
            return _unverified(session, order, token, e)

    outcome = reconcile(
        session,
        str(order.id),
        result,
        provider=client.provider,
        source=PaymentEventSource.verify,
    )
    return VerifyOutcome(order=outcome.order, verification=result, reconciliation=outcome)


def _unverified(session: Session, order: Order, token: str, error: AppError) -> VerifyOutcome:
    logger.warning(f"Verify for order {order.id} ({token}) failed: {error.message}")
    session.refresh(order)
    return VerifyOutcome(
        order=order,
        verification=VerificationResult(
            status=PaymentStatus.pending, order_reference=token, message=error.message
        ),
        error=error.message,
    )


def process_webhook(
    session: Session,
    client: ProviderClient,
    raw_body: bytes,
    headers: Mapping[str, str],
    *,
    client_ip: str | None = None,
) -> WebhookAck:
    """
    Authenticate a provider callback and reconcile the order it names

    Unknown events and unknown orders are acknowledged so the provider stops
    retrying.

    Raises:
        InvalidSignatureError: sender address not allowed or bad signature,
            before anything is parsed or written
        InvalidPayloadError: authenticated body that cannot be used
    """
    client.check_source(client_ip)
    event = client.handle_webhook(raw_body, headers)
    if event.status is None or not event.order_reference:
        return WebhookAck()

    try:
        outcome = reconcile(
            session,
            event.order_reference,
            event.as_verification(),
            provider=client.provider,
            source=PaymentEventSource.webhook,
            event_type=event.event_type,
        )
    except OrderNotFoundError:
        logger.warning(
            f"{client.name} webhook {event.event_type} for unknown order {event.order_reference}, acknowledged"
        )
        return WebhookAck()
    return WebhookAck(reconciled=outcome.applied, duplicate=outcome.duplicate)


def cancel_order(session: Session, reference: str, user: User) -> Order:
    """
    Cancel the caller's pending order

    Raises:
        InvalidStatusTransition: the order is no longer pending
    """
    order = locate_order(session, reference, for_update=True)
    if order is None:
        raise OrderNotFoundError()
    ensure_owner(order, user)
    orders_crud.transition_status(session=session, order=order, new_status=OrderStatus.cancelled)
    session.commit()
    session.refresh(order)
    logger.info(f"Order {order.id} cancelled by user {user.id}")
    return order
