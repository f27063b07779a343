"""
Payment reconciliation

The one place where a confirmed payment, whether it arrives by webhook,
verify poll or synchronous charge, turns into an order status change and a
stock decrement.

Webhooks and polls for the same order race. Two things keep a payment from
being applied twice:

1. the order row is read ``FOR UPDATE``, so concurrent attempts queue up
   and the later one sees the order already past ``pending``
2. a ``PaymentEvent`` row keyed by ``(provider, transaction_id)`` is
   inserted in the same transaction; a unique violation means another
   delivery already won

Status change, payment reference, stock decrement and the event row are
committed together.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from storefront.api.errors import OrderNotFoundError
from storefront.crud import orders as orders_crud
from storefront.enums import (
    OrderStatus,
    PaymentEventSource,
    PaymentProvider,
    PaymentStatus,
    ReconciliationState,
)
from storefront.integrations.base import VerificationResult
from storefront.models import Order, PaymentEvent, utc_now
from storefront.services.references import (
    CompositeReference,
    PaymentReference,
    RawReference,
    parse_reference,
)
from storefront.services.stock import StockUpdateError, decrement_stock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationOutcome:
    """
    Result of ``reconcile``

    ``partial_failures`` lists line items whose stock could not be
    decremented; the order is paid regardless.
    """
    order: Order
    state: ReconciliationState
    partial_failures: list[StockUpdateError] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.state == ReconciliationState.applied

    @property
    def duplicate(self) -> bool:
        return self.state == ReconciliationState.duplicate


def locate_order(
    session: Session, reference: str | PaymentReference, *, for_update: bool = False
) -> Order | None:
    """
    Resolve a reference to an order

    - bare order id: by id, then by stored payment reference
    - composite ``order_<id>_<ms>``: by stored payment reference, then by
      the embedded order id
    - anything else: by stored payment reference

    Raises:
        InvalidInputError: blank reference
    """
    parsed = parse_reference(reference) if isinstance(reference, str) else reference
    if isinstance(parsed, RawReference):
        return orders_crud.get_by_id_or_reference(
            session=session, key=parsed.order_id, for_update=for_update
        )
    order = orders_crud.get_by_reference(
        session=session, reference=parsed.value, for_update=for_update
    )
    if order is None and isinstance(parsed, CompositeReference):
        order = orders_crud.get_by_id(
            session=session, order_id=parsed.order_id, for_update=for_update
        )
    return order


def reconcile(
    session: Session,
    lookup_key: str | PaymentReference,
    result: VerificationResult,
    *,
    provider: PaymentProvider,
    source: PaymentEventSource,
    event_type: str | None = None,
) -> ReconciliationOutcome:
    """
    Apply a provider answer to an order

    Never reverts an order: a failed or pending answer leaves it untouched,
    whatever its current status.

    Args:
        session: request session; committed or rolled back here
        lookup_key: order id, composite reference or stored payment reference
        result: normalised provider answer
        provider: provider that produced ``result``
        source: webhook, verify or charge
        event_type: provider event name, stored on the payment event

    Returns:
        ReconciliationOutcome with state applied, duplicate or not_successful

    Raises:
        OrderNotFoundError: ``lookup_key`` matches no order
    """
    order = locate_order(session, lookup_key, for_update=True)
    if order is None:
        raise OrderNotFoundError(f"No order matches reference {lookup_key}")

    if result.status != PaymentStatus.success:
        logger.info(
            f"Order {order.id}: {provider.value} reports {result.status.value} via {source.value}, "
            "order left unchanged"
        )
        session.rollback()
        return ReconciliationOutcome(order=_reload(session, order), state=ReconciliationState.not_successful)

    current = OrderStatus(order.status)
    if current != OrderStatus.pending:
        if current == OrderStatus.cancelled:
            logger.warning(
                f"Order {order.id} is cancelled but {provider.value} reports a successful payment "
                f"{result.provider_transaction_id}; not reopening"
            )
        else:
            logger.info(f"Order {order.id} already {current.value}, duplicate {source.value} ignored")
        session.rollback()
        return ReconciliationOutcome(order=_reload(session, order), state=ReconciliationState.duplicate)

    if result.amount is not None and result.amount != order.total:
        logger.warning(
            f"Order {order.id}: {provider.value} amount {result.amount} differs from total {order.total}"
        )

    transaction_id = result.provider_transaction_id or order.payment_reference or str(order.id)
    order_id = str(order.id)
    try:
        session.add(
            PaymentEvent(
                provider=provider,
                transaction_id=transaction_id,
                order_id=order_id,
                source=source,
                event_type=event_type,
                payload=result.raw,
            )
        )
        session.flush()
    except IntegrityError:
        session.rollback()
        logger.info(f"Payment {provider.value}/{transaction_id} already recorded, duplicate ignored")
        order = orders_crud.get_by_id(session=session, order_id=order_id)
        if order is None:
            raise OrderNotFoundError(f"No order matches reference {lookup_key}")
        return ReconciliationOutcome(order=order, state=ReconciliationState.duplicate)

    orders_crud.transition_status(session=session, order=order, new_status=OrderStatus.processing)
    order.payment_reference = transaction_id
    order.payment_provider = provider
    order.paid_at = result.paid_at or utc_now()
    failures = decrement_stock(session, orders_crud.list_items(session=session, order_id=order_id))
    session.add(order)
    session.commit()
    session.refresh(order)

    for failure in failures:
        logger.warning(
            f"Order {order_id} paid but stock not updated for item {failure.item_id}: {failure.reason}"
        )
    logger.info(
        f"Order {order_id} reconciled via {source.value} ({provider.value} {transaction_id}), "
        f"{len(failures)} stock failure(s)"
    )
    return ReconciliationOutcome(
        order=order, state=ReconciliationState.applied, partial_failures=failures
    )


def _reload(session: Session, order: Order) -> Order:
    session.refresh(order)
    return order
