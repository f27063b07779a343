"""Order CRUD operations"""
from typing import Any

from sqlmodel import Session, select

from storefront.api.errors import InvalidStatusTransition
from storefront.enums import OrderStatus
from storefront.models import Order, OrderItem, utc_now

# Forward-only lifecycle: each status maps to the statuses it may move to.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.processing, OrderStatus.cancelled}),
    OrderStatus.processing: frozenset({OrderStatus.shipped}),
    OrderStatus.shipped: frozenset({OrderStatus.delivered}),
    OrderStatus.delivered: frozenset(),
    OrderStatus.cancelled: frozenset(),
}


def _first(session: Session, stmt: Any, for_update: bool) -> Order | None:
    if for_update:
        # Locked reads overwrite any copy already in the identity map
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def get_by_id(*, session: Session, order_id: str, for_update: bool = False) -> Order | None:
    """Fetch an order by primary key, optionally locking the row"""
    return _first(session, select(Order).where(Order.id == order_id), for_update)


def get_by_reference(
    *, session: Session, reference: str, for_update: bool = False
) -> Order | None:
    """Fetch an order by its stored payment reference"""
    return _first(session, select(Order).where(Order.payment_reference == reference), for_update)


def get_by_id_or_reference(
    *, session: Session, key: str, for_update: bool = False
) -> Order | None:
    """Try the order id first, then the payment reference"""
    order = get_by_id(session=session, order_id=key, for_update=for_update)
    if order is None:
        order = get_by_reference(session=session, reference=key, for_update=for_update)
    return order


def list_items(*, session: Session, order_id: str) -> list[OrderItem]:
    """Line items of an order"""
    stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
    return list(session.exec(stmt).all())


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(OrderStatus(current), frozenset())


def transition_status(*, session: Session, order: Order, new_status: OrderStatus) -> Order:
    """
    Move an order to a new status

    The only place order status changes. Does not commit.

    Raises:
        InvalidStatusTransition: the move is not part of the lifecycle
    """
    current = OrderStatus(order.status)
    if not can_transition(current, new_status):
        raise InvalidStatusTransition(
            f"Cannot move order from {current.value} to {new_status.value}"
        )
    order.status = new_status
    order.updated_at = utc_now()
    session.add(order)
    return order


def set_payment_reference(
    *, session: Session, order: Order, reference: str, provider: str
) -> Order:
    """Store the provider lookup token after initialisation"""
    order.payment_reference = reference
    order.payment_provider = provider  # type: ignore[assignment]
    order.updated_at = utc_now()
    session.add(order)
    session.commit()
    session.refresh(order)
    return order
