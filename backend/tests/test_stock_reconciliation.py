from __future__ import annotations

from decimal import Decimal

import pytest
from sqlmodel import Session, select

from storefront.api.errors import InvalidStatusTransition, OrderNotFoundError
from storefront.crud import orders as orders_crud
from storefront.crud import products as products_crud
from storefront.enums import (
    OrderStatus,
    PaymentEventSource,
    PaymentProvider,
    PaymentStatus,
    ReconciliationState,
)
from storefront.integrations.base import VerificationResult
from storefront.models import OrderItem, PaymentEvent
from storefront.services.reconciliation import locate_order, reconcile
from storefront.services.stock import (
    PRODUCT_NOT_FOUND,
    SIZE_NOT_FOUND,
    UPDATE_FAILED,
    decrement_stock,
)


def _success(tx: str = "order_tx_1", amount: str | None = "800.00") -> VerificationResult:
    return VerificationResult(
        status=PaymentStatus.success,
        provider_transaction_id=tx,
        amount=Decimal(amount) if amount else None,
        raw={"reference": tx},
    )


def _reconcile(db, key, result, source=PaymentEventSource.webhook):
    return reconcile(db, key, result, provider=PaymentProvider.paystack, source=source)


# ---------------------------------------------------------------------------
# stock
# ---------------------------------------------------------------------------


def test_decrement_clamps_at_zero(db, user, make_order, stock):
    cap = products_crud.create_with_sizes(
        session=db, name="Canvas Cap", price=Decimal("129.99"), sizes={"One Size": 1}
    )
    order = make_order(user, [(cap, "One Size", 3)], total="389.97")

    errors = decrement_stock(db, orders_crud.list_items(session=db, order_id=order.id))
    db.commit()

    assert errors == []
    assert stock(db, cap, "One Size") == 0


def test_decrement_skips_missing_product_and_size(db, user, hoodie, make_order, stock):
    order = make_order(user, [(None, "M", 1), (hoodie, "XXL", 1), (hoodie, "M", 2)])
    db.add(OrderItem(order_id=order.id, product_id=987654, quantity=1, size="M", price=Decimal("1.00")))
    db.commit()

    errors = decrement_stock(db, orders_crud.list_items(session=db, order_id=order.id))
    db.commit()

    reasons = sorted(e.reason for e in errors)
    assert reasons == [PRODUCT_NOT_FOUND, PRODUCT_NOT_FOUND, SIZE_NOT_FOUND]
    assert stock(db, hoodie, "M") == 8
    assert stock(db, hoodie, "L") == 10


def test_decrement_matches_size_case_insensitively(db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "l", 1)])

    errors = decrement_stock(db, orders_crud.list_items(session=db, order_id=order.id))
    db.commit()

    assert errors == []
    assert stock(db, hoodie, "L") == 9


def test_decrement_reports_unexpected_errors(db, user, hoodie, make_order, stock, monkeypatch):
    order = make_order(user, [(hoodie, "L", 1)])

    def boom(**_kwargs):
        raise RuntimeError("db went away")

    monkeypatch.setattr("storefront.crud.products.get_size", boom)
    errors = decrement_stock(db, orders_crud.list_items(session=db, order_id=order.id))
    monkeypatch.undo()
    db.commit()

    assert len(errors) == 1
    assert errors[0].reason == UPDATE_FAILED
    assert "db went away" in (errors[0].detail or "")
    assert errors[0].as_dict()["reason"] == UPDATE_FAILED
    assert stock(db, hoodie, "L") == 10


# ---------------------------------------------------------------------------
# reconciliation
# ---------------------------------------------------------------------------


def test_reconcile_is_idempotent(db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "M", 2)])

    first = _reconcile(db, order.id, _success())
    second = _reconcile(db, order.id, _success(), source=PaymentEventSource.verify)

    assert first.state == ReconciliationState.applied
    assert second.state == ReconciliationState.duplicate
    assert stock(db, hoodie, "M") == 8
    events = db.exec(select(PaymentEvent).where(PaymentEvent.order_id == order.id)).all()
    assert len(events) == 1


def test_reconcile_stores_transaction_and_paid_at(db, user, hoodie, make_order):
    order = make_order(user, [(hoodie, "L", 1)], payment_reference="order_init_ref")

    outcome = _reconcile(db, "order_init_ref", _success(tx="provider_tx_99"))

    assert outcome.applied
    db.refresh(order)
    assert order.status == OrderStatus.processing
    assert order.payment_reference == "provider_tx_99"
    assert order.payment_provider == PaymentProvider.paystack
    assert order.paid_at is not None


def test_recorded_payment_event_blocks_second_apply(db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "M", 1)])
    db.add(
        PaymentEvent(
            provider=PaymentProvider.paystack,
            transaction_id="order_tx_1",
            order_id=order.id,
            source=PaymentEventSource.webhook,
        )
    )
    db.commit()

    outcome = _reconcile(db, order.id, _success())

    assert outcome.state == ReconciliationState.duplicate
    assert stock(db, hoodie, "M") == 10


def test_unsuccessful_answers_leave_order_untouched(db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "M", 1)])

    for status in (PaymentStatus.pending, PaymentStatus.failed):
        outcome = _reconcile(db, order.id, VerificationResult(status=status))
        assert outcome.state == ReconciliationState.not_successful
        assert outcome.order.status == OrderStatus.pending

    assert stock(db, hoodie, "M") == 10


def test_failed_answer_never_reverts_a_paid_order(db, user, hoodie, make_order):
    order = make_order(user, [(hoodie, "M", 1)])
    _reconcile(db, order.id, _success())

    outcome = _reconcile(db, order.id, VerificationResult(status=PaymentStatus.failed))

    assert outcome.state == ReconciliationState.not_successful
    assert outcome.order.status == OrderStatus.processing


def test_cancelled_order_is_not_reopened(db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "M", 1)], status=OrderStatus.cancelled)

    outcome = _reconcile(db, order.id, _success())

    assert outcome.state == ReconciliationState.duplicate
    assert outcome.order.status == OrderStatus.cancelled
    assert stock(db, hoodie, "M") == 10


def test_partial_failure_still_marks_order_paid(db, user, hoodie, make_order, stock):
    order = make_order(user, [(None, "M", 1), (hoodie, "L", 1)])

    outcome = _reconcile(db, order.id, _success())

    assert outcome.applied
    assert outcome.order.status == OrderStatus.processing
    assert [f.reason for f in outcome.partial_failures] == [PRODUCT_NOT_FOUND]
    assert stock(db, hoodie, "L") == 9


def test_composite_reference_falls_back_to_embedded_order_id(db, user, hoodie, make_order):
    order = make_order(user, [(hoodie, "M", 1)], payment_reference="ch_other_token")

    found = locate_order(db, f"order_{order.id}_1718000000000")
    assert found is not None and found.id == order.id

    outcome = _reconcile(db, f"order_{order.id}_1718000000000", _success())
    assert outcome.applied


def test_unknown_reference_raises(db):
    with pytest.raises(OrderNotFoundError) as exc:
        _reconcile(db, "b5e0c0de-0000-4000-8000-000000000000", _success())
    assert exc.value.status_code == 404


@pytest.mark.parametrize(
    "current,new",
    [
        (OrderStatus.pending, OrderStatus.processing),
        (OrderStatus.pending, OrderStatus.cancelled),
        (OrderStatus.processing, OrderStatus.shipped),
        (OrderStatus.shipped, OrderStatus.delivered),
    ],
)
def test_allowed_transitions(db, user, make_order, current, new):
    order = make_order(user, status=current)
    orders_crud.transition_status(session=db, order=order, new_status=new)
    db.commit()
    db.refresh(order)
    assert order.status == new


@pytest.mark.parametrize(
    "current,new",
    [
        (OrderStatus.pending, OrderStatus.pending),
        (OrderStatus.pending, OrderStatus.shipped),
        (OrderStatus.processing, OrderStatus.pending),
        (OrderStatus.processing, OrderStatus.cancelled),
        (OrderStatus.delivered, OrderStatus.shipped),
        (OrderStatus.cancelled, OrderStatus.processing),
    ],
)
def test_forbidden_transitions(db, user, make_order, current, new):
    order = make_order(user, status=current)
    with pytest.raises(InvalidStatusTransition) as exc:
        orders_crud.transition_status(session=db, order=order, new_status=new)
    assert exc.value.code == 409101


def test_composite_reference_with_leading_zeros_matches_stored_reference(db, user, hoodie, make_order):
    order = make_order(user, [(hoodie, "M", 1)])
    stored = f"order_{order.id}_0001718000000000"
    order.payment_reference = stored
    db.add(order)
    db.commit()

    assert locate_order(db, stored).id == order.id
    outcome = _reconcile(db, stored, _success(tx=stored))
    assert outcome.applied
    assert outcome.order.payment_reference == stored


def test_racing_confirmations_apply_once(engine, db, user, hoodie, make_order, stock):
    order = make_order(user, [(hoodie, "M", 2)])
    # This session holds the pending order before the other path commits.
    assert locate_order(db, order.id).status == OrderStatus.pending

    with Session(engine) as other:
        first = reconcile(
            other,
            order.id,
            _success(tx="chk_1"),
            provider=PaymentProvider.yoco,
            source=PaymentEventSource.webhook,
        )
    second = reconcile(
        db,
        order.id,
        _success(tx="ch_2"),
        provider=PaymentProvider.yoco,
        source=PaymentEventSource.charge,
    )

    assert first.state == ReconciliationState.applied
    assert second.state == ReconciliationState.duplicate
    assert stock(db, hoodie, "M") == 8
    events = db.exec(select(PaymentEvent).where(PaymentEvent.order_id == order.id)).all()
    assert [e.transaction_id for e in events] == ["chk_1"]


def test_failed_stock_write_only_skips_that_item(db, user, hoodie, make_order, stock):
    cap = products_crud.create_with_sizes(
        session=db, name="Canvas Cap", price=Decimal("129.99"), sizes={"One Size": 5}
    )
    order = make_order(user, [(hoodie, "L", 1), (cap, "One Size", 1)], total="929.99")
    db.connection().exec_driver_sql(
        "CREATE TRIGGER reject_cap_stock BEFORE UPDATE ON product_sizes "
        f"WHEN OLD.product_id = {int(cap.id)} "
        "BEGIN SELECT RAISE(ABORT, 'row locked'); END"
    )
    db.commit()
    try:
        outcome = _reconcile(db, order.id, _success())

        assert outcome.applied
        assert outcome.order.status == OrderStatus.processing
        assert [f.reason for f in outcome.partial_failures] == [UPDATE_FAILED]
        assert outcome.partial_failures[0].product_id == cap.id
        assert stock(db, hoodie, "L") == 9
        assert stock(db, cap, "One Size") == 5
    finally:
        db.rollback()
        db.connection().exec_driver_sql("DROP TRIGGER IF EXISTS reject_cap_stock")
        db.commit()
