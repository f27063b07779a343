"""
Payment routes

- POST /payments/create: start a payment for the caller's pending order
- POST /payments/charge: Yoco inline card token charge
- GET  /payments/verify: poll the provider and reconcile
- POST /payments/webhook: provider callbacks (Paystack, Yoco, PayFast)
- POST /payments/notify: PayFast ITN endpoint
- GET  /payments/success: order summary after the provider redirect
- GET  /payments/cancel: the buyer abandoned the payment page
"""
from fastapi import APIRouter, Query, Request
from sqlmodel import Session

from storefront.api.deps import CurrentUser, ProvidersDep, RawBody, SessionDep
from storefront.api.schemas import (
    ApiEnvelope,
    ChargeData,
    ChargeRequest,
    OrderData,
    OrderItemData,
    OrderResultData,
    PaymentCreateData,
    PaymentCreateRequest,
    StockFailureData,
    VerificationData,
    VerifyData,
    WebhookAckData,
)
from storefront.crud import orders as orders_crud
from storefront.enums import PaymentProvider, PaymentStatus
from storefront.models import Order
from storefront.services import payments

router = APIRouter(prefix="/payments", tags=["payments"])


def _order_data(session: Session, order: Order) -> OrderData:
    items = orders_crud.list_items(session=session, order_id=str(order.id))
    return OrderData(
        id=str(order.id),
        status=order.status,
        total=order.total,
        payment_reference=order.payment_reference,
        payment_provider=order.payment_provider,
        paid_at=order.paid_at,
        tracking_number=order.tracking_number,
        created_at=order.created_at,
        items=[
            OrderItemData(
                id=item.id,
                product_id=item.product_id,
                size=item.size,
                quantity=item.quantity,
                price=item.price,
            )
            for item in items
        ],
    )


def _client_ip(request: Request) -> str | None:
    """Sender address: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


@router.post("/create", response_model=ApiEnvelope)
def create(
    session: SessionDep,
    current_user: CurrentUser,
    providers: ProvidersDep,
    payload: PaymentCreateRequest,
) -> ApiEnvelope:
    client = providers.get(payload.provider)
    result = payments.start_payment(session, client, payload.order_id, current_user)
    return ApiEnvelope(
        data=PaymentCreateData(
            redirect_url=result.redirect_url,
            reference=result.reference,
            access_code=result.access_code,
            provider=client.provider,
        ).to_wire()
    )


@router.post("/charge", response_model=ApiEnvelope)
def charge(
    session: SessionDep,
    current_user: CurrentUser,
    providers: ProvidersDep,
    payload: ChargeRequest,
) -> ApiEnvelope:
    """Declined cards answer 400 (``PaymentDeclinedError``)."""
    outcome, result = payments.charge_order(
        session, providers.yoco(), payload.token, payload.order_id, current_user
    )
    return ApiEnvelope(
        data=ChargeData(order_id=str(outcome.order.id), charge_id=result.charge_id).to_wire()
    )


@router.get("/verify", response_model=ApiEnvelope)
def verify(
    session: SessionDep,
    current_user: CurrentUser,
    providers: ProvidersDep,
    reference: str = Query(min_length=1, max_length=256),
    provider: PaymentProvider | None = None,
) -> ApiEnvelope:
    """
    Poll the provider for a payment

    Answers 200 whenever the order exists, even if the provider could not
    be reached; ``verification.status`` is then ``pending``.
    """
    outcome = payments.verify_payment(
        session, providers, reference, user=current_user, provider=provider
    )
    result = outcome.verification
    failures = outcome.reconciliation.partial_failures if outcome.reconciliation else []
    return ApiEnvelope(
        data=VerifyData(
            success=result.status == PaymentStatus.success,
            order=_order_data(session, outcome.order),
            verification=VerificationData(
                status=result.status,
                provider_transaction_id=result.provider_transaction_id,
                amount=result.amount,
                currency=result.currency,
                paid_at=result.paid_at,
                message=result.message,
            ),
            stock_failures=[
                StockFailureData(
                    item_id=f.item_id, product_id=f.product_id, size=f.size, reason=f.reason
                )
                for f in failures
            ],
        ).to_wire()
    )


@router.post("/webhook", response_model=ApiEnvelope)
def webhook(
    request: Request,
    session: SessionDep,
    providers: ProvidersDep,
    raw_body: RawBody,
    provider: PaymentProvider | None = None,
) -> ApiEnvelope:
    """
    Provider callback

    401 for a bad signature, 400 for an authenticated but unusable body,
    200 for everything else (unknown events and orders included) so the
    provider does not keep retrying.
    """
    if provider is not None:
        client = providers.get(provider)
    else:
        client = providers.detect(request.headers, request.headers.get("content-type"))
    ack = payments.process_webhook(
        session, client, raw_body, request.headers, client_ip=_client_ip(request)
    )
    return ApiEnvelope(data=WebhookAckData(**ack.as_dict()).to_wire())


@router.post("/notify", response_model=ApiEnvelope)
def notify(
    request: Request,
    session: SessionDep,
    providers: ProvidersDep,
    raw_body: RawBody,
) -> ApiEnvelope:
    """PayFast ITN, the ``notify_url`` given at checkout."""
    client = providers.get(PaymentProvider.payfast)
    ack = payments.process_webhook(
        session, client, raw_body, request.headers, client_ip=_client_ip(request)
    )
    return ApiEnvelope(data=WebhookAckData(**ack.as_dict()).to_wire())


@router.get("/success", response_model=ApiEnvelope)
def success(
    session: SessionDep,
    current_user: CurrentUser,
    reference: str | None = Query(default=None, max_length=256),
    m_payment_id: str | None = Query(default=None, max_length=64),
) -> ApiEnvelope:
    """Read-only order lookup for the return page; ``m_payment_id`` is what PayFast appends."""
    order = payments.get_owned_order(session, reference or m_payment_id or "", current_user)
    return ApiEnvelope(data=OrderResultData(order=_order_data(session, order)).to_wire())


@router.get("/cancel", response_model=ApiEnvelope)
def cancel(
    session: SessionDep,
    current_user: CurrentUser,
    reference: str | None = Query(default=None, max_length=256),
    m_payment_id: str | None = Query(default=None, max_length=64),
) -> ApiEnvelope:
    """Cancel the caller's pending order; 409 once it has been paid."""
    order = payments.cancel_order(session, reference or m_payment_id or "", current_user)
    return ApiEnvelope(data=OrderResultData(order=_order_data(session, order)).to_wire())
