from __future__ import annotations

import base64
import hashlib
import hmac
import os
import time
from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal
from typing import Any
from urllib.parse import quote_plus, urlencode

# Settings are read at import time; pin test credentials before importing the app.
os.environ["ENVIRONMENT"] = "local"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYMENT_PROVIDER"] = "paystack"
os.environ["PAYMENT_CURRENCY"] = "ZAR"
os.environ["PAYSTACK_TEST_PUBLIC_KEY"] = "pk_test_storefront"
os.environ["PAYSTACK_TEST_SECRET_KEY"] = "sk_test_storefront"
os.environ["YOCO_TEST_PUBLIC_KEY"] = "pk_test_yoco"
os.environ["YOCO_TEST_SECRET_KEY"] = "sk_test_yoco"
os.environ["YOCO_WEBHOOK_SECRET"] = "whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw"
os.environ["PAYFAST_MERCHANT_ID"] = "10000100"
os.environ["PAYFAST_MERCHANT_KEY"] = "46f0cd694581a"
os.environ["PAYFAST_PASSPHRASE"] = "jt7NOE43FZPn"

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from storefront.api.deps import get_db, get_provider_registry  # noqa: E402
from storefront.core import security  # noqa: E402
from storefront.core.config import settings  # noqa: E402
from storefront.crud import products as products_crud  # noqa: E402
from storefront.integrations.registry import ProviderRegistry, build_provider_registry  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models import (  # noqa: E402
    Order,
    OrderItem,
    PaymentEvent,
    Product,
    ProductSize,
    User,
)


class FakeProviderAPI:
    """
    Canned provider HTTP answers behind ``httpx.MockTransport``

    Routes are matched by method and URL prefix, latest registration first.
    Unmatched requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, Any, int]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url_prefix: str, response: Any, status_code: int = 200) -> None:
        self.routes.append((method, url_prefix, response, status_code))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, prefix, response, status_code in reversed(self.routes):
            if request.method == method and str(request.url).startswith(prefix):
                if callable(response):
                    return response(request)
                return httpx.Response(status_code, json=response)
        return httpx.Response(404, json={"status": False, "message": "not mocked"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class Signer:
    """Builds correctly signed webhook deliveries for each provider."""

    def paystack(self, body: bytes) -> dict[str, str]:
        secret = settings.paystack_secret_key or ""
        digest = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
        return {"x-paystack-signature": digest, "content-type": "application/json"}

    def yoco(self, body: bytes, *, webhook_id: str = "msg_test_1", timestamp: int | None = None) -> dict[str, str]:
        ts = str(timestamp if timestamp is not None else int(time.time()))
        secret = (settings.YOCO_WEBHOOK_SECRET or "").split("_", 1)[1]
        key = base64.b64decode(secret)
        signed = f"{webhook_id}.{ts}.".encode() + body
        signature = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()
        return {
            "webhook-id": webhook_id,
            "webhook-timestamp": ts,
            "webhook-signature": f"v1,{signature}",
            "content-type": "application/json",
        }

    def payfast_itn(self, fields: dict[str, str]) -> bytes:
        body = urlencode(fields)
        signed = body
        if settings.PAYFAST_PASSPHRASE:
            signed = f"{body}&passphrase={quote_plus(settings.PAYFAST_PASSPHRASE)}"
        signature = hashlib.md5(signed.encode()).hexdigest()
        return f"{body}&signature={signature}".encode()


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(PaymentEvent))
        session.exec(delete(OrderItem))
        session.exec(delete(Order))
        session.exec(delete(ProductSize))
        session.exec(delete(Product))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def provider_api() -> FakeProviderAPI:
    return FakeProviderAPI()


@pytest.fixture(scope="function")
def providers(provider_api: FakeProviderAPI) -> ProviderRegistry:
    return build_provider_registry(settings, transport=provider_api.transport)


@pytest.fixture(scope="function")
def signer() -> Signer:
    return Signer()


@pytest.fixture(scope="function")
def client(engine, providers: ProviderRegistry) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: providers
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def user(db: Session) -> User:
    u = User(email="buyer@example.com", name="Thandi Nkosi")
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture(scope="function")
def other_user(db: Session) -> User:
    u = User(email="someone@example.com", name="Other Buyer")
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture(scope="function")
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(u: User) -> dict[str, str]:
        token = security.create_access_token(u.id, expires_delta=timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture(scope="function")
def hoodie(db: Session) -> Product:
    return products_crud.create_with_sizes(
        session=db, name="Classic Hoodie", price=Decimal("800.00"), sizes={"M": 10, "L": 10}
    )


@pytest.fixture(scope="function")
def make_order(db: Session) -> Callable[..., Order]:
    """Create a committed order: ``make_order(user, [(product, size, qty)], total="800.00")``."""

    def _make(
        owner: User,
        items: list[tuple[Product | None, str, int]] | None = None,
        total: str = "800.00",
        **fields: Any,
    ) -> Order:
        order = Order(user_id=owner.id, total=Decimal(total), **fields)
        db.add(order)
        db.flush()
        for product, size, quantity in items or []:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product.id if product is not None else None,
                    quantity=quantity,
                    size=size,
                    price=product.price if product is not None else Decimal("0.00"),
                )
            )
        db.commit()
        db.refresh(order)
        return order

    return _make


def stock_of(db: Session, product: Product, size: str) -> int:
    db.expire_all()
    row = products_crud.get_size(session=db, product_id=product.id, size=size)
    assert row is not None
    return row.quantity


@pytest.fixture(scope="function")
def stock() -> Callable[[Session, Product, str], int]:
    return stock_of
