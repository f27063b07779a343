from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import jwt
import pytest
from alembic import command
from alembic.config import Config
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import create_engine, inspect
from sqlmodel import func, select

import storefront.main as app_main
from storefront.api import deps
from storefront.api.errors import AppError, ProviderNotConfiguredError
from storefront.core import security
from storefront.core.config import Settings, parse_cors
from storefront.crud import products as products_crud
from storefront.crud import users as users_crud
from storefront.enums import PaymentProvider
from storefront.integrations.registry import build_provider_registry
from storefront.models import Product


def _deployed_settings(**overrides) -> Settings:
    values = {"SECRET_KEY": "deployed-secret", "POSTGRES_PASSWORD": "deployed-password"}
    values.update(overrides)
    return Settings(**values)


def test_parse_cors():
    assert parse_cors("http://a.example, http://b.example,") == ["http://a.example", "http://b.example"]
    assert parse_cors(["http://a.example"]) == ["http://a.example"]
    assert parse_cors('["http://a.example"]') == '["http://a.example"]'
    with pytest.raises(ValueError):
        parse_cors(123)


def test_production_requires_live_provider_key():
    with pytest.raises(ValueError, match="PAYSTACK_LIVE_SECRET_KEY"):
        _deployed_settings(ENVIRONMENT="production")


def test_deployed_environment_rejects_placeholder_secrets():
    with pytest.raises(ValueError, match="SECRET_KEY"):
        _deployed_settings(ENVIRONMENT="staging", SECRET_KEY="changethis")


def test_local_environment_only_warns():
    with pytest.warns(UserWarning, match="changethis"):
        s = Settings(ENVIRONMENT="local", SECRET_KEY="changethis")
    assert s.payments_live is False


def test_live_keys_select_live_endpoints():
    s = _deployed_settings(ENVIRONMENT="production", PAYSTACK_LIVE_SECRET_KEY="sk_live_storefront")
    assert s.payments_live is True
    assert s.paystack_secret_key == "sk_live_storefront"

    registry = build_provider_registry(s)
    payfast = registry.get(PaymentProvider.payfast)
    assert payfast.config.process_url == "https://www.payfast.co.za/eng/process"
    assert payfast.config.sandbox is False
    assert registry.get().config.secret_key == "sk_live_storefront"


def test_missing_provider_key_fails_at_call_time():
    s = Settings(ENVIRONMENT="local", YOCO_TEST_SECRET_KEY=None)
    registry = build_provider_registry(s)
    with pytest.raises(ProviderNotConfiguredError):
        registry.yoco().verify("ch_1")


def test_access_token_round_trip():
    token = security.create_access_token("user-1", expires_delta=timedelta(minutes=5))
    assert security.decode_access_token(token)["sub"] == "user-1"

    expired = security.create_access_token("user-1", expires_delta=timedelta(seconds=-1))
    with pytest.raises(jwt.ExpiredSignatureError):
        security.decode_access_token(expired)


def test_http_exception_handler_dict_branch():
    exc = HTTPException(status_code=418, detail={"code": 418001, "message": "teapot"})
    resp = asyncio.run(app_main.http_error_handler(None, exc))  # type: ignore[arg-type]
    assert resp.status_code == 418
    assert json.loads(resp.body) == {"code": 418001, "message": "teapot", "data": None}


def test_app_error_defaults_and_overrides():
    err = AppError()
    assert (err.code, err.status_code, err.message) == (500000, 500, "Internal error")
    custom = ProviderNotConfiguredError("paystack is not configured", status_code=503)
    assert custom.code == 500101
    assert custom.status_code == 503


def test_get_db_generator_uses_engine_override(engine, monkeypatch):
    monkeypatch.setattr(deps, "engine", engine)
    gen = deps.get_db()
    session = next(gen)
    session.exec(select(1))
    gen.close()


def test_provider_registry_dependency_is_cached():
    deps.get_provider_registry.cache_clear()
    try:
        assert deps.get_provider_registry() is deps.get_provider_registry()
    finally:
        deps.get_provider_registry.cache_clear()


def test_current_user_resolved_through_users_crud(db, user):
    assert users_crud.get_by_id(session=db, user_id=user.id).email == user.email
    assert users_crud.get_by_id(session=db, user_id="missing") is None

    creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=security.create_access_token(user.id, timedelta(minutes=5)))
    assert deps.get_current_user(session=db, token=creds).id == user.id

    stranger = HTTPAuthorizationCredentials(scheme="Bearer", credentials=security.create_access_token("missing", timedelta(minutes=5)))
    with pytest.raises(HTTPException) as exc:
        deps.get_current_user(session=db, token=stranger)
    assert exc.value.detail == "User not found"


def test_seed_demo_catalogue_runs_once(db):
    assert products_crud.seed_demo_catalogue(session=db) == len(products_crud.DEMO_CATALOGUE)
    assert products_crud.seed_demo_catalogue(session=db) == 0
    hoodie = db.exec(select(Product).where(Product.name == "Classic Hoodie")).one()
    assert products_crud.get_size(session=db, product_id=hoodie.id, size="XL").quantity == 4


def test_prestart_and_seed_scripts(engine, db, monkeypatch):
    from storefront import backend_pre_start, initial_data

    # Point the scripts to the test engine so they can run without Postgres.
    monkeypatch.setattr(backend_pre_start, "engine", engine)
    monkeypatch.setattr(initial_data, "engine", engine)

    backend_pre_start.init(engine)
    backend_pre_start.main()

    initial_data.init()
    initial_data.main()
    assert db.exec(select(func.count()).select_from(Product)).one() == len(products_crud.DEMO_CATALOGUE)


def test_migrations_upgrade_and_downgrade(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrations.db'}"
    cfg = Config()
    cfg.set_main_option("script_location", str(Path(app_main.__file__).parent / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)

    command.upgrade(cfg, "head")
    inspector = inspect(create_engine(url))
    assert {"users", "products", "product_sizes", "orders", "order_items", "payment_events"} <= set(
        inspector.get_table_names()
    )
    uniques = {u["name"] for u in inspector.get_unique_constraints("payment_events")}
    assert "uq_payment_events_provider_tx" in uniques

    command.downgrade(cfg, "base")
    assert "orders" not in inspect(create_engine(url)).get_table_names()
