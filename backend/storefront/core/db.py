"""
Database engine

The engine is created once at import time from ``settings``; sessions are
opened per request in ``storefront.api.deps.get_db``.

Tables are managed by Alembic (``storefront/alembic``). Import
``storefront.models`` before touching the metadata so every table is
registered.
"""
from sqlmodel import Session, create_engine

from storefront.core.config import settings

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


def init_db(session: Session) -> None:
    """
    Seed hook run by ``storefront.initial_data``

    Only inserts the demo catalogue into an empty product table; schema
    creation belongs to the migrations.
    """
    # Local import: the seed module pulls in the models package.
    from storefront.crud.products import seed_demo_catalogue

    seed_demo_catalogue(session=session)
