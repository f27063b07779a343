"""
User model

Only the account fields payments read: the id carried in bearer tokens and
the email/name handed to the providers.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from .base import new_uuid, utc_now


class User(SQLModel, table=True):
    """
    Storefront customer

    Fields:
    - id: UUID string, the ``sub`` of access tokens
    - email: unique, required by every provider
    - name: full name, PayFast splits it into first/last name
    - is_active: inactive users cannot authenticate
    - is_admin: may read any order
    """
    __tablename__ = "users"
    id: str = Field(
        default_factory=new_uuid,
        sa_column=Column(String(36), primary_key=True),
    )
    email: str = Field(
        max_length=255,
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
    )
    name: str | None = Field(default=None, max_length=255)

    is_active: bool = Field(default=True)
    is_admin: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
