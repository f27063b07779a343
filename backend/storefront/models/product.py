"""
Catalogue models

Inventory is tracked per size: a product has no quantity of its own, each
``ProductSize`` row holds the stock for one size label.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from .base import utc_now


class Product(SQLModel, table=True):
    """
    Sellable product

    Fields:
    - id: autoincrement primary key
    - name: display name
    - price: current unit price (order items snapshot it)
    - is_active: hidden from the shop when False
    """
    __tablename__ = "products"
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    is_active: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ProductSize(SQLModel, table=True):
    """
    Stock of one size of a product

    ``(product_id, size)`` is unique; ``quantity`` never drops below zero.
    """
    __tablename__ = "product_sizes"
    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_product_sizes_product_size"),
        CheckConstraint("quantity >= 0", name="ck_product_sizes_quantity_non_negative"),
    )

    id: int | None = Field(default=None, primary_key=True)
    product_id: int = Field(
        sa_column=Column(
            Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    size: str = Field(sa_column=Column(String(32), nullable=False))
    quantity: int = Field(default=0, ge=0)

    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
