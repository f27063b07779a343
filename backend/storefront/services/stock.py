"""
Stock decrement

Reduces per-size inventory for the line items of a paid order. A line item
that cannot be applied (product deleted, size label not found, write error)
is reported and skipped; the rest of the order still goes through.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlmodel import Session, select

from storefront.crud import products as products_crud
from storefront.models import OrderItem, Product, ProductSize, utc_now

logger = logging.getLogger(__name__)

PRODUCT_NOT_FOUND = "product_not_found"
SIZE_NOT_FOUND = "size_not_found"
UPDATE_FAILED = "update_failed"


@dataclass(frozen=True)
class StockUpdateError:
    """A line item whose stock was not decremented."""
    item_id: int | None
    product_id: int | None
    size: str
    reason: str
    detail: str | None = None

    def as_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "productId": self.product_id,
            "size": self.size,
            "reason": self.reason,
            "detail": self.detail,
        }


def _find_size(session: Session, product_id: int, size: str) -> ProductSize | None:
    """Exact label first, then a case-insensitive match ("l" finds "L")."""
    row = products_crud.get_size(session=session, product_id=product_id, size=size, for_update=True)
    if row is not None:
        return row
    wanted = size.strip().lower()
    for candidate in session.exec(select(ProductSize).where(ProductSize.product_id == product_id)):
        if candidate.size.strip().lower() == wanted:
            return candidate
    return None


def _decrement_item(session: Session, item: OrderItem) -> StockUpdateError | None:
    """Apply one line item and flush it; returns the reason when it is skipped."""
    size = item.size or ""
    product = session.get(Product, item.product_id) if item.product_id is not None else None
    if product is None:
        logger.warning(f"Stock not updated for item {item.id}: product {item.product_id} not found")
        return StockUpdateError(item.id, item.product_id, size, PRODUCT_NOT_FOUND)

    row = _find_size(session, product.id, size)
    if row is None:
        logger.warning(
            f"Stock not updated for item {item.id}: size {size!r} not found on product {product.id}"
        )
        return StockUpdateError(item.id, item.product_id, size, SIZE_NOT_FOUND)

    purchased = int(item.quantity)
    new_quantity = max(0, row.quantity - purchased)
    if row.quantity - purchased < 0:
        logger.warning(
            f"Oversold product {product.id} size {row.size}: "
            f"had {row.quantity}, sold {purchased}, clamped to 0"
        )
    row.quantity = new_quantity
    row.updated_at = utc_now()
    session.add(row)
    session.flush()
    logger.info(f"Stock for product {product.id} size {row.size} now {new_quantity}")
    return None


def decrement_stock(session: Session, items: Iterable[OrderItem]) -> list[StockUpdateError]:
    """
    Decrement stock for each line item

    ``new quantity = max(0, current - purchased)``. Each item runs in its own
    savepoint and is flushed there, so a failed write only undoes that item.
    Nothing is committed; the caller owns the outer transaction.

    Args:
        session: open session, usually inside reconciliation
        items: line items of the paid order

    Returns:
        one ``StockUpdateError`` per skipped item, empty when all applied
    """
    errors: list[StockUpdateError] = []
    for item in items:
        item_id, product_id, size = item.id, item.product_id, item.size or ""
        try:
            with session.begin_nested():
                error = _decrement_item(session, item)
        except Exception as e:
            logger.error(f"Stock update failed for item {item_id}: {e}")
            error = StockUpdateError(item_id, product_id, size, UPDATE_FAILED, str(e))
        if error is not None:
            errors.append(error)
    return errors
