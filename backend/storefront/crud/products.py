"""Product and stock CRUD operations"""
import logging
from decimal import Decimal

from sqlmodel import Session, select

from storefront.models import Product, ProductSize

logger = logging.getLogger(__name__)

# Demo catalogue for fresh databases: (name, price, {size: quantity})
DEMO_CATALOGUE: list[tuple[str, str, dict[str, int]]] = [
    ("Classic Hoodie", "800.00", {"S": 5, "M": 10, "L": 10, "XL": 4}),
    ("Everyday Tee", "249.99", {"S": 20, "M": 25, "L": 25, "XL": 10}),
    ("Canvas Cap", "129.99", {"One Size": 30}),
]


def get_size(
    *, session: Session, product_id: int, size: str, for_update: bool = False
) -> ProductSize | None:
    """Stock row for one size of a product"""
    stmt = select(ProductSize).where(
        ProductSize.product_id == product_id, ProductSize.size == size
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def create_with_sizes(
    *, session: Session, name: str, price: Decimal, sizes: dict[str, int]
) -> Product:
    """Create a product with its per-size stock"""
    product = Product(name=name, price=price)
    session.add(product)
    session.flush()
    for size, quantity in sizes.items():
        session.add(ProductSize(product_id=product.id, size=size, quantity=quantity))
    session.commit()
    session.refresh(product)
    return product


def seed_demo_catalogue(*, session: Session) -> int:
    """Insert the demo catalogue when the product table is empty; returns rows created"""
    if session.exec(select(Product)).first() is not None:
        logger.info("Products already present, skipping seed")
        return 0
    for name, price, sizes in DEMO_CATALOGUE:
        create_with_sizes(session=session, name=name, price=Decimal(price), sizes=sizes)
    logger.info(f"Seeded {len(DEMO_CATALOGUE)} demo products")
    return len(DEMO_CATALOGUE)
