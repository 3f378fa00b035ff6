from sqlalchemy import select
from sqlalchemy.orm import Session

from caresupply.core.exceptions import NotFoundError
from caresupply.models.product import Product


def find_product(db: Session, product_id: int, *, for_update: bool = False) -> Product:
    stmt = select(Product).where(Product.id == product_id)
    if for_update:
        stmt = stmt.with_for_update()
    product = db.execute(stmt).scalars().first()
    if product is None:
        raise NotFoundError("Product {} not found".format(product_id))
    return product


def check_availability(db: Session, product_id: int, quantity: int) -> bool:
    """True when the product is orderable and current stock covers ``quantity``."""
    product = db.get(Product, product_id)
    if product is None or not product.is_available:
        return False
    return product.stock_quantity >= quantity


def load_products(db: Session, product_ids) -> dict[int, Product]:
    ids = {int(product_id) for product_id in product_ids}
    if not ids:
        return {}
    rows = db.execute(select(Product).where(Product.id.in_(ids))).scalars().all()
    return {product.id: product for product in rows}


__all__ = ["check_availability", "find_product", "load_products"]
