"""Per-product stock ledger.

Every function mutates inside the caller's session and flushes; committing is
left to the caller so ledger calls can join a larger transaction (an order
status change and its stock movement commit together).
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ValidationError
from caresupply.models.product import Product
from caresupply.services.catalog_service import find_product

logger = logging.getLogger(__name__)


def _require_positive(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer")
    return amount


def _clear_acknowledgement_if_low(product: Product) -> None:
    if product.stock_quantity < product.low_stock_threshold:
        product.low_stock_alert_acknowledged = False


def increase(db: Session, product_id: int, amount: int) -> Product:
    amount = _require_positive(amount)
    product = find_product(db, product_id, for_update=True)
    product.stock_quantity = product.stock_quantity + amount
    _clear_acknowledgement_if_low(product)
    db.flush()
    logger.info("Stock increased for product %s by %s (now %s)", product_id, amount, product.stock_quantity)
    return product


def decrease(db: Session, product_id: int, amount: int, *, clamp_to_zero: bool = True) -> Product:
    amount = _require_positive(amount)
    product = find_product(db, product_id, for_update=True)
    new_quantity = product.stock_quantity - amount
    if clamp_to_zero:
        new_quantity = max(new_quantity, 0)
    product.stock_quantity = new_quantity
    _clear_acknowledgement_if_low(product)
    db.flush()
    logger.info("Stock decreased for product %s by %s (now %s)", product_id, amount, product.stock_quantity)
    return product


def set_quantity(db: Session, product_id: int, new_quantity: int) -> Product:
    if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
        raise ValidationError("Quantity must be an integer")
    product = find_product(db, product_id, for_update=True)
    product.stock_quantity = new_quantity
    _clear_acknowledgement_if_low(product)
    db.flush()
    if new_quantity < 0:
        logger.warning("Product %s recorded with stock debt of %s", product_id, -new_quantity)
    else:
        logger.info("Stock set for product %s to %s", product_id, new_quantity)
    return product


def set_threshold(db: Session, product_id: int, threshold: int) -> Product:
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ValidationError("Threshold cannot be negative")
    product = find_product(db, product_id, for_update=True)
    product.low_stock_threshold = threshold
    _clear_acknowledgement_if_low(product)
    db.flush()
    logger.info("Low stock threshold for product %s set to %s", product_id, threshold)
    return product


def acknowledge(db: Session, product_id: int) -> Product:
    product = find_product(db, product_id, for_update=True)
    product.low_stock_alert_acknowledged = True
    db.flush()
    logger.info("Low stock alert acknowledged for product %s", product_id)
    return product


def list_stock(db: Session) -> list[Product]:
    stmt = select(Product).where(Product.is_available.is_(True)).order_by(Product.name.asc())
    return list(db.execute(stmt).scalars().all())


def list_low_stock(db: Session) -> list[dict]:
    shortage = (Product.low_stock_threshold - Product.stock_quantity).label("shortage")
    stmt = (
        select(Product, shortage)
        .where(
            Product.stock_quantity < Product.low_stock_threshold,
            Product.is_available.is_(True),
        )
        .order_by(shortage.desc(), Product.name.asc())
    )
    return [
        {
            "product_id": row.Product.id,
            "product_name": row.Product.name,
            "stock_quantity": row.Product.stock_quantity,
            "low_stock_threshold": row.Product.low_stock_threshold,
            "low_stock_alert_acknowledged": row.Product.low_stock_alert_acknowledged,
            "shortage": int(row.shortage),
        }
        for row in db.execute(stmt).all()
    ]


def count_unacknowledged_low_stock(db: Session) -> int:
    stmt = select(func.count(Product.id)).where(
        Product.stock_quantity < Product.low_stock_threshold,
        Product.low_stock_alert_acknowledged.is_(False),
        Product.is_available.is_(True),
    )
    return int(db.execute(stmt).scalar_one())


__all__ = [
    "acknowledge",
    "count_unacknowledged_low_stock",
    "decrease",
    "increase",
    "list_low_stock",
    "list_stock",
    "set_quantity",
    "set_threshold",
]
