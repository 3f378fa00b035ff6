"""Order aggregate and its status state machine.

Orders are created PENDING with a price snapshot per line. Stock only moves on
status transitions: PENDING -> CONFIRMED deducts, CONFIRMED -> CANCELLED
returns. Each operation runs inside a savepoint so the header, its lines and
any stock movement are written together or not at all; the caller commits.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from caresupply.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from caresupply.models.order import Order, OrderItem, OrderStatus
from caresupply.services import stock_service
from caresupply.services.catalog_service import check_availability, find_product
from caresupply.services.patient_service import get_patient

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def _line_values(item) -> tuple[int, int]:
    if isinstance(item, Mapping):
        product_id, quantity = item.get("product_id"), item.get("quantity")
    else:
        product_id = getattr(item, "product_id", None)
        quantity = getattr(item, "quantity", None)
    if product_id is None:
        raise ValidationError("Every order line needs a product_id")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity for product {} must be at least 1".format(product_id))
    return int(product_id), quantity


def coerce_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError as exc:
        raise ValidationError("Unknown order status: {}".format(value)) from exc


def recompute_total(order: Order) -> Decimal:
    total = Decimal("0.00")
    for item in order.items:
        item.subtotal = to_money(Decimal(str(item.price_per_unit)) * item.quantity)
        total += item.subtotal
    order.total_amount = to_money(total)
    return order.total_amount


def create_order(
    db: Session,
    *,
    institution_id: int,
    items: Iterable,
    patient_id: Optional[int] = None,
    created_by_user_id: Optional[int] = None,
    created_by_worker_id: Optional[int] = None,
    scheduled_date: Optional[date] = None,
    is_recurring: bool = False,
) -> Order:
    if created_by_user_id is not None and created_by_worker_id is not None:
        raise ValidationError("An order is created by a user or by a worker, not both")

    lines = [_line_values(item) for item in items or ()]
    if not lines:
        raise ValidationError("At least one product is required")

    if patient_id is not None:
        get_patient(db, patient_id, institution_id=institution_id)

    # Lines for the same product are checked against stock as one request.
    requested: dict[int, int] = {}
    for product_id, quantity in lines:
        requested[product_id] = requested.get(product_id, 0) + quantity

    prices = {}
    for product_id, quantity in requested.items():
        product = find_product(db, product_id)
        if not product.is_available:
            raise ValidationError('Product "{}" is not available'.format(product.name))
        if not check_availability(db, product_id, quantity):
            raise ValidationError(
                'Insufficient stock for product "{}" (requested: {}, available: {})'.format(
                    product.name, quantity, product.stock_quantity
                )
            )
        if quantity < product.min_order_quantity:
            raise ValidationError(
                'Minimum order quantity for "{}" is {}'.format(product.name, product.min_order_quantity)
            )
        prices[product_id] = to_money(product.price_per_unit)
    priced = [(product_id, quantity, prices[product_id]) for product_id, quantity in lines]

    with db.begin_nested():
        order = Order(
            institution_id=institution_id,
            patient_id=patient_id,
            created_by_user_id=created_by_user_id,
            created_by_worker_id=created_by_worker_id,
            status=OrderStatus.PENDING.value,
            is_recurring=bool(is_recurring),
            scheduled_date=scheduled_date,
            is_confirmed=False,
        )
        for product_id, quantity, price in priced:
            order.items.append(
                OrderItem(
                    product_id=product_id,
                    quantity=quantity,
                    price_per_unit=price,
                    subtotal=to_money(price * quantity),
                )
            )
        recompute_total(order)
        db.add(order)
        db.flush()

    logger.info(
        "Order %s created for institution %s (patient=%s, lines=%d, total=%s, recurring=%s, scheduled=%s)",
        order.id,
        institution_id,
        patient_id,
        len(order.items),
        order.total_amount,
        order.is_recurring,
        scheduled_date,
        extra={"order_id": order.id, "institution_id": institution_id},
    )
    return order


def get_order(
    db: Session,
    order_id: int,
    *,
    institution_id: Optional[int] = None,
    for_update: bool = False,
) -> Order:
    stmt = select(Order).where(Order.id == order_id).options(selectinload(Order.items))
    if for_update:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalars().first()
    if order is None:
        raise NotFoundError("Order {} not found".format(order_id))
    if institution_id is not None and order.institution_id != institution_id:
        raise ForbiddenError("Order {} belongs to another institution".format(order_id))
    return order


def list_orders(
    db: Session,
    institution_id: Optional[int] = None,
    *,
    status: Optional[str] = None,
    patient_id: Optional[int] = None,
    is_recurring: Optional[bool] = None,
) -> list[Order]:
    stmt = select(Order).options(selectinload(Order.items))
    if institution_id is not None:
        stmt = stmt.where(Order.institution_id == institution_id)
    if status is not None:
        stmt = stmt.where(Order.status == coerce_status(status).value)
    if patient_id is not None:
        stmt = stmt.where(Order.patient_id == patient_id)
    if is_recurring is not None:
        stmt = stmt.where(Order.is_recurring.is_(is_recurring))
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
    return list(db.execute(stmt).scalars().all())


def transition(
    db: Session,
    order_id: int,
    new_status,
    *,
    institution_id: Optional[int] = None,
    approved_by_user_id: Optional[int] = None,
) -> Order:
    target = coerce_status(new_status)
    order = get_order(db, order_id, institution_id=institution_id, for_update=True)
    current = OrderStatus(order.status)

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)

    now = utc_now()
    with db.begin_nested():
        if current is OrderStatus.PENDING and target is OrderStatus.CONFIRMED:
            # No floor here: cancelling must restore exactly what was taken.
            for item in order.items:
                stock_service.decrease(db, item.product_id, item.quantity, clamp_to_zero=False)
            order.is_confirmed = True
            order.approved_by_user_id = approved_by_user_id
            order.approved_at = now
        elif current is OrderStatus.CONFIRMED and target is OrderStatus.CANCELLED:
            for item in order.items:
                stock_service.increase(db, item.product_id, item.quantity)

        if target is OrderStatus.SHIPPED:
            order.shipped_at = now
        order.status = target.value
        db.flush()

    logger.info(
        "Order %s status %s -> %s",
        order.id,
        current.value,
        target.value,
        extra={"order_id": order.id, "institution_id": order.institution_id},
    )
    return order


def delete_order(db: Session, order_id: int, *, institution_id: Optional[int] = None) -> None:
    order = get_order(db, order_id, institution_id=institution_id, for_update=True)
    if order.status != OrderStatus.PENDING.value:
        raise ValidationError("Only pending orders can be deleted")
    db.delete(order)
    db.flush()
    logger.warning("Order %s deleted (institution %s)", order_id, order.institution_id)


def order_stats(db: Session, institution_id: int) -> dict:
    row = db.execute(
        select(
            func.count(Order.id).label("total_orders"),
            func.count(Order.id).filter(Order.status == OrderStatus.PENDING.value).label("pending_orders"),
            func.count(Order.id).filter(Order.is_confirmed.is_(True)).label("confirmed_orders"),
            func.coalesce(func.sum(Order.total_amount), 0).label("total_amount"),
        ).where(Order.institution_id == institution_id)
    ).one()
    return {
        "total_orders": int(row.total_orders),
        "pending_orders": int(row.pending_orders),
        "confirmed_orders": int(row.confirmed_orders),
        "total_amount": to_money(row.total_amount),
    }


def repair_order_totals(db: Session, order_ids: Optional[Iterable[int]] = None) -> int:
    """Recompute line subtotals and cached totals from the stored snapshot prices.

    Returns the number of orders whose stored total changed.
    """
    stmt = select(Order).options(selectinload(Order.items)).order_by(Order.id)
    if order_ids is not None:
        stmt = stmt.where(Order.id.in_(list(order_ids)))
    repaired = 0
    for order in db.execute(stmt).scalars().all():
        before = to_money(order.total_amount or 0)
        after = recompute_total(order)
        if before != after:
            repaired += 1
            logger.warning("Order %s total repaired: %s -> %s", order.id, before, after)
    db.flush()
    return repaired


__all__ = [
    "ALLOWED_TRANSITIONS",
    "coerce_status",
    "create_order",
    "delete_order",
    "get_order",
    "list_orders",
    "order_stats",
    "recompute_total",
    "repair_order_totals",
    "to_money",
    "transition",
]
