"""Persistence for recurring-order templates and their monthly executions.

``templates_needing_notification`` and ``templates_needing_execution`` are the
only ways the scheduler discovers work. ``create_execution`` is the
idempotency primitive: one row per (template, month), enforced by a unique
constraint rather than a read-then-write check.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from caresupply.core.exceptions import NotFoundError
from caresupply.models.institution import Patient
from caresupply.models.product import Product
from caresupply.models.recurring import (
    RecurringOrderExecution,
    RecurringOrderTemplate,
    RecurringOrderTemplateItem,
)

logger = logging.getLogger(__name__)


@dataclass
class TemplateItemView:
    id: int
    product_id: int
    quantity: int
    product_name: Optional[str]
    product_size: Optional[str]
    price_per_unit: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price_per_unit * self.quantity


@dataclass
class TemplateView:
    template: RecurringOrderTemplate
    items: list[TemplateItemView] = field(default_factory=list)
    patient_name: Optional[str] = None
    # Only set for templates that apply to every active patient.
    patient_count: Optional[int] = None

    @property
    def estimated_total(self) -> Decimal:
        per_order = sum((item.line_total for item in self.items), Decimal("0"))
        orders = 1 if self.template.patient_id else (self.patient_count or 0)
        return per_order * orders


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def first_of_month(value: date) -> date:
    if isinstance(value, datetime):
        value = value.date()
    return value.replace(day=1)


def create_template(
    db: Session,
    *,
    institution_id: int,
    name: str,
    execution_day_of_month: int,
    delivery_day_of_month: int,
    notification_days_before: int,
    patient_id: Optional[int] = None,
    created_by_user_id: Optional[int] = None,
) -> RecurringOrderTemplate:
    template = RecurringOrderTemplate(
        institution_id=institution_id,
        patient_id=patient_id,
        name=name,
        is_active=True,
        execution_day_of_month=execution_day_of_month,
        delivery_day_of_month=delivery_day_of_month,
        notification_days_before=notification_days_before,
        created_by_user_id=created_by_user_id,
    )
    db.add(template)
    db.flush()
    return template


def add_template_item(
    db: Session,
    template: RecurringOrderTemplate,
    product_id: int,
    quantity: int,
) -> RecurringOrderTemplateItem:
    item = RecurringOrderTemplateItem(product_id=product_id, quantity=quantity)
    template.items.append(item)
    db.flush()
    return item


def get_template(db: Session, template_id: int) -> Optional[RecurringOrderTemplate]:
    stmt = (
        select(RecurringOrderTemplate)
        .where(RecurringOrderTemplate.id == template_id)
        .options(selectinload(RecurringOrderTemplate.items))
    )
    return db.execute(stmt).scalars().first()


def set_template_active(db: Session, template: RecurringOrderTemplate, is_active: bool) -> None:
    template.is_active = bool(is_active)
    db.flush()


def delete_template(db: Session, template: RecurringOrderTemplate) -> None:
    db.delete(template)
    db.flush()


def _active_patient_counts(db: Session, institution_ids: Iterable[int]) -> dict[int, int]:
    ids = set(institution_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(Patient.institution_id, func.count(Patient.id))
        .where(Patient.institution_id.in_(ids), Patient.is_active.is_(True))
        .group_by(Patient.institution_id)
    ).all()
    return {institution_id: int(count) for institution_id, count in rows}


def build_views(db: Session, templates: list[RecurringOrderTemplate]) -> list[TemplateView]:
    """Attach current catalog data and live patient counts to templates."""
    if not templates:
        return []
    template_ids = [template.id for template in templates]
    item_rows = db.execute(
        select(RecurringOrderTemplateItem, Product.name, Product.size, Product.price_per_unit)
        .join(Product, Product.id == RecurringOrderTemplateItem.product_id)
        .where(RecurringOrderTemplateItem.template_id.in_(template_ids))
        .order_by(Product.name, RecurringOrderTemplateItem.id)
    ).all()
    items_by_template: dict[int, list[TemplateItemView]] = {}
    for item, product_name, product_size, price in item_rows:
        items_by_template.setdefault(item.template_id, []).append(
            TemplateItemView(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                product_name=product_name,
                product_size=product_size,
                price_per_unit=Decimal(str(price)),
            )
        )

    pinned_ids = {template.patient_id for template in templates if template.patient_id}
    patient_names = {}
    if pinned_ids:
        for patient in db.execute(select(Patient).where(Patient.id.in_(pinned_ids))).scalars():
            patient_names[patient.id] = patient.display_name

    counts = _active_patient_counts(
        db, {template.institution_id for template in templates if not template.patient_id}
    )

    views = []
    for template in templates:
        views.append(
            TemplateView(
                template=template,
                items=items_by_template.get(template.id, []),
                patient_name=patient_names.get(template.patient_id),
                patient_count=None if template.patient_id else counts.get(template.institution_id, 0),
            )
        )
    return views


def list_templates(db: Session, institution_id: int) -> list[TemplateView]:
    templates = (
        db.execute(
            select(RecurringOrderTemplate)
            .where(RecurringOrderTemplate.institution_id == institution_id)
            .order_by(RecurringOrderTemplate.created_at.desc(), RecurringOrderTemplate.id.desc())
        )
        .scalars()
        .all()
    )
    return build_views(db, list(templates))


def templates_needing_notification(db: Session, day_of_month: int) -> list[TemplateView]:
    stmt = (
        select(RecurringOrderTemplate)
        .where(
            RecurringOrderTemplate.is_active.is_(True),
            (
                RecurringOrderTemplate.execution_day_of_month
                - RecurringOrderTemplate.notification_days_before
            )
            == day_of_month,
        )
        .order_by(RecurringOrderTemplate.id)
    )
    return build_views(db, list(db.execute(stmt).scalars().all()))


def templates_needing_execution(db: Session, day_of_month: int) -> list[TemplateView]:
    stmt = (
        select(RecurringOrderTemplate)
        .where(
            RecurringOrderTemplate.is_active.is_(True),
            RecurringOrderTemplate.execution_day_of_month == day_of_month,
        )
        .order_by(RecurringOrderTemplate.id)
    )
    return build_views(db, list(db.execute(stmt).scalars().all()))


def get_execution(
    db: Session,
    execution_id: int,
    *,
    for_update: bool = False,
) -> Optional[RecurringOrderExecution]:
    stmt = select(RecurringOrderExecution).where(RecurringOrderExecution.id == execution_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def get_execution_for_month(
    db: Session,
    template_id: int,
    execution_month: date,
) -> Optional[RecurringOrderExecution]:
    stmt = select(RecurringOrderExecution).where(
        RecurringOrderExecution.template_id == template_id,
        RecurringOrderExecution.execution_month == first_of_month(execution_month),
    )
    return db.execute(stmt).scalars().first()


def create_execution(db: Session, template_id: int, execution_month: date) -> RecurringOrderExecution:
    """Return the execution row for (template, month), inserting it if absent.

    A concurrent or repeated insert loses on the unique constraint; the
    violation is swallowed and the surviving row is returned instead.
    """
    month = first_of_month(execution_month)
    try:
        with db.begin_nested():
            execution = RecurringOrderExecution(
                template_id=template_id,
                execution_month=month,
                created_order_ids=[],
            )
            db.add(execution)
            db.flush()
        logger.info("Execution %s opened for template %s (%s)", execution.id, template_id, month)
        return execution
    except IntegrityError:
        existing = get_execution_for_month(db, template_id, month)
        if existing is None:
            raise NotFoundError("Template {} not found".format(template_id))
        logger.debug("Execution for template %s (%s) already exists", template_id, month)
        return existing


def mark_notification_sent(
    db: Session,
    execution: RecurringOrderExecution,
    *,
    sent_at: Optional[datetime] = None,
) -> None:
    execution.notification_sent = True
    execution.notification_sent_at = sent_at or utc_now()
    db.flush()


def mark_approved(
    db: Session,
    execution: RecurringOrderExecution,
    *,
    approved_by_user_id: Optional[int],
    approved_at: Optional[datetime] = None,
) -> None:
    execution.is_approved = True
    execution.approved_at = approved_at or utc_now()
    execution.approved_by_user_id = approved_by_user_id
    db.flush()


def mark_orders_created(
    db: Session,
    execution: RecurringOrderExecution,
    order_ids: Iterable[int],
    *,
    created_at: Optional[datetime] = None,
) -> None:
    execution.orders_created = True
    execution.orders_created_at = created_at or utc_now()
    execution.created_order_ids = [int(order_id) for order_id in order_ids]
    db.flush()


def list_pending_approvals(db: Session, institution_id: int) -> list[dict]:
    rows = db.execute(
        select(RecurringOrderExecution, RecurringOrderTemplate, Patient)
        .join(RecurringOrderTemplate, RecurringOrderTemplate.id == RecurringOrderExecution.template_id)
        .outerjoin(Patient, Patient.id == RecurringOrderTemplate.patient_id)
        .where(
            RecurringOrderTemplate.institution_id == institution_id,
            RecurringOrderExecution.notification_sent.is_(True),
            RecurringOrderExecution.is_approved.is_(False),
            RecurringOrderExecution.orders_created.is_(False),
        )
        .order_by(RecurringOrderExecution.created_at.desc(), RecurringOrderExecution.id.desc())
    ).all()
    return [
        {
            "execution_id": execution.id,
            "template_id": template.id,
            "template_name": template.name,
            "execution_month": execution.execution_month,
            "execution_day_of_month": template.execution_day_of_month,
            "delivery_day_of_month": template.delivery_day_of_month,
            "patient_id": template.patient_id,
            "patient_name": patient.display_name if patient is not None else None,
            "notification_sent_at": execution.notification_sent_at,
        }
        for execution, template, patient in rows
    ]


__all__ = [
    "TemplateItemView",
    "TemplateView",
    "add_template_item",
    "build_views",
    "create_execution",
    "create_template",
    "delete_template",
    "first_of_month",
    "get_execution",
    "get_execution_for_month",
    "get_template",
    "list_pending_approvals",
    "list_templates",
    "mark_approved",
    "mark_notification_sent",
    "mark_orders_created",
    "set_template_active",
    "templates_needing_execution",
    "templates_needing_notification",
]
