import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from caresupply.config import get_settings
from caresupply.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from caresupply.services import template_store
from caresupply.services.catalog_service import find_product
from caresupply.services.patient_service import get_patient
from caresupply.services.recurring_scheduler import fulfill_execution, run_daily_check

logger = logging.getLogger(__name__)

MIN_DAY_OF_MONTH = 1
# Every month has a day 28, so schedules never fall on a missing date.
MAX_DAY_OF_MONTH = 28


def _validate_day(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("{} must be an integer".format(label))
    if value < MIN_DAY_OF_MONTH or value > MAX_DAY_OF_MONTH:
        raise ValidationError(
            "{} must be between {} and {}".format(label, MIN_DAY_OF_MONTH, MAX_DAY_OF_MONTH)
        )
    return value


def _item_values(item) -> tuple[int, int]:
    if isinstance(item, dict):
        return item.get("product_id"), item.get("quantity")
    return getattr(item, "product_id", None), getattr(item, "quantity", None)


def _owned_template(db: Session, template_id: int, institution_id: Optional[int]):
    template = template_store.get_template(db, template_id)
    if template is None:
        raise NotFoundError("Template {} not found".format(template_id))
    if institution_id is not None and template.institution_id != institution_id:
        raise ForbiddenError("No permission for template {}".format(template_id))
    return template


def create_template(
    db: Session,
    *,
    institution_id: int,
    name: str,
    execution_day_of_month: int,
    delivery_day_of_month: int,
    items: Iterable,
    patient_id: Optional[int] = None,
    notification_days_before: Optional[int] = None,
    created_by_user_id: Optional[int] = None,
) -> template_store.TemplateView:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Template name is required")
    _validate_day(execution_day_of_month, "Execution day")
    _validate_day(delivery_day_of_month, "Delivery day")
    if delivery_day_of_month <= execution_day_of_month:
        raise ValidationError("Delivery day must be after the execution day")

    if notification_days_before is None:
        notification_days_before = get_settings().DEFAULT_NOTIFICATION_DAYS_BEFORE
    if isinstance(notification_days_before, bool) or not isinstance(notification_days_before, int) \
            or notification_days_before < 0:
        raise ValidationError("Notification days before must be a non-negative integer")

    lines = [_item_values(item) for item in items or ()]
    if not lines:
        raise ValidationError("At least one product is required")
    for product_id, quantity in lines:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity for product {} must be at least 1".format(product_id))
        find_product(db, product_id)

    if patient_id is not None:
        get_patient(db, patient_id, institution_id=institution_id)

    template = template_store.create_template(
        db,
        institution_id=institution_id,
        patient_id=patient_id,
        name=name,
        execution_day_of_month=execution_day_of_month,
        delivery_day_of_month=delivery_day_of_month,
        notification_days_before=notification_days_before,
        created_by_user_id=created_by_user_id,
    )
    for product_id, quantity in lines:
        template_store.add_template_item(db, template, product_id, quantity)

    logger.info(
        "Recurring template %s created for institution %s (patient=%s, items=%d)",
        template.id,
        institution_id,
        patient_id,
        len(lines),
    )
    return template_store.build_views(db, [template])[0]


def list_templates(db: Session, institution_id: int) -> list[template_store.TemplateView]:
    return template_store.list_templates(db, institution_id)


def get_template(db: Session, template_id: int, *, institution_id: Optional[int]) -> template_store.TemplateView:
    template = _owned_template(db, template_id, institution_id)
    return template_store.build_views(db, [template])[0]


def toggle_template_active(
    db: Session,
    template_id: int,
    is_active: bool,
    *,
    institution_id: Optional[int],
) -> None:
    template = _owned_template(db, template_id, institution_id)
    template_store.set_template_active(db, template, is_active)
    logger.info("Template %s active=%s", template_id, bool(is_active))


def delete_template(db: Session, template_id: int, *, institution_id: Optional[int]) -> None:
    template = _owned_template(db, template_id, institution_id)
    template_store.delete_template(db, template)
    logger.info("Template %s deleted", template_id)


def list_pending_approvals(db: Session, institution_id: int) -> list[dict]:
    return template_store.list_pending_approvals(db, institution_id)


def approve_execution(
    db: Session,
    execution_id: int,
    *,
    approver_user_id: Optional[int],
    institution_id: Optional[int],
) -> dict:
    """Manually approve a notified execution and create its orders now.

    Raises NotFoundError for unknown executions and for executions that are
    not awaiting approval (not notified, already approved or already
    fulfilled). Order failures surface as ValidationError.
    """
    execution = template_store.get_execution(db, execution_id, for_update=True)
    if execution is None:
        raise NotFoundError("Execution {} not found".format(execution_id))
    if institution_id is not None and execution.template.institution_id != institution_id:
        raise ForbiddenError("No permission for execution {}".format(execution_id))
    if execution.is_approved or execution.orders_created or not execution.notification_sent:
        raise NotFoundError("Execution {} is not awaiting approval".format(execution_id))

    order_ids = fulfill_execution(
        db,
        execution,
        approver_user_id=approver_user_id,
        strict=True,
    )
    logger.info(
        "Execution %s approved by user %s: %d order(s) created",
        execution_id,
        approver_user_id,
        len(order_ids),
    )
    return {
        "execution_id": execution.id,
        "orders_created": len(order_ids),
        "order_ids": order_ids,
    }


def trigger_daily_check(*, today: Optional[date] = None, session_factory=None) -> dict:
    logger.warning("Daily recurring check triggered manually (today=%s)", today or date.today())
    return run_daily_check(today=today, session_factory=session_factory)


__all__ = [
    "MAX_DAY_OF_MONTH",
    "MIN_DAY_OF_MONTH",
    "approve_execution",
    "create_template",
    "delete_template",
    "get_template",
    "list_pending_approvals",
    "list_templates",
    "toggle_template_active",
    "trigger_daily_check",
]
