"""Daily recurring-order passes.

``run_notification_check`` sends the advance heads-up for templates whose
notification day is today. ``run_daily_check`` turns templates whose execution
day is today into orders. Both open one session per template so a failing
template never takes its siblings down with it. ``fulfill_execution`` is the
single order-creation routine, shared with the manual approval gate.
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ServiceError, ValidationError
from caresupply.database.session import SessionLocal, session_scope
from caresupply.models.institution import Institution
from caresupply.models.recurring import RecurringOrderExecution, RecurringOrderTemplate
from caresupply.services import template_store
from caresupply.services.notification_service import send_notification
from caresupply.services.order_service import create_order
from caresupply.services.patient_service import list_active_patients

logger = logging.getLogger(__name__)


def delivery_date_for(template: RecurringOrderTemplate, month: date) -> date:
    return template_store.first_of_month(month).replace(day=template.delivery_day_of_month)


def execution_date_for(template: RecurringOrderTemplate, month: date) -> date:
    return template_store.first_of_month(month).replace(day=template.execution_day_of_month)


def resolve_target_patient_ids(db: Session, template: RecurringOrderTemplate) -> list[int]:
    """The pinned patient, or whoever is active in the institution right now."""
    if template.patient_id:
        return [template.patient_id]
    return [patient.id for patient in list_active_patients(db, template.institution_id)]


def fulfill_execution(
    db: Session,
    execution: RecurringOrderExecution,
    *,
    approver_user_id: Optional[int],
    approved_at: Optional[datetime] = None,
    strict: bool = True,
) -> list[int]:
    """Approve ``execution`` and create one order per target patient.

    Prices come from the live catalog at the moment each order is created.
    With ``strict`` any failing order raises ValidationError. Otherwise a
    failing order is logged and the remaining patients are still served; only
    when every target patient fails is ValidationError raised. In both cases
    the caller is expected to roll back so the month stays open.
    """
    template = execution.template
    context = {"template_id": template.id, "execution_id": execution.id}
    template_store.mark_approved(
        db,
        execution,
        approved_by_user_id=approver_user_id,
        approved_at=approved_at,
    )

    delivery_date = delivery_date_for(template, execution.execution_month)
    items = [{"product_id": item.product_id, "quantity": item.quantity} for item in template.items]

    patient_ids = resolve_target_patient_ids(db, template)
    order_ids = []
    failures = []
    for patient_id in patient_ids:
        try:
            order = create_order(
                db,
                institution_id=template.institution_id,
                patient_id=patient_id,
                items=items,
                created_by_user_id=approver_user_id,
                scheduled_date=delivery_date,
                is_recurring=True,
            )
        except (ServiceError, SQLAlchemyError) as exc:
            detail = exc.message if isinstance(exc, ServiceError) else str(exc)
            if strict:
                raise ValidationError(
                    "Order for patient {} could not be created: {}".format(patient_id, detail)
                ) from exc
            failures.append(detail)
            logger.warning(
                "Skipping recurring order for template %s, patient %s: %s",
                template.id,
                patient_id,
                detail,
                extra=context,
            )
            continue
        order_ids.append(order.id)

    if patient_ids and not order_ids:
        raise ValidationError(
            "No order could be created for template {} ({} patient(s)): {}".format(
                template.id, len(patient_ids), failures[0]
            )
        )

    template_store.mark_orders_created(db, execution, order_ids)
    logger.info(
        "Execution %s fulfilled for template %s: %d of %d order(s), delivery %s",
        execution.id,
        template.id,
        len(order_ids),
        len(patient_ids),
        delivery_date,
        extra=context,
    )
    return order_ids


def _execute_template(session_factory, template_id: int, today: date) -> Optional[int]:
    with session_scope(session_factory) as db:
        template = template_store.get_template(db, template_id)
        if template is None or not template.is_active:
            logger.info("Template %s no longer active; skipping", template_id)
            return None

        execution = template_store.create_execution(db, template.id, today)
        if execution.orders_created:
            db.commit()
            logger.info(
                "Template %s already fulfilled for %s (execution %s); skipping",
                template.id,
                execution.execution_month,
                execution.id,
            )
            return None

        order_ids = fulfill_execution(
            db,
            execution,
            approver_user_id=template.created_by_user_id,
            strict=False,
        )
        db.commit()
        return len(order_ids)


def run_daily_check(*, today: Optional[date] = None, session_factory=None) -> dict:
    session_factory = session_factory or SessionLocal
    today = today or date.today()

    with session_scope(session_factory) as db:
        template_ids = [view.template.id for view in template_store.templates_needing_execution(db, today.day)]

    stats = {
        "templates_found": len(template_ids),
        "templates_processed": 0,
        "templates_skipped": 0,
        "templates_failed": 0,
        "orders_created": 0,
    }
    if not template_ids:
        logger.info("No recurring templates to execute on %s", today)
        return stats

    logger.info("Executing %d recurring template(s) for %s", len(template_ids), today)
    for template_id in template_ids:
        try:
            created = _execute_template(session_factory, template_id, today)
        except (ServiceError, SQLAlchemyError):
            stats["templates_failed"] += 1
            logger.exception("Recurring template %s failed on %s", template_id, today)
            continue
        if created is None:
            stats["templates_skipped"] += 1
            continue
        stats["templates_processed"] += 1
        stats["orders_created"] += created

    logger.info(
        "Daily recurring check for %s done: %d processed, %d skipped, %d failed, %d order(s) created",
        today,
        stats["templates_processed"],
        stats["templates_skipped"],
        stats["templates_failed"],
        stats["orders_created"],
    )
    return stats


def build_notification_message(view: template_store.TemplateView, institution_name: str, month: date) -> str:
    template = view.template
    lines = [
        "Recurring order \"{}\" for {}".format(template.name, institution_name),
        "Orders will be created on {} for delivery on {}.".format(
            execution_date_for(template, month),
            delivery_date_for(template, month),
        ),
    ]
    if view.patient_name:
        lines.append("Patient: {}".format(view.patient_name))
    elif template.patient_id:
        lines.append("Patient: #{}".format(template.patient_id))
    else:
        lines.append("Applies to all {} active patient(s).".format(view.patient_count or 0))
    for item in view.items:
        lines.append(
            "- {} x {} ({} each)".format(item.quantity, item.product_name or item.product_id, item.price_per_unit)
        )
    lines.append("Approve it now to create the orders early; otherwise they are created automatically.")
    return "\n".join(lines)


def _notify_template(session_factory, template_id: int, today: date, notifier: Callable) -> bool:
    with session_scope(session_factory) as db:
        template = template_store.get_template(db, template_id)
        if template is None or not template.is_active:
            return False
        view = template_store.build_views(db, [template])[0]
        execution = template_store.create_execution(db, template_id, today)
        if execution.notification_sent or execution.orders_created:
            db.commit()
            return False

        institution = db.get(Institution, view.template.institution_id)
        institution_name = institution.name if institution else "institution {}".format(
            view.template.institution_id
        )
        message = build_notification_message(view, institution_name, today)
        context = {"execution_id": execution.id, "template_id": template_id}
        try:
            notifier(
                message,
                recipient=institution_name,
                subject="Upcoming recurring order: {}".format(view.template.name),
                context=context,
            )
        except (RuntimeError, ValueError):
            # The execution row is still kept so the next pass does not reopen it.
            logger.exception("Notification for template %s could not be delivered", template_id, extra=context)
            db.commit()
            return False

        template_store.mark_notification_sent(db, execution)
        db.commit()
        return True


def run_notification_check(
    *,
    today: Optional[date] = None,
    session_factory=None,
    notifier: Optional[Callable] = None,
) -> dict:
    session_factory = session_factory or SessionLocal
    notifier = notifier or send_notification
    today = today or date.today()

    with session_scope(session_factory) as db:
        template_ids = [
            view.template.id for view in template_store.templates_needing_notification(db, today.day)
        ]

    stats = {"templates_found": len(template_ids), "notifications_sent": 0, "templates_failed": 0}
    for template_id in template_ids:
        try:
            if _notify_template(session_factory, template_id, today, notifier):
                stats["notifications_sent"] += 1
        except (ServiceError, SQLAlchemyError):
            stats["templates_failed"] += 1
            logger.exception("Notification pass failed for template %s", template_id)

    logger.info(
        "Notification check for %s done: %d of %d template(s) notified",
        today,
        stats["notifications_sent"],
        stats["templates_found"],
    )
    return stats


__all__ = [
    "build_notification_message",
    "delivery_date_for",
    "execution_date_for",
    "fulfill_execution",
    "resolve_target_patient_ids",
    "run_daily_check",
    "run_notification_check",
]
