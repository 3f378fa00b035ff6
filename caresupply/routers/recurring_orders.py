from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Response, status
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ForbiddenError
from caresupply.core.security import Actor
from caresupply.dependencies import get_actor, get_db
from caresupply.schemas.recurring import (
    ApprovalResult,
    DailyCheckRequest,
    DailyCheckResult,
    PendingApprovalRead,
    TemplateCreate,
    TemplateRead,
    TemplateToggle,
)
from caresupply.services import recurring_order_service

router = APIRouter(prefix="/recurring-orders", tags=["Recurring orders"])


def _require_admin(actor: Actor) -> Actor:
    if actor.is_worker:
        raise ForbiddenError("Recurring orders are managed by administrators only")
    return actor


@router.post("/templates", response_model=TemplateRead, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: TemplateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    _require_admin(actor)
    view = recurring_order_service.create_template(
        db,
        institution_id=actor.require_institution(),
        name=payload.name,
        patient_id=payload.patient_id,
        execution_day_of_month=payload.execution_day_of_month,
        delivery_day_of_month=payload.delivery_day_of_month,
        notification_days_before=payload.notification_days_before,
        items=payload.items,
        created_by_user_id=actor.user_id,
    )
    db.commit()
    return TemplateRead.from_view(view)


@router.get("/templates", response_model=List[TemplateRead])
def list_templates(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    _require_admin(actor)
    views = recurring_order_service.list_templates(db, actor.require_institution())
    return [TemplateRead.from_view(view) for view in views]


@router.get("/templates/{template_id}", response_model=TemplateRead)
def get_template(template_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    _require_admin(actor)
    view = recurring_order_service.get_template(db, template_id, institution_id=actor.institution_scope())
    return TemplateRead.from_view(view)


@router.patch("/templates/{template_id}/toggle", response_model=TemplateRead)
def toggle_template(
    template_id: int,
    payload: TemplateToggle,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    _require_admin(actor)
    scope = actor.institution_scope()
    recurring_order_service.toggle_template_active(db, template_id, payload.is_active, institution_id=scope)
    db.commit()
    view = recurring_order_service.get_template(db, template_id, institution_id=scope)
    return TemplateRead.from_view(view)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(template_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    _require_admin(actor)
    recurring_order_service.delete_template(db, template_id, institution_id=actor.institution_scope())
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/pending-approvals", response_model=List[PendingApprovalRead])
def list_pending_approvals(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    _require_admin(actor)
    return recurring_order_service.list_pending_approvals(db, actor.require_institution())


@router.post("/executions/{execution_id}/approve", response_model=ApprovalResult)
def approve_execution(execution_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    _require_admin(actor)
    result = recurring_order_service.approve_execution(
        db,
        execution_id,
        approver_user_id=actor.user_id,
        institution_id=actor.institution_scope(),
    )
    db.commit()
    return result


@router.post("/trigger-daily-check", response_model=DailyCheckResult)
def trigger_daily_check(
    payload: Optional[DailyCheckRequest] = Body(None),
    actor: Actor = Depends(get_actor),
):
    if not actor.is_application_admin:
        raise ForbiddenError("Only application administrators can trigger the daily check")
    return recurring_order_service.trigger_daily_check(today=payload.today if payload else None)


__all__ = ["router"]
