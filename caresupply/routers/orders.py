from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ForbiddenError
from caresupply.core.security import Actor
from caresupply.dependencies import get_actor, get_db
from caresupply.models.order import OrderStatus
from caresupply.schemas.order import OrderCreate, OrderRead, OrderStats, OrderStatusUpdate
from caresupply.services import order_service

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=List[OrderRead])
def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    patient_id: Optional[int] = Query(None),
    is_recurring: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return order_service.list_orders(
        db,
        actor.institution_scope(),
        status=status_filter.value if status_filter else None,
        patient_id=patient_id,
        is_recurring=is_recurring,
    )


@router.get("/stats", response_model=OrderStats)
def get_order_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return order_service.order_stats(db, actor.require_institution())


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return order_service.get_order(db, order_id, institution_id=actor.institution_scope())


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    order = order_service.create_order(
        db,
        institution_id=actor.require_institution(),
        patient_id=payload.patient_id,
        items=payload.items,
        created_by_user_id=None if actor.is_worker else actor.user_id,
        created_by_worker_id=actor.user_id if actor.is_worker else None,
        scheduled_date=payload.scheduled_date,
    )
    db.commit()
    return order


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if actor.is_worker:
        raise ForbiddenError("Workers cannot change order status")
    order = order_service.transition(
        db,
        order_id,
        payload.status,
        institution_id=actor.institution_scope(),
        approved_by_user_id=actor.user_id,
    )
    db.commit()
    return order


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    order_service.delete_order(db, order_id, institution_id=actor.institution_scope())
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
