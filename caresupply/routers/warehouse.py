from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ForbiddenError
from caresupply.core.security import Actor
from caresupply.dependencies import get_actor, get_db
from caresupply.schemas.stock import (
    AmountPayload,
    LowStockCount,
    LowStockRead,
    QuantityPayload,
    StockRead,
    ThresholdPayload,
)
from caresupply.services import stock_service

router = APIRouter(prefix="/warehouse", tags=["Warehouse"])


def require_warehouse_admin(actor: Actor = Depends(get_actor)) -> Actor:
    # Stock is global across institutions.
    if not actor.is_application_admin:
        raise ForbiddenError("Warehouse access requires an application administrator")
    return actor


@router.get("/stock", response_model=List[StockRead])
def list_stock(db: Session = Depends(get_db), _actor: Actor = Depends(require_warehouse_admin)):
    return stock_service.list_stock(db)


@router.get("/low-stock", response_model=List[LowStockRead])
def list_low_stock(db: Session = Depends(get_db), _actor: Actor = Depends(require_warehouse_admin)):
    return stock_service.list_low_stock(db)


@router.get("/low-stock/count", response_model=LowStockCount)
def count_low_stock(db: Session = Depends(get_db), _actor: Actor = Depends(require_warehouse_admin)):
    return {"count": stock_service.count_unacknowledged_low_stock(db)}


@router.put("/stock/{product_id}", response_model=StockRead)
def set_stock_quantity(
    product_id: int,
    payload: QuantityPayload,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_warehouse_admin),
):
    product = stock_service.set_quantity(db, product_id, payload.quantity)
    db.commit()
    return product


@router.post("/stock/{product_id}/increase", response_model=StockRead)
def increase_stock(
    product_id: int,
    payload: AmountPayload,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_warehouse_admin),
):
    product = stock_service.increase(db, product_id, payload.amount)
    db.commit()
    return product


@router.post("/stock/{product_id}/decrease", response_model=StockRead)
def decrease_stock(
    product_id: int,
    payload: AmountPayload,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_warehouse_admin),
):
    product = stock_service.decrease(db, product_id, payload.amount)
    db.commit()
    return product


@router.put("/stock/{product_id}/threshold", response_model=StockRead)
def set_low_stock_threshold(
    product_id: int,
    payload: ThresholdPayload,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_warehouse_admin),
):
    product = stock_service.set_threshold(db, product_id, payload.threshold)
    db.commit()
    return product


@router.post("/stock/{product_id}/acknowledge", response_model=StockRead)
def acknowledge_low_stock(
    product_id: int,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_warehouse_admin),
):
    product = stock_service.acknowledge(db, product_id)
    db.commit()
    return product


__all__ = ["router"]
