from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from caresupply.models.order import OrderStatus


class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class OrderCreate(BaseModel):
    patient_id: Optional[int] = None
    scheduled_date: Optional[date] = None
    items: List[OrderItemCreate] = Field(min_length=1)


class OrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    price_per_unit: Decimal
    subtotal: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    institution_id: int
    patient_id: Optional[int]
    created_by_user_id: Optional[int]
    created_by_worker_id: Optional[int]
    status: OrderStatus
    is_recurring: bool
    scheduled_date: Optional[date]
    is_confirmed: bool
    approved_by_user_id: Optional[int]
    approved_at: Optional[datetime]
    shipped_at: Optional[datetime]
    total_amount: Decimal
    created_at: datetime
    items: List[OrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderStats(BaseModel):
    total_orders: int
    pending_orders: int
    confirmed_orders: int
    total_amount: Decimal
