from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TemplateItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    patient_id: Optional[int] = None
    # Range and ordering checks live in the service so API and scripts agree.
    execution_day_of_month: int
    delivery_day_of_month: int
    notification_days_before: Optional[int] = None
    items: List[TemplateItemCreate] = Field(min_length=1)


class TemplateItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    product_name: Optional[str]
    product_size: Optional[str]
    price_per_unit: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class TemplateRead(BaseModel):
    id: int
    institution_id: int
    patient_id: Optional[int]
    patient_name: Optional[str]
    patient_count: Optional[int]
    name: str
    is_active: bool
    execution_day_of_month: int
    delivery_day_of_month: int
    notification_days_before: int
    created_by_user_id: Optional[int]
    created_at: datetime
    estimated_total: Decimal
    items: List[TemplateItemRead] = []

    @classmethod
    def from_view(cls, view) -> "TemplateRead":
        template = view.template
        return cls(
            id=template.id,
            institution_id=template.institution_id,
            patient_id=template.patient_id,
            patient_name=view.patient_name,
            patient_count=view.patient_count,
            name=template.name,
            is_active=template.is_active,
            execution_day_of_month=template.execution_day_of_month,
            delivery_day_of_month=template.delivery_day_of_month,
            notification_days_before=template.notification_days_before,
            created_by_user_id=template.created_by_user_id,
            created_at=template.created_at,
            estimated_total=view.estimated_total,
            items=[TemplateItemRead.model_validate(item) for item in view.items],
        )


class TemplateToggle(BaseModel):
    is_active: bool


class PendingApprovalRead(BaseModel):
    execution_id: int
    template_id: int
    template_name: str
    execution_month: date
    execution_day_of_month: int
    delivery_day_of_month: int
    patient_id: Optional[int]
    patient_name: Optional[str]
    notification_sent_at: Optional[datetime]


class ApprovalResult(BaseModel):
    execution_id: int
    orders_created: int
    order_ids: List[int]


class DailyCheckResult(BaseModel):
    templates_found: int
    templates_processed: int
    templates_skipped: int
    templates_failed: int
    orders_created: int


class DailyCheckRequest(BaseModel):
    today: Optional[date] = None
