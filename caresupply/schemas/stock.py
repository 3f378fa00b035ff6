from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StockRead(BaseModel):
    id: int
    name: str
    type: str
    size: Optional[str]
    unit: str
    price_per_unit: Decimal
    stock_quantity: int
    low_stock_threshold: int
    low_stock_alert_acknowledged: bool
    is_low_stock: bool

    model_config = ConfigDict(from_attributes=True)


class LowStockRead(BaseModel):
    product_id: int
    product_name: str
    stock_quantity: int
    low_stock_threshold: int
    low_stock_alert_acknowledged: bool
    shortage: int


class LowStockCount(BaseModel):
    count: int


class AmountPayload(BaseModel):
    amount: int = Field(gt=0)


class QuantityPayload(BaseModel):
    # Negative values are accepted and recorded as stock debt.
    quantity: int


class ThresholdPayload(BaseModel):
    threshold: int = Field(ge=0)
