from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, Numeric, String

from caresupply.database.base import Base

PRODUCT_TYPES = ("gloves", "disinfectant_liquid", "disinfectant_wipes")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String)
    type = Column(String(30), nullable=False)
    size = Column(String(5))
    unit = Column(String(20), nullable=False, default="box")

    price_per_unit = Column(Numeric(10, 2), nullable=False)
    min_order_quantity = Column(Integer, nullable=False, default=1)
    is_available = Column(Boolean, nullable=False, default=True)

    # Negative values record stock debt (backlog) and are intentional.
    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=0)
    low_stock_alert_acknowledged = Column(Boolean, nullable=False, default=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('gloves', 'disinfectant_liquid', 'disinfectant_wipes')",
            name="ck_products_type",
        ),
        CheckConstraint("min_order_quantity >= 1", name="ck_products_min_order_quantity"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_products_low_stock_threshold"),
        Index("idx_products_type_name", "type", "name"),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity < self.low_stock_threshold


__all__ = ["PRODUCT_TYPES", "Product"]
