from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from caresupply.database.base import Base


class RecurringOrderTemplate(Base):
    __tablename__ = "recurring_order_templates"

    id = Column(Integer, primary_key=True)
    institution_id = Column(Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    # NULL means every patient that is active when the template executes.
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"))

    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    execution_day_of_month = Column(Integer, nullable=False)
    delivery_day_of_month = Column(Integer, nullable=False)
    notification_days_before = Column(Integer, nullable=False, default=5)

    created_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = relationship(
        "RecurringOrderTemplateItem",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RecurringOrderTemplateItem.id",
    )

    __table_args__ = (
        CheckConstraint(
            "execution_day_of_month BETWEEN 1 AND 28",
            name="ck_templates_execution_day",
        ),
        CheckConstraint(
            "delivery_day_of_month BETWEEN 1 AND 28",
            name="ck_templates_delivery_day",
        ),
        CheckConstraint(
            "delivery_day_of_month > execution_day_of_month",
            name="ck_templates_delivery_after_execution",
        ),
        CheckConstraint("notification_days_before >= 0", name="ck_templates_notification_days"),
        Index("idx_templates_active_execution_day", "is_active", "execution_day_of_month"),
        Index("idx_templates_institution", "institution_id"),
    )


class RecurringOrderTemplateItem(Base):
    __tablename__ = "recurring_order_template_items"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer,
        ForeignKey("recurring_order_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    template = relationship("RecurringOrderTemplate", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_template_items_quantity"),
    )


class RecurringOrderExecution(Base):
    __tablename__ = "recurring_order_executions"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer,
        ForeignKey("recurring_order_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Always the first day of the month this execution covers.
    execution_month = Column(Date, nullable=False)

    notification_sent = Column(Boolean, nullable=False, default=False)
    notification_sent_at = Column(DateTime(timezone=True))

    is_approved = Column(Boolean, nullable=False, default=False)
    approved_at = Column(DateTime(timezone=True))
    approved_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))

    orders_created = Column(Boolean, nullable=False, default=False)
    orders_created_at = Column(DateTime(timezone=True))
    # Ids only: the orders are not owned by the execution.
    created_order_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    template = relationship("RecurringOrderTemplate")

    __table_args__ = (
        UniqueConstraint("template_id", "execution_month", name="uq_executions_template_month"),
        Index("idx_executions_pending", "notification_sent", "is_approved", "orders_created"),
    )


__all__ = [
    "RecurringOrderExecution",
    "RecurringOrderTemplate",
    "RecurringOrderTemplateItem",
]
