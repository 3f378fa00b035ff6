from caresupply.services.order_service import create_order, transition
from caresupply.services.recurring_order_service import approve_execution
from caresupply.services.recurring_scheduler import (
    fulfill_execution,
    run_daily_check,
    run_notification_check,
)
from caresupply.services.template_store import create_execution

__all__ = [
    "approve_execution",
    "create_execution",
    "create_order",
    "fulfill_execution",
    "run_daily_check",
    "run_notification_check",
    "transition",
]
