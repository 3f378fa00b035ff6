import importlib

from caresupply.models.institution import Institution, Patient, User, Worker
from caresupply.models.order import Order, OrderItem, OrderStatus
from caresupply.models.product import Product
from caresupply.models.recurring import (
    RecurringOrderExecution,
    RecurringOrderTemplate,
    RecurringOrderTemplateItem,
)


def import_all_models() -> None:
    for module_name in (
        "caresupply.models.institution",
        "caresupply.models.order",
        "caresupply.models.product",
        "caresupply.models.recurring",
    ):
        importlib.import_module(module_name)


__all__ = [
    "Institution",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Patient",
    "Product",
    "RecurringOrderExecution",
    "RecurringOrderTemplate",
    "RecurringOrderTemplateItem",
    "User",
    "Worker",
    "import_all_models",
]
