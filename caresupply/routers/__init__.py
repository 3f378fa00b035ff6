from caresupply.routers.health import router as health_router
from caresupply.routers.orders import router as orders_router
from caresupply.routers.recurring_orders import router as recurring_orders_router
from caresupply.routers.warehouse import router as warehouse_router

__all__ = [
    "health_router",
    "orders_router",
    "recurring_orders_router",
    "warehouse_router",
]
