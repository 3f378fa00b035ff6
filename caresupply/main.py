import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from caresupply.config import Settings, get_settings
from caresupply.core.exceptions import ServiceError
from caresupply.core.logging import setup_logging
from caresupply.database import init_db
from caresupply.routers import (
    health_router,
    orders_router,
    recurring_orders_router,
    warehouse_router,
)
from caresupply.scheduler.daily_jobs import build_scheduler

logger = logging.getLogger(__name__)

setup_logging()
settings: Settings = get_settings()

init_db()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    scheduler = build_scheduler(settings) if settings.SCHEDULER_ENABLED else None
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(health_router)
app.include_router(orders_router)
app.include_router(recurring_orders_router)
app.include_router(warehouse_router)


__all__ = ["app"]
