from datetime import datetime, timezone

from fastapi import APIRouter

from caresupply.config import get_settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "scheduler_enabled": settings.SCHEDULER_ENABLED,
        "time": datetime.now(timezone.utc).isoformat(),
    }


__all__ = ["router"]
