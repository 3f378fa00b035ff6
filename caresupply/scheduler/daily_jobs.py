from caresupply.config import Settings, get_settings
from caresupply.core.scheduler import Scheduler
from caresupply.services.recurring_scheduler import run_daily_check, run_notification_check

NOTIFICATION_JOB = "recurring-order-notifications"
EXECUTION_JOB = "recurring-order-execution"


def build_scheduler(settings: Settings | None = None) -> Scheduler:
    """Scheduler with the two daily recurring-order passes registered.

    Both passes take the day of month from the scheduler clock, so
    SCHEDULER_TZ=utc selects templates by the UTC date as well.
    """
    settings = settings or get_settings()
    scheduler = Scheduler(
        timezone_mode=settings.SCHEDULER_TZ,
        poll_seconds=settings.SCHEDULER_POLL_SECONDS,
    )
    scheduler.add_daily_job(
        NOTIFICATION_JOB,
        settings.SCHEDULER_NOTIFICATION_TIME,
        lambda: run_notification_check(today=scheduler.now().date()),
    )
    scheduler.add_daily_job(
        EXECUTION_JOB,
        settings.SCHEDULER_RUN_TIME,
        lambda: run_daily_check(today=scheduler.now().date()),
    )
    return scheduler


__all__ = ["EXECUTION_JOB", "NOTIFICATION_JOB", "build_scheduler"]
