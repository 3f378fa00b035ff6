import argparse
import logging
import time

from caresupply.config import get_settings
from caresupply.core.logging import setup_logging
from caresupply.database import init_db
from caresupply.scheduler.daily_jobs import EXECUTION_JOB, NOTIFICATION_JOB, build_scheduler

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Run the recurring-order scheduler.")
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run today's recurring-order passes once and exit.",
    )
    parser.add_argument(
        "--skip-notifications",
        action="store_true",
        help="With --run-once, only run the execution pass.",
    )
    return parser.parse_args()


def main():
    setup_logging()
    args = parse_args()
    settings = get_settings()
    init_db()

    scheduler = build_scheduler(settings)

    if args.run_once:
        if not args.skip_notifications:
            scheduler.run_job_now(NOTIFICATION_JOB)
        scheduler.run_job_now(EXECUTION_JOB)
        return

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled by SCHEDULER_ENABLED.")
        return

    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down scheduler.")
    finally:
        scheduler.stop()


if __name__ == "__main__":
    main()
