"""
Scheduler module for Marketplace Alerts.

Uses APScheduler to run the pipeline every POLL_INTERVAL_MINUTES.

The job is registered with max_instances=1 so at most one run is ever in
flight: the lifecycle state is a single read-modify-write document with no
locking of its own.

Can also be run manually via command line.
"""

import logging
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import get_app_config
from .pipeline import run_full_pipeline

logger = logging.getLogger(__name__)


def run_pipeline_job() -> None:
    """Wrapper for the pipeline so a failed run doesn't stop the scheduler."""
    logger.info("Starting scheduled run...")
    try:
        summary = run_full_pipeline()
        logger.info(f"Scheduled run finished: {summary.alerts} alert(s), {len(summary.errors)} error(s)")
    except Exception as e:
        logger.error(f"Scheduled run failed: {e}")


def create_scheduler(interval_minutes: int = None) -> BlockingScheduler:
    """
    Create and configure the APScheduler.

    Jobs:
    1. poll_marketplaces: every interval - search, match, alert, persist

    Returns:
        Configured BlockingScheduler
    """
    interval_minutes = interval_minutes or get_app_config().poll_interval_minutes
    scheduler = BlockingScheduler()

    scheduler.add_job(
        run_pipeline_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="poll_marketplaces",
        name="Poll marketplaces and send deal alerts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(f"Scheduler configured to poll every {interval_minutes} minutes")
    return scheduler


def start_scheduler() -> None:
    """Start the scheduler (blocking)."""
    scheduler = create_scheduler()

    logger.info("Starting Marketplace Alerts scheduler...")
    logger.info("Press Ctrl+C to stop")

    # Run once immediately
    run_pipeline_job()

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """CLI entry point for the scheduler."""
    import argparse

    parser = argparse.ArgumentParser(description="Marketplace Alerts Scheduler")
    parser.add_argument(
        "--mode",
        choices=["schedule", "once"],
        default="schedule",
        help="Mode to run: schedule (continuous), once (single run)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=get_app_config().log_level,
        help="Logging level"
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.mode == "schedule":
        start_scheduler()
    elif args.mode == "once":
        logger.info("Running single pipeline execution...")
        run_full_pipeline()


if __name__ == "__main__":
    main()
