"""
Scheduler for automatic availability probes.

Runs daily (default 4:00 AM) across every enabled retailer.
"""
import asyncio
import logging
from datetime import datetime
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from stockprobe.config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = BackgroundScheduler()

# Store last run results
last_run_results = {
    "timestamp": None,
    "results": {}
}


def record_run(results: dict, manual: bool = False, error: str = None, started_at: datetime = None):
    """Remember the latest run so /operations/status can report it."""
    global last_run_results

    start_time = started_at or datetime.now()
    last_run_results = {
        "timestamp": start_time.isoformat(),
        "duration_seconds": (datetime.now() - start_time).total_seconds(),
        "results": results,
        "manual": manual
    }
    if error:
        last_run_results["error"] = error


def run_availability_probe():
    """Job function to probe every enabled retailer."""
    from stockprobe.services.orchestrator import run_all_retailers

    logger.info("Starting scheduled availability probe...")
    start_time = datetime.now()

    try:
        summary = asyncio.run(run_all_retailers())
        record_run(summary.to_dict(), started_at=start_time)
        logger.info(
            f"Availability probe completed: {summary.product_checks} checks, "
            f"{summary.available_count} available"
        )
    except Exception as e:
        logger.error(f"Error in availability probe: {e}")
        record_run({}, error=str(e), started_at=start_time)


def start_scheduler():
    """Start the background scheduler."""
    settings = get_settings()

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled by settings")
        return

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        run_availability_probe,
        CronTrigger(hour=settings.probe_cron_hour, minute=settings.probe_cron_minute),
        id='daily_availability_probe',
        name='Daily Availability Probe',
        replace_existing=True,
        max_instances=1
    )

    scheduler.start()
    logger.info("Scheduler started with jobs:")
    for job in scheduler.get_jobs():
        logger.info(f"  - {job.name}: {job.trigger}")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get current scheduler status."""
    jobs = []
    if scheduler.running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return {
        "running": scheduler.running,
        "jobs": jobs,
        "last_probe_run": last_run_results
    }
