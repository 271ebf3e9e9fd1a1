# fleetsync/scheduler.py
"""Periodic sync trigger. Only started when ENABLE_SCHEDULER is set."""
from apscheduler.schedulers.background import BackgroundScheduler
from .config import get_settings
from .db import SessionLocal, get_engine
from .exceptions import FleetSyncError
from .services import run_sync
from .utils import logger

scheduler = BackgroundScheduler()


def scheduled_sync():
    try:
        db = SessionLocal(bind=get_engine())
    except FleetSyncError as e:
        logger.error("Scheduled sync skipped: %s", e)
        return
    try:
        summary = run_sync(db)
        logger.info("Scheduled sync done: ok=%s tenants=%d synced=%d", summary.ok, summary.total_tenants, summary.total_synced)
    except FleetSyncError as e:
        logger.error("Scheduled sync failed: %s", e)
    finally:
        db.close()


def start_scheduler(settings=None):
    settings = settings or get_settings()
    if scheduler.running:
        return scheduler
    scheduler.add_job(
        scheduled_sync, 'interval',
        minutes=settings.sync_interval_minutes,
        id="fleet-sync", replace_existing=True, max_instances=1, coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (every %d min)", settings.sync_interval_minutes)
    return scheduler
