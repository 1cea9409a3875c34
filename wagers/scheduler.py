"""Periodic auto-expiry of overdue bets using APScheduler."""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ledger.config import Settings

from .service import WagerService

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "bets-auto-expire"


def run_expiry_sweep(service: WagerService) -> int:
    """Job body: one sweep. Per-bet failures are isolated inside the service."""
    count = service.auto_expire_bets()
    if count:
        logger.info(f"Expired {count} overdue bets")
    return count


def start_expiry_scheduler(
    service: WagerService,
    settings: Optional[Settings] = None,
    scheduler: Optional[BackgroundScheduler] = None,
) -> BackgroundScheduler:
    settings = settings or service.settings
    scheduler = scheduler or BackgroundScheduler()

    scheduler.add_job(
        run_expiry_sweep,
        IntervalTrigger(minutes=settings.auto_expire_interval_minutes),
        args=[service],
        id=EXPIRY_JOB_ID,
        name="Bets: Auto-expire",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info(
        f"Registered job: Bets Auto-expire (every {settings.auto_expire_interval_minutes} min)"
    )

    if not scheduler.running:
        scheduler.start()
    return scheduler
