# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Scheduler service using APScheduler."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from gearshare.config import get_settings
from gearshare.database import get_session_local
from gearshare.models.auth import CronJob

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def run_cron_job(job_key: str, db: Session) -> Dict[str, Any]:
    """Run a cron job by key.

    Args:
        job_key: The job identifier
        db: Database session

    Returns:
        Result of the job execution.
    """
    start_time = time.time()

    try:
        if job_key == "expire_pending_rentals":
            result = await _run_expire_pending_rentals(db)
        elif job_key == "notification_cleanup":
            result = await _run_notification_cleanup(db)
        else:
            raise ValueError(f"Unknown job key: {job_key}")

        _record_run(db, job_key, "success", start_time)
        return result

    except Exception:
        db.rollback()
        _record_run(db, job_key, "error", start_time)
        raise


def _record_run(db: Session, job_key: str, status: str, start_time: float) -> None:
    """Update run statistics for a job."""
    job = db.query(CronJob).filter(CronJob.job_key == job_key).first()
    if not job:
        return
    job.last_run_at = datetime.utcnow()
    job.last_run_status = status
    job.last_run_duration_ms = int((time.time() - start_time) * 1000)
    job.total_runs += 1
    if status == "error":
        job.total_errors += 1
    db.commit()


async def _run_expire_pending_rentals(db: Session) -> Dict[str, Any]:
    """Cancel rentals whose hold expired and free equipment of ended rentals."""
    from gearshare.services.payment_client import get_payment_client
    from gearshare.services.payments import release_expired_holds

    expired = await release_expired_holds(db, get_payment_client())
    if expired:
        logger.info(f"Expiry sweep cancelled rentals {[r.id for r in expired]}")
    return {"expired_rentals": len(expired)}


async def _run_notification_cleanup(db: Session) -> Dict[str, Any]:
    """Remove old read notifications."""
    from gearshare.services.notifications import cleanup_read_notifications

    settings = get_settings()
    return cleanup_read_notifications(db, settings.notification.retention_days)


def setup_scheduler():
    """Set up the scheduler with cron jobs."""
    settings = get_settings()
    sched = get_scheduler()

    SessionLocal = get_session_local()

    async def run_job(job_key: str):
        """Wrapper to run job with database session."""
        db = SessionLocal()
        try:
            # Check if job is enabled
            job = db.query(CronJob).filter(CronJob.job_key == job_key).first()
            if job and job.is_enabled:
                await run_cron_job(job_key, db)
        except Exception as e:
            logger.error(f"Scheduled job {job_key} failed: {e}")
        finally:
            db.close()

    sched.add_job(
        run_job,
        IntervalTrigger(minutes=settings.rental.sweep_interval_minutes),
        args=["expire_pending_rentals"],
        id="expire_pending_rentals",
        replace_existing=True,
    )

    # Notification cleanup - 3 AM UTC
    sched.add_job(
        run_job,
        CronTrigger(hour=3, minute=0),
        args=["notification_cleanup"],
        id="notification_cleanup",
        replace_existing=True,
    )

    return sched


def start_scheduler():
    """Start the scheduler."""
    sched = setup_scheduler()
    if not sched.running:
        sched.start()
    return sched


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown()
