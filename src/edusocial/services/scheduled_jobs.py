"""
Scheduled Jobs Service
Manages background jobs: engagement flush, moderation retries and payment reconciliation
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config
from ..exceptions import EduSocialError

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 300
            }
        )

    return _scheduler


def start_scheduler():
    """
    Start the background scheduler and register all periodic jobs
    """
    scheduler = get_scheduler()

    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    scheduler.add_job(
        func=run_engagement_flush_job,
        trigger=IntervalTrigger(seconds=config.ENGAGEMENT_FLUSH_INTERVAL_SECONDS),
        id='engagement_flush',
        name='Flush buffered likes and votes',
        replace_existing=True
    )
    logger.info(f"Registered engagement flush job (every {config.ENGAGEMENT_FLUSH_INTERVAL_SECONDS}s)")

    scheduler.add_job(
        func=run_moderation_retry_job,
        trigger=IntervalTrigger(minutes=1),
        id='moderation_retry',
        name='Retry due moderation jobs',
        replace_existing=True
    )
    logger.info("Registered moderation retry job (every minute)")

    scheduler.add_job(
        func=run_payment_reconciliation_job,
        trigger=CronTrigger(minute='*/15'),
        id='payment_reconciliation',
        name='Reconcile stale pending orders',
        replace_existing=True
    )
    logger.info("Registered payment reconciliation job (every 15 minutes)")

    scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def schedule_moderation_job(job_id: str, delay_seconds: int = 0):
    """Run one moderation job on the scheduler after an optional delay"""
    scheduler = get_scheduler()
    # One second of slack so the job is due when it fires
    run_date = datetime.now() + timedelta(seconds=delay_seconds + 1)
    scheduler.add_job(
        func=run_moderation_job,
        trigger=DateTrigger(run_date=run_date),
        args=[job_id],
        id=f'moderation:{job_id}',
        name=f'Moderation job {job_id}',
        replace_existing=True
    )


def run_moderation_job(job_id: str):
    """Submit a single moderation job"""
    from ..db.engine import SessionLocal
    from .moderation_service import build_moderation_dispatcher

    db = SessionLocal()
    try:
        build_moderation_dispatcher(db).process(job_id)
    except EduSocialError as e:
        logger.warning(f"Moderation job {job_id} not processed: {e.message}")
    except Exception as e:
        logger.error(f"Moderation job {job_id} crashed: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()


def run_moderation_retry_job():
    """Pick up queued moderation jobs whose next attempt is due"""
    from ..db.engine import SessionLocal
    from .moderation_service import build_moderation_dispatcher

    db = SessionLocal()
    try:
        count = build_moderation_dispatcher(db).retry_due_jobs()
        if count:
            logger.info(f"Moderation retry sweep processed {count} job(s)")
    except Exception as e:
        logger.error(f"Moderation retry sweep failed: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()


def run_engagement_flush_job():
    """Drain one batch of buffered engagement events"""
    from ..db.engine import SessionLocal
    from .engagement_queue import EngagementQueue
    from .redis_cache import get_kv_store

    db = SessionLocal()
    try:
        queue = EngagementQueue(db, get_kv_store(), lock_ttl_ms=config.ENGAGEMENT_LOCK_TTL_MS)
        queue.flush(config.ENGAGEMENT_FLUSH_BATCH_SIZE)
    except EduSocialError as e:
        logger.warning(f"Engagement flush skipped: {e.message}")
    except Exception as e:
        logger.error(f"Engagement flush job failed: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()


def run_payment_reconciliation_job():
    """Poll the payment provider for orders whose webhook never arrived"""
    from ..db.engine import SessionLocal
    from .billing_gateway import get_payment_gateway
    from .checkout_service import CheckoutService

    logger.info("Starting payment reconciliation job")

    db = SessionLocal()
    try:
        service = CheckoutService(
            db,
            get_payment_gateway(config),
            max_confirm_attempts=config.PAYMENT_CONFIRM_MAX_ATTEMPTS,
        )
        checked = service.reconcile_pending_orders()
        logger.info(f"Payment reconciliation checked {checked} order(s)")
    except EduSocialError as e:
        logger.warning(f"Payment reconciliation skipped: {e.message}")
    except Exception as e:
        logger.error(f"Payment reconciliation job failed: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()
