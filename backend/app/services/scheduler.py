"""Scheduler service for the payout and reconciliation jobs using APScheduler.

The cron HTTP endpoints are the primary trigger; this in-process scheduler
is an alternative for deployments without an external cron.  Each job takes
a Redis lock so only one instance runs it at a time.
"""
import logging
import os
import multiprocessing
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import redis.asyncio as redis

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.payouts import run_artist_payouts, pay_affiliate_commissions
from app.services.reconciliation import expire_abandoned_payments

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

# Redis client for distributed locking
redis_client = None

LOCK_PREFIX = "livestage:lock:"


async def get_redis_client():
    """Get or create Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


async def acquire_lock(lock_name: str, timeout: int = 900) -> bool:
    """
    Acquire a distributed lock using Redis.

    Args:
        lock_name: Name of the lock
        timeout: Lock timeout in seconds

    Returns:
        True if lock acquired, False otherwise
    """
    try:
        client = await get_redis_client()
        # SET NX EX: only set if absent, with expiry
        result = await client.set(f"{LOCK_PREFIX}{lock_name}", "1", nx=True, ex=timeout)
        return result is not None
    except Exception as e:
        logger.error(f"Failed to acquire lock {lock_name}: {e}")
        return False


async def release_lock(lock_name: str):
    """Release a distributed lock."""
    try:
        client = await get_redis_client()
        await client.delete(f"{LOCK_PREFIX}{lock_name}")
    except Exception as e:
        logger.error(f"Failed to release lock {lock_name}: {e}")


async def artist_payouts_job():
    """Pay artists for events that ended PAYOUT_DELAY_DAYS ago."""
    lock_name = "artist_payouts"

    if not await acquire_lock(lock_name):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running artist_payouts job")
        async with AsyncSessionLocal() as session:
            report = await run_artist_payouts(session)
        paid = sum(1 for r in report.results if r.status == "paid")
        errors = sum(1 for r in report.results if r.status == "error")
        logger.info(f"Artist payouts: {report.processed} events, {paid} paid, {errors} errors")
    except Exception as e:
        logger.error(f"Error in artist_payouts_job: {e}", exc_info=True)
    finally:
        await release_lock(lock_name)


async def affiliate_commissions_job():
    """Transfer pending affiliate commissions."""
    lock_name = "affiliate_commissions"

    if not await acquire_lock(lock_name):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running affiliate_commissions job")
        async with AsyncSessionLocal() as session:
            report = await pay_affiliate_commissions(session)
        paid = sum(1 for r in report.results if r.status == "paid")
        logger.info(f"Affiliate payouts: {report.processed} batches, {paid} paid")
    except Exception as e:
        logger.error(f"Error in affiliate_commissions_job: {e}", exc_info=True)
    finally:
        await release_lock(lock_name)


async def expire_pending_job():
    """Cancel payments abandoned at checkout."""
    lock_name = "expire_pending"

    if not await acquire_lock(lock_name, timeout=300):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running expire_pending job")
        async with AsyncSessionLocal() as session:
            await expire_abandoned_payments(session)
    except Exception as e:
        logger.error(f"Error in expire_pending_job: {e}", exc_info=True)
    finally:
        await release_lock(lock_name)


def start_scheduler():
    """Start the APScheduler with the payout and reconciliation jobs."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED is false)")
        return

    # With uvicorn --workers, only SpawnProcess-1 runs the scheduler
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name
    if current_process_name != "SpawnProcess-1":
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid})")
        return

    logger.info(f"Starting scheduler on {current_process_name} (PID: {current_pid})...")

    # Daily at 02:00 UTC
    scheduler.add_job(
        artist_payouts_job,
        trigger=CronTrigger(hour=2, minute=0),
        id="artist_payouts",
        name="Artist payouts",
        replace_existing=True
    )

    # Daily at 03:00 UTC, after artist payouts
    scheduler.add_job(
        affiliate_commissions_job,
        trigger=CronTrigger(hour=3, minute=0),
        id="affiliate_commissions",
        name="Affiliate commission payouts",
        replace_existing=True
    )

    # Hourly, staggered 5 minutes after start
    scheduler.add_job(
        expire_pending_job,
        trigger=IntervalTrigger(hours=1, start_date=datetime.utcnow() + timedelta(minutes=5)),
        id="expire_pending",
        name="Expire abandoned payments",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Scheduler started with 3 jobs")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
