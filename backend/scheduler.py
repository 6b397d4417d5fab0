"""
Prop Tracker Scheduler

External trigger for the otherwise request/response prop lifecycle:
- Reconciliation sweep: every 30 min, drains pending props batch by batch
- Cache staleness sweep: every 5 min
- Cache retention cleanup: daily
- needs_review requeue: daily
"""
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger

from config import (
    CACHE_RETENTION_DAYS, CACHE_STALE_SWEEP_MINUTES, SWEEP_INTERVAL_MINUTES,
)
from database import get_client
from prop_cache import PropOddsCache
from result_resolver import SweepContext, default_sweep_context, requeue_needs_review, run_until_done

logger = logging.getLogger(__name__)


def run_reconciliation(context: SweepContext) -> dict:
    try:
        totals = run_until_done(context)
        logger.info(
            f"[Reconcile] Done: {totals['completed']} completed, {totals['needs_review']} needs review, "
            f"{totals['errors']} errors, {totals['remaining']} still pending"
        )
        return totals
    except Exception as e:
        logger.error(f"[Reconcile] Failed: {e}")
        return {"error": str(e)}


def run_cache_stale_sweep(cache: PropOddsCache) -> int:
    try:
        return cache.mark_stale()
    except Exception as e:
        logger.error(f"[PropCache] Stale sweep failed: {e}")
        return 0


def run_cache_cleanup(cache: PropOddsCache, days_old: int = CACHE_RETENTION_DAYS) -> int:
    try:
        return cache.cleanup_old(days_old)
    except Exception as e:
        logger.error(f"[PropCache] Cleanup failed: {e}")
        return 0


def run_requeue(context: SweepContext) -> dict:
    try:
        return requeue_needs_review(context)
    except Exception as e:
        logger.error(f"[Requeue] Failed: {e}")
        return {"error": str(e)}


def start_scheduler(context: SweepContext, cache: PropOddsCache) -> BackgroundScheduler:
    """Start the background jobs. First runs are delayed so the HTTP server comes up first."""
    scheduler = BackgroundScheduler()
    now = datetime.now(timezone.utc)

    def _delayed(seconds):
        return now + timedelta(seconds=seconds)

    # 1. Reconciliation sweep (first run at +60s)
    scheduler.add_job(
        func=run_reconciliation,
        args=[context],
        trigger=IntervalTrigger(minutes=SWEEP_INTERVAL_MINUTES),
        id="prop_reconciliation",
        name="Resolve pending props against final box scores",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=60,
        next_run_time=_delayed(60),
    )

    # 2. Cache staleness (first run at +90s)
    scheduler.add_job(
        func=run_cache_stale_sweep,
        args=[cache],
        trigger=IntervalTrigger(minutes=CACHE_STALE_SWEEP_MINUTES),
        id="prop_cache_stale",
        name="Mark expired prop odds stale",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=30,
        next_run_time=_delayed(90),
    )

    # 3. Cache retention: daily at 4am UTC
    scheduler.add_job(
        func=run_cache_cleanup,
        args=[cache],
        trigger=CronTrigger(hour=4, minute=0, timezone="UTC"),
        id="prop_cache_cleanup",
        name="Delete prop odds for old games",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=300,
    )

    # 4. needs_review requeue: daily at 5am UTC
    scheduler.add_job(
        func=run_requeue,
        args=[context],
        trigger=CronTrigger(hour=5, minute=0, timezone="UTC"),
        id="prop_requeue",
        name="Requeue needs_review props whose games are now resolvable",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=300,
    )

    scheduler.start()
    logger.info("Scheduler started:")
    logger.info(f"  1. Reconciliation: every {SWEEP_INTERVAL_MINUTES} min (first at +60s)")
    logger.info(f"  2. Cache stale sweep: every {CACHE_STALE_SWEEP_MINUTES} min (first at +90s)")
    logger.info(f"  3. Cache cleanup: daily 04:00 UTC (>{CACHE_RETENTION_DAYS} days)")
    logger.info("  4. needs_review requeue: daily 05:00 UTC")
    return scheduler


def run_once(context: Optional[SweepContext] = None, cache: Optional[PropOddsCache] = None) -> dict:
    """Run every job once (useful for cron-style hosting and manual checks)."""
    context = context or default_sweep_context()
    cache = cache or PropOddsCache(get_client())

    print("Running prop lifecycle jobs once...")
    result = {
        "reconciliation": run_reconciliation(context),
        "requeue": run_requeue(context),
        "marked_stale": run_cache_stale_sweep(cache),
        "cleaned_up": run_cache_cleanup(cache),
    }

    recon = result["reconciliation"]
    print("\n=== RECONCILIATION ===")
    print(f"Batches: {recon.get('batches', 0)}")
    print(f"Completed: {recon.get('completed', 0)}")
    print(f"Needs review: {recon.get('needs_review', 0)}")
    print(f"Errors: {recon.get('errors', 0)}")
    print(f"Still pending: {recon.get('remaining', 0)}")

    print("\n=== CACHE ===")
    print(f"Marked stale: {result['marked_stale']}")
    print(f"Deleted: {result['cleaned_up']}")
    return result


if __name__ == "__main__":
    run_once()
