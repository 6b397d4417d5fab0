"""
Result Resolver & Reconciliation Sweep

State machine per prop record:

    pending --(actual stat obtainable)--------> completed {correct|incorrect|push}
    pending --(game final, stat unobtainable)-> needs_review
    needs_review --(manual actual value)------> completed
    needs_review --(requeue, game now usable)-> pending

Every transition is a compare-and-set on status, so two sweeps racing over
the same record resolve it once.

Game finality (status is checked first, the date is only a fallback):

    game row | status in FINAL_GAME_STATUSES | date < end of yesterday | final?
    ---------+-------------------------------+-------------------------+-------
    missing  |              -                |           -             |  no
    present  |             yes               |           -             |  yes
    present  |             no                |          yes            |  yes
    present  |             no                |    no / no date         |  no
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Optional
import logging
import threading
import time

from config import (
    FINAL_BY_DATE_DAYS, FINAL_GAME_STATUSES, LOCAL_TIMEZONE, SWEEP_BATCH_DELAY_SECONDS,
    SWEEP_BATCH_SIZE, SWEEP_MAX_BATCHES,
)
from data_sources import StatFetcherRegistry
from database import PropRecordStore
from errors import ErrorKind, PropLifecycleError, Result
from models import (
    OPEN_STATUSES, PropPrediction, RESULT_CORRECT, RESULT_INCORRECT, RESULT_PUSH,
    STATUS_COMPLETED, STATUS_NEEDS_REVIEW, STATUS_PENDING, parse_datetime, to_iso, utc_now,
)

logger = logging.getLogger(__name__)

ALL_STATUSES = (STATUS_PENDING, STATUS_NEEDS_REVIEW, STATUS_COMPLETED)


def determine_result(prediction: str, threshold: float, actual: float) -> str:
    """Exact equality is a push; otherwise the pick's direction decides."""
    threshold = float(threshold)
    actual = float(actual)
    if actual == threshold:
        return RESULT_PUSH
    if prediction == "over":
        return RESULT_CORRECT if actual > threshold else RESULT_INCORRECT
    return RESULT_CORRECT if actual < threshold else RESULT_INCORRECT


def _fmt(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def final_by_date_cutoff(now: datetime, tz: tzinfo = LOCAL_TIMEZONE) -> datetime:
    """End of the calendar day FINAL_BY_DATE_DAYS days before now, in tz."""
    local_now = now.astimezone(tz)
    day = (local_now - timedelta(days=FINAL_BY_DATE_DAYS)).date()
    return datetime(day.year, day.month, day.day, 23, 59, 59, 999000, tzinfo=tz)


def game_date(game: dict) -> Optional[datetime]:
    for key in ("date", "gameTime", "commence_time", "ts"):
        parsed = parse_datetime(game.get(key))
        if parsed:
            return parsed
    return None


def is_game_final(game: Optional[dict], now: Optional[datetime] = None, tz: tzinfo = LOCAL_TIMEZONE) -> bool:
    if not game:
        return False
    status = str(game.get("status") or "").strip().lower()
    if status in FINAL_GAME_STATUSES:
        return True
    played = game_date(game)
    if played is None:
        return False
    return played < final_by_date_cutoff(now or utc_now(), tz)


class ResultResolver:
    def __init__(self, store: PropRecordStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def resolve(self, prop_id: str, actual_value, force: bool = False) -> Result:
        """
        Grade a record against an observed value and mark it completed.

        Resolving an already completed record leaves it untouched unless
        force is set (manual correction).
        """
        try:
            actual = float(actual_value)
        except (TypeError, ValueError):
            return Result.failure(ErrorKind.VALIDATION, f"Invalid actual value {actual_value!r}")

        try:
            record = self.store.get(prop_id)
            if not record:
                logger.warning(f"[Resolver] No validation record found for prop {prop_id}")
                return Result.failure(ErrorKind.NOT_FOUND, f"Prop {prop_id} not found")

            if record.get("status") == STATUS_COMPLETED and not force:
                return Result.success(PropPrediction.from_row(record), message="already resolved")

            result = determine_result(record["prediction"], record["threshold"], actual)
            fields = {
                "actualValue": actual,
                "result": result,
                "status": STATUS_COMPLETED,
                "completedAt": to_iso(self.clock()),
                "notes": (
                    f"Auto-validated: {str(record['prediction']).upper()} "
                    f"{_fmt(record['threshold'])} → Actual: {_fmt(actual)}"
                ),
            }
            from_statuses = ALL_STATUSES if force else OPEN_STATUSES
            updated = self.store.transition(prop_id, from_statuses, fields)
            if not updated:
                # Lost a race with another writer; report what is stored now
                current = self.store.get(prop_id)
                if current and current.get("status") == STATUS_COMPLETED:
                    return Result.success(PropPrediction.from_row(current), message="already resolved")
                return Result.failure(ErrorKind.NOT_FOUND, f"Prop {prop_id} not found")
        except PropLifecycleError as e:
            logger.error(f"[Resolver] Failed to resolve {prop_id}: {e}")
            return Result.from_exception(e)

        logger.info(f"[Resolver] {prop_id}: {fields['notes']} ({result})")
        return Result.success(PropPrediction.from_row(updated), message="resolved")

    def mark_needs_review(self, prop_id: str, note: str) -> Result:
        """Move a pending record to needs_review with an explanatory note."""
        fields = {
            "status": STATUS_NEEDS_REVIEW,
            "result": None,
            "actualValue": None,
            "notes": note,
            "completedAt": to_iso(self.clock()),
        }
        try:
            updated = self.store.transition(prop_id, (STATUS_PENDING,), fields)
        except PropLifecycleError as e:
            logger.error(f"[Resolver] Failed to flag {prop_id} for review: {e}")
            return Result.from_exception(e)
        if not updated:
            return Result.failure(ErrorKind.NOT_FOUND, f"No pending prop {prop_id}")
        logger.info(f"[Resolver] {prop_id} needs review: {note}")
        return Result.success(PropPrediction.from_row(updated), message="needs_review")


# =============================================================================
# RECONCILIATION SWEEP
# =============================================================================

@dataclass
class SweepContext:
    """
    Everything a sweep needs, passed in explicitly.

    is_updating/last_update replace process-wide flags. The lock only guards
    flipping is_updating; it is never held across a vendor call.
    """
    store: PropRecordStore
    game_lookup: Callable[[str], Optional[dict]]
    stats: StatFetcherRegistry
    batch_size: int = SWEEP_BATCH_SIZE
    clock: Callable[[], datetime] = utc_now
    tz: tzinfo = LOCAL_TIMEZONE
    sleep: Callable[[float], None] = time.sleep
    lock: threading.Lock = field(default_factory=threading.Lock)
    is_updating: bool = False
    last_update: Optional[datetime] = None
    last_summary: Optional[dict] = None

    def try_begin(self) -> bool:
        with self.lock:
            if self.is_updating:
                return False
            self.is_updating = True
            return True

    def finish(self, summary: dict):
        with self.lock:
            self.is_updating = False
            self.last_update = self.clock()
            self.last_summary = summary

    def status(self) -> dict:
        with self.lock:
            return {
                "is_updating": self.is_updating,
                "last_update": to_iso(self.last_update),
                "last_summary": self.last_summary,
            }


# Per-record sweep outcomes
OUTCOME_COMPLETED = "completed"
OUTCOME_NEEDS_REVIEW = "needs_review"
OUTCOME_NOT_READY = "not_ready"


def _reconcile_record(context: SweepContext, resolver: ResultResolver, record: dict) -> Result:
    prop_id = record["propId"]
    game = context.game_lookup(record.get("gameId"))
    if not game:
        logger.debug(f"[Sweep] Game {record.get('gameId')} not found for {prop_id}")
        return Result.success(OUTCOME_NOT_READY, message="game not found")

    if not is_game_final(game, context.clock(), context.tz):
        return Result.success(OUTCOME_NOT_READY, message="game not final")

    sport = str(record.get("sport") or game.get("sport") or "mlb").lower()
    if not context.stats.supports(sport):
        flagged = resolver.mark_needs_review(prop_id, f"Game finished but no stat source for {sport}. Manual verification needed.")
        return Result.success(OUTCOME_NEEDS_REVIEW) if flagged.ok else flagged

    external_id = context.stats.external_id(sport, game)
    if not external_id:
        id_field = context.stats.id_fields.get(sport, "external game id")
        flagged = resolver.mark_needs_review(
            prop_id, f"Game finished but no {id_field} available. Manual verification needed."
        )
        return Result.success(OUTCOME_NEEDS_REVIEW) if flagged.ok else flagged

    actual = context.stats.fetch_actual_stat(sport, external_id, record["playerName"], record["propType"])
    if actual is None:
        flagged = resolver.mark_needs_review(
            prop_id, "Game finished but stat not available from API. Manual verification needed."
        )
        return Result.success(OUTCOME_NEEDS_REVIEW) if flagged.ok else flagged

    resolved = resolver.resolve(prop_id, actual)
    return Result.success(OUTCOME_COMPLETED) if resolved.ok else resolved


def run_sweep(context: SweepContext, cursor: int = 0) -> dict:
    """
    Reconcile one batch of pending records, oldest first.

    cursor counts pending records earlier batches examined and left pending
    (game not final, vendor error). Pass next_cursor back to continue; stop
    when has_more_batches is False.
    """
    summary = {
        "cursor": cursor,
        "batch_size": context.batch_size,
        "checked": 0,
        "updated": 0,
        "completed": 0,
        "needs_review": 0,
        "skipped": 0,
        "errors": 0,
        "error_details": [],
        "remaining": 0,
        "next_cursor": cursor,
        "has_more_batches": False,
    }

    if not context.try_begin():
        logger.info("[Sweep] Already running, skipping this invocation")
        summary["busy"] = True
        return summary

    resolver = ResultResolver(context.store, context.clock)
    try:
        try:
            records = context.store.list_by_status(STATUS_PENDING, offset=cursor, limit=context.batch_size)
        except PropLifecycleError as e:
            logger.error(f"[Sweep] Could not load pending records: {e}")
            summary["errors"] += 1
            summary["error_details"].append({"propId": None, "error": str(e)})
            return summary

        left_pending = 0
        for record in records:
            summary["checked"] += 1
            prop_id = record.get("propId")
            try:
                outcome = _reconcile_record(context, resolver, record)
            except PropLifecycleError as e:
                logger.error(f"[Sweep] Error processing {prop_id}: {e}")
                outcome = Result.from_exception(e)
            except Exception as e:
                logger.error(f"[Sweep] Vendor error processing {prop_id}: {e}")
                outcome = Result.failure(ErrorKind.COLLABORATOR, str(e))

            if not outcome.ok:
                summary["errors"] += 1
                summary["error_details"].append({"propId": prop_id, "error": outcome.message})
                left_pending += 1
            elif outcome.value == OUTCOME_COMPLETED:
                summary["completed"] += 1
                summary["updated"] += 1
            elif outcome.value == OUTCOME_NEEDS_REVIEW:
                summary["needs_review"] += 1
                summary["updated"] += 1
            else:
                summary["skipped"] += 1
                left_pending += 1

        summary["next_cursor"] = cursor + left_pending
        try:
            summary["remaining"] = context.store.count_by_status(STATUS_PENDING)
            summary["has_more_batches"] = summary["next_cursor"] < summary["remaining"]
        except PropLifecycleError as e:
            logger.error(f"[Sweep] Could not count pending records: {e}")
            summary["errors"] += 1
            summary["has_more_batches"] = len(records) == context.batch_size
    finally:
        context.finish(summary)

    logger.info(
        f"[Sweep] cursor={cursor}: checked {summary['checked']}, completed {summary['completed']}, "
        f"needs_review {summary['needs_review']}, skipped {summary['skipped']}, "
        f"errors {summary['errors']}, remaining {summary['remaining']}"
    )
    return summary


def run_until_done(
    context: SweepContext,
    max_batches: int = SWEEP_MAX_BATCHES,
    delay_seconds: float = SWEEP_BATCH_DELAY_SECONDS,
) -> dict:
    """Drive run_sweep batch by batch, pausing between batches, until no work is left."""
    totals = {
        "batches": 0, "checked": 0, "updated": 0, "completed": 0,
        "needs_review": 0, "skipped": 0, "errors": 0, "remaining": 0,
    }
    cursor = 0
    while totals["batches"] < max_batches:
        if totals["batches"] > 0 and delay_seconds:
            context.sleep(delay_seconds)

        summary = run_sweep(context, cursor)
        if summary.get("busy"):
            totals["busy"] = True
            break

        totals["batches"] += 1
        for key in ("checked", "updated", "completed", "needs_review", "skipped", "errors"):
            totals[key] += summary[key]
        totals["remaining"] = summary["remaining"]

        if not summary["has_more_batches"] or summary["checked"] == 0:
            break
        cursor = summary["next_cursor"]

    logger.info(f"[Sweep] Done after {totals['batches']} batch(es): {totals}")
    return totals


def requeue_needs_review(context: SweepContext, limit: int = 500) -> dict:
    """
    Send needs_review records back to pending when their game is final and
    now has the external id its stat feed needs.
    """
    summary = {"checked": 0, "requeued": 0, "skipped": 0, "errors": 0}
    try:
        records = context.store.fetch_all({"status": STATUS_NEEDS_REVIEW}, order_desc=False, limit=limit)
    except PropLifecycleError as e:
        logger.error(f"[Requeue] Could not load needs_review records: {e}")
        summary["errors"] += 1
        return summary

    for record in records:
        summary["checked"] += 1
        prop_id = record.get("propId")
        try:
            game = context.game_lookup(record.get("gameId"))
            sport = str(record.get("sport") or (game or {}).get("sport") or "mlb").lower()
            if not is_game_final(game, context.clock(), context.tz) or not context.stats.external_id(sport, game):
                summary["skipped"] += 1
                continue

            updated = context.store.transition(prop_id, (STATUS_NEEDS_REVIEW,), {
                "status": STATUS_PENDING,
                "result": None,
                "actualValue": None,
                "completedAt": None,
                "notes": "Requeued for validation",
            })
            if updated:
                summary["requeued"] += 1
            else:
                summary["skipped"] += 1
        except Exception as e:
            logger.error(f"[Requeue] Error processing {prop_id}: {e}")
            summary["errors"] += 1

    logger.info(f"[Requeue] {summary}")
    return summary


def default_sweep_context(**overrides) -> SweepContext:
    """SweepContext wired to Supabase and the live vendor stat feeds."""
    from data_sources import GameLookup, default_stat_registry
    from database import get_client

    client = get_client()
    params = {
        "store": PropRecordStore(client),
        "game_lookup": GameLookup(client),
        "stats": default_stat_registry(),
    }
    params.update(overrides)
    return SweepContext(**params)
