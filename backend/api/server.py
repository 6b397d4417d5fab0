"""
Prop Tracker FastAPI Server

REST endpoints for the dashboard and cron callers:
- Validation stats, records and insights
- Manual and batched result resolution
- Saving props and parlays
- Prop odds cache reads and sweeps
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Query, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Optional
import logging
import os

from config import SPORTS
from data_sources import GameLookup, PropOddsClient
from database import PropRecordStore, get_client
from errors import ErrorKind, Result
from prediction_recorder import PredictionRecorder
from prop_cache import PropOddsCache
from result_resolver import (
    ResultResolver, SweepContext, default_sweep_context, requeue_needs_review, run_sweep,
)
from validation_analytics import ValidationAnalytics

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.COLLABORATOR: 502,
    ErrorKind.STORAGE: 500,
}


# =============================================================================
# DEPENDENCIES: one instance per process, overridable in tests
# =============================================================================
_instances: dict = {}


def _instance(key: str, factory):
    if key not in _instances:
        _instances[key] = factory()
    return _instances[key]


def get_store() -> PropRecordStore:
    return _instance("store", lambda: PropRecordStore(get_client()))


def get_game_lookup() -> Optional[GameLookup]:
    return _instance("games", lambda: GameLookup(get_client()))


def get_cache() -> PropOddsCache:
    return _instance("cache", lambda: PropOddsCache(get_client()))


def get_sweep_context() -> SweepContext:
    return _instance("sweep", default_sweep_context)


def get_odds_client() -> PropOddsClient:
    return _instance("odds", PropOddsClient)


def get_recorder(
    store: PropRecordStore = Depends(get_store),
    game_lookup: Optional[GameLookup] = Depends(get_game_lookup),
) -> PredictionRecorder:
    return PredictionRecorder(store, game_lookup=game_lookup)


def get_analytics(store: PropRecordStore = Depends(get_store)) -> ValidationAnalytics:
    return ValidationAnalytics(store)


@asynccontextmanager
async def lifespan(app):
    """Start scheduler AFTER the server is listening."""
    scheduler = None
    if os.getenv("DISABLE_SCHEDULER", "").lower() not in ("1", "true", "yes"):
        from scheduler import start_scheduler
        logger.info("FastAPI lifespan: starting scheduler")
        scheduler = start_scheduler(get_sweep_context(), get_cache())
    yield
    if scheduler:
        logger.info("Shutting down scheduler...")
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="Prop Tracker API",
    description="Prop prediction lifecycle, validation and odds cache API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _respond(result: Result) -> JSONResponse:
    if result.ok:
        return JSONResponse(status_code=200, content=result.to_dict())
    return JSONResponse(status_code=ERROR_STATUS.get(result.error, 500), content=result.to_dict())


def _check_sport(sport: str) -> str:
    sport = sport.lower()
    if sport not in SPORTS:
        raise HTTPException(status_code=400, detail=f"Unknown sport: {sport}")
    return sport


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Prop Tracker API",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# =============================================================================
# VALIDATION ANALYTICS
# =============================================================================

@app.get("/api/validation")
def get_validation(
    type: str = Query("stats"),
    sport: Optional[str] = None,
    propType: Optional[str] = None,
    playerName: Optional[str] = None,
    source: Optional[str] = None,
    confidence: Optional[str] = None,
    status: Optional[str] = None,
    result: Optional[str] = None,
    gameId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    limit: int = Query(100, ge=1, le=5000),
    analytics: ValidationAnalytics = Depends(get_analytics),
):
    filters = {
        "sport": sport, "propType": propType, "playerName": playerName, "source": source,
        "confidence": confidence, "status": status, "result": result, "gameId": gameId,
        "startDate": startDate, "endDate": endDate,
    }
    filters = {k: v for k, v in filters.items() if v}

    if type == "stats":
        return {"success": True, "stats": analytics.get_validation_stats(filters)}
    if type == "records":
        records = analytics.get_validation_records(filters, limit)
        return {"success": True, "records": records, "count": len(records)}
    if type == "accuracy-by-edge":
        return {"success": True, "edgeRanges": analytics.get_accuracy_by_edge(filters)}
    if type == "most-accurate":
        return {"success": True, "propTypes": analytics.get_most_accurate_prop_types(min(limit, 50))}
    if type == "most-profitable":
        return {"success": True, "propTypes": analytics.get_most_profitable_prop_types(min(limit, 50))}
    if type == "insights":
        return {"success": True, **analytics.get_insights(filters)}
    raise HTTPException(status_code=400, detail=f"Unknown validation query type: {type}")


# =============================================================================
# RESOLUTION
# =============================================================================

@app.post("/api/validation")
@app.post("/api/validation/update-result")
def update_result(request: dict, store: PropRecordStore = Depends(get_store)):
    """Resolve one prop against an observed value."""
    prop_id = request.get("propId")
    actual = request.get("actualValue")
    if not prop_id or actual is None:
        raise HTTPException(status_code=400, detail="propId and actualValue are required")

    resolver = ResultResolver(store)
    return _respond(resolver.resolve(prop_id, actual, force=bool(request.get("force"))))


@app.get("/api/validation/update-result")
def pending_for_game(gameId: str = Query(...), store: PropRecordStore = Depends(get_store)):
    """Pending props for a game, so a caller can supply their results."""
    try:
        pending = store.list_pending_for_game(gameId)
    except Exception as e:
        logger.error(f"Error listing pending props for {gameId}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "gameId": gameId, "pendingProps": pending, "count": len(pending)}


@app.post("/api/validation/check")
def check_validations(request: Optional[dict] = None, context: SweepContext = Depends(get_sweep_context)):
    """Run one reconciliation batch. Pass nextCursor back as cursor until hasMoreBatches is false."""
    request = request or {}
    try:
        cursor = max(0, int(request.get("cursor", request.get("batch", 0)) or 0))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="cursor must be an integer")

    summary = run_sweep(context, cursor)
    return {
        "success": not summary.get("busy", False),
        "message": (
            "Sweep already running" if summary.get("busy")
            else f"Checked {summary['checked']} validations"
        ),
        **summary,
        "nextCursor": summary["next_cursor"],
        "hasMoreBatches": summary["has_more_batches"],
    }


@app.get("/api/validation/check")
def validation_status(
    analytics: ValidationAnalytics = Depends(get_analytics),
    context: SweepContext = Depends(get_sweep_context),
):
    return {"success": True, **analytics.get_status_counts(), "sweep": context.status()}


@app.post("/api/validation/requeue")
def requeue(request: Optional[dict] = None, context: SweepContext = Depends(get_sweep_context)):
    try:
        limit = max(1, int((request or {}).get("limit", 500)))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="limit must be an integer")
    return {"success": True, **requeue_needs_review(context, limit=limit)}


# =============================================================================
# RECORDING
# =============================================================================

@app.post("/api/props/save")
def save_prop(request: dict, recorder: PredictionRecorder = Depends(get_recorder)):
    """Save a single user-picked prop for tracking."""
    prop = request.get("prop", request)
    return _respond(recorder.save_prop(prop))


@app.post("/api/parlays/save")
def save_parlay(request: dict, recorder: PredictionRecorder = Depends(get_recorder)):
    """Record every leg of a parlay under one parlayId."""
    legs = request.get("legs") or []
    if not legs:
        raise HTTPException(status_code=400, detail="Parlay must have at least one leg")
    summary = recorder.record_parlay(legs, parlay_id=request.get("parlayId"))
    return {"success": summary["recorded"] > 0, **summary}


# =============================================================================
# PROP ODDS CACHE
# =============================================================================

@app.get("/api/props/cache-stats")
def cache_stats(cache: PropOddsCache = Depends(get_cache)):
    try:
        return {"success": True, **cache.stats()}
    except Exception as e:
        logger.error(f"Error getting cache stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/props/cache/{sport}")
def cached_props(
    sport: str,
    refresh: bool = False,
    cache: PropOddsCache = Depends(get_cache),
    odds: PropOddsClient = Depends(get_odds_client),
):
    """Fresh cached props for today's games; refresh=true falls back to the live feed."""
    sport = _check_sport(sport)
    if refresh:
        return {"success": True, **cache.get_or_refresh(sport, odds.fetch_prop_odds)}
    return {"success": True, **cache.get(sport)}


@app.post("/api/props/cache/sweep")
def cache_sweep(request: Optional[dict] = None, cache: PropOddsCache = Depends(get_cache)):
    days_old = (request or {}).get("daysOld")
    try:
        marked = cache.mark_stale()
        deleted = cache.cleanup_old(int(days_old)) if days_old is not None else cache.cleanup_old()
    except Exception as e:
        logger.error(f"Error sweeping prop cache: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "markedStale": marked, "deleted": deleted}
