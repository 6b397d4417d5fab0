"""
Prop Odds Cache

Short-lived cache of vendor prop odds in the PlayerPropCache table, so the
paid Odds API is hit at most once per TTL per sport.

Each entry expires at the earlier of fetchedAt + CACHE_TTL_MINUTES and
gameTime - PRE_GAME_LOCKOUT_MINUTES. Odds are never served as fresh once a
game is too close to start to act on them. A read never returns an entry
that is past expiresAt or flagged isStale.
"""
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Optional, Union
import logging

from config import (
    CACHE_RETENTION_DAYS, CACHE_TTL_MINUTES, DEFAULT_CONFIDENCE, LOCAL_TIMEZONE,
    PRE_GAME_LOCKOUT_MINUTES, PROP_CACHE_TABLE,
)
from errors import StorageError
from models import PropOddsCacheEntry, local_day_bounds, parse_datetime, to_iso, utc_now
from odds_math import group_quotes, price_prop_market
from prediction_recorder import gate_edge, make_prop_id
from quality_score import calculate_quality_score

logger = logging.getLogger(__name__)


def compute_expires_at(fetched_at: datetime, game_time: Optional[datetime]) -> datetime:
    """Earlier of the fixed TTL and the pre-game lockout."""
    ttl_expiry = fetched_at + timedelta(minutes=CACHE_TTL_MINUTES)
    if game_time is None:
        return ttl_expiry
    lockout = game_time - timedelta(minutes=PRE_GAME_LOCKOUT_MINUTES)
    return min(ttl_expiry, lockout)


def cache_entry_id(player_name: str, market: str, game_id: str, threshold, side: str) -> str:
    """Books post different lines for one player/market, so the line is part of the key."""
    if threshold is None:
        return make_prop_id(player_name, market, game_id, side)
    return make_prop_id(player_name, market, f"{game_id}-{float(threshold):g}", side)


def build_entries_from_quotes(sport: str, quotes: list[dict]) -> list[dict]:
    """Turn flat multi-book vendor quotes into one cache entry per player/market/line/side."""
    entries = []
    by_game = {}
    for quote in quotes:
        by_game.setdefault((quote.get("gameId"), quote.get("gameTime")), []).append(quote)

    for (game_id, game_time), game_quotes in by_game.items():
        for (player, market, threshold), market_quotes in group_quotes(game_quotes).items():
            if not player or not market:
                continue
            priced = price_prop_market(market_quotes)
            if not priced:
                continue
            for side in ("over", "under"):
                quote = priced.get(side)
                if not quote:
                    continue
                entries.append({
                    "propId": cache_entry_id(player, market, game_id, threshold, side),
                    "sport": sport,
                    "gameId": game_id,
                    "gameTime": game_time,
                    "playerName": player,
                    "propType": market,
                    "pick": side,
                    "threshold": threshold,
                    "odds": quote["odds"],
                    "bookmaker": quote["bookmaker"],
                    "probability": quote["probability"],
                    "edge": quote["edge"],
                    "edgeSource": quote["edgeSource"],
                    "confidence": DEFAULT_CONFIDENCE,
                })
    return entries


class PropOddsCache:
    """PlayerPropCache table access."""

    def __init__(self, client, table: str = PROP_CACHE_TABLE, clock: Callable[[], datetime] = utc_now,
                 tz: tzinfo = LOCAL_TIMEZONE):
        self.client = client
        self.table_name = table
        self.clock = clock
        self.tz = tz

    def _table(self):
        if self.client is None:
            raise StorageError("Database not connected")
        return self.client.table(self.table_name)

    @staticmethod
    def _execute(query, action: str):
        try:
            return query.execute()
        except Exception as e:
            raise StorageError(f"{action} failed: {e}") from e

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    def get(self, sport: str, now: Optional[datetime] = None) -> dict:
        """
        Fresh entries for today's games in a sport.

        Returns {"hasFreshCache", "entries", "ageMinutes"}. An empty result
        means the caller should fetch live odds.
        """
        now = now or self.clock()
        day_start, day_end = local_day_bounds(now, self.tz)
        try:
            result = self._execute(
                self._table().select("*").eq(
                    "sport", sport
                ).gte(
                    "gameTime", to_iso(day_start)
                ).lt(
                    "gameTime", to_iso(day_end)
                ).gt(
                    "expiresAt", to_iso(now)
                ).eq("isStale", False),
                f"Cache read for {sport}",
            )
        except StorageError as e:
            logger.error(f"[PropCache] {e}")
            return {"hasFreshCache": False, "entries": [], "ageMinutes": None}

        rows = result.data or []
        if not rows:
            logger.info(f"[PropCache] No fresh cache for {sport}")
            return {"hasFreshCache": False, "entries": [], "ageMinutes": None}

        fetched = [parse_datetime(r.get("fetchedAt")) for r in rows]
        fetched = [f for f in fetched if f is not None]
        age = round((now - min(fetched)).total_seconds() / 60) if fetched else None

        logger.info(f"[PropCache] Serving {len(rows)} cached {sport} props (age {age}m)")
        return {"hasFreshCache": True, "entries": rows, "ageMinutes": age}

    def put(self, entries: list[Union[dict, PropOddsCacheEntry]], now: Optional[datetime] = None) -> int:
        """Upsert entries by propId, stamping fetchedAt/expiresAt/qualityScore. Returns rows written."""
        now = now or self.clock()
        rows = {}
        for entry in entries:
            row = entry.to_row() if isinstance(entry, PropOddsCacheEntry) else dict(entry)
            if not row.get("propId"):
                logger.warning(f"[PropCache] Skipping entry without propId: {row.get('playerName')}")
                continue

            game_time = parse_datetime(row.get("gameTime"))
            expires_at = compute_expires_at(now, game_time)
            edge = gate_edge(row.get("edge"), row.get("edgeSource"), f"{row.get('playerName')} {row.get('propType')}")
            row.update({
                "gameTime": to_iso(game_time),
                "fetchedAt": to_iso(now),
                "expiresAt": to_iso(expires_at),
                "isStale": expires_at <= now,
                "edge": edge,
                "qualityScore": calculate_quality_score(
                    row.get("probability", 0.5), edge, row.get("confidence")
                ),
            })
            # one row per propId, or a batch upsert touches the same row twice
            rows[row["propId"]] = row

        if not rows:
            return 0
        rows = list(rows.values())

        result = self._execute(
            self._table().upsert(rows, on_conflict="propId"),
            f"Cache write of {len(rows)} entries",
        )
        written = len(result.data or rows)
        logger.info(f"[PropCache] Cached {written} props")
        return written

    def get_or_refresh(self, sport: str, fetch_prop_odds: Callable[[str], list[dict]],
                       now: Optional[datetime] = None) -> dict:
        """Serve fresh cache, or pull the vendor feed, cache it and serve what is fresh."""
        now = now or self.clock()
        cached = self.get(sport, now)
        if cached["hasFreshCache"]:
            return {**cached, "source": "cache"}

        quotes = fetch_prop_odds(sport)
        entries = build_entries_from_quotes(sport, quotes)
        if entries:
            try:
                self.put(entries, now)
            except StorageError as e:
                logger.error(f"[PropCache] {e}")

        fresh = []
        for entry in entries:
            expires_at = compute_expires_at(now, parse_datetime(entry.get("gameTime")))
            if expires_at > now:
                fresh.append({**entry, "fetchedAt": to_iso(now), "expiresAt": to_iso(expires_at)})
        return {"hasFreshCache": False, "entries": fresh, "ageMinutes": 0, "source": "live"}

    # =========================================================================
    # SWEEPS
    # =========================================================================

    def mark_stale(self, now: Optional[datetime] = None) -> int:
        """Flag every expired, not-yet-stale entry. Returns how many were flagged."""
        now = now or self.clock()
        result = self._execute(
            self._table().update({"isStale": True}).lte(
                "expiresAt", to_iso(now)
            ).eq("isStale", False),
            "Mark stale",
        )
        count = len(result.data or [])
        if count:
            logger.info(f"[PropCache] Marked {count} props as stale")
        return count

    def cleanup_old(self, days_old: int = CACHE_RETENTION_DAYS, now: Optional[datetime] = None) -> int:
        """Delete entries whose game started more than days_old days ago."""
        now = now or self.clock()
        cutoff = now - timedelta(days=days_old)
        result = self._execute(
            self._table().delete().lt("gameTime", to_iso(cutoff)),
            "Cache cleanup",
        )
        count = len(result.data or [])
        logger.info(f"[PropCache] Deleted {count} props older than {days_old} days")
        return count

    def stats(self, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        total_result = self._execute(self._table().select("propId", count="exact"), "Cache count")
        fresh_result = self._execute(
            self._table().select("propId", count="exact").eq(
                "isStale", False
            ).gt("expiresAt", to_iso(now)),
            "Fresh cache count",
        )
        total = total_result.count or 0
        fresh = fresh_result.count or 0
        return {
            "total": total,
            "fresh": fresh,
            "stale": total - fresh,
            "freshPercentage": round(fresh / total * 100) if total else 0,
        }
