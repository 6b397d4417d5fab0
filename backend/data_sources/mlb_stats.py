"""
MLB Stats API Box Scores

Per-player batting and pitching lines from statsapi.mlb.com, used to
resolve MLB props once a game is final.
"""
from typing import Callable, Optional
import logging
import threading
import time
import unicodedata

import requests

from config import MLB_API_BASE, MLB_REQUESTS_PER_MINUTE
from errors import CollaboratorError

logger = logging.getLogger(__name__)

# Prop type (ours or the Odds API market key) -> box score field
MLB_STAT_MAP = {
    "hits": "hits",
    "batter_hits": "hits",
    "runs": "runs",
    "batter_runs_scored": "runs",
    "rbis": "rbi",
    "batter_rbis": "rbi",
    "home_runs": "homeRuns",
    "batter_home_runs": "homeRuns",
    "strikeouts": "strikeouts",
    "batter_strikeouts": "strikeouts",
    "walks": "walks",
    "batter_walks": "walks",
    "stolen_bases": "stolenBases",
    "batter_stolen_bases": "stolenBases",
    "total_bases": "totalBases",
    "batter_total_bases": "totalBases",
    "doubles": "doubles",
    "triples": "triples",
    "pitcher_strikeouts": "pitcherStrikeouts",
    "pitcher_hits_allowed": "hitsAllowed",
    "hits_allowed": "hitsAllowed",
    "pitcher_earned_runs": "earnedRuns",
    "earned_runs": "earnedRuns",
    "pitcher_walks": "walksAllowed",
    "pitcher_outs": "outs",
    "innings_pitched": "inningsPitched",
    "pitches_thrown": "pitchesThrown",
}


def normalize_name(name: str) -> str:
    """Strip accents and case so 'José Ramírez' matches 'Jose Ramirez'."""
    decomposed = unicodedata.normalize("NFD", name or "")
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower().strip()


def _batting_line(batting: dict) -> dict:
    hits = batting.get("hits") or 0
    doubles = batting.get("doubles") or 0
    triples = batting.get("triples") or 0
    home_runs = batting.get("homeRuns") or 0
    return {
        "hits": hits,
        "runs": batting.get("runs") or 0,
        "rbi": batting.get("rbi") or 0,
        "homeRuns": home_runs,
        "strikeouts": batting.get("strikeOuts") or 0,
        "walks": batting.get("baseOnBalls") or 0,
        "stolenBases": batting.get("stolenBases") or 0,
        # Singles count once, so extra-base hits add their extra bases on top of hits
        "totalBases": hits + doubles + 2 * triples + 3 * home_runs,
        "doubles": doubles,
        "triples": triples,
        "atBats": batting.get("atBats") or 0,
    }


def _pitching_line(pitching: dict) -> dict:
    innings = pitching.get("inningsPitched")
    return {
        "inningsPitched": float(innings) if innings else 0.0,
        "pitcherStrikeouts": pitching.get("strikeOuts") or 0,
        "hitsAllowed": pitching.get("hits") or 0,
        "earnedRuns": pitching.get("earnedRuns") or 0,
        "walksAllowed": pitching.get("baseOnBalls") or 0,
        "outs": pitching.get("outs") or 0,
        "pitchesThrown": pitching.get("numberOfPitches") or 0,
    }


def parse_boxscore(data: dict) -> dict:
    """Flatten a /game/{pk}/boxscore payload into {fullName: stat line}."""
    players = {}
    for side in ("home", "away"):
        team = (data.get("teams") or {}).get(side) or {}
        for entry in (team.get("players") or {}).values():
            person = entry.get("person") or {}
            stats = entry.get("stats") or {}
            name = person.get("fullName")
            if not name:
                continue
            line = players.setdefault(name, {})
            if stats.get("batting"):
                line.update(_batting_line(stats["batting"]))
            if stats.get("pitching"):
                line.update(_pitching_line(stats["pitching"]))
    return players


class BoxScoreThrottle:
    """
    Token bucket over box score requests. Refills per_minute tokens a minute
    and holds at most per_minute. acquire() blocks until a token is free and
    returns the seconds it slept.
    """

    def __init__(self, per_minute: int = MLB_REQUESTS_PER_MINUTE,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.per_minute = max(1, per_minute)
        self.clock = clock
        self.sleep = sleep
        self._available = float(self.per_minute)
        self._refilled_at = clock()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        with self._lock:
            now = self.clock()
            refill = (now - self._refilled_at) * self.per_minute / 60.0
            self._available = min(float(self.per_minute), self._available + refill)
            self._refilled_at = now
            if self._available >= 1:
                self._available -= 1
                return 0.0
            delay = (1 - self._available) * 60.0 / self.per_minute
            self._available = 0.0
            # the slept interval is the token just spent
            self._refilled_at = now + delay
        logger.info(f"[MLB] Throttling box score requests for {delay:.2f}s")
        self.sleep(delay)
        return delay


class MLBStatsClient:
    """MLB Stats API client. Box scores are cached per game for the life of the client."""

    def __init__(self, session: Optional[requests.Session] = None, throttle: Optional[BoxScoreThrottle] = None):
        self.session = session or requests.Session()
        self.throttle = throttle or BoxScoreThrottle()
        self._boxscores: dict[str, dict] = {}

    def get_game_stats(self, mlb_game_id) -> dict:
        key = str(mlb_game_id)
        if key in self._boxscores:
            return self._boxscores[key]

        self.throttle.acquire()
        url = f"{MLB_API_BASE}/game/{key}/boxscore"
        try:
            resp = self.session.get(url, timeout=15)
            logger.info(f"[MLB] GET {url} -> {resp.status_code}")
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise CollaboratorError(f"MLB box score fetch failed for {key}: {e}") from e

        players = parse_boxscore(data)
        self._boxscores[key] = players
        logger.info(f"[MLB] Found stats for {len(players)} players in game {key}")
        return players

    def get_player_stat(self, mlb_game_id, player_name: str, prop_type: str) -> Optional[float]:
        """Observed stat for a player, or None if the player or stat isn't in the box score."""
        field = MLB_STAT_MAP.get(prop_type)
        if not field:
            logger.warning(f"[MLB] Unknown stat type: {prop_type}")
            return None

        players = self.get_game_stats(mlb_game_id)
        line = players.get(player_name)
        if line is None:
            target = normalize_name(player_name)
            match = next((name for name in players if normalize_name(name) == target), None)
            if match is None:
                logger.warning(f"[MLB] No stats for {player_name} in game {mlb_game_id}")
                return None
            line = players[match]

        value = line.get(field)
        if value is None:
            logger.warning(f"[MLB] Stat {field} not available for {player_name}")
            return None
        return float(value)
