"""
ESPN Game Summaries (NFL / NHL)

Pulls player box score lines from ESPN's free summary endpoint to resolve
NFL and NHL props after a game is final.
"""
from typing import Optional
import logging
import re

import httpx

from config import ESPN_SUMMARY_URLS
from errors import CollaboratorError

logger = logging.getLogger(__name__)

# NFL box score category -> {column index: our field}. "C/ATT" is split separately.
NFL_CATEGORY_COLUMNS = {
    "passing": {1: "passingYards", 3: "passingTouchdowns", 4: "interceptions"},
    "rushing": {0: "rushingAttempts", 1: "rushingYards", 3: "rushingTouchdowns"},
    "receiving": {0: "receptions", 1: "receivingYards", 3: "receivingTouchdowns", 5: "targets"},
    "defensive": {0: "tackles", 2: "sacks"},
    "interceptions": {0: "defensiveInterceptions"},
}

NFL_STAT_MAP = {
    "passing_yards": "passingYards",
    "player_pass_yds": "passingYards",
    "passing_touchdowns": "passingTouchdowns",
    "player_pass_tds": "passingTouchdowns",
    "passing_completions": "passingCompletions",
    "player_pass_completions": "passingCompletions",
    "passing_attempts": "passingAttempts",
    "player_pass_attempts": "passingAttempts",
    "interceptions": "interceptions",
    "player_pass_interceptions": "interceptions",
    "rushing_yards": "rushingYards",
    "player_rush_yds": "rushingYards",
    "rushing_touchdowns": "rushingTouchdowns",
    "player_rush_tds": "rushingTouchdowns",
    "rushing_attempts": "rushingAttempts",
    "player_rush_attempts": "rushingAttempts",
    "receiving_yards": "receivingYards",
    "player_reception_yds": "receivingYards",
    "receiving_touchdowns": "receivingTouchdowns",
    "player_reception_tds": "receivingTouchdowns",
    "receptions": "receptions",
    "player_receptions": "receptions",
    "targets": "targets",
    "tackles": "tackles",
    "sacks": "sacks",
    "defensive_interceptions": "defensiveInterceptions",
}

# NHL prop type -> ESPN stat keys/labels to look for, in order
NHL_STAT_MAP = {
    "goals": ["goals", "g"],
    "player_goals": ["goals", "g"],
    "assists": ["assists", "a"],
    "player_assists": ["assists", "a"],
    "points": ["points", "pts"],
    "player_points": ["points", "pts"],
    "shots": ["shotstotal", "shots", "sog"],
    "shots_on_goal": ["shotstotal", "shots", "sog"],
    "player_shots_on_goal": ["shotstotal", "shots", "sog"],
    "powerplay_points": ["powerplaypoints", "ppp"],
    "player_power_play_points": ["powerplaypoints", "ppp"],
    "blocked_shots": ["blockedshots", "bs", "blk"],
    "player_blocked_shots": ["blockedshots", "bs", "blk"],
    "saves": ["saves", "sv"],
    "player_total_saves": ["saves", "sv"],
}


def _num(value) -> Optional[float]:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return None


def _normalize(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").lower().replace(".", "")).strip()


def names_match(api_name: str, target: str) -> bool:
    """Exact, containment, or last-name (>3 chars) match."""
    a, t = _normalize(api_name), _normalize(target)
    if not a or not t:
        return False
    if a == t or a in t or t in a:
        return True
    a_last, t_last = a.split(" ")[-1], t.split(" ")[-1]
    return a_last == t_last and len(a_last) > 3


def _athletes(summary: dict):
    """Yield (category dict, athlete dict) for every athlete row in the box score."""
    for team in ((summary.get("boxscore") or {}).get("players") or []):
        for category in team.get("statistics") or []:
            for athlete in category.get("athletes") or []:
                yield category, athlete


def parse_nfl_boxscore(summary: dict) -> dict:
    players = {}
    for category, athlete in _athletes(summary):
        name = (athlete.get("athlete") or {}).get("displayName")
        if not name:
            continue
        stats = athlete.get("stats") or []
        line = players.setdefault(name, {})
        cat_name = category.get("name")

        for index, field in NFL_CATEGORY_COLUMNS.get(cat_name, {}).items():
            if index < len(stats):
                value = _num(stats[index])
                if value is not None:
                    line[field] = value

        if cat_name == "passing" and stats and "/" in str(stats[0]):
            completions, attempts = str(stats[0]).split("/", 1)
            line["passingCompletions"] = _num(completions) or 0.0
            line["passingAttempts"] = _num(attempts) or 0.0
    return players


def _nhl_stat(category: dict, athlete: dict, wanted: list[str]) -> Optional[float]:
    keys = [k.lower() for k in category.get("keys") or []]
    labels = [lbl.lower() for lbl in category.get("labels") or []]
    stats = athlete.get("stats") or []
    for name in wanted:
        for columns in (keys, labels):
            if name in columns:
                idx = columns.index(name)
                if idx < len(stats):
                    value = _num(stats[idx])
                    if value is not None:
                        return value
    return None


def is_summary_final(summary: dict) -> bool:
    competitions = (summary.get("header") or {}).get("competitions") or [{}]
    status = ((competitions[0].get("status") or {}).get("type") or {})
    return status.get("name") == "STATUS_FINAL" or bool(status.get("completed"))


class ESPNStatsClient:
    """ESPN summary client. Summaries are cached per event for the life of the client."""

    def __init__(self, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(timeout=15.0)
        self._summaries: dict[tuple, dict] = {}

    def get_summary(self, sport: str, espn_game_id) -> dict:
        key = (sport, str(espn_game_id))
        if key in self._summaries:
            return self._summaries[key]

        url = ESPN_SUMMARY_URLS.get(sport)
        if not url:
            raise CollaboratorError(f"No ESPN summary endpoint for sport {sport}")
        try:
            response = self.client.get(url, params={"event": str(espn_game_id)})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"ESPN summary fetch failed for {sport} {espn_game_id}: {e}") from e

        self._summaries[key] = data
        return data

    def get_player_stat(self, sport: str, espn_game_id, player_name: str, prop_type: str) -> Optional[float]:
        if sport == "nfl":
            return self._nfl_stat(espn_game_id, player_name, prop_type)
        if sport == "nhl":
            return self._nhl_stat(espn_game_id, player_name, prop_type)
        logger.warning(f"[ESPN] Unsupported sport for stat lookup: {sport}")
        return None

    def _nfl_stat(self, espn_game_id, player_name: str, prop_type: str) -> Optional[float]:
        field = NFL_STAT_MAP.get(prop_type.removeprefix("player_")) or NFL_STAT_MAP.get(prop_type)
        if not field:
            logger.warning(f"[ESPN] Unknown NFL stat type: {prop_type}")
            return None

        players = parse_nfl_boxscore(self.get_summary("nfl", espn_game_id))
        line = players.get(player_name)
        if line is None:
            match = next((name for name in players if names_match(name, player_name)), None)
            line = players.get(match) if match else None
        if not line or field not in line:
            logger.warning(f"[ESPN] No NFL {field} for {player_name} in game {espn_game_id}")
            return None
        return line[field]

    def _nhl_stat(self, espn_game_id, player_name: str, prop_type: str) -> Optional[float]:
        wanted = NHL_STAT_MAP.get(prop_type)
        if not wanted:
            logger.warning(f"[ESPN] Unknown NHL stat type: {prop_type}")
            return None

        summary = self.get_summary("nhl", espn_game_id)
        if not is_summary_final(summary):
            logger.info(f"[ESPN] NHL game {espn_game_id} not final yet")
            return None

        for category, athlete in _athletes(summary):
            athlete_info = athlete.get("athlete") or {}
            name = athlete_info.get("displayName") or athlete_info.get("fullName")
            if not name or not names_match(name, player_name):
                continue
            value = _nhl_stat(category, athlete, wanted)
            if value is not None:
                return value
            if prop_type in ("points", "player_points"):
                goals = _nhl_stat(category, athlete, NHL_STAT_MAP["goals"])
                assists = _nhl_stat(category, athlete, NHL_STAT_MAP["assists"])
                if goals is not None and assists is not None:
                    return goals + assists

        logger.warning(f"[ESPN] No NHL {prop_type} for {player_name} in game {espn_game_id}")
        return None
