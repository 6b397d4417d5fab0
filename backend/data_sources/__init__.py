"""Vendor collaborators for prop resolution and odds."""
from typing import Callable, Optional
import logging

from config import STAT_GAME_ID_FIELDS

from .espn_stats import ESPNStatsClient
from .games import GameLookup
from .mlb_stats import MLBStatsClient
from .odds_api import PropOddsClient

logger = logging.getLogger(__name__)

# (external_game_id, player_name, prop_type) -> observed value or None
StatFetcher = Callable[[str, str, str], Optional[float]]


class StatFetcherRegistry:
    """Sport-keyed stat fetchers plus the external game id column each one needs."""

    def __init__(self, fetchers: Optional[dict] = None, id_fields: Optional[dict] = None):
        self.fetchers: dict[str, StatFetcher] = dict(fetchers or {})
        self.id_fields = dict(id_fields or STAT_GAME_ID_FIELDS)

    def register(self, sport: str, fetcher: StatFetcher, id_field: Optional[str] = None):
        self.fetchers[sport] = fetcher
        if id_field:
            self.id_fields[sport] = id_field

    def supports(self, sport: str) -> bool:
        return sport in self.fetchers

    def external_id(self, sport: str, game: dict) -> Optional[str]:
        field = self.id_fields.get(sport)
        if not field or not game:
            return None
        value = game.get(field)
        return str(value) if value not in (None, "") else None

    def fetch_actual_stat(self, sport: str, external_id: str, player_name: str, prop_type: str) -> Optional[float]:
        fetcher = self.fetchers.get(sport)
        if fetcher is None:
            logger.warning(f"[Stats] No stat fetcher registered for {sport}")
            return None
        return fetcher(external_id, player_name, prop_type)


def default_stat_registry(
    mlb: Optional[MLBStatsClient] = None,
    espn: Optional[ESPNStatsClient] = None,
) -> StatFetcherRegistry:
    mlb = mlb or MLBStatsClient()
    espn = espn or ESPNStatsClient()
    registry = StatFetcherRegistry()
    registry.register("mlb", mlb.get_player_stat)
    registry.register("nfl", lambda gid, name, prop: espn.get_player_stat("nfl", gid, name, prop))
    registry.register("nhl", lambda gid, name, prop: espn.get_player_stat("nhl", gid, name, prop))
    return registry


__all__ = [
    "ESPNStatsClient", "GameLookup", "MLBStatsClient", "PropOddsClient",
    "StatFetcherRegistry", "default_stat_registry",
]
