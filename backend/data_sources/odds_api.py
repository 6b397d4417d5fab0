"""
Odds API Data Source
Fetches player prop odds across bookmakers from The Odds API /events endpoints.
"""
import httpx
import time
from datetime import datetime, tzinfo
from typing import Callable, Optional
import logging

from config import (
    ODDS_API_KEY, ODDS_API_BASE, ODDS_API_SPORTS, PROP_MARKETS, PROP_BOOKS,
    ODDS_RATE_LIMIT_DELAY_SECONDS, LOCAL_TIMEZONE,
)
from models import local_day_bounds, parse_datetime, utc_now

logger = logging.getLogger(__name__)


class PropOddsClient:
    """Client for The Odds API player prop markets."""

    def __init__(self, client: Optional[httpx.Client] = None, api_key: str = ODDS_API_KEY,
                 delay_seconds: float = ODDS_RATE_LIMIT_DELAY_SECONDS,
                 clock: Callable[[], datetime] = utc_now, tz: tzinfo = LOCAL_TIMEZONE):
        self.api_key = api_key
        self.base_url = ODDS_API_BASE
        self.client = client or httpx.Client(timeout=30.0)
        self.delay_seconds = delay_seconds
        self.requests_remaining = None
        self.clock = clock
        self.tz = tz

    def _request(self, endpoint: str, params: dict = None) -> Optional[dict]:
        """Make a request to the Odds API."""
        if not self.api_key:
            logger.warning("[Odds API] ODDS_API_KEY not set, skipping request")
            return None
        if params is None:
            params = {}
        params["apiKey"] = self.api_key

        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.client.get(url, params=params)
            response.raise_for_status()

            self.requests_remaining = response.headers.get("x-requests-remaining", "?")
            logger.info(f"[Odds API] Requests remaining: {self.requests_remaining}")

            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"[Odds API] Error: {e}")
            return None

    def get_events(self, sport: str) -> list[dict]:
        sport_key = ODDS_API_SPORTS.get(sport)
        if not sport_key:
            logger.warning(f"[Odds API] Unknown sport: {sport}")
            return []
        events = self._request(f"sports/{sport_key}/events")
        return events or []

    def get_todays_events(self, sport: str) -> list[dict]:
        """Events whose commence_time falls on the current local day."""
        day_start, day_end = local_day_bounds(self.clock(), self.tz)
        todays = []
        for event in self.get_events(sport):
            starts = parse_datetime(event.get("commence_time"))
            if starts is not None and day_start <= starts < day_end:
                todays.append(event)
        logger.info(f"[Odds API] {len(todays)} {sport} events today")
        return todays

    def get_event_props(self, sport: str, event_id: str) -> Optional[dict]:
        sport_key = ODDS_API_SPORTS.get(sport)
        markets = PROP_MARKETS.get(sport, [])
        if not sport_key or not markets:
            return None

        params = {
            "regions": "us",
            "markets": ",".join(markets),
            "oddsFormat": "american",
            "bookmakers": ",".join(PROP_BOOKS),
        }
        return self._request(f"sports/{sport_key}/events/{event_id}/odds", params)

    @staticmethod
    def parse_player_props(event_data: dict) -> list[dict]:
        """Flatten an event odds payload into one quote per book/player/market/side."""
        if not event_data:
            return []

        quotes = []
        for bookmaker in event_data.get("bookmakers", []):
            book_key = bookmaker.get("key")
            for market in bookmaker.get("markets", []):
                for outcome in market.get("outcomes", []):
                    selection = outcome.get("name")
                    if selection not in ("Over", "Under"):
                        continue
                    quotes.append({
                        "playerName": outcome.get("description"),
                        "market": market.get("key"),
                        "selection": selection,
                        "threshold": outcome.get("point"),
                        "odds": outcome.get("price"),
                        "bookmaker": book_key,
                        "lastUpdate": market.get("last_update"),
                    })
        return quotes

    def fetch_prop_odds(self, sport: str) -> list[dict]:
        """
        All prop quotes for today's events in a sport.

        Each quote also carries gameId and gameTime from its event.
        """
        events = self.get_todays_events(sport)
        all_quotes = []

        for i, event in enumerate(events):
            event_id = event.get("id")
            if not event_id:
                continue
            if i > 0 and self.delay_seconds:
                time.sleep(self.delay_seconds)

            data = self.get_event_props(sport, event_id)
            quotes = self.parse_player_props(data)
            for quote in quotes:
                quote["gameId"] = event_id
                quote["gameTime"] = event.get("commence_time")
                quote["homeTeam"] = event.get("home_team")
                quote["awayTeam"] = event.get("away_team")
            all_quotes.extend(quotes)

            logger.info(
                f"[Odds API] {len(quotes)} prop quotes for {event.get('away_team')} @ {event.get('home_team')}"
            )

        return all_quotes
