"""
Game lookup against the Game table.

Props reference games by whatever id the generating pipeline had at hand,
so a lookup tries the internal id first and then each external id column.
"""
from typing import Optional
import logging

from config import GAME_TABLE
from errors import CollaboratorError

logger = logging.getLogger(__name__)

GAME_ID_COLUMNS = ("id", "mlbGameId", "espnGameId", "oddsApiEventId")


class GameLookup:
    def __init__(self, client, table: str = GAME_TABLE):
        self.client = client
        self.table = table

    def lookup(self, game_id: str) -> Optional[dict]:
        """Return the game row for game_id, or None if no column matches."""
        if not game_id or self.client is None:
            return None

        for column in GAME_ID_COLUMNS:
            try:
                result = self.client.table(self.table).select("*").eq(
                    column, str(game_id)
                ).limit(1).execute()
            except Exception as e:
                raise CollaboratorError(f"Game lookup failed for {game_id} ({column}): {e}") from e
            if result.data:
                return result.data[0]

        logger.debug(f"[Games] No game found for {game_id}")
        return None

    __call__ = lookup
