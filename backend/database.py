"""
Supabase Database Module

Prop Record Store for the PropValidation table:
- Atomic insert-if-absent keyed by propId
- Field-limited updates for re-recorded predictions
- Compare-and-set status transitions for the resolver
- Paginated reads for analytics and the reconciliation sweep
"""
from typing import Iterable, Optional
import logging

from supabase import create_client, Client
from config import SUPABASE_URL, SUPABASE_KEY, PROP_VALIDATION_TABLE, PAGE_SIZE
from errors import StorageError
from models import MUTABLE_PREDICTION_FIELDS

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_client() -> Optional[Client]:
    """Shared Supabase client, or None when credentials are missing."""
    global _client
    if _client is None:
        if not SUPABASE_URL or not SUPABASE_KEY:
            logger.warning("Supabase credentials not configured")
            return None
        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    return _client


# Equality filters accepted by fetch_all / count
FILTER_COLUMNS = (
    "status", "sport", "propType", "playerName", "source", "confidence",
    "result", "gameId", "parlayId",
)


class PropRecordStore:
    """Persistence for prop validation records."""

    def __init__(self, client: Optional[Client] = None, table: str = PROP_VALIDATION_TABLE):
        self.client = client if client is not None else get_client()
        self.table_name = table

    def _is_connected(self) -> bool:
        return self.client is not None

    def _table(self):
        if not self._is_connected():
            raise StorageError("Database not connected")
        return self.client.table(self.table_name)

    @staticmethod
    def _execute(query, action: str):
        try:
            return query.execute()
        except Exception as e:
            raise StorageError(f"{action} failed: {e}") from e

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert_if_absent(self, row: dict) -> Optional[dict]:
        """
        Insert row unless its propId already exists.

        Single upsert with ignore_duplicates, so two concurrent writers of the
        same propId converge on one row. Returns the inserted row, or None
        when the propId was already present.
        """
        result = self._execute(
            self._table().upsert(row, on_conflict="propId", ignore_duplicates=True),
            f"Insert of {row.get('propId')}",
        )
        return result.data[0] if result.data else None

    def update_prediction_fields(self, prop_id: str, fields: dict) -> Optional[dict]:
        """Update only the mutable prediction columns. Lifecycle columns are dropped."""
        updates = {k: v for k, v in fields.items() if k in MUTABLE_PREDICTION_FIELDS}
        if not updates:
            return self.get(prop_id)
        result = self._execute(
            self._table().update(updates).eq("propId", prop_id),
            f"Update of {prop_id}",
        )
        return result.data[0] if result.data else None

    def transition(self, prop_id: str, from_statuses: Iterable[str], fields: dict) -> Optional[dict]:
        """
        Conditionally update a record whose status is one of from_statuses.

        Returns the updated row, or None when no row matched (unknown propId or
        another writer already moved it on).
        """
        result = self._execute(
            self._table().update(fields).eq(
                "propId", prop_id
            ).in_(
                "status", list(from_statuses)
            ),
            f"Transition of {prop_id}",
        )
        return result.data[0] if result.data else None

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, prop_id: str) -> Optional[dict]:
        result = self._execute(
            self._table().select("*").eq("propId", prop_id).limit(1),
            f"Lookup of {prop_id}",
        )
        return result.data[0] if result.data else None

    def list_by_status(self, status: str, offset: int = 0, limit: int = 25) -> list[dict]:
        """Oldest-first page of records in a status."""
        result = self._execute(
            self._table().select("*").eq(
                "status", status
            ).order(
                "timestamp", desc=False
            ).range(offset, offset + limit - 1),
            f"Listing {status} records",
        )
        return result.data or []

    def list_pending_for_game(self, game_id: str) -> list[dict]:
        return self.fetch_all({"gameId": game_id, "status": "pending"})

    def count(self, filters: Optional[dict] = None) -> int:
        query = self._apply_filters(self._table().select("propId", count="exact"), filters or {})
        result = self._execute(query, "Count")
        return result.count or 0

    def count_by_status(self, status: str) -> int:
        return self.count({"status": status})

    def fetch_all(
        self,
        filters: Optional[dict] = None,
        order_desc: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        All records matching filters, ordered by timestamp.

        Supabase returns at most 1000 rows per request, so this pages with
        range() until a short page comes back or limit is reached.
        """
        rows: list[dict] = []
        offset = 0
        while True:
            page_size = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - len(rows))
            if page_size <= 0:
                break
            query = self._apply_filters(self._table().select("*"), filters or {}).order(
                "timestamp", desc=order_desc
            ).range(offset, offset + page_size - 1)
            result = self._execute(query, f"Paged fetch at offset {offset}")

            page = result.data or []
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size

        logger.debug(f"[PropStore] Fetched {len(rows)} records with filters {filters}")
        return rows

    @staticmethod
    def _apply_filters(query, filters: dict):
        for column in FILTER_COLUMNS:
            value = filters.get(column)
            if value is not None and value != "":
                query = query.eq(column, value)
        if filters.get("startDate"):
            query = query.gte("timestamp", filters["startDate"])
        if filters.get("endDate"):
            query = query.lte("timestamp", filters["endDate"])
        return query
