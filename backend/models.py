"""
Prop Data Model

PropCandidate is the strict input struct built at the boundary from whatever
loosely shaped dict a generator, vendor feed or UI hands us. Defaults are
applied once in PropCandidate.from_dict and nowhere else.

PropPrediction and PropOddsCacheEntry mirror the PropValidation and
PlayerPropCache tables. Column names stay camelCase so existing rows load
unchanged.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Optional
import logging

from config import (
    CONFIDENCE_WEIGHTS, DEFAULT_CONFIDENCE, DEFAULT_EDGE, DEFAULT_PREDICTION,
    DEFAULT_PROBABILITY, DEFAULT_SPORT, LOCAL_TIMEZONE, SPORTS,
)

logger = logging.getLogger(__name__)

# Lifecycle
STATUS_PENDING = "pending"
STATUS_NEEDS_REVIEW = "needs_review"
STATUS_COMPLETED = "completed"
OPEN_STATUSES = (STATUS_PENDING, STATUS_NEEDS_REVIEW)

RESULT_CORRECT = "correct"
RESULT_INCORRECT = "incorrect"
RESULT_PUSH = "push"

PREDICTIONS = ("over", "under")

SOURCE_USER_SAVED = "user_saved"
SOURCE_PARLAY_LEG = "parlay_leg"
SOURCE_SYSTEM_GENERATED = "system_generated"
SOURCE_API_GENERATED = "api_generated"
SOURCES = (SOURCE_USER_SAVED, SOURCE_PARLAY_LEG, SOURCE_SYSTEM_GENERATED, SOURCE_API_GENERATED)

# Fields a re-record may overwrite; lifecycle columns are never in this set
MUTABLE_PREDICTION_FIELDS = (
    "threshold", "prediction", "projectedValue", "confidence", "edge", "edgeSource",
    "odds", "probability", "qualityScore", "source", "parlayId",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def local_day_bounds(now: datetime, tz: tzinfo = LOCAL_TIMEZONE) -> tuple[datetime, datetime]:
    """[start, end) of the local calendar day containing now."""
    local = now.astimezone(tz)
    start = datetime(local.year, local.month, local.day, tzinfo=tz)
    return start, start + timedelta(days=1)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass through a datetime). Naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"[Models] Unparseable timestamp: {value!r}")
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _to_float(val, default: Optional[float] = None) -> Optional[float]:
    if val is None or val == "":
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def _first(data: dict, *keys, default=None):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


# =============================================================================
# INPUT BOUNDARY
# =============================================================================

@dataclass
class PropCandidate:
    """A freshly generated or user-saved prop, before it is recorded."""
    player_name: Optional[str]
    game_id: Optional[str]
    prop_type: str = "unknown"
    sport: str = DEFAULT_SPORT
    prediction: str = DEFAULT_PREDICTION
    threshold: float = 0.0
    projected_value: Optional[float] = None
    odds: Any = None                    # American or decimal, stored as given
    probability: float = DEFAULT_PROBABILITY
    edge: float = DEFAULT_EDGE
    edge_source: Optional[str] = None   # provenance of a non-zero edge
    confidence: str = DEFAULT_CONFIDENCE
    prop_id: Optional[str] = None
    player_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PropCandidate":
        """Build a candidate from a vendor/UI dict, accepting the common aliases."""
        player_name = _first(data, "playerName", "player_name", "player")
        game_id = _first(data, "gameId", "game_id")

        prediction = str(_first(data, "prediction", "pick", default=DEFAULT_PREDICTION)).strip().lower()

        confidence = str(_first(data, "confidence", default=DEFAULT_CONFIDENCE)).strip().lower()
        if confidence not in CONFIDENCE_WEIGHTS:
            logger.debug(f"[Models] Unknown confidence {confidence!r}, using {DEFAULT_CONFIDENCE}")
            confidence = DEFAULT_CONFIDENCE

        sport = str(_first(data, "sport", default=DEFAULT_SPORT)).strip().lower()

        player_id = _first(data, "playerId", "player_id")

        return cls(
            player_name=str(player_name).strip() if player_name else None,
            game_id=str(game_id).strip() if game_id else None,
            prop_type=str(_first(data, "propType", "prop_type", "type", default="unknown")),
            sport=sport,
            prediction=prediction,
            threshold=_to_float(_first(data, "threshold", "line"), 0.0),
            projected_value=_to_float(_first(data, "projectedValue", "projected_value", "projection")),
            odds=_first(data, "odds"),
            probability=_to_float(_first(data, "probability"), DEFAULT_PROBABILITY),
            edge=_to_float(_first(data, "edge"), DEFAULT_EDGE),
            edge_source=_first(data, "edgeSource", "edge_source"),
            confidence=confidence,
            prop_id=_first(data, "propId", "prop_id", "id"),
            player_id=str(player_id) if player_id is not None else None,
        )

    def validation_error(self) -> Optional[str]:
        """Return a message describing why this candidate can't be recorded, or None."""
        missing = [name for name, value in (("playerName", self.player_name), ("gameId", self.game_id)) if not value]
        if missing:
            return f"Missing required field(s): {', '.join(missing)}"
        if self.prediction not in PREDICTIONS:
            return f"Invalid prediction {self.prediction!r}, expected over/under"
        if self.sport not in SPORTS:
            return f"Unsupported sport {self.sport!r}"
        return None


# =============================================================================
# STORED RECORDS
# =============================================================================

@dataclass
class PropPrediction:
    """One row of the PropValidation table."""
    propId: str
    gameId: str
    playerName: str
    propType: str
    sport: str
    source: str
    prediction: str
    threshold: float
    probability: float = DEFAULT_PROBABILITY
    edge: float = 0.0
    confidence: str = DEFAULT_CONFIDENCE
    qualityScore: float = 0.0
    status: str = STATUS_PENDING
    parlayId: Optional[str] = None
    playerId: Optional[str] = None
    projectedValue: Optional[float] = None
    odds: Any = None
    edgeSource: Optional[str] = None
    result: Optional[str] = None
    actualValue: Optional[float] = None
    notes: Optional[str] = None
    timestamp: Optional[str] = None
    completedAt: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "PropPrediction":
        known = {f for f in cls.__dataclass_fields__}
        values = {k: v for k, v in row.items() if k in known}
        values["threshold"] = _to_float(values.get("threshold"), 0.0)
        values["actualValue"] = _to_float(values.get("actualValue"))
        for key, default in (("probability", DEFAULT_PROBABILITY), ("edge", 0.0), ("qualityScore", 0.0)):
            values[key] = _to_float(values.get(key), default)
        return cls(**values)

    def to_row(self) -> dict:
        return asdict(self)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass
class PropOddsCacheEntry:
    """One row of the PlayerPropCache table."""
    propId: str
    sport: str
    gameId: str
    gameTime: str
    fetchedAt: Optional[str] = None
    expiresAt: Optional[str] = None
    isStale: bool = False
    playerName: Optional[str] = None
    team: Optional[str] = None
    propType: Optional[str] = None
    pick: Optional[str] = None
    threshold: Optional[float] = None
    projection: Optional[float] = None
    odds: Any = None
    bookmaker: Optional[str] = None
    probability: float = DEFAULT_PROBABILITY
    edge: float = 0.0
    edgeSource: Optional[str] = None
    confidence: str = DEFAULT_CONFIDENCE
    qualityScore: float = 0.0
    reasoning: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict) -> "PropOddsCacheEntry":
        known = {f for f in cls.__dataclass_fields__} - {"extra"}
        values = {k: v for k, v in row.items() if k in known}
        values["extra"] = {k: v for k, v in row.items() if k not in known}
        return cls(**values)

    def to_row(self) -> dict:
        row = asdict(self)
        row.pop("extra")
        return row
