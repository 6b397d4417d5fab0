"""
Pytest configuration and fixtures for the prop tracker tests.
"""
import os
import sys
from datetime import datetime, timezone

import pytest

# Backend modules import each other by top-level name (config, database, ...)
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "backend"))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
os.environ.setdefault("DISABLE_SCHEDULER", "1")

from fake_supabase import FakeSupabase  # noqa: E402

# Saturday afternoon, 2pm in New York
NOW = datetime(2024, 6, 15, 18, 0, tzinfo=timezone.utc)


def prop_row(**overrides) -> dict:
    """A stored PropValidation row with sensible defaults."""
    row = {
        "propId": "prop-aaron-judge-hits-g1-over",
        "gameId": "g1",
        "parlayId": None,
        "playerId": None,
        "playerName": "Aaron Judge",
        "propType": "hits",
        "sport": "mlb",
        "source": "system_generated",
        "prediction": "over",
        "threshold": 0.5,
        "projectedValue": None,
        "odds": -120,
        "probability": 0.55,
        "edge": 0.0,
        "edgeSource": None,
        "confidence": "medium",
        "qualityScore": 50.5,
        "status": "pending",
        "result": None,
        "actualValue": None,
        "notes": None,
        "timestamp": "2024-06-14T12:00:00+00:00",
        "completedAt": None,
    }
    row.update(overrides)
    return row


def game_row(**overrides) -> dict:
    """A Game table row for a finished MLB game."""
    row = {
        "id": "g1",
        "sport": "mlb",
        "status": "Final",
        "date": "2024-06-14T23:05:00+00:00",
        "mlbGameId": 745001,
        "espnGameId": None,
        "homeTeam": "New York Yankees",
        "awayTeam": "Boston Red Sox",
    }
    row.update(overrides)
    return row


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def store(fake_db):
    from database import PropRecordStore
    return PropRecordStore(fake_db)


@pytest.fixture
def recorder(store, clock):
    from prediction_recorder import PredictionRecorder
    return PredictionRecorder(store, clock=clock)


@pytest.fixture
def sample_candidate():
    """A generator-shaped prop dict."""
    return {
        "playerName": "Aaron Judge",
        "gameId": "g1",
        "propType": "hits",
        "sport": "mlb",
        "prediction": "over",
        "threshold": 0.5,
        "odds": -120,
        "probability": 0.55,
        "confidence": "medium",
    }
