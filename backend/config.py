"""
Prop Tracker Configuration
Environment variables and constants for the prop prediction lifecycle.
"""
import os
from zoneinfo import ZoneInfo
from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# API KEYS & URLS
# =============================================================================

# Supabase
SUPABASE_URL = os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY", "")

# Odds API
ODDS_API_KEY = os.getenv("ODDS_API_KEY", "")
ODDS_API_BASE = "https://api.the-odds-api.com/v4"

# ESPN game summaries (free, no key needed)
ESPN_SUMMARY_URLS = {
    "nfl": "https://site.api.espn.com/apis/site/v2/sports/football/nfl/summary",
    "nhl": "https://site.api.espn.com/apis/site/v2/sports/hockey/nhl/summary",
}

# MLB Stats API (free, no key needed)
MLB_API_BASE = "https://statsapi.mlb.com/api/v1"
# Box score requests per minute; the sweep and the API can share one client
MLB_REQUESTS_PER_MINUTE = int(os.getenv("MLB_REQUESTS_PER_MINUTE", "120"))

# "Today" and "yesterday" are calendar days in this zone
LOCAL_TIMEZONE = ZoneInfo(os.getenv("APP_TIMEZONE", "America/New_York"))

# API server bind address
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", "8000"))

# =============================================================================
# TABLES
# =============================================================================

PROP_VALIDATION_TABLE = "PropValidation"
PROP_CACHE_TABLE = "PlayerPropCache"
GAME_TABLE = "Game"

# Supabase caps a single read at 1000 rows
PAGE_SIZE = 1000

# =============================================================================
# SPORT MAPPINGS
# =============================================================================

SPORTS = ("mlb", "nfl", "nhl")

ODDS_API_SPORTS = {
    "mlb": "baseball_mlb",
    "nfl": "americanfootball_nfl",
    "nhl": "icehockey_nhl",
}

# External game id column each sport's stat feed needs
STAT_GAME_ID_FIELDS = {
    "mlb": "mlbGameId",
    "nfl": "espnGameId",
    "nhl": "espnGameId",
}

PROP_MARKETS = {
    "mlb": [
        "batter_hits",
        "batter_home_runs",
        "batter_total_bases",
        "batter_rbis",
        "batter_runs_scored",
        "batter_strikeouts",
        "batter_walks",
        "pitcher_strikeouts",
        "pitcher_outs",
        "pitcher_hits_allowed",
        "pitcher_earned_runs",
        "pitcher_walks",
    ],
    "nfl": [
        "player_pass_yds",
        "player_pass_tds",
        "player_pass_completions",
        "player_pass_attempts",
        "player_pass_interceptions",
        "player_rush_yds",
        "player_rush_attempts",
        "player_rush_tds",
        "player_receptions",
        "player_reception_yds",
        "player_reception_tds",
    ],
    "nhl": [
        "player_points",
        "player_goals",
        "player_assists",
        "player_shots_on_goal",
        "player_power_play_points",
        "player_blocked_shots",
        "player_total_saves",
    ],
}

PROP_BOOKS = ["draftkings", "fanduel", "betmgm", "caesars"]

# 200ms between vendor calls keeps us under the Odds API burst limit
ODDS_RATE_LIMIT_DELAY_SECONDS = 0.2

# =============================================================================
# QUALITY SCORE
# =============================================================================

QUALITY_WEIGHTS = {
    "probability": 0.70,
    "confidence": 0.20,
    "edge": 0.10,
}

CONFIDENCE_WEIGHTS = {
    "very_low": 0.2,
    "low": 0.4,
    "medium": 0.6,
    "high": 0.8,
    "very_high": 1.0,
}

DEFAULT_CONFIDENCE = "medium"

# Ordered high to low; first threshold met wins
QUALITY_TIERS = [
    ("elite", 70, "Elite Pick", "Highest quality - great probability and edge"),
    ("premium", 55, "Premium", "High quality - strong chance to win"),
    ("solid", 40, "Solid Value", "Good value - balanced risk/reward"),
    ("speculative", 25, "Speculative", "Higher risk - value play"),
    ("longshot", 0, "Longshot", "High risk - lottery ticket"),
]

FILTER_MODES = {
    "safe": {"min_probability": 0.52, "min_quality_score": 40, "min_edge": 0.0, "sort_by": "probability"},
    "balanced": {"min_probability": 0.45, "min_quality_score": 35, "min_edge": 0.0, "sort_by": "qualityScore"},
    "value": {"min_probability": 0.40, "min_quality_score": 25, "min_edge": 0.02, "sort_by": "edge"},
}

# =============================================================================
# PREDICTION DEFAULTS
# =============================================================================

DEFAULT_PROBABILITY = 0.5
DEFAULT_EDGE = 0.0
DEFAULT_PREDICTION = "over"
DEFAULT_SPORT = "mlb"

# Only edges with this provenance are stored; anything else is recorded as 0
VERIFIED_EDGE_SOURCE = "best_price_comparison"

# =============================================================================
# RECONCILIATION SWEEP
# =============================================================================

FINAL_GAME_STATUSES = {"final", "completed", "f", "closed"}

# Fallback finality: game date more than this many calendar days in the past
FINAL_BY_DATE_DAYS = 1

SWEEP_BATCH_SIZE = int(os.getenv("PROPS_SWEEP_BATCH_SIZE", "25"))
SWEEP_BATCH_DELAY_SECONDS = float(os.getenv("PROPS_SWEEP_BATCH_DELAY_SECONDS", "1"))
SWEEP_MAX_BATCHES = 50
SWEEP_INTERVAL_MINUTES = 30

# =============================================================================
# PROP ODDS CACHE
# =============================================================================

CACHE_TTL_MINUTES = 30
PRE_GAME_LOCKOUT_MINUTES = 60
CACHE_RETENTION_DAYS = int(os.getenv("PROP_CACHE_RETENTION_DAYS", "2"))
CACHE_STALE_SWEEP_MINUTES = 5

# =============================================================================
# ANALYTICS
# =============================================================================

# ROI assumes every pick was priced at -110: a win returns ~0.91 units
ROI_WIN_PAYOUT = 0.91

BREAK_EVEN_ACCURACY = 0.524

PROP_TYPE_MIN_SAMPLES = 5
PROP_TYPE_SUCCESS_ACCURACY = 0.55
PROP_TYPE_WARNING_ACCURACY = 0.45
PROP_TYPE_BOOST = 1.2
PROP_TYPE_PENALTY = 0.8

PLAYER_MIN_SAMPLES = 3
PLAYER_SUCCESS_ACCURACY = 0.67
PLAYER_WARNING_ACCURACY = 0.33
PLAYER_BOOST = 1.15
PLAYER_PENALTY = 0.85

STRATEGY_MIN_SAMPLES = 5

RANKING_MIN_SAMPLES = 10

# (label, lower bound inclusive, upper bound exclusive)
EDGE_BUCKETS = [
    ("0-1%", 0.00, 0.01),
    ("1-2%", 0.01, 0.02),
    ("2-3%", 0.02, 0.03),
    ("3-4%", 0.03, 0.04),
    ("4-5%", 0.04, 0.05),
    ("5%+", 0.05, float("inf")),
]
