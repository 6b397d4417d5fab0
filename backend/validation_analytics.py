"""
Validation Analytics

Read-only rollups over completed prop records: accuracy, ROI, edge buckets,
per prop type / player / source breakdowns, and the insights and confidence
multipliers that feed back into prop generation.

Accuracy everywhere is correct / (correct + incorrect). Pushes are neither a
win nor a loss, so they never enter the denominator.

ROI models every pick at -110 (a win pays ROI_WIN_PAYOUT, a loss costs 1).
The odds stored on each record are not used here.
"""
from collections import defaultdict
from typing import Optional
import logging

from config import (
    BREAK_EVEN_ACCURACY, EDGE_BUCKETS, PLAYER_BOOST, PLAYER_MIN_SAMPLES, PLAYER_PENALTY,
    PLAYER_SUCCESS_ACCURACY, PLAYER_WARNING_ACCURACY, PROP_TYPE_BOOST, PROP_TYPE_MIN_SAMPLES,
    PROP_TYPE_PENALTY, PROP_TYPE_SUCCESS_ACCURACY, PROP_TYPE_WARNING_ACCURACY, RANKING_MIN_SAMPLES,
    ROI_WIN_PAYOUT, STRATEGY_MIN_SAMPLES,
)
from database import PropRecordStore
from errors import PropLifecycleError
from models import RESULT_CORRECT, RESULT_INCORRECT, RESULT_PUSH, STATUS_COMPLETED

logger = logging.getLogger(__name__)

CONFIDENCE_DOWNGRADE = {
    "very_high": "high",
    "high": "medium",
    "medium": "low",
    "low": "very_low",
    "very_low": "very_low",
}


# =============================================================================
# HELPERS
# =============================================================================

def _to_float(val) -> Optional[float]:
    if val is None:
        return None
    try:
        f = float(val)
    except (ValueError, TypeError):
        return None
    return None if f != f else f


def accuracy(correct: int, incorrect: int) -> float:
    graded = correct + incorrect
    return correct / graded if graded else 0.0


def roi(correct: int, incorrect: int) -> float:
    """Flat -110 ROI per graded bet."""
    graded = correct + incorrect
    return (correct * ROI_WIN_PAYOUT - incorrect) / graded if graded else 0.0


def _tally(records: list[dict]) -> dict:
    correct = sum(1 for r in records if r.get("result") == RESULT_CORRECT)
    incorrect = sum(1 for r in records if r.get("result") == RESULT_INCORRECT)
    pushes = sum(1 for r in records if r.get("result") == RESULT_PUSH)
    return {
        "total": len(records),
        "correct": correct,
        "incorrect": incorrect,
        "pushes": pushes,
        "accuracy": accuracy(correct, incorrect),
        "roi": roi(correct, incorrect),
    }


def _group(records: list[dict], key_fn) -> dict:
    groups = defaultdict(list)
    for record in records:
        groups[key_fn(record)].append(record)
    return groups


def prop_type_key(record: dict, prefix_sport: bool) -> str:
    sport = record.get("sport")
    if prefix_sport and sport:
        return f"{sport.upper()} - {record.get('propType')}"
    return str(record.get("propType"))


# =============================================================================
# PURE ROLLUPS
# =============================================================================

def breakdown_by_prop_type(records: list[dict], prefix_sport: Optional[bool] = None) -> dict:
    """
    Per prop type tallies. Keys carry a sport prefix ("MLB - hits") when the
    records span more than one sport, unless prefix_sport says otherwise.
    """
    if prefix_sport is None:
        prefix_sport = len({r.get("sport") for r in records if r.get("sport")}) > 1

    breakdown = {}
    for key, group in _group(records, lambda r: prop_type_key(r, prefix_sport)).items():
        stat = _tally(group)
        stat["sport"] = group[0].get("sport")
        stat["propType"] = group[0].get("propType")
        breakdown[key] = stat
    return breakdown


def breakdown_by_player(records: list[dict], min_samples: int = PLAYER_MIN_SAMPLES) -> dict:
    """Per player tallies, only for players with at least min_samples resolved records."""
    return {
        player: _tally(group)
        for player, group in _group(records, lambda r: r.get("playerName")).items()
        if player and len(group) >= min_samples
    }


def breakdown_by_source(records: list[dict]) -> dict:
    return {
        source: _tally(group)
        for source, group in _group(records, lambda r: r.get("source") or "system_generated").items()
    }


def compute_validation_stats(records: list[dict], prefix_sport: Optional[bool] = None) -> dict:
    """Validation-stats response over completed records."""
    completed = [r for r in records if r.get("status", STATUS_COMPLETED) == STATUS_COMPLETED]
    overall = _tally(completed)

    edges = [e for e in (_to_float(r.get("edge")) for r in completed) if e is not None]
    avg_edge = sum(edges) / len(edges) if edges else 0.0

    return {
        "total": overall["total"],
        "correct": overall["correct"],
        "incorrect": overall["incorrect"],
        "pushes": overall["pushes"],
        "accuracy": overall["accuracy"],
        "avgEdge": avg_edge,
        "roi": overall["roi"],
        "byPropType": breakdown_by_prop_type(completed, prefix_sport),
        "byPlayer": breakdown_by_player(completed),
        "bySource": breakdown_by_source(completed),
    }


def accuracy_by_edge(records: list[dict]) -> dict:
    """Accuracy per edge bucket (0-1%, 1-2%, ... 5%+)."""
    buckets = {label: {"correct": 0, "incorrect": 0, "pushes": 0, "total": 0} for label, _, _ in EDGE_BUCKETS}
    for record in records:
        edge = abs(_to_float(record.get("edge")) or 0.0)
        label = next(label for label, low, high in EDGE_BUCKETS if low <= edge < high)
        bucket = buckets[label]
        bucket["total"] += 1
        if record.get("result") == RESULT_CORRECT:
            bucket["correct"] += 1
        elif record.get("result") == RESULT_INCORRECT:
            bucket["incorrect"] += 1
        elif record.get("result") == RESULT_PUSH:
            bucket["pushes"] += 1

    for bucket in buckets.values():
        bucket["accuracy"] = accuracy(bucket["correct"], bucket["incorrect"])
    return buckets


def rank_prop_types(stats: dict, key: str = "accuracy", limit: int = 5,
                    min_samples: int = RANKING_MIN_SAMPLES) -> list[dict]:
    """Top prop types from a stats response by accuracy or roi, ignoring small samples."""
    rows = [
        {"type": name, **stat}
        for name, stat in stats.get("byPropType", {}).items()
        if stat["total"] >= min_samples
    ]
    rows.sort(key=lambda row: row[key], reverse=True)
    return rows[:limit]


# =============================================================================
# INSIGHTS
# =============================================================================

def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def analyze_performance(records: list[dict]) -> dict:
    """Insights plus per prop type / player confidence multipliers."""
    completed = [r for r in records if r.get("status", STATUS_COMPLETED) == STATUS_COMPLETED]
    if not completed:
        return {"insights": [], "adjustments": {}, "playerAdjustments": {}}

    insights = []
    adjustments = {}
    player_adjustments = {}

    prop_type_stats = breakdown_by_prop_type(completed, prefix_sport=False)
    for prop_type, stat in prop_type_stats.items():
        graded = stat["correct"] + stat["incorrect"]
        if graded < PROP_TYPE_MIN_SAMPLES:
            continue
        label = prop_type.replace("_", " ")
        if stat["accuracy"] >= PROP_TYPE_SUCCESS_ACCURACY:
            insights.append({
                "type": "success",
                "category": "prop_type",
                "subject": prop_type,
                "message": f"{label} is performing well ({_pct(stat['accuracy'])} accuracy)",
                "recommendation": "Prioritize this prop type in future selections",
                "boost": PROP_TYPE_BOOST,
            })
            adjustments[prop_type] = {"confidenceMultiplier": PROP_TYPE_BOOST, "reason": "High accuracy"}
        elif stat["accuracy"] < PROP_TYPE_WARNING_ACCURACY:
            insights.append({
                "type": "warning",
                "category": "prop_type",
                "subject": prop_type,
                "message": f"{label} is underperforming ({_pct(stat['accuracy'])} accuracy)",
                "recommendation": "Reduce weight or avoid this prop type",
                "boost": PROP_TYPE_PENALTY,
            })
            adjustments[prop_type] = {"confidenceMultiplier": PROP_TYPE_PENALTY, "reason": "Low accuracy"}

    player_stats = breakdown_by_player(completed)
    for player, stat in player_stats.items():
        record_str = f"{stat['correct']}/{stat['correct'] + stat['incorrect']}"
        if stat["accuracy"] >= PLAYER_SUCCESS_ACCURACY:
            insights.append({
                "type": "success",
                "category": "player",
                "subject": player,
                "message": f"Predictions for {player} are very accurate ({record_str})",
                "recommendation": "Trust props involving this player",
                "boost": PLAYER_BOOST,
            })
            player_adjustments[player] = {"confidenceMultiplier": PLAYER_BOOST, "reason": "High accuracy"}
        elif stat["accuracy"] <= PLAYER_WARNING_ACCURACY:
            insights.append({
                "type": "warning",
                "category": "player",
                "subject": player,
                "message": f"Predictions for {player} are struggling ({record_str})",
                "recommendation": "Be cautious with this player",
                "boost": PLAYER_PENALTY,
            })
            player_adjustments[player] = {"confidenceMultiplier": PLAYER_PENALTY, "reason": "Low accuracy"}

    source_stats = breakdown_by_source(completed)
    for source, stat in source_stats.items():
        insights.append({
            "type": "info",
            "category": "source",
            "subject": source,
            "message": (
                f"{source.replace('_', ' ')}: {_pct(stat['accuracy'])} accuracy "
                f"({stat['correct']}/{stat['correct'] + stat['incorrect']})"
            ),
            "recommendation": "Good performance" if stat["accuracy"] >= BREAK_EVEN_ACCURACY else "Needs improvement",
        })

    def _prob(r):
        return _to_float(r.get("probability")) or 0.0

    def _edge(r):
        return _to_float(r.get("edge")) or 0.0

    strategies = {
        "conservative": [r for r in completed if _prob(r) >= 0.55],
        "balanced": [r for r in completed if 0.48 <= _prob(r) < 0.55],
        "value": [r for r in completed if _edge(r) >= 0.15],
        "aggressive": [r for r in completed if _edge(r) >= 0.25],
    }
    for strategy, group in strategies.items():
        if len(group) < STRATEGY_MIN_SAMPLES:
            continue
        stat = _tally(group)
        insights.append({
            "type": "info",
            "category": "strategy",
            "subject": strategy,
            "message": f"{strategy.capitalize()} strategy: {_pct(stat['accuracy'])} accuracy",
            "recommendation": "Effective strategy" if stat["accuracy"] >= BREAK_EVEN_ACCURACY else "Consider adjusting",
        })

    overall = _tally(completed)
    break_even = _pct(BREAK_EVEN_ACCURACY)
    if overall["accuracy"] >= BREAK_EVEN_ACCURACY:
        insights.append({
            "type": "success",
            "category": "overall",
            "subject": "System Performance",
            "message": f"Overall accuracy of {_pct(overall['accuracy'])} exceeds break-even rate ({break_even})",
            "recommendation": "System is profitable! Continue current approach.",
        })
    else:
        insights.append({
            "type": "warning",
            "category": "overall",
            "subject": "System Performance",
            "message": f"Overall accuracy of {_pct(overall['accuracy'])} is below break-even ({break_even})",
            "recommendation": "Need to improve prop selection. Focus on high-win-rate prop types.",
        })

    return {
        "insights": insights,
        "adjustments": adjustments,
        "playerAdjustments": player_adjustments,
        "propTypeStats": prop_type_stats,
        "playerStats": player_stats,
        "sourceStats": source_stats,
        "overallAccuracy": overall["accuracy"],
    }


def _prop_type_of(prop: dict) -> Optional[str]:
    return prop.get("propType") or prop.get("type")


def performance_adjustment(prop: dict, adjustments: dict, player_adjustments: Optional[dict] = None) -> float:
    """Combined confidence multiplier for a prop from its prop type and player history."""
    multiplier = 1.0
    type_adj = adjustments.get(_prop_type_of(prop))
    if type_adj:
        multiplier *= type_adj["confidenceMultiplier"]
    player_adj = (player_adjustments or {}).get(prop.get("playerName"))
    if player_adj:
        multiplier *= player_adj["confidenceMultiplier"]
    return multiplier


def filter_props_by_performance(props: list[dict], insights: list[dict], mode: str = "balanced") -> list[dict]:
    """
    Apply warning insights to a prop list.

    strict drops flagged props, balanced downgrades their confidence one
    level, permissive only annotates them.
    """
    if not insights:
        return props

    warning_types = {i["subject"] for i in insights if i["type"] == "warning" and i["category"] == "prop_type"}
    warning_players = {i["subject"] for i in insights if i["type"] == "warning" and i["category"] == "player"}

    def flagged(p):
        return _prop_type_of(p) in warning_types or p.get("playerName") in warning_players

    if mode == "strict":
        return [p for p in props if not flagged(p)]
    if mode == "balanced":
        return [
            {**p, "confidence": CONFIDENCE_DOWNGRADE.get(p.get("confidence"), "very_low"),
             "note": "Historical underperformance"} if flagged(p) else p
            for p in props
        ]
    return [{**p, "note": "Caution: Historical underperformance"} if flagged(p) else p for p in props]


# =============================================================================
# STORE-BACKED QUERIES
# =============================================================================

def _empty_stats() -> dict:
    return {
        "total": 0, "correct": 0, "incorrect": 0, "pushes": 0,
        "accuracy": 0.0, "avgEdge": 0.0, "roi": 0.0,
        "byPropType": {}, "byPlayer": {}, "bySource": {},
    }


class ValidationAnalytics:
    """Analytics over the PropValidation table."""

    def __init__(self, store: PropRecordStore):
        self.store = store

    def _completed(self, filters: Optional[dict] = None) -> list[dict]:
        return self.store.fetch_all({**(filters or {}), "status": STATUS_COMPLETED})

    def get_validation_stats(self, filters: Optional[dict] = None) -> dict:
        try:
            records = self._completed(filters)
        except PropLifecycleError as e:
            logger.error(f"[Analytics] Error loading validation stats: {e}")
            return _empty_stats()
        return compute_validation_stats(records)

    def get_validation_records(self, filters: Optional[dict] = None, limit: Optional[int] = 100) -> list[dict]:
        """Records newest first, any status unless filtered."""
        try:
            return self.store.fetch_all(filters or {}, order_desc=True, limit=limit)
        except PropLifecycleError as e:
            logger.error(f"[Analytics] Error loading validation records: {e}")
            return []

    def get_accuracy_by_edge(self, filters: Optional[dict] = None) -> dict:
        try:
            return accuracy_by_edge(self._completed(filters))
        except PropLifecycleError as e:
            logger.error(f"[Analytics] Error loading edge accuracy: {e}")
            return {}

    def get_most_accurate_prop_types(self, limit: int = 5) -> list[dict]:
        return rank_prop_types(self.get_validation_stats(), "accuracy", limit)

    def get_most_profitable_prop_types(self, limit: int = 5) -> list[dict]:
        return rank_prop_types(self.get_validation_stats(), "roi", limit)

    def get_insights(self, filters: Optional[dict] = None) -> dict:
        try:
            return analyze_performance(self._completed(filters))
        except PropLifecycleError as e:
            logger.error(f"[Analytics] Error analyzing performance: {e}")
            return {"insights": [], "adjustments": {}, "playerAdjustments": {}}

    def get_status_counts(self) -> dict:
        """Pending / needs_review / completed counts plus completed accuracy."""
        try:
            counts = {
                status: self.store.count_by_status(status)
                for status in ("pending", "needs_review", "completed")
            }
            correct = self.store.count({"status": STATUS_COMPLETED, "result": RESULT_CORRECT})
            incorrect = self.store.count({"status": STATUS_COMPLETED, "result": RESULT_INCORRECT})
        except PropLifecycleError as e:
            logger.error(f"[Analytics] Error counting statuses: {e}")
            return {"pending": 0, "needs_review": 0, "completed": 0, "correct": 0, "accuracy": 0.0}
        return {**counts, "correct": correct, "accuracy": accuracy(correct, incorrect)}
