"""
Prop Quality Score

Ranks a prop 0-100 from its win probability, confidence and edge:

    score = 100 * (0.70 * probability + 0.20 * confidence_weight + 0.10 * edge)

Probability carries most of the weight. Most props honestly carry zero edge,
so edge only nudges the ranking when a real best-price signal exists.
"""
from typing import Optional

from config import (
    CONFIDENCE_WEIGHTS, DEFAULT_CONFIDENCE, FILTER_MODES, QUALITY_TIERS, QUALITY_WEIGHTS,
)


def _clamp(value, low: float = 0.0, high: float = 1.0) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return low
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


def confidence_weight(confidence: Optional[str]) -> float:
    key = (confidence or DEFAULT_CONFIDENCE).lower()
    return CONFIDENCE_WEIGHTS.get(key, CONFIDENCE_WEIGHTS[DEFAULT_CONFIDENCE])


def calculate_quality_score(probability, edge, confidence: Optional[str] = DEFAULT_CONFIDENCE) -> float:
    """Quality score in [0, 100], rounded to one decimal."""
    p = _clamp(probability)
    e = _clamp(edge)
    c = confidence_weight(confidence)

    raw = (
        QUALITY_WEIGHTS["probability"] * p
        + QUALITY_WEIGHTS["confidence"] * c
        + QUALITY_WEIGHTS["edge"] * e
    )
    return round(max(0.0, min(100.0, raw * 100)), 1)


def quality_tier(score: float) -> str:
    for tier, minimum, _label, _description in QUALITY_TIERS:
        if score >= minimum:
            return tier
    return QUALITY_TIERS[-1][0]


def quality_tier_info(score: float) -> dict:
    """Tier plus display label/description for a score."""
    for tier, minimum, label, description in QUALITY_TIERS:
        if score >= minimum:
            return {"tier": tier, "label": label, "description": description}
    tier, _minimum, label, description = QUALITY_TIERS[-1]
    return {"tier": tier, "label": label, "description": description}


def rank_props(props: list[dict], mode: str = "balanced") -> list[dict]:
    """
    Filter and sort prop dicts for a display mode (safe / balanced / value).

    Each prop gets a qualityScore if it doesn't already carry one. Unknown
    modes fall back to balanced.
    """
    settings = FILTER_MODES.get(mode, FILTER_MODES["balanced"])

    ranked = []
    for prop in props:
        probability = _clamp(prop.get("probability", 0))
        edge = _clamp(prop.get("edge", 0))
        score = prop.get("qualityScore")
        if score is None:
            score = calculate_quality_score(probability, edge, prop.get("confidence"))

        if probability < settings["min_probability"]:
            continue
        if edge < settings["min_edge"]:
            continue
        if score < settings["min_quality_score"]:
            continue

        ranked.append({**prop, "qualityScore": score})

    sort_key = settings["sort_by"]
    ranked.sort(key=lambda p: _clamp(p.get(sort_key, 0), 0.0, 100.0), reverse=True)
    return ranked
