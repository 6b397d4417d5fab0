"""
Odds Math

American odds conversions, proportional vig removal and cross-book
best-price pricing for player prop markets.

The only edge this module ever reports comes from comparing the best price
across books against the vig-free consensus of those same books. With fewer
than two books quoting both sides there is nothing to compare and edge is 0.
"""
from collections import defaultdict
from typing import Optional

from config import VERIFIED_EDGE_SOURCE

MIN_BOOKS_FOR_EDGE = 2


def american_to_implied(odds) -> float:
    """Convert American odds to implied probability (0-1).
    -120 → 0.5455, +150 → 0.4000, 0/None → 0"""
    try:
        odds = float(odds)
    except (TypeError, ValueError):
        return 0.0
    if odds == 0:
        return 0.0
    if odds < 0:
        return abs(odds) / (abs(odds) + 100)
    return 100.0 / (odds + 100)


def implied_to_american(probability: float) -> int:
    if probability <= 0 or probability >= 1:
        return 0
    if probability >= 0.5:
        return -round((probability / (1 - probability)) * 100)
    return round(((1 - probability) / probability) * 100)


def remove_vig(over_odds, under_odds) -> Optional[dict]:
    """Proportional vig removal for a two-way market. None if either side is missing."""
    over_implied = american_to_implied(over_odds)
    under_implied = american_to_implied(under_odds)
    total = over_implied + under_implied
    if over_implied <= 0 or under_implied <= 0:
        return None

    if total <= 1:
        return {"over": over_implied, "under": under_implied, "vig": 0.0}
    return {
        "over": over_implied / total,
        "under": under_implied / total,
        "vig": total - 1,
    }


def best_price(quotes: list[dict]) -> dict:
    """Highest American price per side. Returns {"over": quote, "under": quote} (sides may be absent)."""
    best = {}
    for quote in quotes:
        side = str(quote.get("selection", "")).lower()
        if side not in ("over", "under"):
            continue
        try:
            odds = float(quote.get("odds"))
        except (TypeError, ValueError):
            continue
        if side not in best or odds > float(best[side]["odds"]):
            best[side] = quote
    return best


def group_quotes(quotes: list[dict]) -> dict:
    """Group flat vendor quotes by (playerName, market, threshold)."""
    grouped = defaultdict(list)
    for quote in quotes:
        key = (quote.get("playerName"), quote.get("market"), quote.get("threshold"))
        grouped[key].append(quote)
    return dict(grouped)


def price_prop_market(quotes: list[dict]) -> Optional[dict]:
    """
    Price one player/market/threshold from every book's quotes.

    Returns {"threshold", "over", "under"} where each side carries the best
    odds and its bookmaker, the vig-free consensus probability, the edge of
    the best price over that consensus, and the edge provenance.
    """
    if not quotes:
        return None

    by_book = defaultdict(dict)
    for quote in quotes:
        side = str(quote.get("selection", "")).lower()
        if side in ("over", "under"):
            by_book[quote.get("bookmaker")][side] = quote.get("odds")

    fair_over = []
    for sides in by_book.values():
        fair = remove_vig(sides.get("over"), sides.get("under"))
        if fair:
            fair_over.append(fair["over"])

    best = best_price(quotes)
    has_comparison = len(fair_over) >= MIN_BOOKS_FOR_EDGE
    consensus_over = sum(fair_over) / len(fair_over) if fair_over else None

    priced = {"threshold": quotes[0].get("threshold")}
    for side in ("over", "under"):
        quote = best.get(side)
        if not quote:
            priced[side] = None
            continue

        implied = american_to_implied(quote["odds"])
        if consensus_over is not None:
            probability = consensus_over if side == "over" else 1 - consensus_over
        else:
            probability = implied

        edge = max(0.0, probability - implied) if has_comparison else 0.0
        priced[side] = {
            "odds": quote["odds"],
            "bookmaker": quote.get("bookmaker"),
            "probability": round(probability, 4),
            "edge": round(edge, 4),
            "edgeSource": VERIFIED_EDGE_SOURCE if has_comparison else None,
            "lastUpdate": quote.get("lastUpdate"),
        }
    return priced
