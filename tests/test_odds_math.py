"""
Tests for odds conversion, vig removal and best-price edge.
"""
import pytest

from config import VERIFIED_EDGE_SOURCE
from odds_math import (
    american_to_implied, best_price, group_quotes, implied_to_american, price_prop_market, remove_vig,
)


def _quotes(book, over, under, player="Aaron Judge", market="batter_hits", threshold=0.5):
    return [
        {"playerName": player, "market": market, "threshold": threshold,
         "selection": "Over", "odds": over, "bookmaker": book},
        {"playerName": player, "market": market, "threshold": threshold,
         "selection": "Under", "odds": under, "bookmaker": book},
    ]


class TestConversions:

    def test_american_to_implied(self):
        assert american_to_implied(-120) == pytest.approx(0.5455, abs=1e-4)
        assert american_to_implied(150) == pytest.approx(0.40)
        assert american_to_implied("-110") == pytest.approx(0.5238, abs=1e-4)

    def test_missing_odds(self):
        assert american_to_implied(None) == 0.0
        assert american_to_implied(0) == 0.0
        assert american_to_implied("n/a") == 0.0

    def test_implied_to_american(self):
        assert implied_to_american(0.5) == -100
        assert implied_to_american(0.4) == 150
        assert implied_to_american(0.6) == -150
        assert implied_to_american(1.0) == 0


class TestRemoveVig:

    def test_symmetric_market(self):
        fair = remove_vig(-110, -110)
        assert fair["over"] == pytest.approx(0.5)
        assert fair["under"] == pytest.approx(0.5)
        assert fair["vig"] == pytest.approx(0.0476, abs=1e-4)

    def test_one_side_missing(self):
        assert remove_vig(-110, None) is None


class TestPricing:

    def test_best_price_per_side(self):
        quotes = _quotes("draftkings", -115, -105) + _quotes("fanduel", -105, -120)
        best = best_price(quotes)
        assert best["over"]["bookmaker"] == "fanduel"
        assert best["under"]["bookmaker"] == "draftkings"

    def test_group_quotes(self):
        quotes = _quotes("draftkings", -110, -110) + _quotes("draftkings", -110, -110, player="Juan Soto")
        grouped = group_quotes(quotes)
        assert set(grouped) == {
            ("Aaron Judge", "batter_hits", 0.5),
            ("Juan Soto", "batter_hits", 0.5),
        }

    def test_single_book_has_no_edge(self):
        priced = price_prop_market(_quotes("draftkings", +120, -150))
        assert priced["over"]["edge"] == 0.0
        assert priced["over"]["edgeSource"] is None
        assert priced["under"]["edge"] == 0.0

    def test_outlier_book_gives_verified_edge(self):
        quotes = (
            _quotes("draftkings", -110, -110)
            + _quotes("fanduel", -110, -110)
            + _quotes("betmgm", +120, -150)
        )
        priced = price_prop_market(quotes)

        assert priced["threshold"] == 0.5
        over = priced["over"]
        assert over["bookmaker"] == "betmgm"
        assert over["odds"] == 120
        assert over["probability"] == pytest.approx(0.4770, abs=1e-3)
        assert over["edge"] == pytest.approx(0.0225, abs=1e-3)
        assert over["edgeSource"] == VERIFIED_EDGE_SOURCE

        # Best under price is worse than the consensus, so no edge there
        assert priced["under"]["edge"] == 0.0

    def test_edge_never_negative(self):
        quotes = _quotes("draftkings", -200, +160) + _quotes("fanduel", -210, +170)
        priced = price_prop_market(quotes)
        for side in ("over", "under"):
            assert priced[side]["edge"] >= 0.0

    def test_empty(self):
        assert price_prop_market([]) is None
