"""
Tests for validation stats, edge buckets, insights and the end-to-end lifecycle.
"""
import pytest

from conftest import prop_row
from prediction_recorder import PredictionRecorder
from result_resolver import ResultResolver
from validation_analytics import (
    ValidationAnalytics, accuracy, accuracy_by_edge, analyze_performance, compute_validation_stats,
    filter_props_by_performance, performance_adjustment, rank_prop_types, roi,
)

TABLE = "PropValidation"


def _done(prop_id, result, **overrides):
    actual = {"correct": 2.0, "incorrect": 0.0, "push": 0.5}[result]
    return prop_row(
        propId=prop_id, status="completed", result=result, actualValue=actual,
        completedAt="2024-06-15T04:00:00+00:00", **overrides
    )


@pytest.fixture
def mixed_records():
    return [
        _done("a", "correct", edge=0.005),
        _done("b", "correct", edge=0.015),
        _done("c", "incorrect", edge=0.025),
        _done("d", "push", edge=0.0),
        _done("e", "incorrect", edge=0.06, sport="nfl", propType="passing_yards",
              playerName="Patrick Mahomes", source="user_saved"),
    ]


class TestRatios:

    def test_accuracy_ignores_pushes(self):
        assert accuracy(1, 0) == 1.0
        assert accuracy(0, 0) == 0.0
        stats = compute_validation_stats([_done("a", "correct")] + [_done(f"p{i}", "push") for i in range(3)])
        assert stats["accuracy"] == 1.0
        assert stats["pushes"] == 3

    def test_roi_flat_minus_110(self):
        assert roi(10, 0) == pytest.approx(0.91)
        assert roi(0, 1) == -1.0
        assert roi(0, 0) == 0.0


class TestValidationStats:

    def test_overall(self, mixed_records):
        stats = compute_validation_stats(mixed_records)
        assert stats["total"] == 5
        assert stats["correct"] == 2
        assert stats["incorrect"] == 2
        assert stats["pushes"] == 1
        assert stats["accuracy"] == 0.5
        assert stats["roi"] == pytest.approx((2 * 0.91 - 2) / 4)
        assert stats["avgEdge"] == pytest.approx(0.021)

    def test_prop_types_prefixed_across_sports(self, mixed_records):
        by_type = compute_validation_stats(mixed_records)["byPropType"]
        assert set(by_type) == {"MLB - hits", "NFL - passing_yards"}
        hits = by_type["MLB - hits"]
        assert (hits["total"], hits["correct"], hits["incorrect"], hits["pushes"]) == (4, 2, 1, 1)
        assert hits["accuracy"] == pytest.approx(2 / 3)

    def test_single_sport_unprefixed(self, mixed_records):
        by_type = compute_validation_stats(mixed_records[:4])["byPropType"]
        assert list(by_type) == ["hits"]

    def test_player_and_source(self, mixed_records):
        stats = compute_validation_stats(mixed_records)
        assert list(stats["byPlayer"]) == ["Aaron Judge"]
        assert stats["bySource"]["system_generated"]["total"] == 4
        assert stats["bySource"]["user_saved"]["incorrect"] == 1

    def test_open_records_excluded(self, mixed_records):
        stats = compute_validation_stats(mixed_records + [prop_row(propId="open")])
        assert stats["total"] == 5

    def test_accuracy_by_edge(self, mixed_records):
        buckets = accuracy_by_edge(mixed_records)
        assert list(buckets) == ["0-1%", "1-2%", "2-3%", "3-4%", "4-5%", "5%+"]
        assert buckets["0-1%"]["total"] == 2
        assert buckets["0-1%"]["pushes"] == 1
        assert buckets["0-1%"]["accuracy"] == 1.0
        assert buckets["2-3%"]["accuracy"] == 0.0
        assert buckets["3-4%"]["total"] == 0
        assert buckets["5%+"]["incorrect"] == 1

    def test_rank_prop_types(self, mixed_records):
        stats = compute_validation_stats(mixed_records)
        ranked = rank_prop_types(stats, "accuracy", limit=5, min_samples=1)
        assert [row["type"] for row in ranked] == ["MLB - hits", "NFL - passing_yards"]
        assert rank_prop_types(stats, "roi") == []


class TestInsights:

    @pytest.fixture
    def history(self):
        records = []
        for i, player in enumerate(["Aaron Judge"] * 3 + ["Juan Soto"] * 3):
            records.append(_done(f"h{i}", "correct", playerName=player))
        for i in range(5):
            records.append(_done(f"r{i}", "incorrect", playerName="Shohei Ohtani", propType="rbis"))
        return records

    def test_prop_type_and_player_adjustments(self, history):
        analysis = analyze_performance(history)
        assert analysis["adjustments"]["hits"]["confidenceMultiplier"] == 1.2
        assert analysis["adjustments"]["rbis"]["confidenceMultiplier"] == 0.8
        assert analysis["playerAdjustments"]["Aaron Judge"]["confidenceMultiplier"] == 1.15
        assert analysis["playerAdjustments"]["Shohei Ohtani"]["confidenceMultiplier"] == 0.85

    def test_insight_categories(self, history):
        insights = analyze_performance(history)["insights"]
        categories = {(i["category"], i["type"]) for i in insights}
        assert ("prop_type", "success") in categories
        assert ("prop_type", "warning") in categories
        assert ("player", "warning") in categories
        assert ("source", "info") in categories
        assert ("strategy", "info") in categories
        overall = [i for i in insights if i["category"] == "overall"][0]
        # 6 of 11 beats the -110 break-even
        assert overall["type"] == "success"

    def test_small_samples_ignored(self):
        analysis = analyze_performance([_done(f"x{i}", "correct", playerName=f"P{i}") for i in range(4)])
        assert analysis["adjustments"] == {}
        assert analysis["playerAdjustments"] == {}

    def test_empty(self):
        assert analyze_performance([]) == {"insights": [], "adjustments": {}, "playerAdjustments": {}}

    def test_performance_adjustment(self, history):
        analysis = analyze_performance(history)
        multiplier = performance_adjustment(
            {"propType": "rbis", "playerName": "Shohei Ohtani"},
            analysis["adjustments"], analysis["playerAdjustments"],
        )
        assert multiplier == pytest.approx(0.68)

    def test_filter_modes(self, history):
        insights = analyze_performance(history)["insights"]
        props = [
            {"propType": "rbis", "playerName": "Pete Alonso", "confidence": "high"},
            {"propType": "hits", "playerName": "Aaron Judge", "confidence": "high"},
            {"propType": "hits", "playerName": "Shohei Ohtani", "confidence": "low"},
        ]

        assert filter_props_by_performance(props, insights, "strict") == [props[1]]

        balanced = filter_props_by_performance(props, insights, "balanced")
        assert [p["confidence"] for p in balanced] == ["medium", "high", "very_low"]

        permissive = filter_props_by_performance(props, insights, "permissive")
        assert [p.get("note") is not None for p in permissive] == [True, False, True]
        assert permissive[0]["confidence"] == "high"


class TestStoreBacked:

    def test_filters_and_counts(self, store, fake_db, mixed_records):
        fake_db.tables[TABLE] = mixed_records + [prop_row(propId="open"), prop_row(propId="review", status="needs_review")]
        analytics = ValidationAnalytics(store)

        assert analytics.get_validation_stats({"sport": "nfl"})["total"] == 1
        assert analytics.get_validation_stats()["total"] == 5
        assert len(analytics.get_validation_records(limit=3)) == 3

        counts = analytics.get_status_counts()
        assert counts["pending"] == 1
        assert counts["needs_review"] == 1
        assert counts["completed"] == 5
        assert counts["correct"] == 2
        assert counts["accuracy"] == 0.5

    def test_date_range(self, store, fake_db):
        fake_db.tables[TABLE] = [
            _done("old", "correct", timestamp="2024-05-01T12:00:00+00:00"),
            _done("new", "incorrect", timestamp="2024-06-14T12:00:00+00:00"),
        ]
        stats = ValidationAnalytics(store).get_validation_stats({"startDate": "2024-06-01T00:00:00+00:00"})
        assert stats["total"] == 1
        assert stats["incorrect"] == 1

    def test_storage_down_returns_empty(self, store, fake_db):
        fake_db.fail_tables[TABLE] = "down"
        analytics = ValidationAnalytics(store)
        assert analytics.get_validation_stats()["total"] == 0
        assert analytics.get_validation_records() == []
        assert analytics.get_insights()["insights"] == []


class TestLifecycle:

    def test_record_resolve_and_score(self, store, clock, fake_db):
        recorder = PredictionRecorder(store, clock=clock)
        recorded = recorder.record(
            {"playerName": "X", "gameId": "g1", "propType": "hits", "threshold": 1.5, "prediction": "over"},
            "system_generated",
        )
        assert recorded.ok
        assert recorded.value.status == "pending"

        resolved = ResultResolver(store, clock).resolve(recorded.value.propId, 2)
        assert resolved.value.status == "completed"
        assert resolved.value.result == "correct"

        stats = ValidationAnalytics(store).get_validation_stats()
        assert stats["accuracy"] == 1.0
        assert stats["correct"] == 1
        assert stats["incorrect"] == 0
