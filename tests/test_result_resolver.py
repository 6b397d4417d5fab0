"""
Tests for result grading, game finality, the reconciliation sweep and requeue.
"""
import threading

import pytest

from conftest import NOW, game_row, prop_row
from data_sources import StatFetcherRegistry
from errors import CollaboratorError, ErrorKind
from models import to_iso
from result_resolver import (
    ResultResolver, SweepContext, determine_result, final_by_date_cutoff, is_game_final,
    requeue_needs_review, run_sweep, run_until_done,
)

TABLE = "PropValidation"


# =============================================================================
# GRADING
# =============================================================================

class TestDetermineResult:

    @pytest.mark.parametrize("prediction,threshold,actual,expected", [
        ("over", 5.5, 7, "correct"),
        ("over", 5.5, 3, "incorrect"),
        ("under", 2.5, 2.5, "push"),
        ("under", 2.5, 2, "correct"),
        ("over", 0.5, 1, "correct"),
        ("over", 0.5, 0, "incorrect"),
        ("under", 0.5, 0, "correct"),
        ("under", 0.5, 1, "incorrect"),
        ("over", 2.0, 2, "push"),
        ("under", 2.0, 2, "push"),
        ("over", 24.5, 24.5, "push"),
        ("under", 249.5, 312, "incorrect"),
    ])
    def test_table(self, prediction, threshold, actual, expected):
        assert determine_result(prediction, threshold, actual) == expected


class TestGameFinality:
    """Status first, then the by-date fallback (before end of yesterday, local time)"""

    def test_cutoff_is_end_of_yesterday_local(self):
        cutoff = final_by_date_cutoff(NOW)
        # 2pm New York on the 15th -> 23:59:59.999 on the 14th, New York
        assert (cutoff.year, cutoff.month, cutoff.day) == (2024, 6, 14)
        assert (cutoff.hour, cutoff.minute) == (23, 59)

    @pytest.mark.parametrize("game,expected", [
        (None, False),
        ({"status": "Final", "date": "2024-06-16T00:00:00+00:00"}, True),
        ({"status": "completed"}, True),
        ({"status": "F"}, True),
        ({"status": "in_progress", "date": "2024-06-14T20:00:00+00:00"}, True),
        # 10pm New York on the 14th
        ({"status": "scheduled", "date": "2024-06-15T02:00:00+00:00"}, True),
        # 1am New York on the 15th
        ({"status": "scheduled", "date": "2024-06-15T05:00:00+00:00"}, False),
        ({"status": "scheduled"}, False),
        ({"status": "scheduled", "date": "not a date"}, False),
        ({"gameTime": "2024-06-13T17:00:00Z"}, True),
    ])
    def test_truth_table(self, game, expected):
        assert is_game_final(game, NOW) is expected


class TestResolve:

    @pytest.fixture
    def resolver(self, store, clock):
        return ResultResolver(store, clock)

    def test_pending_to_completed(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row()]
        result = resolver.resolve("prop-aaron-judge-hits-g1-over", 2)

        assert result.ok
        assert result.message == "resolved"
        row = fake_db.rows(TABLE)[0]
        assert row["status"] == "completed"
        assert row["result"] == "correct"
        assert row["actualValue"] == 2.0
        assert row["completedAt"] == to_iso(NOW)
        assert row["notes"] == "Auto-validated: OVER 0.5 → Actual: 2"

    def test_needs_review_to_completed(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row(status="needs_review", prediction="under")]
        assert resolver.resolve("prop-aaron-judge-hits-g1-over", "0").ok
        row = fake_db.rows(TABLE)[0]
        assert row["status"] == "completed"
        assert row["result"] == "correct"

    def test_unknown_prop(self, resolver):
        result = resolver.resolve("prop-nobody", 1)
        assert result.error == ErrorKind.NOT_FOUND

    def test_invalid_actual(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row()]
        assert resolver.resolve("prop-aaron-judge-hits-g1-over", "lots").error == ErrorKind.VALIDATION
        assert fake_db.rows(TABLE)[0]["status"] == "pending"

    def test_second_resolve_is_a_no_op(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row()]
        resolver.resolve("prop-aaron-judge-hits-g1-over", 2)
        result = resolver.resolve("prop-aaron-judge-hits-g1-over", 0)

        assert result.ok
        assert result.message == "already resolved"
        row = fake_db.rows(TABLE)[0]
        assert row["result"] == "correct"
        assert row["actualValue"] == 2.0

    def test_force_overrides_completed(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row(status="completed", result="correct", actualValue=2.0)]
        result = resolver.resolve("prop-aaron-judge-hits-g1-over", 0, force=True)
        assert result.ok
        assert fake_db.rows(TABLE)[0]["result"] == "incorrect"

    def test_mark_needs_review(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row()]
        result = resolver.mark_needs_review("prop-aaron-judge-hits-g1-over", "stat missing")
        assert result.ok
        row = fake_db.rows(TABLE)[0]
        assert row["status"] == "needs_review"
        assert row["result"] is None
        assert row["actualValue"] is None
        assert row["notes"] == "stat missing"

    def test_mark_needs_review_leaves_completed_alone(self, resolver, fake_db):
        fake_db.tables[TABLE] = [prop_row(status="completed", result="push", actualValue=0.5)]
        result = resolver.mark_needs_review("prop-aaron-judge-hits-g1-over", "stat missing")
        assert result.error == ErrorKind.NOT_FOUND
        assert fake_db.rows(TABLE)[0]["status"] == "completed"

    def test_storage_failure(self, resolver, fake_db):
        fake_db.fail_tables[TABLE] = "timeout"
        assert resolver.resolve("prop-aaron-judge-hits-g1-over", 1).error == ErrorKind.STORAGE


# =============================================================================
# RECONCILIATION SWEEP
# =============================================================================

GAMES = {
    "g1": game_row(),
    "g2": game_row(id="g2", status="Scheduled", date="2024-06-16T23:00:00+00:00"),
    "g3": game_row(id="g3", mlbGameId=None),
    "g5": game_row(id="g5", sport="nhl", mlbGameId=None, espnGameId="401559"),
}

BOX_SCORE = {"Aaron Judge": 2.0}


def _mlb_fetcher(game_id, player_name, prop_type):
    if player_name == "Boom":
        raise CollaboratorError("MLB box score fetch failed: timeout")
    return BOX_SCORE.get(player_name)


def _records():
    return [
        prop_row(propId="p1", gameId="g1", timestamp="2024-06-14T10:00:00+00:00"),
        prop_row(propId="p2", gameId="g2", timestamp="2024-06-14T10:01:00+00:00"),
        prop_row(propId="p3", gameId="g3", timestamp="2024-06-14T10:02:00+00:00"),
        prop_row(propId="p4", gameId="g1", playerName="Ghost Player", timestamp="2024-06-14T10:03:00+00:00"),
        prop_row(propId="p5", gameId="g1", playerName="Boom", timestamp="2024-06-14T10:04:00+00:00"),
        prop_row(propId="p6", gameId="g9", timestamp="2024-06-14T10:05:00+00:00"),
    ]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def context(store, clock, fake_db, sleeps):
    fake_db.tables[TABLE] = _records()
    return SweepContext(
        store=store,
        game_lookup=GAMES.get,
        stats=StatFetcherRegistry({"mlb": _mlb_fetcher}),
        batch_size=10,
        clock=clock,
        sleep=sleeps.append,
    )


def _status(fake_db, prop_id):
    return fake_db.find(TABLE, "propId", prop_id)["status"]


class TestSweep:

    def test_single_batch(self, context, fake_db):
        summary = run_sweep(context)

        assert summary["checked"] == 6
        assert summary["completed"] == 1
        assert summary["needs_review"] == 2
        assert summary["skipped"] == 2
        assert summary["errors"] == 1
        assert summary["updated"] == 3
        assert summary["remaining"] == 3
        assert summary["next_cursor"] == 3
        assert summary["has_more_batches"] is False
        assert summary["error_details"][0]["propId"] == "p5"

        assert _status(fake_db, "p1") == "completed"
        assert fake_db.find(TABLE, "propId", "p1")["result"] == "correct"
        assert _status(fake_db, "p2") == "pending"
        assert _status(fake_db, "p3") == "needs_review"
        assert _status(fake_db, "p4") == "needs_review"
        assert _status(fake_db, "p5") == "pending"
        assert _status(fake_db, "p6") == "pending"

    def test_needs_review_notes(self, context, fake_db):
        run_sweep(context)
        assert "no mlbGameId available" in fake_db.find(TABLE, "propId", "p3")["notes"]
        assert "stat not available" in fake_db.find(TABLE, "propId", "p4")["notes"]

    def test_status_invariants_hold(self, context, fake_db):
        run_sweep(context)
        for row in fake_db.rows(TABLE):
            if row["status"] == "completed":
                assert row["result"] in ("correct", "incorrect", "push")
                assert row["actualValue"] is not None
                assert row["completedAt"]
            else:
                assert row["result"] is None
                assert row["actualValue"] is None

    def test_unsupported_sport_needs_review(self, context, fake_db):
        fake_db.tables[TABLE] = [prop_row(propId="h1", gameId="g5", sport="nhl", propType="goals")]
        summary = run_sweep(context)
        assert summary["needs_review"] == 1
        assert "no stat source for nhl" in fake_db.find(TABLE, "propId", "h1")["notes"]

    def test_cursor_pages_every_pending_record_once(self, context, fake_db):
        context.batch_size = 2

        first = run_sweep(context, 0)
        assert [first["completed"], first["skipped"]] == [1, 1]
        assert first["next_cursor"] == 1
        assert first["has_more_batches"] is True

        second = run_sweep(context, first["next_cursor"])
        assert second["needs_review"] == 2
        assert second["next_cursor"] == 1
        assert second["has_more_batches"] is True

        third = run_sweep(context, second["next_cursor"])
        assert third["errors"] == 1
        assert third["skipped"] == 1
        assert third["has_more_batches"] is False

    def test_run_until_done(self, context, sleeps):
        context.batch_size = 2
        totals = run_until_done(context, max_batches=50, delay_seconds=0.5)

        assert totals["batches"] == 3
        assert totals["checked"] == 6
        assert totals["completed"] == 1
        assert totals["needs_review"] == 2
        assert totals["errors"] == 1
        assert totals["remaining"] == 3
        assert sleeps == [0.5, 0.5]

    def test_run_until_done_respects_max_batches(self, context):
        context.batch_size = 1
        totals = run_until_done(context, max_batches=2, delay_seconds=0)
        assert totals["batches"] == 2

    def test_empty_queue(self, context, fake_db):
        fake_db.tables[TABLE] = []
        summary = run_sweep(context)
        assert summary["checked"] == 0
        assert summary["has_more_batches"] is False

    def test_storage_down(self, context, fake_db):
        fake_db.fail_tables[TABLE] = "unavailable"
        summary = run_sweep(context)
        assert summary["checked"] == 0
        assert summary["errors"] == 1
        assert context.is_updating is False

    def test_context_records_last_run(self, context):
        summary = run_sweep(context)
        status = context.status()
        assert status["is_updating"] is False
        assert status["last_update"] == to_iso(NOW)
        assert status["last_summary"] is summary


class TestSweepConcurrency:

    def test_busy_when_flag_set(self, context, fake_db):
        assert context.try_begin()
        summary = run_sweep(context)
        assert summary["busy"] is True
        assert summary["checked"] == 0
        assert _status(fake_db, "p1") == "pending"
        context.finish(summary)

    def test_overlapping_sweep_is_rejected(self, store, clock, fake_db):
        fake_db.tables[TABLE] = [prop_row(propId="p1")]
        started = threading.Event()
        release = threading.Event()

        def slow_fetcher(game_id, player_name, prop_type):
            started.set()
            release.wait(timeout=5)
            return 1.0

        context = SweepContext(
            store=store, game_lookup=GAMES.get,
            stats=StatFetcherRegistry({"mlb": slow_fetcher}), clock=clock,
        )
        results = {}
        worker = threading.Thread(target=lambda: results.setdefault("first", run_sweep(context)))
        worker.start()
        assert started.wait(timeout=5)

        # The lock is free while the vendor call is in flight
        assert context.status()["is_updating"] is True
        second = run_sweep(context)
        release.set()
        worker.join(timeout=5)

        assert second["busy"] is True
        assert results["first"]["completed"] == 1
        assert fake_db.find(TABLE, "propId", "p1")["status"] == "completed"

    def test_racing_resolvers_resolve_once(self, store, clock, fake_db):
        fake_db.tables[TABLE] = [prop_row()]
        first = ResultResolver(store, clock).resolve("prop-aaron-judge-hits-g1-over", 3)
        second = ResultResolver(store, clock).resolve("prop-aaron-judge-hits-g1-over", 0)

        assert first.message == "resolved"
        assert second.message == "already resolved"
        assert fake_db.rows(TABLE)[0]["actualValue"] == 3.0


class TestRequeue:

    def test_requeues_when_game_now_usable(self, context, fake_db):
        fake_db.tables[TABLE] = [
            prop_row(propId="r1", gameId="g1", status="needs_review", notes="no mlbGameId"),
            prop_row(propId="r2", gameId="g3", status="needs_review"),
            prop_row(propId="r3", gameId="g2", status="needs_review"),
        ]
        summary = requeue_needs_review(context)

        assert summary == {"checked": 3, "requeued": 1, "skipped": 2, "errors": 0}
        r1 = fake_db.find(TABLE, "propId", "r1")
        assert r1["status"] == "pending"
        assert r1["notes"] == "Requeued for validation"
        assert r1["completedAt"] is None
        assert _status(fake_db, "r2") == "needs_review"
        assert _status(fake_db, "r3") == "needs_review"

    def test_requeued_record_resolves_on_next_sweep(self, context, fake_db):
        fake_db.tables[TABLE] = [prop_row(propId="r1", gameId="g1", status="needs_review")]
        requeue_needs_review(context)
        run_sweep(context)
        assert fake_db.find(TABLE, "propId", "r1")["result"] == "correct"
