"""
Prediction Recorder

Commits prop candidates to the PropValidation table as pending records.
Every write recomputes qualityScore, and re-recording an existing propId
only touches prediction fields, so an in-flight or completed lifecycle is
never reset.
"""
from typing import Callable, Optional, Union
import logging
import re
import uuid

from config import VERIFIED_EDGE_SOURCE
from database import PropRecordStore
from errors import CollaboratorError, ErrorKind, PropLifecycleError, Result
from models import (
    PropCandidate, PropPrediction, SOURCES, SOURCE_PARLAY_LEG, SOURCE_USER_SAVED,
    STATUS_PENDING, to_iso, utc_now,
)
from quality_score import calculate_quality_score

logger = logging.getLogger(__name__)

# Prediction fields that are left alone on re-record when the new value is missing
_KEEP_IF_MISSING = ("parlayId", "odds", "projectedValue")


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(value).strip().lower()).strip("-")


def make_prop_id(player_name: str, prop_type: str, game_id: str, prediction: str) -> str:
    """Deterministic natural key: same player/stat/game/pick always maps to the same id."""
    return f"prop-{_slug(player_name)}-{_slug(prop_type)}-{game_id}-{prediction.lower()}"


def gate_edge(edge, edge_source: Optional[str], label: str = "") -> float:
    """
    Edge that may be stored.

    Only a best-price comparison across books counts as a real edge. Anything
    else is stored as 0, and negative edges clamp to 0.
    """
    edge = float(edge or 0.0)
    if edge_source != VERIFIED_EDGE_SOURCE:
        if edge:
            logger.warning(f"[Edge] Dropping unverified edge {edge} for {label} (source={edge_source!r})")
        return 0.0
    return max(0.0, min(1.0, edge))


def verified_edge(candidate: PropCandidate) -> float:
    return gate_edge(candidate.edge, candidate.edge_source, f"{candidate.player_name} {candidate.prop_type}")


class PredictionRecorder:
    def __init__(
        self,
        store: PropRecordStore,
        game_lookup: Optional[Callable[[str], Optional[dict]]] = None,
        clock: Callable = utc_now,
    ):
        self.store = store
        self.game_lookup = game_lookup
        self.clock = clock

    def record(
        self,
        candidate: Union[PropCandidate, dict],
        source: str,
        parlay_id: Optional[str] = None,
    ) -> Result:
        """Record one candidate as a pending prediction (or refresh its prediction fields)."""
        if isinstance(candidate, dict):
            candidate = PropCandidate.from_dict(candidate)

        problem = candidate.validation_error()
        if problem is None and source not in SOURCES:
            problem = f"Unknown source {source!r}"
        if problem:
            logger.warning(f"[Recorder] Skipping candidate {candidate.player_name!r}: {problem}")
            return Result.failure(ErrorKind.VALIDATION, problem)

        if self.game_lookup is not None:
            check = self._check_game(candidate)
            if not check.ok:
                return check

        row = self._build_row(candidate, source, parlay_id)
        prop_id = row["propId"]

        try:
            inserted = self.store.insert_if_absent(row)
            if inserted:
                logger.info(f"[Recorder] Recorded {prop_id} ({source}) quality={row['qualityScore']}")
                return Result.success(PropPrediction.from_row(inserted), message="recorded")

            updates = {
                k: v for k, v in row.items()
                if not (k in _KEEP_IF_MISSING and v is None)
            }
            updated = self.store.update_prediction_fields(prop_id, updates)
        except PropLifecycleError as e:
            logger.error(f"[Recorder] Failed to record {prop_id}: {e}")
            return Result.from_exception(e)

        if not updated:
            return Result.failure(ErrorKind.NOT_FOUND, f"Record {prop_id} vanished during update")

        logger.info(f"[Recorder] Updated existing {prop_id} (status={updated.get('status')})")
        return Result.success(PropPrediction.from_row(updated), message="updated")

    def _check_game(self, candidate: PropCandidate) -> Result:
        try:
            game = self.game_lookup(candidate.game_id)
        except CollaboratorError as e:
            return Result.from_exception(e)

        if not game:
            logger.warning(f"[Recorder] Game {candidate.game_id} not found for {candidate.player_name}")
            return Result.failure(ErrorKind.NOT_FOUND, f"Game {candidate.game_id} not found")

        game_sport = str(game.get("sport") or "").lower()
        if game_sport and game_sport != candidate.sport:
            logger.warning(
                f"[Recorder] Sport mismatch for {candidate.player_name}: "
                f"prop={candidate.sport} game={game_sport}"
            )
            return Result.failure(
                ErrorKind.VALIDATION,
                f"Sport mismatch: prop is {candidate.sport}, game {candidate.game_id} is {game_sport}",
            )
        return Result.success(game)

    def _build_row(self, candidate: PropCandidate, source: str, parlay_id: Optional[str]) -> dict:
        edge = verified_edge(candidate)
        prop_id = candidate.prop_id or make_prop_id(
            candidate.player_name, candidate.prop_type, candidate.game_id, candidate.prediction
        )
        return {
            "propId": prop_id,
            "gameId": candidate.game_id,
            "parlayId": parlay_id,
            "playerId": candidate.player_id,
            "playerName": candidate.player_name,
            "propType": candidate.prop_type,
            "sport": candidate.sport,
            "source": source,
            "prediction": candidate.prediction,
            "threshold": candidate.threshold,
            "projectedValue": candidate.projected_value,
            "odds": candidate.odds,
            "probability": candidate.probability,
            "edge": edge,
            "edgeSource": VERIFIED_EDGE_SOURCE if edge > 0 else None,
            "confidence": candidate.confidence,
            "qualityScore": calculate_quality_score(candidate.probability, edge, candidate.confidence),
            "status": STATUS_PENDING,
            "result": None,
            "actualValue": None,
            "timestamp": to_iso(self.clock()),
            "completedAt": None,
        }

    # =========================================================================
    # BATCH ENTRY POINTS
    # =========================================================================

    def record_batch(self, candidates: list, source: str, parlay_id: Optional[str] = None) -> dict:
        """Record many candidates. One bad candidate never stops the rest."""
        recorded = []
        skipped = 0
        errors = []

        for candidate in candidates:
            outcome = self.record(candidate, source, parlay_id)
            if outcome.ok:
                recorded.append(outcome.value.propId)
            elif outcome.error == ErrorKind.VALIDATION:
                skipped += 1
            else:
                errors.append({"error": outcome.message, "kind": outcome.error.value})

        logger.info(
            f"[Recorder] Batch ({source}): {len(recorded)} recorded, {skipped} skipped, {len(errors)} errors"
        )
        return {
            "recorded": len(recorded),
            "skipped": skipped,
            "errors": len(errors),
            "propIds": recorded,
            "errorDetails": errors,
        }

    def record_parlay(self, legs: list, parlay_id: Optional[str] = None) -> dict:
        """Record every leg of a saved parlay under one parlayId."""
        parlay_id = parlay_id or f"parlay-{uuid.uuid4().hex[:12]}"
        summary = self.record_batch(legs, SOURCE_PARLAY_LEG, parlay_id=parlay_id)
        summary["parlayId"] = parlay_id
        return summary

    def save_prop(self, candidate: Union[PropCandidate, dict]) -> Result:
        return self.record(candidate, SOURCE_USER_SAVED)
