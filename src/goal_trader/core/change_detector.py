"""
Change detection between the stored score and a fresh live observation.
"""
from __future__ import annotations

import logging
from datetime import datetime

from goal_trader.ingestion.models import LiveSnapshot
from goal_trader.models import (
    CancellationEvent,
    DetectionResult,
    GoalEvent,
    Match,
    NoChange,
    Score,
    Side,
)

logger = logging.getLogger(__name__)


class ChangeDetector:
    """
    Compares a match's stored score with a new observation.

    Rules:
        - First observation after the match goes live is the baseline:
          no event, whatever the score
        - Any side lower than before -> CancellationEvent (checked first, so a
          re-attributed goal such as 1-0 -> 0-1 is treated as a correction)
        - Any side higher -> GoalEvent for the side with the larger increase;
          equal increases go to the side now leading, else home
        - Same score -> NoChange

    The detector is stateless; the baseline marker lives on the match.
    """

    def detect(self, match: Match, snapshot: LiveSnapshot, now: datetime) -> DetectionResult:
        new = snapshot.score
        if not new.is_valid:
            return NoChange(match.match_id, reason="invalid")

        if not match.live_baseline_taken:
            logger.debug(f"{match.label}: baseline {new}")
            return NoChange(match.match_id, reason="baseline")

        prev = match.score
        if new.home < prev.home or new.away < prev.away:
            logger.warning(f"{match.label}: score corrected {prev} -> {new}")
            return CancellationEvent(
                match_id=match.match_id,
                previous_score=prev,
                new_score=new,
                minute=snapshot.elapsed_minute,
                detected_at=now,
            )

        if new.home > prev.home or new.away > prev.away:
            side = scoring_side(prev, new)
            logger.info(
                f"GOAL {match.label}: {prev} -> {new} "
                f"({side.value}, minute {snapshot.elapsed_minute})"
            )
            return GoalEvent(
                match_id=match.match_id,
                previous_score=prev,
                new_score=new,
                side=side,
                minute=snapshot.elapsed_minute,
                detected_at=now,
            )

        return NoChange(match.match_id)


def scoring_side(prev: Score, new: Score) -> Side:
    """Side credited with a score increase."""
    home_delta = new.home - prev.home
    away_delta = new.away - prev.away
    if home_delta > away_delta:
        return Side.HOME
    if away_delta > home_delta:
        return Side.AWAY
    return new.leader or Side.HOME
