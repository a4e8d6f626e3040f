"""
Match Registry - owned, indexed collection of tracked matches.

The registry is the single owner of match state. Callers receive copies,
never the stored objects, so nothing outside can mutate a match behind the
registry's back. Every mutation bumps `version`, which the persistence layer
watches to decide when a flush is due.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from goal_trader.models import Match, MatchStatus, Score, status_from_tag

from .phase import PhaseConfig, effective_elapsed, minutes_since_kickoff, wall_clock_expired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    """A status change applied by the registry."""

    match_id: str
    old_status: MatchStatus
    new_status: MatchStatus
    at: datetime


class MatchRegistry:
    """
    Holds every tracked match, keyed by match id.

    Usage:
        registry = MatchRegistry()
        registry.register(metadata.to_match())

        # Poll results
        registry.apply_score_update(match_id, Score(1, 0), minute=23,
                                    status_tag="1H", now=now)

        # Time-based lifecycle
        transitions = registry.recompute_statuses(now)

        live = registry.list_by_status(MatchStatus.LIVE)
    """

    def __init__(self, phase_config: Optional[PhaseConfig] = None) -> None:
        self._config = phase_config or PhaseConfig()
        self._matches: Dict[str, Match] = {}
        self._external_index: Dict[str, str] = {}  # external_id -> match_id
        self._version = 0

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    def __len__(self) -> int:
        return len(self._matches)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._matches

    def get(self, match_id: str) -> Optional[Match]:
        match = self._matches.get(match_id)
        return match.copy() if match else None

    def get_by_external_id(self, external_id: str) -> Optional[Match]:
        match_id = self._external_index.get(external_id)
        return self.get(match_id) if match_id else None

    def all(self) -> List[Match]:
        return [m.copy() for m in self._matches.values()]

    def list_by_status(self, status: MatchStatus) -> List[Match]:
        return [m.copy() for m in self._matches.values() if m.status == status]

    def finished_before(self, cutoff: datetime) -> List[Match]:
        """Finished matches whose finish time is at or before cutoff."""
        return [
            m.copy()
            for m in self._matches.values()
            if m.status == MatchStatus.FINISHED
            and m.finished_at is not None
            and m.finished_at <= cutoff
        ]

    # =========================================================================
    # Mutation
    # =========================================================================

    def register(self, match: Match) -> Match:
        """
        Add a match, or refresh metadata of a known one.

        Refreshing never regresses status, score or elapsed minute.

        Returns:
            Copy of the stored match
        """
        existing = self._matches.get(match.match_id)
        if existing is None:
            stored = match.copy()
            self._matches[stored.match_id] = stored
            if stored.external_id:
                self._external_index[stored.external_id] = stored.match_id
            self._touch()
            logger.info(f"Tracking {stored.label} ({stored.match_id}), kickoff {stored.kickoff.isoformat()}")
            return stored.copy()

        changed = False
        for attr in ("home_team", "away_team", "kickoff", "slug", "league"):
            value = getattr(match, attr)
            if value is not None and value != getattr(existing, attr):
                setattr(existing, attr, value)
                changed = True

        if match.external_id and match.external_id != existing.external_id:
            if existing.external_id:
                self._external_index.pop(existing.external_id, None)
            existing.external_id = match.external_id
            self._external_index[match.external_id] = existing.match_id
            changed = True

        if match.instruments and match.instruments != existing.instruments:
            existing.instruments.update(match.instruments)
            changed = True

        if changed:
            self._touch()
        return existing.copy()

    def apply_score_update(
        self,
        match_id: str,
        score: Score,
        minute: Optional[int],
        status_tag: Optional[str],
        now: datetime,
    ) -> Optional[Match]:
        """
        Apply a live observation.

        The score is stored as given (decreases included). The elapsed minute
        never goes backwards. Status advances from the tag but never regresses.
        Once the match is live, the first observation is recorded as the
        baseline.

        Returns:
            Copy of the updated match, or None if not tracked
        """
        match = self._matches.get(match_id)
        if match is None:
            return None

        before = (match.score, match.elapsed_minute, match.status_tag, match.live_baseline_taken)

        match.score = score
        if minute is not None and (match.elapsed_minute is None or minute > match.elapsed_minute):
            match.elapsed_minute = minute
            match.minute_updated_at = now
        if status_tag:
            match.status_tag = status_tag

        target = status_from_tag(status_tag)
        if target is not None:
            self._advance(match, target, now)

        if match.status == MatchStatus.LIVE:
            match.live_baseline_taken = True

        after = (match.score, match.elapsed_minute, match.status_tag, match.live_baseline_taken)
        if after != before:
            self._touch()
        return match.copy()

    def recompute_statuses(self, now: datetime) -> List[StatusTransition]:
        """
        Advance statuses based on time. Idempotent and forward-only.

        - UPCOMING -> SOON inside the pre-match window
        - UPCOMING/SOON -> LIVE once kickoff has passed
        - anything unfinished -> FINISHED once elapsed exceeds the done ceiling,
          or the wall clock passes max_wall_clock_minutes (feed went quiet)

        Returns:
            Transitions applied by this call
        """
        transitions: List[StatusTransition] = []
        for match in self._matches.values():
            if match.status == MatchStatus.FINISHED:
                continue

            since_kickoff = minutes_since_kickoff(match, now)
            target = match.status
            if (
                effective_elapsed(match, now) > self._config.done_after_minute
                or wall_clock_expired(match, now, self._config)
            ):
                target = MatchStatus.FINISHED
            elif since_kickoff >= 0:
                target = MatchStatus.LIVE
            elif since_kickoff >= -self._config.pre_match_window_minutes:
                target = MatchStatus.SOON

            transition = self._advance(match, target, now)
            if transition:
                transitions.append(transition)

        if transitions:
            self._touch()
        return transitions

    def remove(self, match_id: str) -> Optional[Match]:
        match = self._matches.pop(match_id, None)
        if match is None:
            return None
        if match.external_id:
            self._external_index.pop(match.external_id, None)
        self._touch()
        logger.info(f"Stopped tracking {match.label} ({match_id})")
        return match

    def restore(self, matches: Iterable[Match]) -> int:
        """Replace contents with matches loaded from a snapshot."""
        self._matches.clear()
        self._external_index.clear()
        for match in matches:
            stored = match.copy()
            self._matches[stored.match_id] = stored
            if stored.external_id:
                self._external_index[stored.external_id] = stored.match_id
        self._touch()
        return len(self._matches)

    # =========================================================================
    # Internal
    # =========================================================================

    def _advance(
        self,
        match: Match,
        target: MatchStatus,
        now: datetime,
    ) -> Optional[StatusTransition]:
        if not match.status.can_advance_to(target):
            return None

        old = match.status
        match.status = target
        if target == MatchStatus.FINISHED:
            match.finished_at = now
        logger.info(f"{match.label}: {old.value} -> {target.value}")
        self._touch()
        return StatusTransition(match.match_id, old, target, now)

    def _touch(self) -> None:
        self._version += 1
