"""
Resolving live feed records to tracked matches.

The primary key is the feed's external id. When a tracked match has no
external id yet (discovery did not know it), a resolver can fall back to
team-name similarity. Resolvers are pluggable so a smarter matcher can be
dropped in without touching the poller.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Optional, Protocol, Sequence

from goal_trader.models import Match

from .models import LiveSnapshot

logger = logging.getLogger(__name__)


class MatchResolver(Protocol):
    """Maps a live record to one of the candidate matches."""

    def resolve(
        self,
        snapshot: LiveSnapshot,
        candidates: Sequence[Match],
    ) -> Optional[str]:
        """Return the match_id the snapshot belongs to, or None."""
        ...


class NullResolver:
    """Never resolves anything. Use when only external ids are trusted."""

    def resolve(self, snapshot: LiveSnapshot, candidates: Sequence[Match]) -> Optional[str]:
        return None


# Tokens that carry no identity ("FC Barcelona" == "Barcelona")
_NOISE_TOKENS = frozenset({
    "fc", "cf", "afc", "sc", "ac", "as", "cd", "sd", "ud", "fk", "sk",
    "club", "de", "the", "calcio", "football",
})


def normalize_team_name(name: str) -> str:
    """
    Lowercase, strip accents and punctuation, drop club-form tokens.

    >>> normalize_team_name("Atlético de Madrid FC")
    'atletico madrid'
    """
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_only = decomposed.encode("ascii", "ignore").decode("ascii").lower()
    cleaned = re.sub(r"[^a-z0-9 ]+", " ", ascii_only)
    tokens = [t for t in cleaned.split() if t not in _NOISE_TOKENS]
    return " ".join(tokens)


def team_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1] between two team names after normalization."""
    left = normalize_team_name(a)
    right = normalize_team_name(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.9
    return SequenceMatcher(None, left, right).ratio()


class TeamNameResolver:
    """
    Resolves by home and away team similarity.

    Both sides must clear the threshold and the best candidate must be
    unambiguous (no second candidate with the same combined score).

    Usage:
        resolver = TeamNameResolver(threshold=0.8)
        match_id = resolver.resolve(snapshot, registry.list_by_status(MatchStatus.LIVE))
    """

    def __init__(self, threshold: float = 0.8) -> None:
        self._threshold = threshold

    def resolve(self, snapshot: LiveSnapshot, candidates: Sequence[Match]) -> Optional[str]:
        if not snapshot.home_team or not snapshot.away_team:
            return None

        best_id: Optional[str] = None
        best_score = 0.0
        ambiguous = False

        for match in candidates:
            home = team_similarity(snapshot.home_team, match.home_team)
            away = team_similarity(snapshot.away_team, match.away_team)
            if home < self._threshold or away < self._threshold:
                continue
            combined = home + away
            if combined > best_score:
                best_id, best_score, ambiguous = match.match_id, combined, False
            elif combined == best_score:
                ambiguous = True

        if ambiguous:
            logger.debug(
                f"Ambiguous team match for {snapshot.home_team} vs {snapshot.away_team}"
            )
            return None
        return best_id
