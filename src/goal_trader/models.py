"""
Domain models shared by every layer.

These models represent:
- Matches (tracked entities) and their lifecycle status
- Scores and scoring sides
- Position kinds (outcome + stance) used to address instruments
- Detection results (goal, cancellation, no change)
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union


class MatchStatus(str, Enum):
    """Lifecycle status of a match. Only ever moves forward."""

    UPCOMING = "upcoming"
    SOON = "soon"
    LIVE = "live"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def can_advance_to(self, other: "MatchStatus") -> bool:
        return other.rank > self.rank


_STATUS_RANK = {
    MatchStatus.UPCOMING: 0,
    MatchStatus.SOON: 1,
    MatchStatus.LIVE: 2,
    MatchStatus.FINISHED: 3,
}


# Feed status tags (API-Football vocabulary plus common aliases)
UPCOMING_TAGS = frozenset({"TBD", "NS", "SCHEDULED", "TIMED"})
LIVE_TAGS = frozenset({"1H", "HT", "2H", "ET", "BT", "P", "LIVE", "IN_PLAY", "PAUSED"})
FINISHED_TAGS = frozenset({
    "FT", "AET", "PEN", "FINISHED", "ENDED",
    # Not going to be played out
    "PST", "CANC", "ABD", "AWD", "WO",
})
HALF_TIME_TAGS = frozenset({"HT", "BT"})


def status_from_tag(tag: Optional[str]) -> Optional[MatchStatus]:
    """
    Map a raw feed status tag to a MatchStatus.

    Returns None for unknown tags and for interruptions (SUSP, INT),
    meaning "no status information".
    """
    if not tag:
        return None
    normalized = tag.strip().upper()
    if normalized in FINISHED_TAGS:
        return MatchStatus.FINISHED
    if normalized in LIVE_TAGS:
        return MatchStatus.LIVE
    if normalized in UPCOMING_TAGS:
        return MatchStatus.UPCOMING
    return None


class Side(str, Enum):
    """A team side within a match."""

    HOME = "home"
    AWAY = "away"

    @property
    def other(self) -> "Side":
        return Side.AWAY if self is Side.HOME else Side.HOME


@dataclass(frozen=True)
class Score:
    """Match score. Both sides are non-negative."""

    home: int = 0
    away: int = 0

    @property
    def is_tied(self) -> bool:
        return self.home == self.away

    @property
    def leader(self) -> Optional[Side]:
        if self.home > self.away:
            return Side.HOME
        if self.away > self.home:
            return Side.AWAY
        return None

    @property
    def is_valid(self) -> bool:
        return self.home >= 0 and self.away >= 0

    def for_side(self, side: Side) -> int:
        return self.home if side is Side.HOME else self.away

    def __str__(self) -> str:
        return f"{self.home}-{self.away}"


class Outcome(str, Enum):
    """Match-result outcome an instrument refers to."""

    HOME = "home"
    AWAY = "away"
    DRAW = "draw"

    @classmethod
    def for_side(cls, side: Side) -> "Outcome":
        return cls.HOME if side is Side.HOME else cls.AWAY


class Stance(str, Enum):
    """Whether a position affirms (YES) or negates (NO) its outcome."""

    YES = "yes"
    NO = "no"


@dataclass(frozen=True)
class PositionKind:
    """
    What a position bets on, e.g. "home wins: yes" or "draw: no".

    The key doubles as the instrument key in Match.instruments.
    """

    outcome: Outcome
    stance: Stance

    @property
    def key(self) -> str:
        return f"{self.outcome.value}_{self.stance.value}"

    @classmethod
    def from_key(cls, key: str) -> "PositionKind":
        outcome, _, stance = key.partition("_")
        return cls(Outcome(outcome), Stance(stance))

    @property
    def sort_index(self) -> int:
        return _KIND_ORDER.index(self.key)

    def __str__(self) -> str:
        return self.key


_KIND_ORDER = [
    "home_yes", "home_no", "away_yes", "away_no", "draw_yes", "draw_no",
]


@dataclass
class Match:
    """
    A tracked match.

    Status only advances (UPCOMING -> SOON -> LIVE -> FINISHED) and the
    elapsed minute never decreases while live. The score is stored exactly as
    reported, including downward corrections.
    """

    match_id: str
    home_team: str
    away_team: str
    kickoff: datetime
    slug: Optional[str] = None
    league: Optional[str] = None
    external_id: Optional[str] = None
    score: Score = field(default_factory=Score)
    elapsed_minute: Optional[int] = None
    status: MatchStatus = MatchStatus.UPCOMING
    status_tag: Optional[str] = None
    instruments: Dict[str, str] = field(default_factory=dict)
    live_baseline_taken: bool = False
    finished_at: Optional[datetime] = None
    minute_updated_at: Optional[datetime] = None  # when elapsed_minute last advanced

    def instrument_for(self, kind: PositionKind) -> Optional[str]:
        return self.instruments.get(kind.key)

    def copy(self) -> "Match":
        """Detached copy safe to hand out to other components."""
        return replace(self, instruments=dict(self.instruments))

    @property
    def label(self) -> str:
        return f"{self.home_team} vs {self.away_team}"


@dataclass(frozen=True)
class MatchMetadata:
    """A match as returned by discovery, before it is tracked."""

    match_id: str
    home_team: str
    away_team: str
    kickoff: datetime
    slug: Optional[str] = None
    league: Optional[str] = None
    external_id: Optional[str] = None
    instruments: Dict[str, str] = field(default_factory=dict)

    def to_match(self) -> Match:
        return Match(
            match_id=self.match_id,
            home_team=self.home_team,
            away_team=self.away_team,
            kickoff=self.kickoff,
            slug=self.slug,
            league=self.league,
            external_id=self.external_id,
            instruments=dict(self.instruments),
        )


@dataclass(frozen=True)
class GoalEvent:
    """A strict score increase on a live match."""

    match_id: str
    previous_score: Score
    new_score: Score
    side: Side
    minute: Optional[int]
    detected_at: datetime


@dataclass(frozen=True)
class CancellationEvent:
    """A score decrease (disallowed or corrected goal). Never traded."""

    match_id: str
    previous_score: Score
    new_score: Score
    minute: Optional[int]
    detected_at: datetime


@dataclass(frozen=True)
class NoChange:
    """Nothing actionable. reason: unchanged, baseline or invalid."""

    match_id: str
    reason: str = "unchanged"


DetectionResult = Union[GoalEvent, CancellationEvent, NoChange]
