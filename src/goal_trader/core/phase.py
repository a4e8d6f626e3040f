"""
Phase classification for tracked matches.

Maps a match plus the current time to a lifecycle phase and the polling
interval that phase deserves. Pure functions only - no I/O, no mutation.

Phases (minutes relative to kickoff):
    discovery       kickoff more than 10 minutes away       60s
    pre_match       kickoff within 10 minutes                30s
    early           0-15 elapsed                             1s
    mid             15-70 elapsed                            1s
    critical        70-85 elapsed                            1s
    ultra_critical  85+ elapsed                              1s
    post_match      90-120 past kickoff, finish unconfirmed  10s
    done            over 120, or confirmed finished          0s

An explicit live status with a reported minute beats wall-clock estimation;
without one, elapsed is estimated from kickoff. A reported minute that has
stopped moving (the feed dropped the match) no longer holds the match in
play: from 90 minutes past kickoff it is post-match, and past
max_wall_clock_minutes it is done whatever the last minute was.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from goal_trader.models import HALF_TIME_TAGS, Match, MatchStatus, status_from_tag


class Phase(str, Enum):
    """Match lifecycle phase, in chronological order."""

    DISCOVERY = "discovery"
    PRE_MATCH = "pre_match"
    EARLY = "early"
    MID = "mid"
    CRITICAL = "critical"
    ULTRA_CRITICAL = "ultra_critical"
    POST_MATCH = "post_match"
    DONE = "done"

    @property
    def is_in_play(self) -> bool:
        return self in IN_PLAY_PHASES


IN_PLAY_PHASES = frozenset({
    Phase.EARLY,
    Phase.MID,
    Phase.CRITICAL,
    Phase.ULTRA_CRITICAL,
})

PHASE_PRIORITY = {
    Phase.DISCOVERY: 0,
    Phase.PRE_MATCH: 0,
    Phase.EARLY: 1,
    Phase.MID: 1,
    Phase.CRITICAL: 2,
    Phase.ULTRA_CRITICAL: 3,
    Phase.POST_MATCH: 1,
    Phase.DONE: 0,
}


@dataclass
class PhaseConfig:
    """Phase boundaries (minutes) and polling intervals (seconds)."""

    # Boundaries
    pre_match_window_minutes: float = 10
    early_until_minute: float = 15
    mid_until_minute: float = 70
    critical_until_minute: float = 85
    post_match_from_minute: float = 90
    done_after_minute: float = 120
    max_wall_clock_minutes: float = 150  # done ceiling plus break and stoppage allowance
    stale_minute_seconds: float = 600  # a frozen "90" through stoppage time is normal

    # Intervals
    discovery_interval: float = 60
    pre_match_interval: float = 30
    early_interval: float = 1
    mid_interval: float = 1
    critical_interval: float = 1
    ultra_critical_interval: float = 1
    post_match_interval: float = 10
    half_time_interval: float = 10

    def interval_for(self, phase: Phase) -> float:
        return {
            Phase.DISCOVERY: self.discovery_interval,
            Phase.PRE_MATCH: self.pre_match_interval,
            Phase.EARLY: self.early_interval,
            Phase.MID: self.mid_interval,
            Phase.CRITICAL: self.critical_interval,
            Phase.ULTRA_CRITICAL: self.ultra_critical_interval,
            Phase.POST_MATCH: self.post_match_interval,
            Phase.DONE: 0,
        }[phase]


@dataclass(frozen=True)
class PhaseInfo:
    """Result of classifying a match."""

    phase: Phase
    interval_seconds: float
    priority: int
    elapsed_minutes: Optional[float] = None


def minutes_since_kickoff(match: Match, now: datetime) -> float:
    """Wall-clock minutes since kickoff (negative before kickoff)."""
    return (now - match.kickoff).total_seconds() / 60


def effective_elapsed(match: Match, now: datetime) -> float:
    """
    Elapsed match minutes.

    Uses the reported minute while the match is live, otherwise falls back to
    the wall-clock estimate.
    """
    if match.status == MatchStatus.LIVE and match.elapsed_minute is not None:
        return float(match.elapsed_minute)
    return minutes_since_kickoff(match, now)


def wall_clock_expired(match: Match, now: datetime, config: PhaseConfig) -> bool:
    """Whether kickoff is so long ago that the match must be over."""
    return minutes_since_kickoff(match, now) > config.max_wall_clock_minutes


def minute_is_stale(match: Match, now: datetime, config: PhaseConfig) -> bool:
    """Whether the reported minute has stopped advancing outside a break."""
    if match.minute_updated_at is None:
        return False
    if match.status_tag and match.status_tag.strip().upper() in HALF_TIME_TAGS:
        return False
    return (now - match.minute_updated_at).total_seconds() >= config.stale_minute_seconds


def classify(
    match: Match,
    now: datetime,
    config: Optional[PhaseConfig] = None,
) -> PhaseInfo:
    """
    Classify a match into its current phase.

    Args:
        match: Match to classify (read-only)
        now: Current time (tz-aware)
        config: Phase boundaries and intervals

    Returns:
        PhaseInfo with phase, polling interval and priority
    """
    config = config or PhaseConfig()

    if (
        match.status == MatchStatus.FINISHED
        or status_from_tag(match.status_tag) == MatchStatus.FINISHED
    ):
        return _info(Phase.DONE, config)

    explicit_minute = (
        match.status == MatchStatus.LIVE and match.elapsed_minute is not None
    )
    elapsed = effective_elapsed(match, now)

    if elapsed > config.done_after_minute or wall_clock_expired(match, now, config):
        return _info(Phase.DONE, config, elapsed)

    if not explicit_minute:
        if elapsed < -config.pre_match_window_minutes:
            return _info(Phase.DISCOVERY, config, elapsed)
        if elapsed < 0:
            return _info(Phase.PRE_MATCH, config, elapsed)
        if elapsed >= config.post_match_from_minute:
            return _info(Phase.POST_MATCH, config, elapsed)
    elif (
        minutes_since_kickoff(match, now) >= config.post_match_from_minute
        and minute_is_stale(match, now, config)
    ):
        return _info(Phase.POST_MATCH, config, elapsed)

    if elapsed < config.early_until_minute:
        phase = Phase.EARLY
    elif elapsed < config.mid_until_minute:
        phase = Phase.MID
    elif elapsed < config.critical_until_minute:
        phase = Phase.CRITICAL
    else:
        phase = Phase.ULTRA_CRITICAL

    interval = config.interval_for(phase)
    if match.status_tag and match.status_tag.strip().upper() in HALF_TIME_TAGS:
        # Nothing happens at the break; no point burning calls
        interval = config.half_time_interval

    return PhaseInfo(
        phase=phase,
        interval_seconds=interval,
        priority=PHASE_PRIORITY[phase],
        elapsed_minutes=elapsed,
    )


def _info(phase: Phase, config: PhaseConfig, elapsed: Optional[float] = None) -> PhaseInfo:
    return PhaseInfo(
        phase=phase,
        interval_seconds=config.interval_for(phase),
        priority=PHASE_PRIORITY[phase],
        elapsed_minutes=elapsed,
    )
