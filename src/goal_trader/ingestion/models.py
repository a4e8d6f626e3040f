"""
Data models for the ingestion layer.

These models represent:
- Live score snapshots (one record per live match in a batched feed response)
- Discovered matches with their tradeable instruments

Raw payloads are validated at parse time. Anything malformed raises
SnapshotParseError so callers can treat the record as "no information"
instead of acting on garbage.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timezone
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as dateparser

from goal_trader.models import MatchMetadata, Score


class SnapshotParseError(ValueError):
    """A feed record did not have the expected shape."""

    def __init__(self, message: str, payload: Optional[Mapping[str, Any]] = None):
        super().__init__(message)
        self.payload = payload


@dataclass(frozen=True)
class LiveSnapshot:
    """
    One live observation of a match.

    Attributes:
        external_id: Match id in the live feed
        home_score: Goals for the home side (>= 0)
        away_score: Goals for the away side (>= 0)
        elapsed_minute: Reported match minute, if the feed has one
        status_tag: Raw feed status (1H, HT, 2H, FT, ...)
        home_team: Team name, used when the id is not known to us
        away_team: Team name, used when the id is not known to us
    """
    external_id: str
    home_score: int
    away_score: int
    elapsed_minute: Optional[int] = None
    status_tag: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None

    def __post_init__(self):
        if self.home_score < 0 or self.away_score < 0:
            raise SnapshotParseError(
                f"Negative score {self.home_score}-{self.away_score} for {self.external_id}"
            )
        if self.elapsed_minute is not None and self.elapsed_minute < 0:
            raise SnapshotParseError(
                f"Negative minute {self.elapsed_minute} for {self.external_id}"
            )

    @property
    def score(self) -> Score:
        return Score(self.home_score, self.away_score)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "LiveSnapshot":
        """
        Parse a feed record.

        Accepts camelCase (externalId, homeScore, ...) and snake_case keys.

        Raises:
            SnapshotParseError: If required fields are missing or malformed
        """
        if not isinstance(data, Mapping):
            raise SnapshotParseError(f"Expected object, got {type(data).__name__}")

        external_id = _first(data, "externalId", "external_id", "id")
        if external_id in (None, ""):
            raise SnapshotParseError("Missing external id", data)

        try:
            home = _as_int(_first(data, "homeScore", "home_score"), "home score")
            away = _as_int(_first(data, "awayScore", "away_score"), "away score")
            minute_raw = _first(data, "elapsedMinute", "elapsed_minute", "elapsed")
            minute = None if minute_raw is None else _as_int(minute_raw, "minute")
        except SnapshotParseError as e:
            raise SnapshotParseError(f"{e} (record {external_id})", data) from e

        return cls(
            external_id=str(external_id),
            home_score=home,
            away_score=away,
            elapsed_minute=minute,
            status_tag=_optional_str(_first(data, "statusTag", "status_tag", "status")),
            home_team=_optional_str(_first(data, "homeTeam", "home_team")),
            away_team=_optional_str(_first(data, "awayTeam", "away_team")),
        )


def parse_match_metadata(data: Mapping[str, Any]) -> MatchMetadata:
    """
    Parse a discovery record into MatchMetadata.

    Expected keys: id, homeTeam, awayTeam, kickoff (ISO 8601), optional slug,
    league, externalId and instruments ({"home_yes": token_id, ...}).

    Raises:
        SnapshotParseError: If required fields are missing or malformed
    """
    if not isinstance(data, Mapping):
        raise SnapshotParseError(f"Expected object, got {type(data).__name__}")

    match_id = _first(data, "id", "matchId", "match_id")
    home = _first(data, "homeTeam", "home_team")
    away = _first(data, "awayTeam", "away_team")
    kickoff_raw = _first(data, "kickoff", "startTime", "start_time")
    if not match_id or not home or not away or not kickoff_raw:
        raise SnapshotParseError("Discovery record missing id, teams or kickoff", data)

    try:
        kickoff = dateparser.isoparse(str(kickoff_raw))
    except (ValueError, OverflowError) as e:
        raise SnapshotParseError(f"Bad kickoff {kickoff_raw!r}: {e}", data) from e
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)

    instruments_raw = data.get("instruments") or {}
    if not isinstance(instruments_raw, Mapping):
        raise SnapshotParseError("instruments must be an object", data)
    instruments: Dict[str, str] = {
        str(k).lower(): str(v) for k, v in instruments_raw.items() if v
    }

    external_id = _first(data, "externalId", "external_id")
    return MatchMetadata(
        match_id=str(match_id),
        home_team=str(home),
        away_team=str(away),
        kickoff=kickoff,
        slug=_optional_str(data.get("slug")),
        league=_optional_str(data.get("league")),
        external_id=str(external_id) if external_id not in (None, "") else None,
        instruments=instruments,
    )


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_int(value: Any, field_name: str) -> int:
    if value is None or isinstance(value, bool):
        raise SnapshotParseError(f"Missing or invalid {field_name}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise SnapshotParseError(f"Invalid {field_name}: {value!r}")
    if isinstance(value, float) and value != number:
        raise SnapshotParseError(f"Non-integer {field_name}: {value!r}")
    return number


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
