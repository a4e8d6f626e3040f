"""
Ingestion Layer - live score snapshots, discovery and prices.

Public API:
    FeedClient: Batched live snapshots and match discovery from the feed gateway
    ClobPriceClient: Instrument midpoints from the Polymarket CLOB
    PriceCache: Last-known-price fallback around any price fetcher
    LiveSnapshot: One live observation of a match
    parse_match_metadata: Discovery record -> MatchMetadata
    MatchResolver, TeamNameResolver, NullResolver: Feed record -> match_id
    FeedError, RateLimitError, SnapshotParseError: Error types
"""
from .client import ClobPriceClient, FeedClient, FeedError, RateLimitError
from .matching import (
    MatchResolver,
    NullResolver,
    TeamNameResolver,
    normalize_team_name,
    team_similarity,
)
from .models import LiveSnapshot, SnapshotParseError, parse_match_metadata
from .prices import PriceCache

__all__ = [
    "ClobPriceClient",
    "FeedClient",
    "FeedError",
    "RateLimitError",
    "MatchResolver",
    "NullResolver",
    "TeamNameResolver",
    "normalize_team_name",
    "team_similarity",
    "LiveSnapshot",
    "SnapshotParseError",
    "parse_match_metadata",
    "PriceCache",
]
