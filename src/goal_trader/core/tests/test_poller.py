"""
Tests for the adaptive poller.

The feed is an AsyncMock; every test checks how many times it was called.
"""
import asyncio
import pytest
from datetime import timedelta

from goal_trader.core.poller import AdaptivePoller, PollerConfig
from goal_trader.ingestion.matching import TeamNameResolver
from goal_trader.models import CancellationEvent, GoalEvent, MatchStatus, NoChange, Score


UNLINKED_FIXTURES = [
    ("Real Betis", "Getafe"),
    ("Osasuna", "Mallorca"),
    ("Bologna", "Udinese"),
    ("Lecce", "Torino"),
    ("Freiburg", "Augsburg"),
    ("Mainz", "Heidenheim"),
    ("Lens", "Nantes"),
    ("Brest", "Toulouse"),
    ("Feyenoord", "Utrecht"),
    ("Celtic", "Hibernian"),
]

@pytest.fixture
def poller(registry, live_fetcher):
    return AdaptivePoller(registry, live_fetcher, resolver=TeamNameResolver())


class TestScheduling:
    """Tests for when the feed is called."""

    @pytest.mark.asyncio
    async def test_nothing_live_makes_no_call(self, poller, registry, make_match, live_fetcher, at_minute):
        """Upcoming matches never cost a live fetch."""
        registry.register(make_match())

        result = await poller.tick(at_minute(-30))

        assert not result.fetched
        live_fetcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_fetch_for_many_matches(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        """A single call covers every live match."""
        registry.register(make_match("a", status=MatchStatus.LIVE, minute=10, external_id="ea"))
        registry.register(make_match("b", status=MatchStatus.LIVE, minute=80, external_id="eb"))
        live_fetcher.return_value = [
            snapshot(0, 0, minute=11, external_id="ea"),
            snapshot(1, 1, minute=81, external_id="eb"),
        ]

        result = await poller.tick(at_minute(11))

        assert live_fetcher.call_count == 1
        assert result.records == 2
        assert result.matched == 2

    @pytest.mark.asyncio
    async def test_one_fetch_for_a_full_matchday(self, poller, registry, make_match, snapshot,
                                                 live_fetcher, at_minute):
        """Fifty live matches, some only resolvable by team names, still cost one call."""
        records = []
        for n in range(40):
            registry.register(make_match(f"id_{n}", status=MatchStatus.LIVE, minute=30, external_id=f"e{n}"))
            records.append(snapshot(0, 0, minute=31, external_id=f"e{n}"))
        for n, (home, away) in enumerate(UNLINKED_FIXTURES):
            registry.register(make_match(f"name_{n}", status=MatchStatus.LIVE, minute=30,
                                         external_id=None, home_team=home, away_team=away))
            records.append(snapshot(0, 0, minute=31, external_id=f"feed_{n}",
                                    home_team=home, away_team=away))
        live_fetcher.return_value = records
        now = at_minute(31)

        result = await poller.tick(now)

        assert live_fetcher.await_count == 1
        assert result.records == 50
        assert result.matched == 50
        assert result.unmatched_records == 0
        assert registry.get_by_external_id("feed_3").match_id == "name_3"
        for match in registry.list_by_status(MatchStatus.LIVE):
            assert poller.next_due(match.match_id) > now
        assert not (await poller.tick(now + timedelta(milliseconds=500))).fetched

    @pytest.mark.asyncio
    async def test_not_due_again_within_interval(self, registry, make_match, snapshot, live_fetcher, at_minute):
        """Half-time polls every 10s, so a tick 2s later is a no-op."""
        poller = AdaptivePoller(registry, live_fetcher)
        registry.register(make_match(status=MatchStatus.LIVE, minute=45, status_tag="HT"))
        live_fetcher.return_value = [snapshot(0, 0, minute=45, tag="HT")]
        now = at_minute(50)

        await poller.tick(now)
        second = await poller.tick(now + timedelta(seconds=2))
        third = await poller.tick(now + timedelta(seconds=10))

        assert not second.fetched
        assert third.fetched
        assert live_fetcher.call_count == 2

    @pytest.mark.asyncio
    async def test_reschedule_uses_phase_interval(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        registry.register(live_match)
        live_fetcher.return_value = [snapshot(0, 0, minute=10)]
        now = at_minute(10)

        await poller.tick(now)

        assert poller.next_due("m1") == now + timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_missing_from_feed_still_rescheduled(self, poller, registry, live_match, live_fetcher, at_minute):
        """A due match the feed skipped waits its interval like the rest."""
        registry.register(live_match)
        now = at_minute(10)

        await poller.tick(now)

        assert poller.next_due("m1") is not None

    @pytest.mark.asyncio
    async def test_forget(self, poller, registry, live_match, live_fetcher, at_minute):
        registry.register(live_match)
        await poller.tick(at_minute(10))

        poller.forget("m1")

        assert poller.next_due("m1") is None

    def test_due_matches_priority_order(self, poller, registry, make_match, at_minute):
        """Late-game matches come first."""
        registry.register(make_match("early", status=MatchStatus.LIVE, minute=5, external_id="e1"))
        registry.register(make_match("late", status=MatchStatus.LIVE, minute=88, external_id="e2"))

        due = poller.due_matches(at_minute(30))

        assert [m.match_id for m in due] == ["late", "early"]


class TestDetection:
    """Tests for records flowing into the registry."""

    @pytest.mark.asyncio
    async def test_goal_detected_and_stored(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        registry.register(live_match)
        live_fetcher.return_value = [snapshot(1, 0, minute=23)]

        result = await poller.tick(at_minute(23))

        assert len(result.goals) == 1
        assert result.goals[0].new_score == Score(1, 0)
        assert registry.get("m1").score == Score(1, 0)

    @pytest.mark.asyncio
    async def test_first_observation_is_baseline(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        """Joining at 2-1 stores the score and emits nothing."""
        registry.register(make_match(status=MatchStatus.LIVE))
        live_fetcher.return_value = [snapshot(2, 1, minute=60)]

        result = await poller.tick(at_minute(60))

        assert result.detections == [("m1", NoChange("m1", reason="baseline"))]
        assert registry.get("m1").score == Score(2, 1)
        assert registry.get("m1").live_baseline_taken

    @pytest.mark.asyncio
    async def test_replay_produces_one_goal(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        """The same record on consecutive ticks is one goal, not two."""
        registry.register(live_match)
        live_fetcher.return_value = [snapshot(1, 0, minute=23)]

        first = await poller.tick(at_minute(23))
        second = await poller.tick(at_minute(23) + timedelta(seconds=1))

        assert len(first.goals) == 1
        assert second.goals == []

    @pytest.mark.asyncio
    async def test_cancellation(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        registry.register(make_match(status=MatchStatus.LIVE, score=Score(1, 0), baseline=True, minute=20))
        live_fetcher.return_value = [snapshot(0, 0, minute=22)]

        result = await poller.tick(at_minute(22))

        assert isinstance(result.cancellations[0], CancellationEvent)
        assert registry.get("m1").score == Score(0, 0)

    @pytest.mark.asyncio
    async def test_duplicate_records_keep_first(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        registry.register(live_match)
        live_fetcher.return_value = [snapshot(1, 0, minute=23), snapshot(2, 0, minute=23)]

        result = await poller.tick(at_minute(23))

        assert result.matched == 1
        assert registry.get("m1").score == Score(1, 0)

    @pytest.mark.asyncio
    async def test_unknown_records_counted(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        registry.register(live_match)
        live_fetcher.return_value = [snapshot(3, 3, external_id="someone_else")]

        result = await poller.tick(at_minute(23))

        assert result.unmatched_records == 1
        assert result.matched == 0

    @pytest.mark.asyncio
    async def test_finished_record(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        """FT in the feed finishes the match and drops its schedule."""
        registry.register(make_match(status=MatchStatus.LIVE, score=Score(2, 1), minute=90, baseline=True))
        live_fetcher.return_value = [snapshot(2, 1, minute=90, tag="FT")]

        result = await poller.tick(at_minute(95))

        assert result.finished == ["m1"]
        assert registry.get("m1").status == MatchStatus.FINISHED
        assert poller.next_due("m1") is None


class TestResolverFallback:
    """Tests for records whose feed id we have not seen yet."""

    @pytest.mark.asyncio
    async def test_resolved_by_team_names(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        """The feed id is learned and kept for later ticks."""
        registry.register(make_match(status=MatchStatus.LIVE, external_id=None))
        live_fetcher.return_value = [
            snapshot(0, 0, minute=5, external_id="feed_77", home_team="Arsenal FC", away_team="Chelsea FC"),
        ]

        result = await poller.tick(at_minute(5))

        assert result.matched == 1
        assert registry.get_by_external_id("feed_77").match_id == "m1"

    @pytest.mark.asyncio
    async def test_unresolvable_record_is_unmatched(self, poller, registry, make_match, snapshot, live_fetcher, at_minute):
        registry.register(make_match(status=MatchStatus.LIVE, external_id=None))
        live_fetcher.return_value = [
            snapshot(0, 0, external_id="feed_9", home_team="Liverpool", away_team="Everton"),
        ]

        result = await poller.tick(at_minute(5))

        assert result.unmatched_records == 1


class TestFailures:
    """Fetch failures are reported, never raised."""

    @pytest.mark.asyncio
    async def test_fetch_error(self, poller, registry, live_match, live_fetcher, at_minute):
        registry.register(live_match)
        live_fetcher.side_effect = RuntimeError("feed down")

        result = await poller.tick(at_minute(10))

        assert not result.fetched
        assert "feed down" in result.error
        assert poller.failures == 1
        assert registry.get("m1").score == Score(0, 0)

    @pytest.mark.asyncio
    async def test_failed_fetch_retries_next_tick(self, poller, registry, live_match, snapshot, live_fetcher, at_minute):
        """No schedule is set on failure, so the very next tick tries again."""
        registry.register(live_match)
        live_fetcher.side_effect = [RuntimeError("boom"), [snapshot(1, 0, minute=10)]]
        now = at_minute(10)

        await poller.tick(now)
        result = await poller.tick(now)

        assert len(result.goals) == 1
        assert poller.calls == 2

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, registry, live_match, at_minute):
        async def slow():
            await asyncio.sleep(1)
            return []

        poller = AdaptivePoller(registry, slow, config=PollerConfig(fetch_timeout_seconds=0.01))
        registry.register(live_match)

        result = await poller.tick(at_minute(10))

        assert result.error.startswith("TimeoutError")
