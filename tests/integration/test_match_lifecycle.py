"""
End-to-end match lifecycle tests.

A match is discovered, kicks off, scores, finishes and is dropped, with
every component real except the feed, prices and Telegram.
"""
import json
import pytest
from datetime import timedelta
from decimal import Decimal

from goal_trader.execution.actions import ActionType
from goal_trader.ingestion.client import FeedError
from goal_trader.models import MatchStatus, Score

pytestmark = pytest.mark.integration

MATCH_ID = "epl-ars-che-2026-03-14"


def open_kinds(ledger):
    return sorted(p.kind.key for p in ledger.open_positions(MATCH_ID))


def action_summary(batch):
    return [(r.action.action_type, r.action.kind.key) for r in batch.succeeded]


def alert_texts(api):
    return [c.kwargs["text"] for c in api.send_message.call_args_list]


async def kick_off(harness, feed, at_minute):
    """Discover the match and take the 0-0 baseline a minute in."""
    assert await harness.tracker.discover(at_minute(-60)) == 1
    await harness.tracker.tick(at_minute(-60))
    assert harness.registry.get(MATCH_ID).status == MatchStatus.UPCOMING

    feed.report(0, 0, minute=1)
    result = await harness.tracker.tick(at_minute(1))
    assert result.batches == []
    assert harness.registry.get(MATCH_ID).live_baseline_taken


class TestFullMatch:
    """One match from discovery to removal."""

    @pytest.mark.asyncio
    async def test_goals_finish_and_removal(self, harness, feed, at_minute, mock_telegram_api, state_path):
        await kick_off(harness, feed, at_minute)

        # 1-0: back the leader, lay the trailer and the draw
        feed.report(1, 0, minute=12)
        first = await harness.tracker.tick(at_minute(12))
        assert action_summary(first.batches[0]) == [
            (ActionType.OPEN, "home_yes"),
            (ActionType.OPEN, "away_no"),
            (ActionType.OPEN, "draw_no"),
        ]
        await harness.settle()
        assert state_path.exists()

        # 2-0 with two positions in profit: partial sells, then half-size adds
        harness.prices.set_price("tok_home_yes", Decimal("0.65"))
        harness.prices.set_price("tok_draw_no", Decimal("0.65"))
        feed.report(2, 0, minute=30)
        second = await harness.tracker.tick(at_minute(30))
        assert action_summary(second.batches[0]) == [
            (ActionType.PARTIAL_CLOSE, "home_yes"),
            (ActionType.PARTIAL_CLOSE, "draw_no"),
            (ActionType.OPEN, "home_yes"),
            (ActionType.OPEN, "draw_no"),
        ]
        assert open_kinds(harness.ledger) == ["away_no", "draw_no", "home_yes"]
        # 2-2: close everything, then back the draw
        feed.report(2, 2, minute=64)
        third = await harness.tracker.tick(at_minute(64))
        closes = [k for t, k in action_summary(third.batches[0]) if t == ActionType.CLOSE]
        opens = [k for t, k in action_summary(third.batches[0]) if t == ActionType.OPEN]
        assert sorted(closes) == ["away_no", "draw_no", "home_yes"]
        assert opens == ["home_no", "away_no", "draw_yes"]
        assert open_kinds(harness.ledger) == ["away_no", "draw_yes", "home_no"]

        # Full time: everything is sold
        feed.report(2, 2, minute=90, tag="FT")
        final_whistle = at_minute(96)
        finish = await harness.tracker.tick(final_whistle)
        assert finish.finished == [MATCH_ID]
        assert harness.ledger.open_positions() == []
        assert harness.registry.get(MATCH_ID).score == Score(2, 2)

        await harness.settle()
        texts = alert_texts(mock_telegram_api)
        assert any("Score: 0-0 -> 1-0" in t for t in texts)
        assert any("Match Finished" in t for t in texts)

        # Dropped once the finished cooldown has passed
        kept = await harness.tracker.tick(final_whistle + timedelta(seconds=60))
        gone = await harness.tracker.tick(final_whistle + timedelta(seconds=301))
        assert kept.removed == []
        assert gone.removed == [MATCH_ID]

        await harness.settle()
        payload = json.loads(state_path.read_text(encoding="utf-8"))
        assert payload["matches"] == []
        assert payload["positions"] == []

    @pytest.mark.asyncio
    async def test_replayed_record_trades_once(self, harness, feed, at_minute):
        """The feed repeating 1-0 every poll is one goal, not many."""
        await kick_off(harness, feed, at_minute)

        feed.report(1, 0, minute=12)
        for second in range(0, 30, 2):
            await harness.tracker.tick(at_minute(12) + timedelta(seconds=second))

        assert harness.tracker.stats.goals_detected == 1
        assert harness.tracker.stats.actions_succeeded == 3
        assert open_kinds(harness.ledger) == ["away_no", "draw_no", "home_yes"]

    @pytest.mark.asyncio
    async def test_lead_taken_after_equalizer(self, harness, feed, at_minute):
        """1-0, 1-1, 2-1: the goal after a tie is a fresh lead, not an extension."""
        await kick_off(harness, feed, at_minute)

        feed.report(1, 0, minute=12)
        await harness.tracker.tick(at_minute(12))
        feed.report(1, 1, minute=40)
        equalizer = await harness.tracker.tick(at_minute(40))
        assert len(equalizer.batches[0].succeeded) == 6

        feed.report(2, 1, minute=70)
        lead = await harness.tracker.tick(at_minute(70))

        assert action_summary(lead.batches[0]) == [
            (ActionType.CLOSE, "home_no"),
            (ActionType.CLOSE, "draw_yes"),
            (ActionType.OPEN, "home_yes"),
            (ActionType.OPEN, "away_no"),
            (ActionType.OPEN, "draw_no"),
        ]
        assert open_kinds(harness.ledger) == ["away_no", "draw_no", "home_yes"]

    @pytest.mark.asyncio
    async def test_quick_second_goal_is_not_traded(self, harness, feed, at_minute):
        await kick_off(harness, feed, at_minute)
        scored = at_minute(12)

        feed.report(1, 0, minute=12)
        await harness.tracker.tick(scored)
        feed.report(1, 1, minute=12)
        result = await harness.tracker.tick(scored + timedelta(seconds=3))

        assert result.batches == []
        assert harness.registry.get(MATCH_ID).score == Score(1, 1)
        assert open_kinds(harness.ledger) == ["away_no", "draw_no", "home_yes"]


class TestCorrections:

    @pytest.mark.asyncio
    async def test_disallowed_goal(self, harness, feed, at_minute, mock_telegram_api):
        """A score going back down is announced, never traded."""
        await kick_off(harness, feed, at_minute)
        feed.report(1, 0, minute=20)
        await harness.tracker.tick(at_minute(20))

        feed.report(0, 0, minute=22)
        result = await harness.tracker.tick(at_minute(22))
        await harness.settle()

        assert result.batches == []
        assert harness.tracker.stats.cancellations == 1
        assert harness.registry.get(MATCH_ID).score == Score(0, 0)
        assert len(harness.ledger.open_positions()) == 3
        assert any("Goal Cancelled" in t for t in alert_texts(mock_telegram_api))

    @pytest.mark.asyncio
    async def test_feed_outage_then_goal(self, harness, feed, at_minute):
        await kick_off(harness, feed, at_minute)

        feed.fail(FeedError("503 from gateway", status_code=503, transient=True))
        failed = await harness.tracker.tick(at_minute(15))
        assert failed.poll.error is not None

        feed.report(0, 1, minute=15)
        await harness.tracker.tick(at_minute(15) + timedelta(seconds=1))

        assert open_kinds(harness.ledger) == ["away_yes", "draw_no", "home_no"]
        assert harness.tracker.stats.poll_failures == 1


class TestMinuteCeiling:

    @pytest.mark.asyncio
    async def test_stuck_feed_still_finishes(self, harness, feed, at_minute):
        """Past minute 120 the match is finished even without an FT status."""
        await kick_off(harness, feed, at_minute)
        feed.report(1, 0, minute=50)
        await harness.tracker.tick(at_minute(50))

        feed.report(1, 0, minute=121, tag="ET")
        recorded = await harness.tracker.tick(at_minute(130))
        finished = await harness.tracker.tick(at_minute(130) + timedelta(seconds=1))

        assert recorded.finished == []
        assert finished.finished == [MATCH_ID]
        assert harness.ledger.open_positions() == []


class TestRestart:
    """State written before a restart carries on afterwards."""

    @pytest.mark.asyncio
    async def test_positions_survive_restart(self, build_harness, feed, at_minute):
        before = build_harness()
        await kick_off(before, feed, at_minute)
        feed.report(1, 0, minute=12)
        await before.tracker.tick(at_minute(12))
        await before.settle()

        after = build_harness()
        snapshot = await after.persister.load()
        await after.tracker.restore(snapshot.to_matches(), snapshot.to_positions())

        assert open_kinds(after.ledger) == ["away_no", "draw_no", "home_yes"]
        assert after.registry.get(MATCH_ID).score == Score(1, 0)

        # The equalizer closes what the previous process opened
        feed.report(1, 1, minute=40)
        result = await after.tracker.tick(at_minute(40))

        closes = [k for t, k in action_summary(result.batches[0]) if t == ActionType.CLOSE]
        assert sorted(closes) == ["away_no", "draw_no", "home_yes"]
        assert open_kinds(after.ledger) == ["away_no", "draw_yes", "home_no"]


class TestDroppedFeed:
    """The feed stops reporting a live match partway through."""

    @pytest.mark.asyncio
    async def test_positions_liquidated_after_feed_drops_match(self, harness, feed, at_minute):
        await kick_off(harness, feed, at_minute)
        feed.report(1, 0, minute=12)
        await harness.tracker.tick(at_minute(12))
        assert open_kinds(harness.ledger) == ["away_no", "draw_no", "home_yes"]
        instruments = list(harness.registry.get(MATCH_ID).instruments.values())

        feed.records = []
        late = at_minute(100)
        await harness.tracker.tick(late)
        calls = feed.calls
        await harness.tracker.tick(late + timedelta(seconds=5))
        await harness.tracker.tick(late + timedelta(seconds=10))

        # Frozen minute past full time: still live, polled every 10 seconds
        assert harness.registry.get(MATCH_ID).status == MatchStatus.LIVE
        assert feed.calls == calls + 1
        assert len(harness.ledger.open_positions()) == 3

        finish = await harness.tracker.tick(at_minute(151))
        assert finish.finished == [MATCH_ID]
        assert harness.ledger.open_positions() == []

        gone = await harness.tracker.tick(at_minute(151) + timedelta(seconds=301))
        assert gone.removed == [MATCH_ID]
        assert all(harness.prices.last_price(i) is None for i in instruments)
