"""
Tests for TradeFeed aggregation and side filters
"""

import pytest

from solana_swap_feed.core.event_bus import TradeDetected, TradeEventEmitter
from solana_swap_feed.core.models import TradeEvent, TradeSide
from solana_swap_feed.core.trade_feed import TradeFeed
from solana_swap_feed.tests.fakes import OTHER_MINT, POOL_ADDRESS, TOKEN_MINT, USER_WALLET


class FakeClock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def trade(side=TradeSide.BUY, sol_amount=1.0, token_amount=1000.0, timestamp=10_000.0, token_mint=TOKEN_MINT):
    return TradeEvent(
        pool_address=POOL_ADDRESS,
        token_mint=token_mint,
        sol_amount=sol_amount,
        token_amount=token_amount,
        side=side,
        user=USER_WALLET,
        signature=f"sig-{side.value}-{timestamp}-{sol_amount}",
        timestamp=timestamp,
        price=sol_amount / token_amount,
    )


def make_feed(**kwargs):
    emitter = TradeEventEmitter()
    clock = FakeClock()
    feed = TradeFeed(emitter, clock=clock, **kwargs)
    return feed, emitter, clock


class TestStats:

    def test_running_averages(self):
        feed, emitter, _ = make_feed()
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=1.0)))
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=3.0)))
        emitter.publish(TradeDetected(trade(TradeSide.SELL, sol_amount=0.5, timestamp=10_005.0)))

        stats = feed.get_token_stats(TOKEN_MINT)
        assert stats.total_buys == 2
        assert stats.total_sells == 1
        assert stats.avg_buy_size == pytest.approx(2.0)
        assert stats.avg_sell_size == pytest.approx(0.5)
        assert stats.total_volume_sol == pytest.approx(4.5)
        assert stats.last_trade_time == 10_005.0
        assert feed.get_token_stats(OTHER_MINT) is None

    def test_buffer_keeps_latest_trades(self):
        feed, emitter, _ = make_feed(max_trades_per_token=3)
        for i in range(5):
            emitter.publish(TradeDetected(trade(sol_amount=float(i + 1))))

        recent = feed.get_recent_trades(TOKEN_MINT)
        assert [t.sol_amount for t in recent] == [3.0, 4.0, 5.0]
        assert [t.sol_amount for t in feed.get_recent_trades(TOKEN_MINT, limit=1)] == [5.0]
        assert feed.get_token_stats(TOKEN_MINT).trade_count == 5


class TestWindows:

    def test_volume_in_window(self):
        feed, emitter, clock = make_feed()
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=5.0, timestamp=9_000.0)))  # Too old
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=1.5, timestamp=9_800.0)))
        emitter.publish(TradeDetected(trade(TradeSide.SELL, sol_amount=0.25, timestamp=9_990.0)))

        volume = feed.get_volume_in_window(TOKEN_MINT, window_seconds=300)

        assert volume == {"buy_volume": pytest.approx(1.5), "sell_volume": pytest.approx(0.25)}

    def test_recent_activity_checks(self):
        feed, emitter, clock = make_feed()
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=0.7, timestamp=9_990.0)))
        emitter.publish(TradeDetected(trade(TradeSide.SELL, sol_amount=0.2, token_amount=4_000.0, timestamp=9_995.0)))

        assert feed.check_recent_buy_activity(TOKEN_MINT) == pytest.approx(0.7)
        assert feed.check_recent_sell_activity(TOKEN_MINT) == pytest.approx(4_000.0)

        clock.now = 10_100.0
        assert feed.check_recent_buy_activity(TOKEN_MINT) is None
        assert feed.check_recent_sell_activity(TOKEN_MINT) is None


class TestSideFilters:

    def test_listener_receives_only_registered_side(self):
        feed, emitter, _ = make_feed()
        forwarded = []
        feed.add_listener(forwarded.append)
        feed.register_side_filter(TOKEN_MINT.upper(), TradeSide.SELL)

        emitter.publish(TradeDetected(trade(TradeSide.BUY)))
        emitter.publish(TradeDetected(trade(TradeSide.SELL)))
        emitter.publish(TradeDetected(trade(TradeSide.BUY, token_mint=OTHER_MINT)))

        assert [(t.token_mint, t.side) for t in forwarded] == [
            (TOKEN_MINT, TradeSide.SELL),
            (OTHER_MINT, TradeSide.BUY),
        ]
        # Filtered trades still count towards stats
        assert feed.get_token_stats(TOKEN_MINT).trade_count == 2

    def test_unregister_and_close(self):
        feed, emitter, _ = make_feed()
        forwarded = []
        feed.add_listener(forwarded.append)
        feed.register_side_filter(TOKEN_MINT, TradeSide.SELL)
        feed.unregister_side_filter(TOKEN_MINT)

        emitter.publish(TradeDetected(trade(TradeSide.BUY)))
        feed.close()
        emitter.publish(TradeDetected(trade(TradeSide.BUY, sol_amount=2.0)))

        assert len(forwarded) == 1
