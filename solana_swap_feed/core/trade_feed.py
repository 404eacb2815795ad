"""
Consumer-side trade aggregation.

Keeps a rolling buffer and running stats per token from TradeDetected
events, and forwards trades to strategy callbacks, optionally restricted to
one side per token.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from solana_swap_feed.core.event_bus import TradeDetected, TradeEventEmitter
from solana_swap_feed.core.models import TradeEvent, TradeSide

logger = logging.getLogger(__name__)

MAX_TRADES_PER_TOKEN = 100


@dataclass
class TradeStats:
    token_mint: str
    total_buys: int = 0
    total_sells: int = 0
    total_volume_sol: float = 0.0
    avg_buy_size: float = 0.0
    avg_sell_size: float = 0.0
    last_trade_time: float = 0.0
    trade_count: int = 0

    def record(self, trade: TradeEvent) -> None:
        self.trade_count += 1
        self.total_volume_sol += trade.sol_amount
        self.last_trade_time = trade.timestamp
        if trade.side == TradeSide.BUY:
            self.total_buys += 1
            self.avg_buy_size += (trade.sol_amount - self.avg_buy_size) / self.total_buys
        else:
            self.total_sells += 1
            self.avg_sell_size += (trade.sol_amount - self.avg_sell_size) / self.total_sells


class TradeFeed:
    def __init__(
        self,
        emitter: TradeEventEmitter,
        max_trades_per_token: int = MAX_TRADES_PER_TOKEN,
        clock: Callable[[], float] = time.time,
    ):
        self.max_trades_per_token = max_trades_per_token
        self.clock = clock
        self._recent: Dict[str, Deque[TradeEvent]] = {}
        self._stats: Dict[str, TradeStats] = {}
        self._side_filters: Dict[str, TradeSide] = {}
        self._listeners: List[Callable[[TradeEvent], None]] = []
        self._unsubscribe = emitter.subscribe(TradeDetected, self._on_trade_detected)

    def close(self) -> None:
        self._unsubscribe()

    def add_listener(self, callback: Callable[[TradeEvent], None]) -> None:
        self._listeners.append(callback)

    def register_side_filter(self, token_mint: str, side: TradeSide) -> None:
        """Only forward `side` trades for this token to listeners."""
        self._side_filters[token_mint.lower()] = TradeSide(side)
        logger.info(f"🎯 Forwarding only {TradeSide(side).value.upper()} trades for {token_mint[:8]}...")

    def unregister_side_filter(self, token_mint: str) -> None:
        self._side_filters.pop(token_mint.lower(), None)

    def _on_trade_detected(self, event: TradeDetected) -> None:
        trade = event.trade
        buffer = self._recent.setdefault(trade.token_mint, deque(maxlen=self.max_trades_per_token))
        buffer.append(trade)
        self._stats.setdefault(trade.token_mint, TradeStats(token_mint=trade.token_mint)).record(trade)

        if not self._should_forward(trade):
            logger.debug(f"🔇 {trade.side.value.upper()} trade filtered out for {trade.token_mint[:8]}...")
            return
        for callback in list(self._listeners):
            try:
                callback(trade)
            except Exception as e:
                logger.error(f"❌ Trade listener failed: {e}", exc_info=True)

    def _should_forward(self, trade: TradeEvent) -> bool:
        wanted = self._side_filters.get(trade.token_mint.lower())
        return wanted is None or trade.side == wanted

    # ============================================
    # QUERIES
    # ============================================

    def get_token_stats(self, token_mint: str) -> Optional[TradeStats]:
        return self._stats.get(token_mint)

    def get_recent_trades(self, token_mint: str, limit: int = 20) -> List[TradeEvent]:
        trades = list(self._recent.get(token_mint, ()))
        return trades[-limit:] if limit > 0 else []

    def _trades_since(self, token_mint: str, window_seconds: float) -> List[TradeEvent]:
        cutoff = self.clock() - window_seconds
        return [t for t in self._recent.get(token_mint, ()) if t.timestamp >= cutoff]

    def get_volume_in_window(self, token_mint: str, window_seconds: float = 300) -> Dict[str, float]:
        buy_volume = 0.0
        sell_volume = 0.0
        for trade in self._trades_since(token_mint, window_seconds):
            if trade.side == TradeSide.BUY:
                buy_volume += trade.sol_amount
            else:
                sell_volume += trade.sol_amount
        return {"buy_volume": buy_volume, "sell_volume": sell_volume}

    def check_recent_buy_activity(self, token_mint: str, window_seconds: float = 30) -> Optional[float]:
        """SOL size of the latest buy inside the window, if any."""
        buys = [t for t in self._trades_since(token_mint, window_seconds) if t.side == TradeSide.BUY]
        return buys[-1].sol_amount if buys else None

    def check_recent_sell_activity(self, token_mint: str, window_seconds: float = 30) -> Optional[float]:
        """Token size of the latest sell inside the window, if any."""
        sells = [t for t in self._trades_since(token_mint, window_seconds) if t.side == TradeSide.SELL]
        return sells[-1].token_amount if sells else None
