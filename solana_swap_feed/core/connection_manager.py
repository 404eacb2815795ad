"""
Log subscription lifecycle for one pool.

State machine:
    DISCONNECTED -> SUBSCRIBING -> SUBSCRIBED
    SUBSCRIBED -> RECONNECTING (stale stream, stream closed) -> SUBSCRIBING
    SUBSCRIBING -> RECONNECTING (subscribe failed) | FAILED (attempts exhausted)

All timers go through the injected scheduler. Each start/stop bumps a
generation counter; timers and callbacks from an older generation are no-ops.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from solana.rpc.commitment import Commitment

from solana_swap_feed.config import Settings
from solana_swap_feed.core.event_bus import (
    Connected,
    ConnectionStale,
    Disconnected,
    EngineError,
    MaxReconnectAttempts,
    TradeEventEmitter,
)
from solana_swap_feed.core.models import ConnectionState, LogDelivery, PoolRecord
from solana_swap_feed.core.rpc_client import LogSubscription, SolanaRpcGateway
from solana_swap_feed.exceptions import SubscriptionError
from solana_swap_feed.utils.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


def _same_target(a: PoolRecord, b: PoolRecord) -> bool:
    return a.pool_address == b.pool_address and a.token_mint.lower() == b.token_mint.lower()


class ConnectionManager:
    def __init__(
        self,
        settings: Settings,
        rpc: SolanaRpcGateway,
        emitter: TradeEventEmitter,
        scheduler: Scheduler,
        on_delivery: Callable[[LogDelivery], None],
    ):
        self.settings = settings
        self.rpc = rpc
        self.emitter = emitter
        self.scheduler = scheduler
        self.on_delivery = on_delivery
        self.commitment = Commitment(settings.SUBSCRIPTION_COMMITMENT)

        self.state = ConnectionState.DISCONNECTED
        self.pool: Optional[PoolRecord] = None
        self.reconnect_attempts = 0
        self.last_activity: Optional[float] = None
        self.subscribe_count = 0

        self._subscription: Optional[LogSubscription] = None
        self._health_timer: Optional[TimerHandle] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._generation = 0
        self._subscription_seq = 0

    # ============================================
    # PUBLIC
    # ============================================

    async def start(self, pool: PoolRecord) -> None:
        if self.pool is not None:
            if _same_target(self.pool, pool) and self.state != ConnectionState.FAILED:
                logger.debug(f"Already monitoring pool {pool.pool_address[:8]}..., start ignored")
                return
            old = await self._teardown()
            if old is not None and not _same_target(old, pool):
                self.emitter.publish(Disconnected(pool_address=old.pool_address, reason="token_switch"))

        self._generation += 1
        self.pool = pool
        self.reconnect_attempts = 0
        logger.info(f"🔌 Monitoring pool {pool.pool_address[:8]}... for token {pool.token_mint[:8]}...")
        await self._subscribe()

    async def stop(self) -> None:
        old = await self._teardown()
        if old is not None:
            logger.info(f"🔌 Stopped monitoring pool {old.pool_address[:8]}...")
            self.emitter.publish(Disconnected(pool_address=old.pool_address, reason="stopped"))

    def seconds_since_activity(self) -> Optional[float]:
        if self.last_activity is None:
            return None
        return self.scheduler.now() - self.last_activity

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "pool_address": self.pool.pool_address if self.pool else None,
            "token_mint": self.pool.token_mint if self.pool else None,
            "reconnect_attempts": self.reconnect_attempts,
            "seconds_since_activity": self.seconds_since_activity(),
            "subscribe_count": self.subscribe_count,
        }

    # ============================================
    # SUBSCRIPTION
    # ============================================

    async def _subscribe(self) -> None:
        if self.pool is None:
            return
        generation = self._generation
        self._subscription_seq += 1
        seq = self._subscription_seq
        pool = self.pool

        self.state = ConnectionState.SUBSCRIBING
        self.subscribe_count += 1
        try:
            subscription = await asyncio.wait_for(
                self.rpc.subscribe_logs(
                    pool.pool_address,
                    lambda delivery: self._handle_delivery(generation, delivery),
                    commitment=self.commitment,
                    on_closed=lambda cause: self._handle_closed(generation, seq, cause),
                ),
                timeout=self.settings.SUBSCRIBE_TIMEOUT_SEC,
            )
        except Exception as e:
            if generation != self._generation:
                return
            if isinstance(e, asyncio.TimeoutError):
                error = SubscriptionError(
                    "logs subscription not acknowledged",
                    pool_address=pool.pool_address,
                    timeout=self.settings.SUBSCRIBE_TIMEOUT_SEC,
                )
            elif isinstance(e, SubscriptionError):
                error = e
            else:
                error = SubscriptionError("logs subscription failed", pool_address=pool.pool_address, error=str(e))
            logger.warning(f"⚠️ Subscription to {pool.pool_address[:8]}... failed: {error}")
            self.emitter.publish(EngineError(error=error, context={"pool_address": pool.pool_address}))
            self._schedule_reconnect()
            return

        if generation != self._generation:
            # Stopped or switched while the subscribe was in flight
            await self._close_subscription(subscription)
            return

        self._subscription = subscription
        self.state = ConnectionState.SUBSCRIBED
        self.reconnect_attempts = 0
        self.last_activity = self.scheduler.now()
        self._start_health_monitor()
        self.emitter.publish(Connected(pool_address=pool.pool_address, token_mint=pool.token_mint))

    def _handle_delivery(self, generation: int, delivery: LogDelivery) -> None:
        if generation != self._generation or self.pool is None:
            return
        self.last_activity = self.scheduler.now()
        self.on_delivery(delivery)

    def _handle_closed(self, generation: int, seq: int, cause: Optional[BaseException]) -> None:
        if generation != self._generation or seq != self._subscription_seq:
            return
        if self.state != ConnectionState.SUBSCRIBED:
            return
        error = SubscriptionError("log stream closed", error=str(cause) if cause else "eof")
        self.emitter.publish(EngineError(error=error, context={"pool_address": self.pool.pool_address if self.pool else None}))
        self.scheduler.call_later(0, lambda: self._force_reconnect(generation, seq, "stream_closed"))

    # ============================================
    # RECONNECT
    # ============================================

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self.settings.MAX_RECONNECT_ATTEMPTS:
            self.state = ConnectionState.FAILED
            logger.error(f"❌ Giving up after {self.reconnect_attempts} reconnect attempts")
            self.emitter.publish(MaxReconnectAttempts(attempts=self.reconnect_attempts))
            return

        delay = self.settings.reconnect_delay(self.reconnect_attempts)
        self.reconnect_attempts += 1
        self.state = ConnectionState.RECONNECTING
        logger.info(f"🔄 Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts}/{self.settings.MAX_RECONNECT_ATTEMPTS})")

        generation = self._generation
        self._cancel_timer("_reconnect_timer")
        self._reconnect_timer = self.scheduler.call_later(delay, lambda: self._reconnect(generation))

    async def _reconnect(self, generation: int) -> None:
        if generation != self._generation or self.pool is None:
            return
        self._reconnect_timer = None
        await self._subscribe()

    async def _force_reconnect(self, generation: int, seq: int, reason: str) -> None:
        if generation != self._generation or seq != self._subscription_seq:
            return
        if self.state != ConnectionState.SUBSCRIBED:
            return
        logger.warning(f"⚠️ Forcing reconnect ({reason})")
        self._cancel_timer("_health_timer")
        subscription, self._subscription = self._subscription, None
        self.state = ConnectionState.RECONNECTING
        if subscription is not None:
            await self._close_subscription(subscription)
        if generation != self._generation:
            return
        # Pool record is kept, only the subscription is replaced
        self._schedule_reconnect()

    # ============================================
    # HEALTH
    # ============================================

    def _start_health_monitor(self) -> None:
        self._cancel_timer("_health_timer")
        generation = self._generation
        seq = self._subscription_seq
        self._health_timer = self.scheduler.call_later(
            self.settings.HEALTH_CHECK_INTERVAL_SEC,
            lambda: self._health_check(generation, seq),
        )

    async def _health_check(self, generation: int, seq: int) -> None:
        if generation != self._generation or seq != self._subscription_seq:
            return
        if self.state != ConnectionState.SUBSCRIBED:
            return

        idle = self.seconds_since_activity() or 0.0
        if idle > self.settings.MAX_INACTIVITY_SEC:
            logger.warning(f"⚠️ No logs for {idle:.0f}s on {self.pool.pool_address[:8]}...")
            tokens = (self.pool.token_mint,) if self.pool else ()
            self.emitter.publish(ConnectionStale(seconds_since_activity=idle, monitored_tokens=tokens))
            await self._force_reconnect(generation, seq, "stale")
            return

        self._start_health_monitor()

    # ============================================
    # TEARDOWN
    # ============================================

    def _cancel_timer(self, attr: str) -> None:
        timer = getattr(self, attr)
        if timer is not None:
            timer.cancel()
            setattr(self, attr, None)

    async def _close_subscription(self, subscription: LogSubscription) -> None:
        try:
            await subscription.close()
        except Exception as e:
            logger.debug(f"Unsubscribe failed (ignored): {e}")

    async def _teardown(self) -> Optional[PoolRecord]:
        """Cancel timers, drop the subscription and forget the pool."""
        self._generation += 1
        self._cancel_timer("_health_timer")
        self._cancel_timer("_reconnect_timer")

        old_pool = self.pool
        subscription, self._subscription = self._subscription, None
        self.pool = None
        self.last_activity = None
        self.reconnect_attempts = 0
        self.state = ConnectionState.DISCONNECTED

        if subscription is not None:
            await self._close_subscription(subscription)
        return old_pool
