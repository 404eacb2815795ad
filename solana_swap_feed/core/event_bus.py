"""
Typed event fan-out for the swap feed.

Every event is a frozen dataclass. Subscribers register a handler per event
class instead of listening on string names:

    emitter.subscribe(TradeDetected, lambda e: print(e.trade))
    emitter.publish(TradeDetected(trade))

`event_name` on each class keeps the external names (`trade`, `heartbeat`,
`max-reconnect-attempts`, ...) available for bridges that need them.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Deque, Optional, Type, Union

from solana_swap_feed.core.models import TradeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connected:
    event_name: ClassVar[str] = "connected"
    pool_address: str
    token_mint: str


@dataclass(frozen=True)
class Disconnected:
    event_name: ClassVar[str] = "disconnected"
    pool_address: Optional[str]
    reason: str = "stopped"


@dataclass(frozen=True)
class TradeDetected:
    event_name: ClassVar[str] = "trade"
    trade: TradeEvent


@dataclass(frozen=True)
class EngineError:
    event_name: ClassVar[str] = "error"
    error: BaseException
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConnectionStale:
    event_name: ClassVar[str] = "connection_stale"
    seconds_since_activity: float
    monitored_tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class Heartbeat:
    """A transaction was processed but rejected; the stream itself is alive."""
    event_name: ClassVar[str] = "heartbeat"
    reason: str
    expected_mint: str
    found_mints: tuple[str, ...] = ()


@dataclass(frozen=True)
class MaxReconnectAttempts:
    event_name: ClassVar[str] = "max-reconnect-attempts"
    attempts: int


SwapFeedEvent = Union[
    Connected,
    Disconnected,
    TradeDetected,
    EngineError,
    ConnectionStale,
    Heartbeat,
    MaxReconnectAttempts,
]

Handler = Callable[[Any], Any]


@dataclass
class PublishedEvent:
    """Single published event kept for diagnostics"""
    event: Any
    timestamp: float


class TradeEventEmitter:
    """
    Publish/subscribe over the event union.

    A handler that raises is logged and does not stop delivery to the other
    handlers. Coroutine handlers are scheduled as tasks on the running loop.
    """

    def __init__(self, history_size: int = 200):
        self._handlers: dict[type, list[Handler]] = {}
        self._history: Deque[PublishedEvent] = deque(maxlen=history_size)
        self._counts: Counter[str] = Counter()
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: Type[Any], handler: Handler) -> Callable[[], None]:
        """Register a handler for one event class. Returns an unsubscribe callable."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: SwapFeedEvent) -> None:
        self._history.append(PublishedEvent(event=event, timestamp=time.time()))
        self._counts[event.event_name] += 1
        self._log(event)

        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
            except Exception as e:
                logger.error(f"❌ Handler {getattr(handler, '__name__', handler)} failed on {event.event_name}: {e}", exc_info=True)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"❌ Async handler failed: {exc}", exc_info=exc)

    def _log(self, event: Any) -> None:
        if isinstance(event, (EngineError, MaxReconnectAttempts)):
            logger.error(f"🔴 {event.event_name.upper()} | {event}")
        elif isinstance(event, ConnectionStale):
            logger.warning(f"⚠️ {event.event_name.upper()} | {event.seconds_since_activity:.0f}s without logs")
        else:
            logger.debug(f"📣 {event.event_name}")

    def recent(self, limit: int = 20) -> list[Any]:
        """Most recent events, oldest first."""
        if limit <= 0:
            return []
        return [entry.event for entry in list(self._history)[-limit:]]

    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def handler_count(self, event_type: Optional[type] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(h) for h in self._handlers.values())

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
