from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    RECONNECTING = "RECONNECTING"
    FAILED = "FAILED"


class RejectionReason(str, Enum):
    POOL_NOT_IN_TRANSACTION = "pool_not_in_transaction"
    TOKEN_NOT_IN_TRANSACTION = "token_not_in_transaction"
    NO_TOKEN_FOUND = "no_token_found"
    NO_SOL_MOVEMENT = "no_sol_movement"
    BELOW_THRESHOLD = "below_threshold"
    TRANSACTION_FAILED = "transaction_failed"


@dataclass(frozen=True)
class PoolRecord:
    token_mint: str
    pool_address: str
    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    source: str = ""  # Discovery tier that produced the record


@dataclass
class TradeEvent:
    pool_address: str
    token_mint: str  # Always the tracked mint
    sol_amount: float
    token_amount: float
    side: TradeSide
    user: str
    signature: str
    timestamp: float
    price: float
    low_confidence: bool = False  # Inverted pool-vault interpretation was used
    signals_disagreed: bool = False  # Token and SOL directions did not match

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY

    def to_dict(self) -> dict[str, Any]:
        return {
            "poolAddress": self.pool_address,
            "tokenMint": self.token_mint,
            "solAmount": self.sol_amount,
            "tokenAmount": self.token_amount,
            "side": self.side.value,
            "user": self.user,
            "signature": self.signature,
            "timestamp": self.timestamp,
            "price": self.price,
            "lowConfidence": self.low_confidence,
            "signalsDisagreed": self.signals_disagreed,
        }


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    mint: str
    owner: str
    ui_amount: float


@dataclass
class ParsedTransaction:
    signature: str
    account_keys: list[str]
    pre_balances: list[int]  # lamports
    post_balances: list[int]
    pre_token_balances: list[TokenBalance] = field(default_factory=list)
    post_token_balances: list[TokenBalance] = field(default_factory=list)
    err: Any = None
    block_time: Optional[float] = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class LogDelivery:
    signature: str
    logs: list[str]
    err: Any = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class ProgramAccount:
    pubkey: str
    data: bytes


@dataclass
class Classification:
    trade: Optional[TradeEvent] = None
    rejection: Optional[RejectionReason] = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.trade is not None

    @classmethod
    def rejected(cls, reason: RejectionReason, **detail: Any) -> "Classification":
        return cls(rejection=reason, detail=detail)


class ProcessedSignatureSet:
    """
    Bounded, insertion-ordered set of seen signatures.

    Best-effort duplicate suppression only: once capacity is exceeded the
    oldest signatures are evicted and may be admitted again.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: OrderedDict[str, None] = OrderedDict()

    def add(self, signature: str) -> bool:
        """Admit a signature. Returns False when it was already present."""
        if signature in self._items:
            return False
        self._items[signature] = None
        while len(self._items) > self.capacity:
            self._items.popitem(last=False)
        return True

    def __contains__(self, signature: object) -> bool:
        return signature in self._items

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()
