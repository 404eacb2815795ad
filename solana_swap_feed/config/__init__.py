"""Config package"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from functools import lru_cache

from dotenv import load_dotenv

from solana_swap_feed.constants import DEFAULT_RPC_URL, DEXSCREENER_API_BASE, RAYDIUM_API_BASE
from solana_swap_feed.exceptions import ConfigurationError

# Load environment variables
load_dotenv()

ENV_PREFIX = "SWAP_FEED_"


@dataclass
class Settings:
    # ============================================
    # CREDENTIALS & ENDPOINTS
    # ============================================
    RPC_URL: str = DEFAULT_RPC_URL
    WSS_URL: str = ""
    RAYDIUM_API_BASE: str = RAYDIUM_API_BASE
    DEXSCREENER_API_BASE: str = DEXSCREENER_API_BASE
    API_TIMEOUT_SEC: float = 10.0
    DEXSCREENER_MAX_RETRIES: int = 2
    DEXSCREENER_RETRY_BACKOFF_SEC: float = 1.0

    # ============================================
    # SUBSCRIPTION LIFECYCLE
    # ============================================
    # Logs arrive at "processed" for latency, balances are read at "confirmed"
    SUBSCRIPTION_COMMITMENT: str = "processed"
    FETCH_COMMITMENT: str = "confirmed"
    FETCH_TIMEOUT_SEC: float = 10.0
    SUBSCRIBE_TIMEOUT_SEC: float = 10.0
    HEALTH_CHECK_INTERVAL_SEC: float = 30.0
    MAX_INACTIVITY_SEC: float = 120.0
    RECONNECT_BASE_DELAY_SEC: float = 1.0
    RECONNECT_MAX_DELAY_SEC: float = 30.0
    MAX_RECONNECT_ATTEMPTS: int = 10
    PROCESSED_SIGNATURE_CAPACITY: int = 1000

    # ============================================
    # CLASSIFIER THRESHOLDS (empirical, not protocol-derived)
    # ============================================
    VAULT_MULTIPLIER: float = 50.0
    TOKEN_DUST_FLOOR: float = 0.01
    SOL_MATERIALITY_FLOOR: float = 0.001
    MIN_SOL_AMOUNT: float = 0.0001

    # ============================================
    # POOL DISCOVERY
    # ============================================
    POOL_CACHE_TTL_SEC: float = 300.0
    MIN_LIQUIDITY_USD: float = 50.0

    # ============================================
    # LOGGING
    # ============================================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    @property
    def ws_url(self) -> str:
        """Websocket endpoint, derived from the HTTP RPC URL when not set."""
        if self.WSS_URL:
            return self.WSS_URL
        return self.RPC_URL.replace("https://", "wss://").replace("http://", "ws://")

    def reconnect_delay(self, attempt: int) -> float:
        """Exponential backoff: base * 2^attempt, capped."""
        return min(self.RECONNECT_BASE_DELAY_SEC * (2 ** attempt), self.RECONNECT_MAX_DELAY_SEC)

    def validate(self) -> "Settings":
        positive = (
            "FETCH_TIMEOUT_SEC",
            "SUBSCRIBE_TIMEOUT_SEC",
            "HEALTH_CHECK_INTERVAL_SEC",
            "MAX_INACTIVITY_SEC",
            "RECONNECT_BASE_DELAY_SEC",
            "RECONNECT_MAX_DELAY_SEC",
            "PROCESSED_SIGNATURE_CAPACITY",
            "VAULT_MULTIPLIER",
            "POOL_CACHE_TTL_SEC",
        )
        for name in positive:
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive", value=value)
        for name in ("TOKEN_DUST_FLOOR", "SOL_MATERIALITY_FLOOR", "MIN_SOL_AMOUNT", "MIN_LIQUIDITY_USD"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative", value=getattr(self, name))
        if self.MAX_RECONNECT_ATTEMPTS < 0:
            raise ConfigurationError("MAX_RECONNECT_ATTEMPTS must not be negative")
        if not self.RPC_URL:
            raise ConfigurationError("RPC_URL is required")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the environment.

        Every field can be overridden with SWAP_FEED_<NAME>; RPC_URL and
        WSS_URL are also read without the prefix.
        """
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{ENV_PREFIX}{f.name}")
            if raw is None and f.name in ("RPC_URL", "WSS_URL"):
                raw = os.getenv(f.name)
            if raw is None or raw == "":
                continue
            try:
                if f.type in ("int", int):
                    overrides[f.name] = int(raw)
                elif f.type in ("float", float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError as exc:
                raise ConfigurationError(f"Invalid value for {f.name}", value=raw) from exc
        return cls(**overrides).validate()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
