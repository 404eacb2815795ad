"""
Custom exception classes for the swap feed.

Provides typed exceptions for better error handling and debugging.
"""
from typing import List


class SwapFeedException(Exception):
    """Base exception for all swap-feed errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class PoolNotFoundError(SwapFeedException):
    """Raised when every pool discovery tier came back empty."""

    def __init__(self, token_mint: str, tiers_attempted: List[str], **context):
        tiers = ", ".join(tiers_attempted) or "none"
        super().__init__(
            f"No pool found for token {token_mint} (tiers attempted: {tiers})",
            **context,
        )
        self.token_mint = token_mint
        self.tiers_attempted = list(tiers_attempted)


class SubscriptionError(SwapFeedException):
    """Raised when the log subscription cannot be opened or drops."""
    pass


class ConnectionStaleError(SwapFeedException):
    """Raised when the log stream went silent for too long."""
    pass


class TransactionUnavailableError(SwapFeedException):
    """Raised when a transaction fetch fails or returns an errored transaction."""
    pass


class MaxReconnectAttemptsError(SwapFeedException):
    """Raised when reconnect attempts are exhausted."""
    pass


class ConfigurationError(SwapFeedException):
    """Raised when configuration is invalid."""
    pass


class NetworkError(SwapFeedException):
    """Raised when network/RPC operations fail."""
    pass
