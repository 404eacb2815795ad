"""Real-time buy/sell detection for a single Solana AMM pool."""

__version__ = "0.1.0"
