from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from solana_swap_feed.config import Settings


class DexScreenerClient:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.base_url = settings.DEXSCREENER_API_BASE.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("solana_swap_feed.dexscreener")

    async def close(self) -> None:
        await self.client.aclose()

    async def get_token_pairs(self, token_address: str) -> list[dict[str, Any]]:
        url = f"{self.base_url}/latest/dex/tokens/{token_address}"
        payload = await self._request(url, log_level="debug")
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not isinstance(pairs, list):
            return []
        return [p for p in pairs if isinstance(p, dict)]

    async def _request(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        log_level: str = "warning",
    ) -> dict[str, Any] | list | None:
        max_retries = max(1, self.settings.DEXSCREENER_MAX_RETRIES)
        backoff = max(0.0, self.settings.DEXSCREENER_RETRY_BACKOFF_SEC)
        for attempt in range(max_retries):
            try:
                response = await self.client.get(url, params=params)
                if response.status_code == 429:
                    delay = self._retry_after(response.headers.get("Retry-After"), backoff * (attempt + 1))
                    self.logger.warning("DexScreener rate limited, retrying in %.1fs", delay)
                    await asyncio.sleep(delay)
                    continue
                response.raise_for_status()
                return response.json()
            except ValueError as exc:
                # Malformed body, retrying will not fix it
                getattr(self.logger, log_level)("DexScreener returned invalid JSON for %s: %s", url, exc)
                return None
            except httpx.HTTPError as exc:
                if attempt < max_retries - 1:
                    await asyncio.sleep(backoff)
                    continue
                getattr(self.logger, log_level)(
                    "DexScreener request failed for %s: %s", url, exc
                )
                return None
        return None

    @staticmethod
    def _retry_after(header: str | None, default: float) -> float:
        """Seconds form of Retry-After; the HTTP-date form falls back to `default`."""
        if not header:
            return default
        try:
            return max(0.0, float(header))
        except ValueError:
            return default
