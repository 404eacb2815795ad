from __future__ import annotations

import asyncio
import logging
from typing import Optional

from solana.rpc.commitment import Commitment

from solana_swap_feed.config import Settings
from solana_swap_feed.core.models import ParsedTransaction, ProcessedSignatureSet
from solana_swap_feed.core.rpc_client import SolanaRpcGateway
from solana_swap_feed.exceptions import TransactionUnavailableError

logger = logging.getLogger(__name__)


class TransactionFetcher:
    """
    Dedups signatures and fetches the parsed transaction for the survivors.

    A fetch is never retried: the log stream redelivers, this does not.
    """

    def __init__(self, settings: Settings, rpc: SolanaRpcGateway, seen: Optional[ProcessedSignatureSet] = None):
        self.settings = settings
        self.rpc = rpc
        self.seen = seen or ProcessedSignatureSet(settings.PROCESSED_SIGNATURE_CAPACITY)
        self.commitment = Commitment(settings.FETCH_COMMITMENT)
        self.fetched = 0
        self.duplicates = 0
        self.unavailable = 0

    async def fetch(self, signature: str) -> Optional[ParsedTransaction]:
        # Admission happens before the first await so concurrent deliveries
        # of the same signature cannot both pass.
        if not self.seen.add(signature):
            self.duplicates += 1
            logger.debug(f"Duplicate signature {signature[:16]}... skipped")
            return None

        try:
            tx = await self._fetch(signature)
        except TransactionUnavailableError as e:
            self.unavailable += 1
            logger.debug(f"Transaction unavailable: {e}")
            return None

        self.fetched += 1
        return tx

    async def _fetch(self, signature: str) -> ParsedTransaction:
        try:
            tx = await asyncio.wait_for(
                self.rpc.get_parsed_transaction(
                    signature,
                    commitment=self.commitment,
                    max_supported_transaction_version=0,
                ),
                timeout=self.settings.FETCH_TIMEOUT_SEC,
            )
        except asyncio.TimeoutError as e:
            raise TransactionUnavailableError("fetch timed out", signature=signature) from e
        except Exception as e:
            raise TransactionUnavailableError("fetch failed", signature=signature, error=str(e)) from e

        if tx is None:
            raise TransactionUnavailableError("transaction not found", signature=signature)
        if tx.err:
            raise TransactionUnavailableError("transaction failed on chain", signature=signature, err=tx.err)
        return tx

    def reset(self) -> None:
        self.seen.clear()
