"""
Solana RPC gateway.

Thin wrapper over solana-py's AsyncClient and websocket API exposing the
three calls the swap feed needs: parsed transaction fetch, filtered program
account scan, and a logs subscription with a `mentions` filter.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed, Processed
from solana.rpc.types import MemcmpOpts
from solana.rpc.websocket_api import connect
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.responses import LogsNotification
from solders.signature import Signature
from websockets.exceptions import ConnectionClosed

from solana_swap_feed.core.models import LogDelivery, ParsedTransaction, ProgramAccount, TokenBalance
from solana_swap_feed.exceptions import NetworkError, SubscriptionError

logger = logging.getLogger(__name__)

LogCallback = Callable[[LogDelivery], None]
ClosedCallback = Callable[[Optional[BaseException]], None]


def _token_amount(balance: Dict[str, Any]) -> float:
    ui = balance.get("uiTokenAmount") or {}
    ui_string = ui.get("uiAmountString")
    if ui_string not in (None, ""):
        try:
            return float(ui_string)
        except (TypeError, ValueError):
            pass
    if ui.get("uiAmount") is not None:
        return float(ui["uiAmount"])
    amount = ui.get("amount")
    decimals = ui.get("decimals", 0)
    if amount is not None:
        try:
            return int(amount) / (10 ** decimals)
        except (ValueError, TypeError):
            return 0.0
    return 0.0


def _token_balances(raw: Optional[List[Dict[str, Any]]]) -> List[TokenBalance]:
    balances = []
    for bal in raw or []:
        if not isinstance(bal, dict) or bal.get("accountIndex") is None:
            continue
        balances.append(TokenBalance(
            account_index=int(bal["accountIndex"]),
            mint=bal.get("mint", ""),
            owner=bal.get("owner") or "",
            ui_amount=_token_amount(bal),
        ))
    return balances


def normalize_parsed_transaction(signature: str, result: Optional[Dict[str, Any]]) -> Optional[ParsedTransaction]:
    """
    Convert a `jsonParsed` getTransaction result into a ParsedTransaction.

    Account keys come either as `{"pubkey": ...}` objects (jsonParsed) or as
    plain strings, in which case address-table lookups from
    `meta.loadedAddresses` are appended in writable, readonly order.
    """
    if not result:
        return None

    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}

    account_keys: List[str] = []
    plain_keys = False
    for key in message.get("accountKeys") or []:
        if isinstance(key, dict):
            pubkey = key.get("pubkey")
            if pubkey:
                account_keys.append(str(pubkey))
        elif isinstance(key, str):
            plain_keys = True
            account_keys.append(key)

    if plain_keys:
        loaded = meta.get("loadedAddresses") or {}
        account_keys.extend(loaded.get("writable") or [])
        account_keys.extend(loaded.get("readonly") or [])

    return ParsedTransaction(
        signature=signature,
        account_keys=account_keys,
        pre_balances=list(meta.get("preBalances") or []),
        post_balances=list(meta.get("postBalances") or []),
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances")),
        err=meta.get("err"),
        block_time=result.get("blockTime"),
        slot=result.get("slot"),
    )


class LogSubscription:
    """
    One live `logsSubscribe` stream.

    Notifications are pumped by a background task into `callback`. If the
    stream dies on its own, `on_closed` is called once with the cause;
    an explicit `close()` never triggers it.
    """

    def __init__(
        self,
        wss_url: str,
        address: str,
        callback: LogCallback,
        commitment: Commitment = Processed,
        on_closed: Optional[ClosedCallback] = None,
        connector: Callable[[str], Any] = connect,
    ):
        self.wss_url = wss_url
        self.connector = connector
        self.address = address
        self.callback = callback
        self.commitment = commitment
        self.on_closed = on_closed
        self.subscription_id: Optional[int] = None
        self._ws = None
        self._pump_task: Optional[asyncio.Task] = None
        self._closing = False

    async def open(self) -> "LogSubscription":
        try:
            self._ws = await self.connector(self.wss_url)
            await self._ws.logs_subscribe(
                RpcTransactionLogsFilterMentions(Pubkey.from_string(self.address)),
                commitment=self.commitment,
            )
            first = await self._ws.recv()
            self.subscription_id = first[0].result
        except asyncio.CancelledError:
            # Caller gave up on the handshake
            await self._close_socket()
            raise
        except Exception as e:
            await self._close_socket()
            raise SubscriptionError("logsSubscribe failed", address=self.address, error=str(e)) from e

        logger.info(f"📡 Subscribed to logs mentioning {self.address[:8]}... (id={self.subscription_id})")
        self._pump_task = asyncio.create_task(self._pump())
        return self

    async def _pump(self) -> None:
        cause: Optional[BaseException] = None
        try:
            async for messages in self._ws:
                for msg in messages:
                    if not isinstance(msg, LogsNotification):
                        continue
                    value = msg.result.value
                    self.callback(LogDelivery(
                        signature=str(value.signature),
                        logs=list(value.logs or []),
                        err=value.err,
                        slot=msg.result.context.slot,
                    ))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            cause = e
            logger.warning(f"⚠️ Log stream closed for {self.address[:8]}...: {e}")
        except Exception as e:
            cause = e
            logger.error(f"❌ Log stream failed for {self.address[:8]}...: {e}")

        if not self._closing and self.on_closed is not None:
            self.on_closed(cause)

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None and self.subscription_id is not None:
            try:
                await self._ws.logs_unsubscribe(self.subscription_id)
            except Exception as e:
                logger.debug(f"logsUnsubscribe failed (ignored): {e}")
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        await self._close_socket()

    async def _close_socket(self) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except Exception as e:
            logger.debug(f"Websocket close failed (ignored): {e}")
        self._ws = None


class SolanaRpcGateway:
    """
    RPC collaborator used by the swap feed.

    Usage:
        rpc = SolanaRpcGateway(settings.RPC_URL, settings.ws_url)
        tx = await rpc.get_parsed_transaction(signature)
        sub = await rpc.subscribe_logs(pool_address, on_log)
    """

    def __init__(
        self,
        rpc_url: str,
        wss_url: str,
        timeout: float = 10.0,
        client: Optional[AsyncClient] = None,
        connector: Callable[[str], Any] = connect,
    ):
        self.rpc_url = rpc_url
        self.wss_url = wss_url
        self.connector = connector
        self.client = client or AsyncClient(rpc_url, timeout=timeout)

    async def close(self) -> None:
        await self.client.close()

    async def get_parsed_transaction(
        self,
        signature: str,
        commitment: Commitment = Confirmed,
        max_supported_transaction_version: int = 0,
    ) -> Optional[ParsedTransaction]:
        resp = await self.client.get_transaction(
            Signature.from_string(signature),
            encoding="jsonParsed",
            commitment=commitment,
            max_supported_transaction_version=max_supported_transaction_version,
        )
        if resp is None or resp.value is None:
            return None
        payload = json.loads(resp.to_json())
        return normalize_parsed_transaction(signature, payload.get("result"))

    async def get_program_accounts(
        self,
        program_id: str,
        filters: Sequence[Union[int, MemcmpOpts]],
        commitment: Commitment = Confirmed,
    ) -> List[ProgramAccount]:
        try:
            resp = await self.client.get_program_accounts(
                Pubkey.from_string(program_id),
                commitment=commitment,
                encoding="base64",
                filters=list(filters),
            )
        except Exception as e:
            raise NetworkError("getProgramAccounts failed", program_id=program_id, error=str(e)) from e
        return [
            ProgramAccount(pubkey=str(item.pubkey), data=bytes(item.account.data))
            for item in resp.value
        ]

    async def subscribe_logs(
        self,
        address: str,
        callback: LogCallback,
        commitment: Commitment = Processed,
        on_closed: Optional[ClosedCallback] = None,
    ) -> LogSubscription:
        subscription = LogSubscription(self.wss_url, address, callback, commitment, on_closed, self.connector)
        return await subscription.open()
