"""
Swap classification from balance deltas.

Given a parsed transaction and the tracked pool, decide whether it is a swap
of the tracked token through that pool and, if so, which side, how much and
who traded.

Precedence (the tie-break order matters, keep it):
    A. pool address AND tracked mint must both be referenced
    B. token delta: largest non-vault account change above the dust floor,
       else the inverted smallest vault (low confidence)
    C. SOL delta: the token owner's lamports if present, else the first
       delta whose direction matches, else the largest delta
    D. SOL side wins when both signals agree, token side wins otherwise
    E. thresholds, price, emission with the tracked mint
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from solana_swap_feed.config import Settings
from solana_swap_feed.constants import LAMPORTS_PER_SOL
from solana_swap_feed.core.models import (
    Classification,
    ParsedTransaction,
    PoolRecord,
    RejectionReason,
    TokenBalance,
    TradeEvent,
    TradeSide,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenAccountDelta:
    index: int
    owner: str
    pre_amount: float
    post_amount: float
    has_pre: bool
    has_post: bool

    @property
    def change(self) -> float:
        return self.post_amount - self.pre_amount

    @property
    def abs_change(self) -> float:
        return abs(self.change)

    @property
    def max_balance(self) -> float:
        return max(self.pre_amount, self.post_amount)


@dataclass
class TokenSignal:
    amount: float
    increased: bool  # From the user's point of view
    owner: str
    from_vault: bool = False


@dataclass
class SolDelta:
    index: int
    lamports: int  # post - pre

    @property
    def sol(self) -> float:
        return abs(self.lamports) / LAMPORTS_PER_SOL

    @property
    def decreased(self) -> bool:
        return self.lamports < 0


class SwapClassifier:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.vault_multiplier = settings.VAULT_MULTIPLIER
        self.token_dust_floor = settings.TOKEN_DUST_FLOOR
        self.sol_floor_lamports = int(round(settings.SOL_MATERIALITY_FLOOR * LAMPORTS_PER_SOL))
        self.min_sol_amount = settings.MIN_SOL_AMOUNT
        self.clock = clock

    def classify(self, tx: ParsedTransaction, pool: PoolRecord) -> Classification:
        if tx.err:
            return Classification.rejected(RejectionReason.TRANSACTION_FAILED, err=tx.err)

        # Step A: relevance
        mint = pool.token_mint.lower()
        keys = {key.lower() for key in tx.account_keys}
        if pool.pool_address.lower() not in keys:
            return Classification.rejected(RejectionReason.POOL_NOT_IN_TRANSACTION)

        balance_mints = {b.mint for b in tx.pre_token_balances + tx.post_token_balances}
        if mint not in keys and mint not in {m.lower() for m in balance_mints}:
            return Classification.rejected(
                RejectionReason.TOKEN_NOT_IN_TRANSACTION,
                found_mints=tuple(sorted(balance_mints)),
            )

        # Step B: token delta
        token = self._token_signal(tx, pool)
        if token is None:
            return Classification.rejected(
                RejectionReason.NO_TOKEN_FOUND,
                found_mints=tuple(sorted(balance_mints)),
            )

        # Step C: SOL delta
        sol = self._sol_signal(tx, token)
        if sol is None:
            return Classification.rejected(RejectionReason.NO_SOL_MOVEMENT, token_amount=token.amount)

        # Step D: cross-validation
        signals_agree = token.increased == sol.decreased
        if signals_agree:
            is_buy = sol.decreased
        else:
            is_buy = token.increased
            logger.debug(
                f"Signals disagree on {tx.signature[:16]}...: tokens {'up' if token.increased else 'down'}, "
                f"SOL {'down' if sol.decreased else 'up'}; using token direction"
            )

        # Step E: thresholds and emission
        if not (sol.sol > self.min_sol_amount and token.amount > 0):
            return Classification.rejected(
                RejectionReason.BELOW_THRESHOLD,
                sol_amount=sol.sol,
                token_amount=token.amount,
            )

        trade = TradeEvent(
            pool_address=pool.pool_address,
            token_mint=pool.token_mint,
            sol_amount=sol.sol,
            token_amount=token.amount,
            side=TradeSide.BUY if is_buy else TradeSide.SELL,
            user=self._user(tx, token, sol),
            signature=tx.signature,
            timestamp=float(tx.block_time) if tx.block_time else self.clock(),
            price=sol.sol / token.amount,
            low_confidence=token.from_vault,
            signals_disagreed=not signals_agree,
        )
        return Classification(trade=trade)

    def _merge_token_balances(self, tx: ParsedTransaction, mint: str) -> List[TokenAccountDelta]:
        merged: Dict[int, List[Optional[TokenBalance]]] = {}
        for bal in tx.pre_token_balances:
            if bal.mint.lower() == mint:
                merged.setdefault(bal.account_index, [None, None])[0] = bal
        for bal in tx.post_token_balances:
            if bal.mint.lower() == mint:
                merged.setdefault(bal.account_index, [None, None])[1] = bal

        deltas = []
        for index, (pre, post) in merged.items():
            deltas.append(TokenAccountDelta(
                index=index,
                owner=(pre.owner if pre else "") or (post.owner if post else ""),
                pre_amount=pre.ui_amount if pre else 0.0,
                post_amount=post.ui_amount if post else 0.0,
                has_pre=pre is not None,
                has_post=post is not None,
            ))
        return deltas

    def _token_signal(self, tx: ParsedTransaction, pool: PoolRecord) -> Optional[TokenSignal]:
        accounts = self._merge_token_balances(tx, pool.token_mint.lower())
        if not accounts:
            return None

        # Reserves dwarf any single trader: the largest account is the vault
        # when it is VAULT_MULTIPLIER times bigger than the runner-up.
        accounts.sort(key=lambda a: a.max_balance, reverse=True)
        vault_index = None
        if len(accounts) >= 2 and accounts[0].max_balance > accounts[1].max_balance * self.vault_multiplier:
            vault_index = accounts[0].index

        pool_owner = pool.pool_address.lower()
        excluded = []
        best: Optional[TokenAccountDelta] = None
        for acc in accounts:
            if acc.owner.lower() == pool_owner or acc.index == vault_index:
                excluded.append(acc)
                continue
            if acc.abs_change < self.token_dust_floor or acc.abs_change == 0:
                continue
            if best is None or acc.abs_change > best.abs_change:
                best = acc

        if best is not None:
            return TokenSignal(amount=best.abs_change, increased=best.change > 0, owner=best.owner)

        # Aggregator-routed swaps often carry no user token account. Read the
        # smallest vault from the pool's side and invert it.
        vaults = [acc for acc in excluded if acc.has_pre and acc.has_post and acc.abs_change > 0]
        if not vaults:
            return None
        vault = min(vaults, key=lambda a: a.pre_amount)
        logger.debug(
            f"No user token account in {tx.signature[:16]}..., using inverted vault "
            f"{vault.pre_amount:.2f} -> {vault.post_amount:.2f}"
        )
        return TokenSignal(
            amount=vault.abs_change,
            increased=vault.change < 0,  # Pool lost tokens means the user bought
            owner=vault.owner,
            from_vault=True,
        )

    def _sol_signal(self, tx: ParsedTransaction, token: TokenSignal) -> Optional[SolDelta]:
        user_index = -1
        if token.owner and not token.from_vault:
            owner = token.owner.lower()
            for i, key in enumerate(tx.account_keys):
                if key.lower() == owner:
                    user_index = i
                    break

        deltas = []
        for i, (pre, post) in enumerate(zip(tx.pre_balances, tx.post_balances)):
            diff = post - pre
            if abs(diff) >= self.sol_floor_lamports and diff != 0:
                deltas.append(SolDelta(index=i, lamports=diff))
        if not deltas:
            return None
        deltas.sort(key=lambda d: abs(d.lamports), reverse=True)

        for delta in deltas:
            if delta.index == user_index:
                return delta

        # Tokens received pair with SOL spent, tokens given with SOL received
        for delta in deltas:
            if delta.decreased == token.increased:
                return delta
        return deltas[0]

    @staticmethod
    def _user(tx: ParsedTransaction, token: TokenSignal, sol: SolDelta) -> str:
        # On the vault path the owner is the pool authority, not a trader
        if token.owner and not token.from_vault:
            return token.owner
        if 0 <= sol.index < len(tx.account_keys):
            return tx.account_keys[sol.index]
        if tx.account_keys:
            return tx.account_keys[0]
        return "unknown"
