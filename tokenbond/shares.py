"""
shares.py - Share Ledger: per-product holder balances

Each product is one ledger unit whose balances are integer share counts.
This module builds the moves for minting, burning and transferring shares
and answers the balance/supply reads:

    mint:      Move(amount, symbol, SYSTEM_WALLET, holder)
    burn:      Move(amount, symbol, holder, SYSTEM_WALLET)
    transfer:  Move(amount, symbol, sender, recipient)

The functions here do not check who is calling. Gating is done by the
settlement protocols and contract facades that use them.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Sequence

from .core import (
    LedgerView, Move, PendingTransaction,
    InsufficientBalance, LengthMismatch,
    SYSTEM_WALLET,
    build_transaction, empty_pending_transaction, to_decimal,
)


def share_amount(amount) -> Decimal:
    """
    Validate and normalize a share count.

    Raises:
        ValueError: If amount is negative, non-finite or fractional
    """
    value = to_decimal(amount)
    if not value.is_finite():
        raise ValueError(f"share amount must be finite, got {amount}")
    if value < 0:
        raise ValueError(f"share amount must be non-negative, got {amount}")
    if value != value.to_integral_value():
        raise ValueError(f"share amount must be a whole number, got {amount}")
    return value


# =============================================================================
# READS
# =============================================================================

def balance_of(view: LedgerView, symbol: str, holder: str) -> Decimal:
    """Shares held by holder. Unknown holders hold nothing."""
    if holder == SYSTEM_WALLET:
        return Decimal("0")
    return view.get_positions(symbol).get(holder, Decimal("0"))


def holders(view: LedgerView, symbol: str) -> Dict[str, Decimal]:
    """All holders with a non-zero balance, sorted by wallet id."""
    return {
        wallet: qty
        for wallet, qty in sorted(view.get_positions(symbol).items())
        if wallet != SYSTEM_WALLET
    }


def total_supply(view: LedgerView, symbol: str) -> Decimal:
    """Outstanding shares: the sum of every holder balance."""
    return sum(holders(view, symbol).values(), Decimal("0"))


# =============================================================================
# MOVE BUILDERS
# =============================================================================

def mint_move(symbol: str, holder: str, amount: Decimal, contract_id: str) -> Move:
    """
    Issue shares out of the system wallet.

    Raises:
        ValueError: If holder is the system wallet
    """
    if holder == SYSTEM_WALLET:
        raise ValueError(f"cannot mint {symbol} to the system wallet")
    return Move(amount, symbol, SYSTEM_WALLET, holder, contract_id)


def burn_move(
    view: LedgerView, symbol: str, holder: str, amount: Decimal, contract_id: str
) -> Move:
    """
    Return shares to the system wallet.

    Raises:
        InsufficientBalance: If holder has fewer than amount shares
    """
    held = balance_of(view, symbol, holder)
    if held < amount:
        raise InsufficientBalance(f"{holder} holds {held} {symbol}, cannot burn {amount}")
    return Move(amount, symbol, holder, SYSTEM_WALLET, contract_id)


def check_transfer(view: LedgerView, symbol: str, sender: str, recipient: str, amount: Decimal) -> None:
    """
    Raise unless sender may transfer amount shares to recipient.

    Shares never go to the system wallet by transfer; only burns retire them.

    Raises:
        InsufficientBalance: If sender has fewer than amount shares
        ValueError: If recipient is the system wallet
    """
    if recipient == SYSTEM_WALLET:
        raise ValueError(f"cannot transfer {symbol} to the system wallet")
    held = balance_of(view, symbol, sender)
    if held < amount:
        raise InsufficientBalance(f"{sender} holds {held} {symbol}, cannot transfer {amount}")


def transfer_move(
    view: LedgerView, symbol: str, sender: str, recipient: str, amount: Decimal, contract_id: str
) -> Move:
    """
    Move shares between two different holders.

    Raises:
        InsufficientBalance: If sender has fewer than amount shares
        ValueError: If recipient is the system wallet or the sender itself
    """
    check_transfer(view, symbol, sender, recipient, amount)
    return Move(amount, symbol, sender, recipient, contract_id)


# =============================================================================
# TRANSACTIONS
# =============================================================================

def compute_mint(view: LedgerView, symbol: str, holder: str, amount) -> PendingTransaction:
    """Mint amount shares of symbol to holder. Zero mints nothing."""
    return compute_mint_batch(view, symbol, [holder], [amount])


def mint_batch_moves(symbol: str, holders_: Sequence[str], amounts: Sequence) -> List[Move]:
    """
    Moves issuing amounts[i] shares to holders_[i].

    Raises:
        LengthMismatch: If the sequences differ in length or an amount is negative
        ValueError: If an amount is fractional or a holder is the system wallet
    """
    if len(holders_) != len(amounts):
        raise LengthMismatch(f"{len(holders_)} holders but {len(amounts)} amounts")
    for i, amount in enumerate(amounts):
        value = to_decimal(amount)
        if not value.is_nan() and value < 0:
            raise LengthMismatch(f"amount {i} is negative: {amount}")
    moves = []
    for i, (holder, amount) in enumerate(zip(holders_, amounts)):
        qty = share_amount(amount)
        if qty == 0:
            continue
        moves.append(mint_move(symbol, holder, qty, f"mint_{symbol}_{i}_{holder}"))
    return moves


def compute_mint_batch(
    view: LedgerView, symbol: str, holders_: Sequence[str], amounts: Sequence
) -> PendingTransaction:
    """Mint several holders in one transaction."""
    moves = mint_batch_moves(symbol, holders_, amounts)
    if not moves:
        return empty_pending_transaction(view)
    return build_transaction(view, moves)


def compute_transfer(
    view: LedgerView, symbol: str, sender: str, recipient: str, amount
) -> PendingTransaction:
    """Transfer shares. Claim rights travel with the shares. A self-transfer changes nothing."""
    qty = share_amount(amount)
    check_transfer(view, symbol, sender, recipient, qty)
    if qty == 0 or sender == recipient:
        return empty_pending_transaction(view)
    move = transfer_move(view, symbol, sender, recipient, qty, f"transfer_{symbol}")
    return build_transaction(view, [move])


def compute_burn(view: LedgerView, symbol: str, holder: str, amount) -> PendingTransaction:
    """Burn shares held by holder."""
    qty = share_amount(amount)
    if qty == 0:
        return empty_pending_transaction(view)
    return build_transaction(view, [burn_move(view, symbol, holder, qty, f"burn_{symbol}")])
