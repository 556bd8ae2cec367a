"""
settlement_token.py - Fungible Settlement Token (ERC-20 style)

The settlement token is the external value medium: bond products are funded
in it and pay out in it. Balances are ordinary ledger balances; allowances
and an operation counter live in the token unit's state:

    state['allowances'] = {owner: {spender: amount}}
    state['nonce']      = number of token operations applied so far

Every operation bumps the nonce, so two identical transfers (or approvals)
are two distinct intents and both apply.

Supported operations mirror the standard fungible-token interface:
    issue         - faucet mint out of SYSTEM_WALLET
    approve       - owner lets spender move up to amount
    transfer      - owner moves its own tokens
    transfer_from - spender moves owner's tokens, consuming allowance

Every failure of the medium (insufficient balance or allowance) is
TransferRejected.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitState, UnitStateChange,
    TransactionOrigin, OriginType, TransferRejected,
    SYSTEM_WALLET, UNIT_TYPE_SETTLEMENT_TOKEN, DEFAULT_TOKEN_DECIMAL_PLACES,
    build_transaction, empty_pending_transaction, to_decimal, _freeze_state,
)


def create_settlement_token(
    symbol: str,
    name: str,
    decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
) -> Unit:
    """Create a settlement token unit with no allowances and no supply."""
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_SETTLEMENT_TOKEN,
        min_balance=Decimal("0"),
        max_balance=Decimal("Infinity"),
        decimal_places=decimal_places,
        _frozen_state=_freeze_state({'allowances': {}, 'nonce': 0}),
    )


def token_amount(amount) -> Decimal:
    """Validate a token amount: finite and non-negative."""
    value = to_decimal(amount)
    if not value.is_finite() or value < 0:
        raise ValueError(f"token amount must be non-negative and finite, got {amount}")
    return value


def _bump(token: str, state: UnitState, **fields) -> UnitStateChange:
    """State change applying fields and advancing the operation nonce."""
    new_state = {**state, **fields, 'nonce': int(state.get('nonce', 0)) + 1}
    return UnitStateChange(token, state, new_state)


# =============================================================================
# READS
# =============================================================================

def balance_of(view: LedgerView, token: str, account: str) -> Decimal:
    """Token balance of account (zero for unknown accounts)."""
    if account == SYSTEM_WALLET:
        return Decimal("0")
    return view.get_positions(token).get(account, Decimal("0"))


def allowance(view: LedgerView, token: str, owner: str, spender: str) -> Decimal:
    """Amount spender may still move out of owner's balance."""
    allowances = view.get_unit_state(token).get('allowances', {})
    return to_decimal(allowances.get(owner, {}).get(spender, 0))


def nonce(view: LedgerView, token: str) -> int:
    """Number of token operations applied so far."""
    return int(view.get_unit_state(token).get('nonce', 0))


# =============================================================================
# OPERATIONS
# =============================================================================

def compute_issue(view: LedgerView, token: str, to: str, amount) -> PendingTransaction:
    """Mint new tokens to an account."""
    qty = token_amount(amount)
    if qty == 0:
        return empty_pending_transaction(view)
    if to == SYSTEM_WALLET:
        raise ValueError("cannot issue to the system wallet")
    origin = TransactionOrigin(OriginType.SYSTEM, "faucet", token, "ISSUE")
    change = _bump(token, view.get_unit_state(token))
    return build_transaction(view, [Move(qty, token, SYSTEM_WALLET, to, f"issue_{token}_{to}")],
                             [change], origin=origin)


def compute_approve(
    view: LedgerView, token: str, owner: str, spender: str, amount
) -> PendingTransaction:
    """Set (not add to) the allowance of spender over owner's tokens."""
    qty = token_amount(amount)
    if owner == spender:
        raise ValueError("owner and spender must be different")
    state = view.get_unit_state(token)
    allowances = state.get('allowances', {})
    owner_allowances = dict(allowances.get(owner, {}))
    if qty == 0:
        owner_allowances.pop(spender, None)
    else:
        owner_allowances[spender] = qty
    new_allowances = {**allowances, owner: owner_allowances}
    if not owner_allowances:
        del new_allowances[owner]
    origin = TransactionOrigin(OriginType.USER_ACTION, owner, token, "APPROVE")
    return build_transaction(view, [], [_bump(token, state, allowances=new_allowances)], origin=origin)


def transfer_moves(
    view: LedgerView, token: str, sender: str, recipient: str, amount, contract_id: str
) -> List[Move]:
    """
    Moves for a plain token transfer (empty for a zero amount).

    Raises:
        TransferRejected: If sender's balance is too small
        ValueError: If recipient is the system wallet
    """
    qty = token_amount(amount)
    if recipient == SYSTEM_WALLET:
        raise ValueError("cannot transfer tokens to the system wallet")
    if qty == 0:
        return []
    held = balance_of(view, token, sender)
    if held < qty:
        raise TransferRejected(f"{token}: transfer amount {qty} exceeds balance {held} of {sender}")
    if sender == recipient:
        return []
    return [Move(qty, token, sender, recipient, contract_id)]


def compute_transfer(
    view: LedgerView, token: str, sender: str, recipient: str, amount
) -> PendingTransaction:
    """Transfer the sender's own tokens."""
    moves = transfer_moves(view, token, sender, recipient, amount, f"transfer_{token}")
    if not moves:
        return empty_pending_transaction(view)
    origin = TransactionOrigin(OriginType.USER_ACTION, sender, token, "TRANSFER")
    change = _bump(token, view.get_unit_state(token))
    return build_transaction(view, moves, [change], origin=origin)


def transfer_from(
    view: LedgerView,
    token: str,
    spender: str,
    payer: str,
    recipient: str,
    amount,
    contract_id: str,
) -> Tuple[List[Move], List[UnitStateChange]]:
    """
    Moves and allowance update for spender moving payer's tokens to recipient.

    Raises:
        TransferRejected: If the allowance or the payer's balance is too small
    """
    qty = token_amount(amount)
    if qty == 0:
        return [], []
    approved = allowance(view, token, payer, spender)
    if approved < qty:
        raise TransferRejected(f"{token}: insufficient allowance {approved} of {spender} over {payer}, needs {qty}")
    moves = transfer_moves(view, token, payer, recipient, qty, contract_id)

    state = view.get_unit_state(token)
    allowances = state.get('allowances', {})
    payer_allowances = dict(allowances.get(payer, {}))
    remaining = approved - qty
    if remaining == 0:
        payer_allowances.pop(spender, None)
    else:
        payer_allowances[spender] = remaining
    new_allowances = {**allowances, payer: payer_allowances}
    if not payer_allowances:
        del new_allowances[payer]
    return moves, [_bump(token, state, allowances=new_allowances)]


def compute_transfer_from(
    view: LedgerView, token: str, spender: str, payer: str, recipient: str, amount
) -> PendingTransaction:
    """transfer_from as a standalone transaction."""
    moves, changes = transfer_from(view, token, spender, payer, recipient, amount,
                                   f"transfer_from_{token}")
    if not changes:
        return empty_pending_transaction(view)
    origin = TransactionOrigin(OriginType.USER_ACTION, spender, token, "TRANSFER_FROM")
    return build_transaction(view, moves, changes, origin=origin)
