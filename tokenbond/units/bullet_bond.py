"""
bullet_bond.py - Bullet Bond: single payment at maturity

A bullet product has one payment obligation. Lifecycle per product:

    CREATED --repay--> REPAID   (terminal)

    addProduct:       unit created, initial_supply minted to the administrator
    repay:            administrator funds total_final_value into escrow and
                      fixes final_value (the payout per share)
    claim:            holder's shares are burned and final_value * shares is
                      paid from escrow; a second claim finds a zero balance
    withdrawResidue:  administrator is paid for the shares it still holds,
                      WITHOUT burning them

All functions take a LedgerView and return a PendingTransaction; nothing is
mutated until the ledger executes it.
"""

from __future__ import annotations
from decimal import Decimal

from ..core import (
    LedgerView, PendingTransaction, Unit,
    NotRepaid, ZeroBalanceClaim,
    UNIT_TYPE_BULLET_BOND,
    build_transaction, to_decimal, unix_seconds,
)
from ..gateway import SettlementGateway
from ..registry import load_product, mark_repaid, product_unit, validate_window
from .. import shares


def create_bullet_product(
    symbol: str,
    product_id: int,
    settlement_token: str,
    unit_value,
    uri: str,
    start_ts: int,
    end_ts: int,
    name: str = None,
) -> Unit:
    """Create the share unit of a bullet product. final_value starts at 0 (unrepaid)."""
    unit_value = to_decimal(unit_value)
    if not unit_value.is_finite() or unit_value <= 0:
        raise ValueError(f"unit_value must be positive, got {unit_value}")
    if not settlement_token:
        raise ValueError("settlement_token cannot be empty")
    validate_window(start_ts, end_ts)

    return product_unit(symbol, name or f"Bullet bond #{product_id}", UNIT_TYPE_BULLET_BOND, {
        'product_id': product_id,
        'settlement_token': settlement_token,
        'unit_value': unit_value,
        'uri': uri,
        'start_ts': start_ts,
        'end_ts': end_ts,
        'final_value': Decimal("0"),
        'repaid_ts': None,
    })


def compute_add_product(
    view: LedgerView, unit: Unit, administrator: str, initial_supply
) -> PendingTransaction:
    """Register the product unit and mint the whole initial supply to the administrator."""
    moves = shares.mint_batch_moves(unit.symbol, [administrator], [initial_supply])
    return build_transaction(view, moves, units_to_create=(unit,))


def compute_repay(
    view: LedgerView,
    symbol: str,
    escrow: str,
    administrator: str,
    final_value,
    total_final_value,
) -> PendingTransaction:
    """
    Fund the product and fix its payout per share.

    total_final_value is taken as given: it is not checked against
    final_value * total_supply.

    Raises:
        AlreadyRepaid: If the product was repaid before
        TransferRejected: If the administrator's approved balance is short
    """
    repaid = mark_repaid(view, symbol, final_value, unix_seconds(view.current_time))
    product = load_product(view, symbol)
    gateway = SettlementGateway(product.settlement_token, escrow)
    moves, token_changes = gateway.pull_from(view, administrator, total_final_value, f"repay_{symbol}")
    return build_transaction(view, moves, [repaid] + token_changes)


def bullet_payout(view: LedgerView, symbol: str, holder: str) -> Decimal:
    """What holder would receive from claim() right now (zero before repayment)."""
    product = load_product(view, symbol)
    return product.final_value * shares.balance_of(view, symbol, holder)


def compute_claim(view: LedgerView, symbol: str, escrow: str, holder: str) -> PendingTransaction:
    """
    Redeem all of holder's shares for final_value each.

    The shares are burned in the same transaction that pays out, so the
    claim can succeed at most once per holding.

    Raises:
        NotRepaid: If the product has not been repaid
        ZeroBalanceClaim: If holder has no shares
        TransferRejected: If escrow cannot cover the payout
    """
    product = load_product(view, symbol)
    if not product.is_repaid:
        raise NotRepaid(f"{symbol} has not been repaid")
    held = shares.balance_of(view, symbol, holder)
    if held <= 0:
        raise ZeroBalanceClaim(f"{holder} has no {symbol} to claim")

    gateway = SettlementGateway(product.settlement_token, escrow)
    payout = gateway.round_payout(view, product.final_value * held)
    moves = [shares.burn_move(view, symbol, holder, held, f"claim_{symbol}_{holder}")]
    moves += gateway.push_to(view, holder, payout, f"claim_{symbol}")
    return build_transaction(view, moves)


def compute_withdraw_residue(
    view: LedgerView, symbol: str, escrow: str, administrator: str
) -> PendingTransaction:
    """
    Pay the administrator final_value for every share it still holds.

    The administrator's shares are NOT burned. Calling this again pays again
    for the same balance, and if those shares are later transferred the
    recipient can claim them too. Callers must withdraw residue only once.

    Raises:
        NotRepaid: If the product has not been repaid
        ZeroBalanceClaim: If the administrator holds no shares
        TransferRejected: If escrow cannot cover the payout
    """
    product = load_product(view, symbol)
    if not product.is_repaid:
        raise NotRepaid(f"{symbol} has not been repaid")
    held = shares.balance_of(view, symbol, administrator)
    if held <= 0:
        raise ZeroBalanceClaim(f"{administrator} holds no {symbol}")

    gateway = SettlementGateway(product.settlement_token, escrow)
    payout = gateway.round_payout(view, product.final_value * held)
    return build_transaction(view, gateway.push_to(view, administrator, payout, f"residue_{symbol}"))
