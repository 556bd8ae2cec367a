"""
coupon_bond.py - Coupon Bond: per-second interest plus a maturity payment

Interest accrues per share, per second, inside the window [start_ts, end_ts]
at coupon_rate_per_second. Past end_ts an unrepaid product keeps accruing at
overdue_rate_per_second until it is repaid. Nothing accrues after repayment,
even when the product is repaid before end_ts:

    stop       = min(t, repaid_ts)
    accrued(t) = coupon_rate  * (min(stop, end_ts) - start_ts)      if positive
               + overdue_rate * (stop - end_ts)                     if positive

Each holder has a claim cursor in the product state:

    state['claims'][holder] = {'last_settled_ts': ts, 'unclaimed': amount}

A checkpoint folds shares * (accrued(now) - accrued(last_settled_ts)) into
'unclaimed' and moves the cursor to now. Mints and transfers checkpoint every
wallet whose balance changes, so interest stays with the wallet that held the
shares while it accrued. claim() pays 'unclaimed' plus what accrued since the
cursor; after repayment it also pays principal_per_unit per share and burns
the shares, which removes the holder's cursor.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange, UnitState,
    ZeroBalanceClaim,
    UNIT_TYPE_COUPON_BOND,
    build_transaction, empty_pending_transaction, to_decimal, unix_seconds,
)
from ..gateway import SettlementGateway
from ..registry import load_product, mark_repaid, product_unit, validate_window
from .. import shares


# =============================================================================
# FROZEN DATACLASSES
# =============================================================================

@dataclass(frozen=True, slots=True)
class CouponTerms:
    """Economic terms fixed at creation."""
    principal_per_unit: Decimal
    coupon_rate_per_second: Decimal
    overdue_rate_per_second: Decimal
    start_ts: int
    end_ts: int


@dataclass(frozen=True, slots=True)
class ClaimState:
    """A holder's claim cursor."""
    last_settled_ts: int
    unclaimed: Decimal


def load_coupon_terms(state: UnitState) -> CouponTerms:
    return CouponTerms(
        principal_per_unit=to_decimal(state['principal_per_unit']),
        coupon_rate_per_second=to_decimal(state['coupon_rate_per_second']),
        overdue_rate_per_second=to_decimal(state['overdue_rate_per_second']),
        start_ts=state['start_ts'],
        end_ts=state['end_ts'],
    )


def _load_claims(state: UnitState) -> Dict[str, ClaimState]:
    return {
        holder: ClaimState(entry['last_settled_ts'], to_decimal(entry['unclaimed']))
        for holder, entry in state.get('claims', {}).items()
    }


def _dump_claims(claims: Dict[str, ClaimState]) -> Dict[str, dict]:
    return {
        holder: {'last_settled_ts': c.last_settled_ts, 'unclaimed': c.unclaimed}
        for holder, c in sorted(claims.items())
    }


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def accrued_per_unit(terms: CouponTerms, t: int, repaid_ts: Optional[int] = None) -> Decimal:
    """Interest owed per share from start_ts up to t. Nothing accrues after repayment."""
    stop = t if repaid_ts is None else min(t, repaid_ts)
    coupon_seconds = max(0, min(stop, terms.end_ts) - terms.start_ts)
    overdue_seconds = max(0, stop - terms.end_ts)
    return (terms.coupon_rate_per_second * coupon_seconds
            + terms.overdue_rate_per_second * overdue_seconds)


def initial_claim(terms: CouponTerms) -> ClaimState:
    return ClaimState(last_settled_ts=terms.start_ts, unclaimed=Decimal("0"))


def settle(
    terms: CouponTerms,
    claim: ClaimState,
    balance: Decimal,
    now_ts: int,
    repaid_ts: Optional[int] = None,
) -> ClaimState:
    """Fold interest earned since the cursor into unclaimed. The cursor never moves back."""
    if now_ts <= claim.last_settled_ts:
        return claim
    earned = balance * (accrued_per_unit(terms, now_ts, repaid_ts)
                        - accrued_per_unit(terms, claim.last_settled_ts, repaid_ts))
    return ClaimState(last_settled_ts=now_ts, unclaimed=claim.unclaimed + earned)


def _checkpoint(
    view: LedgerView,
    symbol: str,
    state: UnitState,
    wallets: Iterable[str],
    now_ts: int,
) -> Dict[str, ClaimState]:
    terms = load_coupon_terms(state)
    claims = _load_claims(state)
    for wallet in wallets:
        current = claims.get(wallet, initial_claim(terms))
        claims[wallet] = settle(terms, current, shares.balance_of(view, symbol, wallet),
                                now_ts, state.get('repaid_ts'))
    return claims


# =============================================================================
# UNIT CREATION
# =============================================================================

def create_coupon_product(
    symbol: str,
    product_id: int,
    settlement_token: str,
    principal_per_unit,
    coupon_rate_per_second,
    overdue_rate_per_second,
    uri: str,
    start_ts: int,
    end_ts: int,
    name: str = None,
) -> Unit:
    """Create the share unit of a coupon product with no holders yet."""
    principal = to_decimal(principal_per_unit)
    coupon_rate = to_decimal(coupon_rate_per_second)
    overdue_rate = to_decimal(overdue_rate_per_second)
    if not principal.is_finite() or principal <= 0:
        raise ValueError(f"principal_per_unit must be positive, got {principal}")
    if not coupon_rate.is_finite() or coupon_rate < 0:
        raise ValueError(f"coupon_rate_per_second must be non-negative, got {coupon_rate}")
    if not overdue_rate.is_finite() or overdue_rate < 0:
        raise ValueError(f"overdue_rate_per_second must be non-negative, got {overdue_rate}")
    if not settlement_token:
        raise ValueError("settlement_token cannot be empty")
    validate_window(start_ts, end_ts)

    return product_unit(symbol, name or f"Coupon bond #{product_id}", UNIT_TYPE_COUPON_BOND, {
        'product_id': product_id,
        'settlement_token': settlement_token,
        'principal_per_unit': principal,
        'coupon_rate_per_second': coupon_rate,
        'overdue_rate_per_second': overdue_rate,
        'uri': uri,
        'start_ts': start_ts,
        'end_ts': end_ts,
        'final_value': Decimal("0"),
        'repaid_ts': None,
        'claims': {},
    })


def compute_add_product(view: LedgerView, unit: Unit) -> PendingTransaction:
    """Register the product. Shares are minted separately."""
    return build_transaction(view, [], units_to_create=(unit,))


# =============================================================================
# SHARE MOVEMENTS
# =============================================================================

def compute_mint_batch(view: LedgerView, symbol: str, holders, amounts) -> PendingTransaction:
    """
    Mint amounts[i] shares to holders[i], checkpointing each recipient first.

    Raises:
        LengthMismatch: If holders and amounts differ in length or an amount is negative
        ValueError: If an amount is fractional
    """
    moves = shares.mint_batch_moves(symbol, holders, amounts)
    if not moves:
        return empty_pending_transaction(view)
    state = view.get_unit_state(symbol)
    recipients = sorted({m.dest for m in moves})
    claims = _checkpoint(view, symbol, state, recipients, unix_seconds(view.current_time))
    new_state = {**state, 'claims': _dump_claims(claims)}
    return build_transaction(view, moves, [UnitStateChange(symbol, state, new_state)])


def compute_transfer(
    view: LedgerView, symbol: str, sender: str, recipient: str, amount
) -> PendingTransaction:
    """
    Transfer shares after settling both sides' interest to date.

    Raises:
        InsufficientBalance: If sender holds fewer than amount shares
        ValueError: If recipient is the system wallet
    """
    qty = shares.share_amount(amount)
    shares.check_transfer(view, symbol, sender, recipient, qty)
    if qty == 0 or sender == recipient:
        return empty_pending_transaction(view)
    move = shares.transfer_move(view, symbol, sender, recipient, qty, f"transfer_{symbol}")
    state = view.get_unit_state(symbol)
    claims = _checkpoint(view, symbol, state, [sender, recipient], unix_seconds(view.current_time))
    new_state = {**state, 'claims': _dump_claims(claims)}
    return build_transaction(view, [move], [UnitStateChange(symbol, state, new_state)])


# =============================================================================
# READS
# =============================================================================

def pending_interest(view: LedgerView, symbol: str, holder: str, at_ts: int = None) -> Decimal:
    """Interest holder could claim at at_ts (default: ledger time)."""
    state = view.get_unit_state(symbol)
    terms = load_coupon_terms(state)
    now_ts = unix_seconds(view.current_time) if at_ts is None else at_ts
    claim = _load_claims(state).get(holder, initial_claim(terms))
    held = shares.balance_of(view, symbol, holder)
    return settle(terms, claim, held, now_ts, state.get('repaid_ts')).unclaimed


def outstanding_obligation(view: LedgerView, symbol: str, at_ts: int = None) -> Decimal:
    """
    Everything still owed to all holders at at_ts: unpaid interest plus principal.

    Sizing repayment with this amount (minus what escrow already holds)
    funds every holder's terminal claim at at_ts.
    """
    state = view.get_unit_state(symbol)
    terms = load_coupon_terms(state)
    now_ts = unix_seconds(view.current_time) if at_ts is None else at_ts
    claims = _load_claims(state)
    balances = shares.holders(view, symbol)
    total = Decimal("0")
    for wallet in sorted(set(balances) | set(claims)):
        held = balances.get(wallet, Decimal("0"))
        claim = settle(terms, claims.get(wallet, initial_claim(terms)), held, now_ts,
                       state.get('repaid_ts'))
        total += claim.unclaimed + terms.principal_per_unit * held
    return total


# =============================================================================
# FUNDING AND REDEMPTION
# =============================================================================

def compute_deposit(
    view: LedgerView, symbol: str, escrow: str, administrator: str, amount
) -> PendingTransaction:
    """
    Pull interest funds into escrow ahead of repayment. No state transition.

    Raises:
        TransferRejected: If the administrator's approved balance is short
    """
    product = load_product(view, symbol)
    gateway = SettlementGateway(product.settlement_token, escrow)
    moves, token_changes = gateway.pull_from(view, administrator, amount, f"deposit_{symbol}")
    if not moves:
        return empty_pending_transaction(view)
    return build_transaction(view, moves, token_changes)


def compute_repay(
    view: LedgerView, symbol: str, escrow: str, administrator: str, total_amount
) -> PendingTransaction:
    """
    Mark the product repaid and pull total_amount into escrow.

    final_value becomes principal_per_unit; all interest stops accruing at the
    repayment time, even before end_ts. total_amount may be zero when escrow
    was prefunded.

    Raises:
        AlreadyRepaid: If the product was repaid before
        TransferRejected: If the administrator's approved balance is short
    """
    state = view.get_unit_state(symbol)
    terms = load_coupon_terms(state)
    repaid = mark_repaid(view, symbol, terms.principal_per_unit, unix_seconds(view.current_time))
    gateway = SettlementGateway(state['settlement_token'], escrow)
    moves, token_changes = gateway.pull_from(view, administrator, total_amount, f"repay_{symbol}")
    return build_transaction(view, moves, [repaid] + token_changes)


def compute_claim(view: LedgerView, symbol: str, escrow: str, holder: str) -> PendingTransaction:
    """
    Pay holder the interest accrued since its last claim.

    Before repayment the shares stay and only the cursor advances. After
    repayment the claim is terminal: principal is paid too, the shares are
    burned and the cursor is dropped.

    Raises:
        ZeroBalanceClaim: If holder has neither shares nor unclaimed interest
        TransferRejected: If escrow cannot cover the payout
    """
    product = load_product(view, symbol)
    state = view.get_unit_state(symbol)
    terms = load_coupon_terms(state)
    now_ts = unix_seconds(view.current_time)
    claims = _load_claims(state)
    held = shares.balance_of(view, symbol, holder)

    claim = settle(terms, claims.get(holder, initial_claim(terms)), held, now_ts, product.repaid_ts)
    if held <= 0 and claim.unclaimed <= 0:
        raise ZeroBalanceClaim(f"{holder} has nothing to claim on {symbol}")

    gateway = SettlementGateway(product.settlement_token, escrow)
    moves = []
    payout = claim.unclaimed
    if product.is_repaid:
        payout += product.final_value * held
        if held > 0:
            moves.append(shares.burn_move(view, symbol, holder, held, f"claim_{symbol}_{holder}"))
        claims.pop(holder, None)
    else:
        claims[holder] = ClaimState(claim.last_settled_ts, Decimal("0"))

    moves += gateway.push_to(view, holder, gateway.round_payout(view, payout), f"claim_{symbol}")

    new_state = {**state, 'claims': _dump_claims(claims)}
    changes = [UnitStateChange(symbol, state, new_state)] if new_state != state else []
    if not moves and not changes:
        return empty_pending_transaction(view)
    return build_transaction(view, moves, changes)


def compute_withdraw_residue(
    view: LedgerView, symbol: str, escrow: str, administrator: str, amount
) -> PendingTransaction:
    """
    Send amount from escrow back to the administrator.

    Raises:
        TransferRejected: If escrow holds less than amount
    """
    product = load_product(view, symbol)
    gateway = SettlementGateway(product.settlement_token, escrow)
    moves = gateway.push_to(view, administrator, amount, f"residue_{symbol}")
    if not moves:
        return empty_pending_transaction(view)
    return build_transaction(view, moves)
