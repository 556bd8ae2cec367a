#!/usr/bin/env python3
"""
demo.py - Walkthrough: a bullet bond and a coupon bond from issue to redemption

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-3:  Setup     - Ledger, settlement token, bond contracts
  4-6:  Bullet    - Issue 1000 shares, sell 33, repay at 115, claim, residue
  7-9:  Coupon    - Mint, monthly interest, transfer, overdue repayment
  10:   Audit     - Conservation check and replay

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from tokenbond import (
    Ledger, BulletBond, CouponBond,
    create_settlement_token, compute_issue, compute_approve,
    ZeroBalanceClaim,
    unix_seconds,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2024, 1, 1)
    end_time: datetime = datetime(2025, 1, 1)
    owner_funds: Decimal = Decimal("1000000")

    bullet_supply: int = 1000
    bullet_unit_value: int = 100
    bullet_final_value: int = 115
    alice_shares: int = 33

    coupon_principal: int = 100
    coupon_rate: Decimal = Decimal("0.000001")
    overdue_rate: Decimal = Decimal("0.000002")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def show_tokens(ledger: Ledger, *wallets: str):
    for wallet in wallets:
        balance = ledger.get_balance(wallet, "USDT") if ledger.is_registered(wallet) else Decimal("0")
        print(f"  {wallet:<12} {balance.normalize():>14} USDT")


# ============================================================================
# SETUP
# ============================================================================

def step_01_ledger():
    step_header(1, "The Ledger", "Everything settles in one double-entry ledger.")
    ledger = Ledger("demo", initial_time=CONFIG.start_time, verbose=False)
    print(f"Ledger '{ledger.name}' at {ledger.current_time}")
    return ledger


def step_02_token(ledger: Ledger):
    step_header(2, "Settlement Token", "Bonds are funded and paid out in USDT.")
    ledger.register_unit(create_settlement_token("USDT", "Tether USD"))
    ledger.register_wallet("owner")
    ledger.execute(compute_issue(ledger, "USDT", "owner", CONFIG.owner_funds))
    show_tokens(ledger, "owner")


def step_03_contracts(ledger: Ledger):
    step_header(3, "Bond Contracts", "Each contract has an administrator and an escrow wallet.")
    bullet = BulletBond(ledger, "owner")
    coupon = CouponBond(ledger, "owner")
    print(f"  BulletBond escrow: {bullet.escrow}")
    print(f"  CouponBond escrow: {coupon.escrow}")
    return bullet, coupon


# ============================================================================
# BULLET BOND
# ============================================================================

def step_04_bullet_issue(ledger: Ledger, bullet: BulletBond):
    step_header(4, "Issue a Bullet Bond", "The whole supply is minted to the administrator.")
    pid = bullet.add_product("owner", CONFIG.bullet_supply, "USDT", CONFIG.bullet_unit_value,
                             "ipfs://bullet", unix_seconds(CONFIG.start_time), unix_seconds(CONFIG.end_time))
    bullet.safe_transfer_from("owner", "owner", "alice", pid, CONFIG.alice_shares)
    print(f"  product {pid}: supply {bullet.total_supply(pid)}, status {bullet.status(pid)}")
    print(f"  owner holds {bullet.balance_of('owner', pid)}, alice holds {bullet.balance_of('alice', pid)}")
    return pid


def step_05_bullet_repay(ledger: Ledger, bullet: BulletBond, pid: int):
    step_header(5, "Repay", "The administrator approves the escrow and funds final_value x supply.")
    total = CONFIG.bullet_final_value * CONFIG.bullet_supply
    ledger.advance_time(CONFIG.end_time)
    ledger.execute(compute_approve(ledger, "USDT", "owner", bullet.escrow, total))
    bullet.repay("owner", pid, CONFIG.bullet_final_value, total)
    print(f"  status {bullet.status(pid)}, escrow {bullet.escrow_balance('USDT').normalize()}")


def step_06_bullet_claim(ledger: Ledger, bullet: BulletBond, pid: int):
    step_header(6, "Claim and Residue", "Holders redeem once; the administrator takes the residue.")
    print(f"  alice claims {bullet.claim('alice', pid).normalize()}")
    try:
        bullet.claim("alice", pid)
    except ZeroBalanceClaim as exc:
        print(f"  second claim refused: {exc}")
    print(f"  owner residue {bullet.withdraw_residue('owner', pid).normalize()}")
    print(f"  owner still holds {bullet.balance_of('owner', pid)} shares (not burned)")


# ============================================================================
# COUPON BOND
# ============================================================================

def step_07_coupon_issue(ledger: Ledger, coupon: CouponBond):
    step_header(7, "Issue a Coupon Bond", "Interest accrues per share, per second.")
    # the clock already sits at the end of the bullet bond's window
    start = ledger.current_time
    pid = coupon.add_product("owner", "USDT", CONFIG.coupon_principal, CONFIG.coupon_rate,
                             CONFIG.overdue_rate, "ipfs://coupon",
                             unix_seconds(start), unix_seconds(start + timedelta(days=90)))
    coupon.mint_batch("owner", pid, ["alice", "bob"], [10, 20])
    ledger.execute(compute_approve(ledger, "USDT", "owner", coupon.escrow, 500))
    coupon.deposit("owner", pid, 500)
    return pid, start


def step_08_coupon_interest(ledger: Ledger, coupon: CouponBond, pid: int, start: datetime):
    step_header(8, "Interest and Transfers", "Interest stays with whoever held the shares.")
    ledger.advance_time(start + timedelta(days=30))
    print(f"  alice claims {coupon.claim('alice', pid).normalize()} after 30 days")
    coupon.safe_transfer_from("bob", "bob", "carol", pid, 20)
    ledger.advance_time(start + timedelta(days=60))
    for holder in ("alice", "bob", "carol"):
        print(f"  {holder:<6} pending {coupon.pending_interest(holder, pid).normalize()}")


def step_09_coupon_repay(ledger: Ledger, coupon: CouponBond, pid: int, start: datetime):
    step_header(9, "Overdue Repayment", "Overdue interest runs until the administrator repays.")
    ledger.advance_time(start + timedelta(days=100))
    shortfall = coupon.outstanding_obligation(pid) - coupon.escrow_balance("USDT")
    ledger.execute(compute_approve(ledger, "USDT", "owner", coupon.escrow, shortfall))
    coupon.repay("owner", pid, shortfall)
    for holder in ("alice", "bob", "carol"):
        print(f"  {holder:<6} claims {coupon.claim(holder, pid).normalize()}")
    print(f"  escrow left: {coupon.escrow_balance('USDT').normalize()}")


# ============================================================================
# AUDIT
# ============================================================================

def step_10_audit(ledger: Ledger):
    step_header(10, "Audit", "Supply matches issuance and the log replays to the same state.")
    result = ledger.verify_double_entry()
    print(f"  conservation valid: {result['valid']}")
    replayed = ledger.replay()
    same = all(
        replayed.get_balance(w, "USDT") == ledger.get_balance(w, "USDT")
        for w in ledger.list_wallets()
    )
    print(f"  replay of {len(ledger.transaction_log)} transactions matches: {same}")
    show_tokens(ledger, "owner", "alice", "bob", "carol")


def main():
    ledger = step_01_ledger()
    step_02_token(ledger)
    bullet, coupon = step_03_contracts(ledger)
    wait_for_enter()

    pid = step_04_bullet_issue(ledger, bullet)
    wait_for_enter()
    step_05_bullet_repay(ledger, bullet, pid)
    wait_for_enter()
    step_06_bullet_claim(ledger, bullet, pid)
    wait_for_enter()

    cpid, start = step_07_coupon_issue(ledger, coupon)
    wait_for_enter()
    step_08_coupon_interest(ledger, coupon, cpid, start)
    wait_for_enter()
    step_09_coupon_repay(ledger, coupon, cpid, start)
    wait_for_enter()

    step_10_audit(ledger)


if __name__ == "__main__":
    main()
