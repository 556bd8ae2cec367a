"""
conftest.py - Shared pytest fixtures for tokenbond tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with a funded settlement token
- Bond contracts (bullet, coupon) wired to the funded ledger
- Products created with the standard scenario terms
"""

import pytest
from decimal import Decimal

from tokenbond import (
    Ledger,
    BulletBond, CouponBond,
    create_settlement_token,
)

from tests.scenario import START, START_TS, END_TS, TOKEN, OWNER, issue


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Ledger at START with USDT registered and 1,000,000 USDT issued to the owner."""
    ledger = Ledger("test", START, verbose=False)
    ledger.register_unit(create_settlement_token(TOKEN, "Tether USD"))
    issue(ledger, OWNER, Decimal("1000000"))
    return ledger


# =============================================================================
# CONTRACT FIXTURES
# =============================================================================

@pytest.fixture
def bullet(ledger):
    """BulletBond administered by the owner."""
    return BulletBond(ledger, OWNER)


@pytest.fixture
def coupon(ledger):
    """CouponBond administered by the owner."""
    return CouponBond(ledger, OWNER)


@pytest.fixture
def bullet_product(bullet):
    """Product 0: 1000 shares at unit value 100, all held by the owner."""
    return bullet.add_product(OWNER, 1000, TOKEN, 100, "ipfs://bullet-0", START_TS, END_TS)


@pytest.fixture
def coupon_product(coupon):
    """
    Product 0: principal 100, 0.000001 per second coupon, 0.000002 overdue.

    alice holds 10 shares and bob 20 from START.
    """
    pid = coupon.add_product(OWNER, TOKEN, 100, Decimal("0.000001"), Decimal("0.000002"),
                             "ipfs://coupon-0", START_TS, END_TS)
    coupon.mint_batch(OWNER, pid, ["alice", "bob"], [10, 20])
    return pid
