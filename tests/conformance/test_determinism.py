"""
Determinism Conformance Tests

INVARIANT: The same operations in the same order produce the same ledger.

    run(ops) on two fresh ledgers  ⟹  equal balances, product records,
                                       and intent ids
    ledger.replay()                ⟹  equal balances and product records
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from tokenbond import Ledger, BulletBond, CouponBond, create_settlement_token
from tests.scenario import START, START_TS, END_TS, TOKEN, OWNER, issue, approve, at, compare_ledger_states


def _run(transfers, claim_day):
    ledger = Ledger("determinism", START, verbose=False)
    ledger.register_unit(create_settlement_token(TOKEN, "Tether USD"))
    issue(ledger, OWNER, Decimal("1000000"))

    bullet = BulletBond(ledger, OWNER)
    coupon = CouponBond(ledger, OWNER)
    b = bullet.add_product(OWNER, 100, TOKEN, 100, "", START_TS, END_TS)
    c = coupon.add_product(OWNER, TOKEN, 100, Decimal("0.000001"), Decimal("0.000002"), "", START_TS, END_TS)
    coupon.mint_batch(OWNER, c, ["alice", "bob"], [50, 50])
    approve(ledger, OWNER, coupon.escrow, 10000)
    coupon.deposit(OWNER, c, 10000)

    for day, qty in enumerate(transfers, start=1):
        ledger.advance_time(at(days=day))
        bullet.safe_transfer_from(OWNER, OWNER, "alice", b, qty)
        coupon.safe_transfer_from("alice", "alice", "bob", c, min(qty, coupon.balance_of("alice", c)))

    ledger.advance_time(at(days=len(transfers) + claim_day))
    coupon.claim("bob", c)
    approve(ledger, OWNER, bullet.escrow, 11000)
    bullet.repay(OWNER, b, 110, 11000)
    if bullet.balance_of("alice", b) > 0:
        bullet.claim("alice", b)
    return ledger


class TestDeterminism:

    @given(st.lists(st.integers(min_value=0, max_value=10), max_size=8), st.integers(min_value=0, max_value=30))
    @settings(max_examples=30, deadline=None)
    def test_identical_runs_identical_ledgers(self, transfers, claim_day):
        first = _run(transfers, claim_day)
        second = _run(transfers, claim_day)
        assert compare_ledger_states(first, second)["equal"]
        assert [tx.intent_id for tx in first.transaction_log] == \
            [tx.intent_id for tx in second.transaction_log]

    @given(st.lists(st.integers(min_value=0, max_value=10), max_size=8), st.integers(min_value=0, max_value=30))
    @settings(max_examples=30, deadline=None)
    def test_replay_reproduces_state(self, transfers, claim_day):
        ledger = _run(transfers, claim_day)
        diff = compare_ledger_states(ledger, ledger.replay())
        assert diff["equal"], diff
