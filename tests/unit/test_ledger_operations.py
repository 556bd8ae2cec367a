"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Balance reads and supply
- Time management
- Transaction execution (applied, rejected, already applied, units_to_create)
- Audit log and replay
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from tokenbond import (
    Ledger, Move, ExecuteResult, UnitStateChange, SYSTEM_WALLET,
    build_transaction, create_settlement_token, compute_issue,
    WalletNotRegistered, UnitNotRegistered,
)
from tokenbond.registry import product_unit


def _funded() -> Ledger:
    ledger = Ledger("test", datetime(2024, 1, 1), verbose=False)
    ledger.register_unit(create_settlement_token("USDT", "Tether USD", decimal_places=6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.execute(compute_issue(ledger, "USDT", "alice", Decimal("1000")))
    return ledger


class TestLedgerCreation:

    def test_create_ledger_with_options(self):
        t = datetime(2024, 1, 1, 9, 30)
        ledger = Ledger(name="test", initial_time=t, verbose=False)
        assert ledger.name == "test"
        assert ledger.current_time == t
        assert ledger.verbose is False

    def test_default_time_is_epoch(self):
        assert Ledger("test", verbose=False).current_time == datetime(1970, 1, 1)

    def test_system_wallet_is_registered(self):
        assert Ledger("test", verbose=False).is_registered(SYSTEM_WALLET)


class TestRegistration:

    def test_register_wallet(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.register_wallet("alice") == "alice"
        assert "alice" in ledger.list_wallets()

    def test_register_wallet_twice_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_blank_wallet_raises(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            Ledger("test", verbose=False).register_wallet(" ")

    def test_ensure_wallet_is_idempotent(self):
        ledger = Ledger("test", verbose=False)
        ledger.ensure_wallet("alice")
        ledger.ensure_wallet("alice")
        assert ledger.is_registered("alice")

    def test_register_unit_twice_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_unit(create_settlement_token("USDT", "Tether USD"))
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_unit(create_settlement_token("USDT", "Tether USD"))

    def test_verbose_registration_prints(self, capsys):
        ledger = Ledger("test", verbose=True)
        ledger.register_unit(create_settlement_token("USDT", "Tether USD"))
        assert "Registered: USDT" in capsys.readouterr().out


class TestBalances:

    def test_get_balance(self):
        ledger = _funded()
        assert ledger.get_balance("alice", "USDT") == Decimal("1000")
        assert ledger.get_balance("bob", "USDT") == Decimal("0")

    def test_unregistered_wallet_raises(self):
        with pytest.raises(WalletNotRegistered):
            _funded().get_balance("carol", "USDT")

    def test_unregistered_unit_raises(self):
        with pytest.raises(UnitNotRegistered):
            _funded().get_balance("alice", "EUR")

    def test_system_wallet_mirrors_supply(self):
        ledger = _funded()
        assert ledger.total_supply("USDT") == Decimal("1000")
        assert ledger.get_balance(SYSTEM_WALLET, "USDT") == Decimal("-1000")

    def test_positions_skip_zero(self):
        positions = _funded().get_positions("USDT")
        assert positions == {"alice": Decimal("1000"), SYSTEM_WALLET: Decimal("-1000")}

    def test_unit_state_is_a_copy(self):
        ledger = _funded()
        state = ledger.get_unit_state("USDT")
        state['allowances']['alice'] = {'bob': Decimal("1")}
        assert ledger.get_unit_state("USDT") == {'allowances': {}, 'nonce': 1}


class TestTime:

    def test_advance_time(self):
        ledger = _funded()
        ledger.advance_time(datetime(2024, 6, 1))
        assert ledger.current_time == datetime(2024, 6, 1)

    def test_time_cannot_go_backwards(self):
        ledger = _funded()
        with pytest.raises(ValueError, match="backwards"):
            ledger.advance_time(datetime(2023, 1, 1))

    def test_future_timestamp_rejected(self):
        ledger = _funded()
        pending = build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "bob", "t")])
        ledger._current_time = ledger.current_time - timedelta(seconds=1)
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "future timestamp"


class TestExecute:

    def test_applied_transfer(self):
        ledger = _funded()
        pending = build_transaction(ledger, [Move(Decimal("250"), "USDT", "alice", "bob", "t")])
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "USDT") == Decimal("750")
        assert ledger.get_balance("bob", "USDT") == Decimal("250")
        assert ledger.last_rejection is None

    def test_same_intent_applied_once(self):
        ledger = _funded()
        pending = build_transaction(ledger, [Move(Decimal("250"), "USDT", "alice", "bob", "t")])
        ledger.execute(pending)
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "USDT") == Decimal("250")

    def test_overdraft_rejected_without_effect(self):
        ledger = _funded()
        pending = build_transaction(ledger, [Move(Decimal("1001"), "USDT", "alice", "bob", "t")])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "min" in ledger.last_rejection
        assert ledger.get_balance("alice", "USDT") == Decimal("1000")
        assert len(ledger.transaction_log) == 1

    def test_unregistered_wallet_rejected(self):
        ledger = _funded()
        pending = build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "carol", "t")])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "wallet not registered: carol"

    def test_empty_pending_is_noop(self):
        ledger = _funded()
        assert ledger.execute(build_transaction(ledger, [])) == ExecuteResult.APPLIED
        assert len(ledger.transaction_log) == 1

    def test_state_change_applied(self):
        ledger = _funded()
        old = ledger.get_unit_state("USDT")
        new = {'allowances': {'alice': {'bob': Decimal("5")}}}
        ledger.execute(build_transaction(ledger, [], [UnitStateChange("USDT", old, new)]))
        assert ledger.get_unit_state("USDT") == new

    def test_units_to_create_registered_with_moves(self):
        ledger = _funded()
        unit = product_unit("BULLET-0", "Bullet", "BULLET_BOND", {'final_value': Decimal("0")})
        pending = build_transaction(
            ledger, [Move(Decimal("10"), "BULLET-0", SYSTEM_WALLET, "alice", "mint")],
            units_to_create=(unit,))
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "BULLET-0") == Decimal("10")

    def test_units_to_create_rolled_back_on_rejection(self):
        ledger = _funded()
        unit = product_unit("BULLET-0", "Bullet", "BULLET_BOND", {})
        pending = build_transaction(
            ledger, [Move(Decimal("10"), "BULLET-0", SYSTEM_WALLET, "carol", "mint")],
            units_to_create=(unit,))
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "BULLET-0" not in ledger.list_units()

    def test_existing_unit_cannot_be_created(self):
        ledger = _funded()
        unit = product_unit("USDT", "dup", "BULLET_BOND", {})
        pending = build_transaction(ledger, [], units_to_create=(unit,))
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.get_unit("USDT").name == "Tether USD"

    def test_verbose_rejection_prints(self, capsys):
        ledger = _funded()
        ledger.verbose = True
        ledger.execute(build_transaction(ledger, [Move(Decimal("5000"), "USDT", "alice", "bob", "t")]))
        assert "REJECTED" in capsys.readouterr().out


class TestAudit:

    def test_verify_double_entry(self):
        result = _funded().verify_double_entry({"USDT": Decimal("1000")})
        assert result['valid']
        assert result['supplies'] == {"USDT": Decimal("1000")}

    def test_verify_double_entry_reports_expected_mismatch(self):
        result = _funded().verify_double_entry({"USDT": Decimal("999")})
        assert not result['valid']
        assert result['discrepancies'][0]['unit'] == "USDT"

    def test_transactions_for(self):
        ledger = _funded()
        assert len(ledger.transactions_for("USDT")) == 1
        assert ledger.transactions_for("EUR") == []

    def test_replay_reproduces_balances(self):
        ledger = _funded()
        ledger.advance_time(datetime(2024, 2, 1))
        ledger.execute(build_transaction(ledger, [Move(Decimal("40"), "USDT", "alice", "bob", "t")]))
        replayed = ledger.replay()
        assert replayed.get_balance("alice", "USDT") == Decimal("960")
        assert replayed.get_balance("bob", "USDT") == Decimal("40")
