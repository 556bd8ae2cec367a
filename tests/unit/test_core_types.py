"""
test_core_types.py - Unit tests for core data structures

Tests:
- Move: creation, validation, immutability
- PendingTransaction: intent_id hashing
- UnitStateChange: changed_fields
- Unit: rounding per unit type
- unix_seconds
"""

import pytest
from dataclasses import replace
from datetime import datetime, timezone, timedelta
from decimal import Decimal

from tokenbond import (
    Move, Unit, UnitStateChange, PendingTransaction,
    TransactionOrigin, OriginType,
    UNIT_TYPE_SETTLEMENT_TOKEN, UNIT_TYPE_BULLET_BOND,
    create_settlement_token, unix_seconds,
)
from tokenbond.core import _canonicalize, _freeze_state


def _origin(source_id: str = "test") -> TransactionOrigin:
    return TransactionOrigin(origin_type=OriginType.USER_ACTION, source_id=source_id)


def _pending(moves, origin=None) -> PendingTransaction:
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=(),
        origin=origin or _origin(),
        timestamp=datetime(2024, 1, 1),
    )


class TestMoveCreation:
    """Tests for Move creation and validation."""

    def test_create_valid_move(self):
        move = Move(Decimal("33"), "BULLET-0", "owner", "alice", "transfer")
        assert move.source == "owner"
        assert move.dest == "alice"
        assert move.unit_symbol == "BULLET-0"
        assert move.quantity == Decimal("33")

    def test_move_is_frozen(self):
        move = Move(Decimal("1"), "USDT", "a", "b", "c")
        with pytest.raises(AttributeError):
            move.quantity = Decimal("2")

    def test_zero_quantity_raises(self):
        with pytest.raises(ValueError, match="must be positive"):
            Move(Decimal("0"), "USDT", "a", "b", "c")

    def test_negative_quantity_raises(self):
        with pytest.raises(ValueError, match="must be positive"):
            Move(Decimal("-1"), "USDT", "a", "b", "c")

    def test_float_quantity_raises(self):
        with pytest.raises(ValueError, match="must be Decimal"):
            Move(1.0, "USDT", "a", "b", "c")

    def test_infinite_quantity_raises(self):
        with pytest.raises(ValueError, match="finite"):
            Move(Decimal("Infinity"), "USDT", "a", "b", "c")

    def test_same_source_dest_raises(self):
        with pytest.raises(ValueError, match="Source and dest must be different"):
            Move(Decimal("1"), "USDT", "a", "a", "c")

    @pytest.mark.parametrize("field", ["source", "dest", "unit_symbol", "contract_id"])
    def test_blank_fields_raise(self, field):
        kwargs = dict(quantity=Decimal("1"), unit_symbol="USDT", source="a", dest="b", contract_id="c")
        kwargs[field] = "  "
        with pytest.raises(ValueError, match="cannot be empty"):
            Move(**kwargs)


class TestIntentId:
    """intent_id is a content hash of moves, state changes and origin."""

    def test_same_content_same_id(self):
        moves = [Move(Decimal("5"), "USDT", "a", "b", "x")]
        assert _pending(moves).intent_id == _pending(moves).intent_id

    def test_decimal_representation_does_not_matter(self):
        a = _pending([Move(Decimal("5"), "USDT", "a", "b", "x")])
        b = _pending([Move(Decimal("5.000"), "USDT", "a", "b", "x")])
        assert a.intent_id == b.intent_id

    def test_move_order_does_not_matter(self):
        m1 = Move(Decimal("5"), "USDT", "a", "b", "x")
        m2 = Move(Decimal("7"), "USDT", "b", "c", "y")
        assert _pending([m1, m2]).intent_id == _pending([m2, m1]).intent_id

    def test_origin_changes_id(self):
        moves = [Move(Decimal("5"), "USDT", "a", "b", "x")]
        assert _pending(moves, _origin("a#1")).intent_id != _pending(moves, _origin("a#2")).intent_id

    def test_replace_with_blank_intent_recomputes(self):
        pending = _pending([Move(Decimal("5"), "USDT", "a", "b", "x")])
        stamped = replace(pending, origin=_origin("a#1"), intent_id="")
        assert stamped.intent_id
        assert stamped.intent_id != pending.intent_id

    def test_is_empty(self):
        assert _pending([]).is_empty()
        assert not _pending([Move(Decimal("5"), "USDT", "a", "b", "x")]).is_empty()


class TestUnitStateChange:

    def test_changed_fields(self):
        sc = UnitStateChange("BULLET-0", {'uri': 'a', 'final_value': 0}, {'uri': 'b', 'final_value': 0})
        assert sc.changed_fields() == {'uri': ('a', 'b')}

    def test_added_field(self):
        sc = UnitStateChange("X", {}, {'repaid_ts': 5})
        assert sc.changed_fields() == {'repaid_ts': (None, 5)}


class TestUnitRounding:

    def test_token_rounds_down(self):
        token = create_settlement_token("USDT", "Tether", decimal_places=6)
        assert token.round(Decimal("1.2345679")) == Decimal("1.234567")

    def test_shares_are_whole(self):
        unit = Unit("BULLET-0", "b", UNIT_TYPE_BULLET_BOND, decimal_places=0)
        assert unit.round(Decimal("3.9")) == Decimal("3")

    def test_no_rounding_without_places(self):
        unit = Unit("X", "x", UNIT_TYPE_SETTLEMENT_TOKEN)
        assert unit.round(Decimal("1.23456789")) == Decimal("1.23456789")

    def test_state_is_fresh_dict(self):
        unit = Unit("X", "x", UNIT_TYPE_SETTLEMENT_TOKEN, _frozen_state=_freeze_state({'a': 1}))
        state = unit.state
        state['a'] = 2
        assert unit.state == {'a': 1}

    def test_negative_decimal_places_raise(self):
        with pytest.raises(ValueError):
            create_settlement_token("USDT", "Tether", decimal_places=-1)


class TestCanonicalize:

    def test_dict_key_order_irrelevant(self):
        assert _canonicalize({'a': 1, 'b': 2}) == _canonicalize({'b': 2, 'a': 1})

    def test_decimal_normalized(self):
        assert _canonicalize(Decimal("1.50")) == _canonicalize(Decimal("1.5"))

    def test_none_and_bool(self):
        assert _canonicalize(None) == "null"
        assert _canonicalize(True) == "true"


class TestUnixSeconds:

    def test_epoch(self):
        assert unix_seconds(datetime(1970, 1, 1)) == 0

    def test_naive_is_utc(self):
        assert unix_seconds(datetime(2024, 1, 1)) == 1704067200

    def test_aware_datetime(self):
        tz = timezone(timedelta(hours=2))
        assert unix_seconds(datetime(2024, 1, 1, 2, tzinfo=tz)) == 1704067200
