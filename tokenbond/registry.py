"""
registry.py - Product Registry

Products live in the ledger as units: the unit's symbol is derived from a
sequential product id and the unit's state is the product record (settlement
token, economic terms, accrual window, uri, final value). The registry owns
the id counter, the id -> symbol arena and the administrator capability.

Mutations of a product record (uri, repayment) are UnitStateChanges so they
commit atomically with whatever else the enclosing transaction does.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    Unauthorized, UnknownProduct, AlreadyRepaid,
    STATUS_CREATED, STATUS_REPAID,
    build_transaction, to_decimal, _freeze_state,
)


@dataclass(frozen=True, slots=True)
class Product:
    """Fields every product carries, whatever its settlement protocol."""
    product_id: int
    symbol: str
    settlement_token: str
    uri: str
    start_ts: int
    end_ts: int
    final_value: Decimal
    repaid_ts: Optional[int]

    @property
    def is_repaid(self) -> bool:
        return self.final_value != 0

    @property
    def status(self) -> str:
        return STATUS_REPAID if self.is_repaid else STATUS_CREATED


class ProductRegistry:
    """
    Sequential product ids plus the administrator check.

    Ids are never reused. reserve() peeks at the next id; the counter only
    advances in register(), after the creating transaction has committed.
    """

    def __init__(self, administrator: str, prefix: str):
        if not administrator or not administrator.strip():
            raise ValueError("administrator cannot be empty")
        if not prefix or not prefix.strip():
            raise ValueError("prefix cannot be empty")
        self.administrator = administrator
        self.prefix = prefix
        self._next_id = 0
        self._symbols: Dict[int, str] = {}

    @property
    def next_id(self) -> int:
        return self._next_id

    def require_administrator(self, caller: str) -> None:
        if caller != self.administrator:
            raise Unauthorized(f"{caller} is not the administrator")

    def reserve(self) -> Tuple[int, str]:
        """The id and symbol the next product will get."""
        product_id = self._next_id
        return product_id, f"{self.prefix}-{product_id}"

    def register(self, product_id: int, symbol: str) -> None:
        if product_id != self._next_id:
            raise ValueError(f"expected product id {self._next_id}, got {product_id}")
        self._symbols[product_id] = symbol
        self._next_id += 1

    def symbol_for(self, product_id: int) -> str:
        try:
            return self._symbols[product_id]
        except KeyError:
            raise UnknownProduct(f"product {product_id} does not exist") from None

    def product_ids(self) -> List[int]:
        return sorted(self._symbols)


# =============================================================================
# PRODUCT RECORDS
# =============================================================================

def validate_window(start_ts: int, end_ts: int) -> None:
    if start_ts < 0:
        raise ValueError(f"start_ts must be non-negative, got {start_ts}")
    if end_ts < start_ts:
        raise ValueError(f"end_ts ({end_ts}) must not precede start_ts ({start_ts})")


def product_unit(symbol: str, name: str, unit_type: str, state: dict) -> Unit:
    """Share unit for a product: whole, non-negative share counts."""
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        max_balance=Decimal("Infinity"),
        decimal_places=0,
        _frozen_state=_freeze_state(state),
    )


def load_product(view: LedgerView, symbol: str) -> Product:
    """Read the common product fields out of the unit state."""
    state = view.get_unit_state(symbol)
    return Product(
        product_id=state['product_id'],
        symbol=symbol,
        settlement_token=state['settlement_token'],
        uri=state.get('uri', ""),
        start_ts=state['start_ts'],
        end_ts=state['end_ts'],
        final_value=to_decimal(state.get('final_value', 0)),
        repaid_ts=state.get('repaid_ts'),
    )


def product_status(product: Product) -> str:
    """CREATED until the final value is set, REPAID afterwards."""
    return product.status


def compute_set_uri(view: LedgerView, symbol: str, uri: str) -> PendingTransaction:
    """Replace the product's metadata pointer. Economics are untouched."""
    state = view.get_unit_state(symbol)
    new_state = {**state, 'uri': uri}
    return build_transaction(view, [], [UnitStateChange(symbol, state, new_state)])


def mark_repaid(
    view: LedgerView, symbol: str, final_value, repaid_ts: int
) -> UnitStateChange:
    """
    Set the final value of a product. Happens at most once.

    Raises:
        AlreadyRepaid: If final_value is already set
        ValueError: If final_value is not positive (zero means "unrepaid")
    """
    state = view.get_unit_state(symbol)
    if to_decimal(state.get('final_value', 0)) != 0:
        raise AlreadyRepaid(f"{symbol} already repaid")
    value = to_decimal(final_value)
    if not value.is_finite() or value <= 0:
        raise ValueError(f"final_value must be positive, got {final_value}")
    new_state = {**state, 'final_value': value, 'repaid_ts': repaid_ts}
    return UnitStateChange(symbol, state, new_state)
