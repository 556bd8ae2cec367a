"""
Core types and pure functions for the bond settlement ledger.

This module provides the foundational data structures shared by every other module:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the settlement error taxonomy
4. Type aliases: Positions, UnitState
5. Time helpers: unix_seconds

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import calendar
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Settlement arithmetic must be deterministic. The global context is set once,
# at import time. Use decimal.localcontext() for any temporary deviation.
#
#   - prec=50: enough for 18-decimal token amounts times large share counts
#   - rounding=ROUND_HALF_EVEN: unbiased default for intermediate results
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants
UNIT_TYPE_SETTLEMENT_TOKEN = "SETTLEMENT_TOKEN"
UNIT_TYPE_BULLET_BOND = "BULLET_BOND"
UNIT_TYPE_COUPON_BOND = "COUPON_BOND"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-24")

# ERC-20 style tokens carry 18 decimals by default.
DEFAULT_TOKEN_DECIMAL_PLACES = 18

# Payouts never round up: the escrow must not pay out more than it was funded.
DECIMAL_ROUNDING = {
    UNIT_TYPE_SETTLEMENT_TOKEN: ROUND_DOWN,
    UNIT_TYPE_BULLET_BOND: ROUND_DOWN,
    UNIT_TYPE_COUPON_BOND: ROUND_DOWN,
}

# Product lifecycle states
STATUS_CREATED = "CREATED"
STATUS_REPAID = "REPAID"

_EPOCH = datetime(1970, 1, 1)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Internal state for a unit: product terms, allowances, claim cursors, etc.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Settlement functions accept a LedgerView to declare that they only read.
    The Ledger class implements this protocol (and also mutates); tests use
    FakeView, which cannot mutate at all.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: validated and applied.
    ALREADY_APPLIED: same intent_id was processed before (no effect).
    REJECTED: failed validation; nothing was applied.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Holder-initiated (transfer, claim)
    ADMINISTRATOR = "administrator"       # Owner-gated (create, repay, residue)
    CONTRACT = "contract"                 # Built by a settlement function
    SYSTEM = "system"                     # Issuance of the settlement token


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and settlement errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class TransactionRejected(LedgerError):
    """Raised when the ledger rejects a transaction during validation."""
    pass


class Unauthorized(LedgerError):
    """Raised when an administrator-only operation is invoked by anyone else."""
    pass


class UnknownProduct(LedgerError):
    """Raised when a product id has never been allocated."""
    pass


class AlreadyRepaid(LedgerError):
    """Raised when repaying a product whose final value is already set."""
    pass


class NotRepaid(LedgerError):
    """Raised when redeeming a product that has not been funded yet."""
    pass


class ZeroBalanceClaim(LedgerError):
    """Raised when a holder has nothing to redeem."""
    pass


class InsufficientBalance(LedgerError):
    """Raised when a share transfer or burn exceeds the holder's balance."""
    pass


class LengthMismatch(LedgerError):
    """Raised when batch minting receives holders and amounts of different length."""
    pass


class TransferRejected(LedgerError):
    """Raised when the settlement token refuses a transfer (balance or allowance)."""
    pass


# ============================================================================
# TIME
# ============================================================================

def unix_seconds(moment: datetime) -> int:
    """
    Convert a datetime to integer unix seconds.

    Naive datetimes are interpreted as UTC, matching the ledger's default
    clock which starts at 1970-01-01 00:00:00.
    """
    if moment.tzinfo is None:
        return int((moment - _EPOCH).total_seconds())
    return calendar.timegm(moment.utctimetuple())


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and floats to Decimal via str() (no binary noise)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Caller identity, stamped with an operation nonce by the contracts
        unit_symbol: Product or token the transaction concerns (if any)
        event_type: Operation name (e.g. "CLAIM", "REPAY", "PRODUCT_ADDED")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of one unit's state.

    The new_state is applied on execution; old_state is kept for the audit
    trail and for changed_fields().
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Issuance is a move out of SYSTEM_WALLET, burning is a move into it.

    Attributes:
        quantity: Amount to transfer (finite, positive).
        unit_symbol: Unit being transferred (a product's shares or a token).
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Deterministic serialization of nested state for hashing."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """
    Content hash of a transaction's intent.

    Built only from moves, state changes, origin and created units, never from
    timestamps, so the same intent always hashes the same. Used for idempotency.
    """
    parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted(moves, key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol,
                                          m.source, m.dest, m.contract_id)):
        parts.append(f"move:{_normalize_decimal(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        parts.append(f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}")

    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by the settlement functions and handed to Ledger.execute(), which
    applies everything in it or nothing.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (old and new state)
        origin: Who/what created this transaction and why
        timestamp: Ledger time when it was built
        units_to_create: Units to register before applying moves
        intent_id: Content hash (auto-computed when empty)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            ))

    def is_empty(self) -> bool:
        """True when there is nothing to move, change or create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the transaction.

    Example:
        moves = [Move(Decimal("33"), "BULLET-0", "owner", "alice", "transfer")]
        ledger.execute(build_transaction(ledger, moves))
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.CONTRACT, source_id="contract")

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A PendingTransaction with nothing in it, for functions that have nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves, state_changes, origin, timestamp, units_to_create: copied from the
            PendingTransaction
        intent_id: Content hash (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed it
        execution_time: Ledger time at execution
        sequence_number: Monotonic position in the ledger's log
        contract_ids: Contract IDs of the moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id}",
            f"  intent_id : {self.intent_id}",
            f"  time      : {self.execution_time}",
            f"  origin    : {self.origin}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.name})")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} -> {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} -> {new_val!r}")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type) held in the ledger.

    Every bond product is one unit whose balances are share counts; the
    settlement token is another unit.

    Attributes:
        symbol: Identifier (e.g. "USDT", "BULLET-0").
        name: Human-readable name.
        unit_type: One of the UNIT_TYPE_* constants.
        min_balance: Minimum balance allowed in any non-system wallet.
        max_balance: Maximum balance allowed in any wallet.
        decimal_places: Rounding precision (None = no rounding).
        _frozen_state: Internal frozen state.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a fresh dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize a value to this unit's precision using its type's rounding mode."""
        if self.decimal_places is None:
            return value
        value = to_decimal(value)
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN))
