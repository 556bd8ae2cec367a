"""
tokenbond - Tokenized Bond Settlement

Bullet and coupon bond products settled in a fungible token, on top of an
in-memory double-entry ledger.

Usage:
    from datetime import datetime
    from tokenbond import Ledger, BulletBond, create_settlement_token, compute_issue, compute_approve

    ledger = Ledger("main", datetime(2024, 1, 1), verbose=False)
    ledger.register_unit(create_settlement_token("USDT", "Tether USD"))
    bond = BulletBond(ledger, "owner")
    ledger.execute(compute_issue(ledger, "USDT", "owner", 200000))

    pid = bond.add_product("owner", 1000, "USDT", 100, "ipfs://bond", 1704067200, 1735689600)
    bond.safe_transfer_from("owner", "owner", "alice", pid, 33)

    ledger.execute(compute_approve(ledger, "USDT", "owner", bond.escrow, 115000))
    bond.repay("owner", pid, 115, 115000)
    bond.claim("alice", pid)               # Decimal('3795')
    bond.withdraw_residue("owner", pid)    # Decimal('111205')
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    Unauthorized,
    UnknownProduct,
    AlreadyRepaid,
    NotRepaid,
    ZeroBalanceClaim,
    InsufficientBalance,
    LengthMismatch,
    TransferRejected,
    SYSTEM_WALLET,
    UNIT_TYPE_SETTLEMENT_TOKEN,
    UNIT_TYPE_BULLET_BOND,
    UNIT_TYPE_COUPON_BOND,
    STATUS_CREATED,
    STATUS_REPAID,
    DEFAULT_TOKEN_DECIMAL_PLACES,
    unix_seconds,
)

# Ledger
from .ledger import Ledger

# Share ledger
from .shares import (
    share_amount,
    balance_of,
    holders,
    total_supply,
    compute_mint,
    compute_mint_batch,
    compute_transfer,
    compute_burn,
)

# Product registry
from .registry import (
    Product,
    ProductRegistry,
    load_product,
    product_status,
    compute_set_uri,
    mark_repaid,
)

# Settlement token
from .units.settlement_token import (
    create_settlement_token,
    compute_issue,
    compute_approve,
    compute_transfer_from,
    allowance,
)
from .units.settlement_token import compute_transfer as compute_token_transfer
from .units.settlement_token import balance_of as token_balance_of

# Gateway
from .gateway import SettlementGateway

# Bullet bonds
from .units.bullet_bond import (
    create_bullet_product,
    bullet_payout,
)

# Coupon bonds
from .units.coupon_bond import (
    CouponTerms,
    ClaimState,
    create_coupon_product,
    load_coupon_terms,
    accrued_per_unit,
    pending_interest,
    outstanding_obligation,
)

# Contracts
from .contracts import BondContract, BulletBond, CouponBond


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'SYSTEM_WALLET', 'UNIT_TYPE_SETTLEMENT_TOKEN', 'UNIT_TYPE_BULLET_BOND', 'UNIT_TYPE_COUPON_BOND',
    'STATUS_CREATED', 'STATUS_REPAID', 'DEFAULT_TOKEN_DECIMAL_PLACES', 'unix_seconds',
    # Exceptions
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered', 'TransactionRejected',
    'Unauthorized', 'UnknownProduct', 'AlreadyRepaid', 'NotRepaid', 'ZeroBalanceClaim',
    'InsufficientBalance', 'LengthMismatch', 'TransferRejected',
    # Ledger
    'Ledger',
    # Shares
    'share_amount', 'balance_of', 'holders', 'total_supply',
    'compute_mint', 'compute_mint_batch', 'compute_transfer', 'compute_burn',
    # Registry
    'Product', 'ProductRegistry', 'load_product', 'product_status', 'compute_set_uri', 'mark_repaid',
    # Settlement token
    'create_settlement_token', 'compute_issue', 'compute_approve', 'compute_transfer_from',
    'compute_token_transfer', 'token_balance_of', 'allowance',
    'SettlementGateway',
    # Bullet
    'create_bullet_product', 'bullet_payout',
    # Coupon
    'CouponTerms', 'ClaimState', 'create_coupon_product', 'load_coupon_terms',
    'accrued_per_unit', 'pending_interest', 'outstanding_obligation',
    # Contracts
    'BondContract', 'BulletBond', 'CouponBond',
]

__version__ = '1.0.0'
