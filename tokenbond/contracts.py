"""
contracts.py - Bond Contract Facades

BulletBond and CouponBond bundle a product registry, an escrow wallet and the
ledger behind the administrative and public surface of a bond contract:

    administrator:  add_product, set_uri, mint, mint_batch, repay,
                    withdraw_residue (and deposit for coupon products)
    anyone:         claim, safe_transfer_from (own shares only)
    reads:          balance_of, total_supply, products, status, product_ids

Each mutating call checks the caller, builds a PendingTransaction with the
pure settlement functions and executes it. Every call is stamped with a
per-contract nonce, so two identical legitimate operations (the same transfer
made twice) are distinct intents. A ledger rejection raises
TransactionRejected; nothing is applied in that case.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional, Sequence

from .core import (
    PendingTransaction, TransactionOrigin, OriginType, ExecuteResult,
    TransactionRejected, Unauthorized,
)
from .gateway import SettlementGateway
from .ledger import Ledger
from .registry import Product, ProductRegistry, compute_set_uri, load_product, product_status
from .units import bullet_bond, coupon_bond
from . import shares


class BondContract(ABC):
    """
    Shared plumbing for the two bond contracts.

    Subclasses provide add_product, repay, withdraw_residue and _compute_claim,
    and may override the share movement hooks.
    """

    def __init__(self, ledger: Ledger, administrator: str, escrow: str, prefix: str):
        if administrator == escrow:
            raise ValueError("administrator and escrow must be different wallets")
        self.ledger = ledger
        self.escrow = escrow
        self.registry = ProductRegistry(administrator, prefix)
        self._nonce = 0
        ledger.ensure_wallet(administrator)
        ledger.ensure_wallet(escrow)

    @property
    def administrator(self) -> str:
        return self.registry.administrator

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _commit(
        self,
        pending: PendingTransaction,
        caller: str,
        origin_type: OriginType,
        symbol: str,
        event_type: str,
    ) -> PendingTransaction:
        """Stamp pending with caller, nonce and event, then execute it."""
        if pending.is_empty():
            return pending
        self._nonce += 1
        origin = TransactionOrigin(origin_type, f"{caller}#{self._nonce}", symbol, event_type)
        stamped = replace(pending, origin=origin, intent_id="")
        result = self.ledger.execute(stamped)
        if result == ExecuteResult.REJECTED:
            raise TransactionRejected(f"{event_type} on {symbol}: {self.ledger.last_rejection}")
        return stamped

    def _admin(self, caller: str) -> None:
        self.registry.require_administrator(caller)

    def _symbol(self, product_id: int) -> str:
        return self.registry.symbol_for(product_id)

    def _paid_to(self, pending: PendingTransaction, symbol: str, payee: str) -> Decimal:
        token = load_product(self.ledger, symbol).settlement_token
        return sum(
            (m.quantity for m in pending.moves if m.unit_symbol == token and m.dest == payee),
            Decimal("0"),
        )

    def _create(self, caller: str, pending: PendingTransaction, product_id: int, symbol: str) -> int:
        self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "PRODUCT_ADDED")
        self.registry.register(product_id, symbol)
        if self.ledger.verbose:
            print(f"Product {product_id} added as {symbol}")
        return product_id

    # ========================================================================
    # ADMINISTRATIVE SURFACE
    # ========================================================================

    def set_uri(self, caller: str, product_id: int, uri: str) -> None:
        self._admin(caller)
        symbol = self._symbol(product_id)
        self._commit(compute_set_uri(self.ledger, symbol, uri),
                     caller, OriginType.ADMINISTRATOR, symbol, "URI_SET")

    def mint(self, caller: str, product_id: int, holder: str, amount) -> None:
        self.mint_batch(caller, product_id, [holder], [amount])

    def mint_batch(self, caller: str, product_id: int, holders: Sequence[str], amounts: Sequence) -> None:
        """Mint amounts[i] shares to holders[i] in one transaction."""
        self._admin(caller)
        symbol = self._symbol(product_id)
        for holder in holders:
            self.ledger.ensure_wallet(holder)
        self._commit(self._compute_mint_batch(symbol, holders, amounts),
                     caller, OriginType.ADMINISTRATOR, symbol, "MINT")

    def _compute_mint_batch(self, symbol: str, holders: Sequence[str], amounts: Sequence) -> PendingTransaction:
        return shares.compute_mint_batch(self.ledger, symbol, holders, amounts)

    # ========================================================================
    # PUBLIC SURFACE
    # ========================================================================

    def safe_transfer_from(
        self, caller: str, sender: str, recipient: str, product_id: int, amount, data: bytes = b""
    ) -> None:
        """
        Move shares between holders. Claim rights travel with the shares.

        Raises:
            Unauthorized: If caller is not the sender
            InsufficientBalance: If sender holds fewer than amount shares
        """
        if caller != sender:
            raise Unauthorized(f"{caller} cannot move shares of {sender}")
        symbol = self._symbol(product_id)
        self.ledger.ensure_wallet(recipient)
        self._commit(self._compute_transfer(symbol, sender, recipient, amount),
                     caller, OriginType.USER_ACTION, symbol, "TRANSFER")

    def _compute_transfer(self, symbol: str, sender: str, recipient: str, amount) -> PendingTransaction:
        return shares.compute_transfer(self.ledger, symbol, sender, recipient, amount)

    def claim(self, holder: str, product_id: int) -> Decimal:
        """Redeem for holder; anyone may trigger it, the payout always goes to holder."""
        symbol = self._symbol(product_id)
        pending = self._compute_claim(symbol, holder)
        executed = self._commit(pending, holder, OriginType.USER_ACTION, symbol, "CLAIM")
        return self._paid_to(executed, symbol, holder)

    @abstractmethod
    def _compute_claim(self, symbol: str, holder: str) -> PendingTransaction:
        """Pending claim transaction paying holder from escrow."""

    # ========================================================================
    # READS
    # ========================================================================

    def balance_of(self, holder: str, product_id: int) -> Decimal:
        return shares.balance_of(self.ledger, self._symbol(product_id), holder)

    def total_supply(self, product_id: int) -> Decimal:
        return shares.total_supply(self.ledger, self._symbol(product_id))

    def products(self, product_id: int) -> Product:
        return load_product(self.ledger, self._symbol(product_id))

    def status(self, product_id: int) -> str:
        return product_status(self.products(product_id))

    def product_ids(self) -> List[int]:
        return self.registry.product_ids()

    def escrow_balance(self, token: str) -> Decimal:
        return SettlementGateway(token, self.escrow).escrow_balance(self.ledger)


class BulletBond(BondContract):
    """
    Bullet bond contract: one payment per share once the administrator repays.

    Example:
        bond = BulletBond(ledger, "owner")
        pid = bond.add_product("owner", 1000, "USDT", 100, "ipfs://x", start, end)
        bond.safe_transfer_from("owner", "owner", "alice", pid, 33)
        ledger.execute(compute_approve(ledger, "USDT", "owner", bond.escrow, 115000))
        bond.repay("owner", pid, 115, 115000)
        bond.claim("alice", pid)             # 3795
        bond.withdraw_residue("owner", pid)  # 111205
    """

    def __init__(self, ledger: Ledger, administrator: str, escrow: str = "bullet_bond",
                 prefix: str = "BULLET"):
        super().__init__(ledger, administrator, escrow, prefix)

    def add_product(
        self,
        caller: str,
        initial_supply,
        settlement_token: str,
        unit_value,
        uri: str,
        start_ts: int,
        end_ts: int,
    ) -> int:
        """Create a product and mint initial_supply shares to the administrator."""
        self._admin(caller)
        self.ledger.get_unit(settlement_token)
        product_id, symbol = self.registry.reserve()
        unit = bullet_bond.create_bullet_product(
            symbol, product_id, settlement_token, unit_value, uri, start_ts, end_ts)
        pending = bullet_bond.compute_add_product(self.ledger, unit, self.administrator, initial_supply)
        return self._create(caller, pending, product_id, symbol)

    def repay(self, caller: str, product_id: int, final_value, total_final_value) -> None:
        """
        Fix the payout per share and pull total_final_value into escrow.

        The administrator must have approved the escrow wallet beforehand.
        """
        self._admin(caller)
        symbol = self._symbol(product_id)
        pending = bullet_bond.compute_repay(
            self.ledger, symbol, self.escrow, self.administrator, final_value, total_final_value)
        self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "REPAY")

    def withdraw_residue(self, caller: str, product_id: int) -> Decimal:
        """Pay the administrator for shares it still holds. Does not burn them."""
        self._admin(caller)
        symbol = self._symbol(product_id)
        pending = bullet_bond.compute_withdraw_residue(
            self.ledger, symbol, self.escrow, self.administrator)
        executed = self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "WITHDRAW_RESIDUE")
        return self._paid_to(executed, symbol, self.administrator)

    def payout(self, holder: str, product_id: int) -> Decimal:
        return bullet_bond.bullet_payout(self.ledger, self._symbol(product_id), holder)

    def _compute_claim(self, symbol: str, holder: str) -> PendingTransaction:
        return bullet_bond.compute_claim(self.ledger, symbol, self.escrow, holder)


class CouponBond(BondContract):
    """
    Coupon bond contract: per-second interest, then principal after repayment.

    Products start with no holders; the administrator mints shares with
    mint/mint_batch and funds interest with deposit before the final repay.
    """

    def __init__(self, ledger: Ledger, administrator: str, escrow: str = "coupon_bond",
                 prefix: str = "COUPON"):
        super().__init__(ledger, administrator, escrow, prefix)

    def add_product(
        self,
        caller: str,
        settlement_token: str,
        principal_per_unit,
        coupon_rate_per_second,
        overdue_rate_per_second,
        uri: str,
        start_ts: int,
        end_ts: int,
    ) -> int:
        self._admin(caller)
        self.ledger.get_unit(settlement_token)
        product_id, symbol = self.registry.reserve()
        unit = coupon_bond.create_coupon_product(
            symbol, product_id, settlement_token, principal_per_unit,
            coupon_rate_per_second, overdue_rate_per_second, uri, start_ts, end_ts)
        return self._create(caller, coupon_bond.compute_add_product(self.ledger, unit), product_id, symbol)

    def deposit(self, caller: str, product_id: int, amount) -> None:
        self._admin(caller)
        symbol = self._symbol(product_id)
        pending = coupon_bond.compute_deposit(self.ledger, symbol, self.escrow, self.administrator, amount)
        self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "DEPOSIT")

    def repay(self, caller: str, product_id: int, total_amount) -> None:
        self._admin(caller)
        symbol = self._symbol(product_id)
        pending = coupon_bond.compute_repay(self.ledger, symbol, self.escrow, self.administrator, total_amount)
        self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "REPAY")

    def withdraw_residue(self, caller: str, product_id: int, amount) -> Decimal:
        self._admin(caller)
        symbol = self._symbol(product_id)
        pending = coupon_bond.compute_withdraw_residue(
            self.ledger, symbol, self.escrow, self.administrator, amount)
        executed = self._commit(pending, caller, OriginType.ADMINISTRATOR, symbol, "WITHDRAW_RESIDUE")
        return self._paid_to(executed, symbol, self.administrator)

    def pending_interest(self, holder: str, product_id: int, at_ts: Optional[int] = None) -> Decimal:
        return coupon_bond.pending_interest(self.ledger, self._symbol(product_id), holder, at_ts)

    def outstanding_obligation(self, product_id: int, at_ts: Optional[int] = None) -> Decimal:
        return coupon_bond.outstanding_obligation(self.ledger, self._symbol(product_id), at_ts)

    def _compute_mint_batch(self, symbol: str, holders: Sequence[str], amounts: Sequence) -> PendingTransaction:
        return coupon_bond.compute_mint_batch(self.ledger, symbol, holders, amounts)

    def _compute_transfer(self, symbol: str, sender: str, recipient: str, amount) -> PendingTransaction:
        return coupon_bond.compute_transfer(self.ledger, symbol, sender, recipient, amount)

    def _compute_claim(self, symbol: str, holder: str) -> PendingTransaction:
        return coupon_bond.compute_claim(self.ledger, symbol, self.escrow, holder)
