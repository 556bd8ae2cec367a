"""
gateway.py - Settlement Token Gateway

Binds a settlement token to the escrow wallet of a bond contract. Funding
pulls tokens from a payer into escrow (consuming the allowance the payer gave
the escrow); payouts push tokens from escrow to a payee.

The gateway keeps no state of its own. It returns the moves and allowance
changes for the enclosing settlement transaction, and a transfer the token
would refuse raises TransferRejected before anything is executed.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Tuple

from .core import LedgerView, Move, UnitStateChange
from .units import settlement_token


@dataclass(frozen=True, slots=True)
class SettlementGateway:
    token: str
    escrow: str

    def pull_from(
        self, view: LedgerView, payer: str, amount, reference: str = "fund"
    ) -> Tuple[List[Move], List[UnitStateChange]]:
        """Move amount from payer into escrow using the payer's allowance to escrow."""
        return settlement_token.transfer_from(
            view, self.token, self.escrow, payer, self.escrow, amount,
            f"{reference}_{self.token}_{payer}",
        )

    def push_to(self, view: LedgerView, payee: str, amount, reference: str = "payout") -> List[Move]:
        """Move amount from escrow to payee."""
        return settlement_token.transfer_moves(
            view, self.token, self.escrow, payee, amount,
            f"{reference}_{self.token}_{payee}",
        )

    def escrow_balance(self, view: LedgerView) -> Decimal:
        return settlement_token.balance_of(view, self.token, self.escrow)

    def round_payout(self, view: LedgerView, amount: Decimal) -> Decimal:
        """Quantize a computed payout to the token's precision (rounding down)."""
        return view.get_unit(self.token).round(amount)
