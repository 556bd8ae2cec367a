"""
Units module - the ledger units a bond contract works with.

- settlement_token: the fungible asset products are funded and paid in
- bullet_bond: single-payment products
- coupon_bond: per-second interest products with a maturity payment

The public names are re-exported from the top-level tokenbond package.
"""
