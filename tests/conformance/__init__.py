"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of bond settlement.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Share supply and settlement token conservation
2. atomicity.py - All-or-nothing settlement transactions
3. idempotency.py - One repayment per product, one redemption per holding
4. determinism.py - Reproducible intents, state and replay

These tests use hypothesis for property-based testing.
"""
