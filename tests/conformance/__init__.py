"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the stablecoin engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operations (token balances included)
2. reentrancy.py - Mutual exclusion of mutating operations
3. invariants.py - Health factor, mint fee, liquidation and governance invariants

These tests use hypothesis for property-based testing.
"""
