"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the buy-and-lock contract.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Custody equals locked amounts; every unit sums to zero
2. atomicity.py - Failed operations leave no trace
3. temporal.py - Maturity, non-retroactive lock changes, matured-prefix scan
4. guards.py - Pause scope, authority, re-entrancy
5. batch_equivalence.py - Batch claims match one-by-one claims

These tests use hypothesis for property-based testing.
"""
