"""
Conformance Test Suite

Property-based checks of the staking pool's accounting invariants.

The tests are organized by invariant:
1. test_pool_invariants.py - Reserve coverage, counter consistency, atomicity,
   intent uniqueness
2. test_distribution_properties.py - Snapshot sums, no double pay, rounding
   bound, exact recovery

These tests use hypothesis for property-based testing.
"""
