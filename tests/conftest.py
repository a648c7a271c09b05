"""
conftest.py - Shared pytest fixtures for staking ledger tests

Provides common fixtures used across unit and conformance tests:
- A bare pool ledger (stakers funded, pool unfunded)
- A funded pool (admin settlement deposited)
- A pool with stakes already aged past the dividend lock
"""

import pytest
from decimal import Decimal

from tests.builders import (
    T0, ADMIN, build_pool_ledger, build_funded_pool, days,
)


@pytest.fixture
def bare_pool():
    """(ledger, pool) with nothing deposited into the pool."""
    return build_pool_ledger()


@pytest.fixture
def funded_pool():
    """(ledger, pool) with 100,000 USDT of settlement in the pool."""
    return build_funded_pool()


@pytest.fixture
def ledger(funded_pool):
    return funded_pool[0]


@pytest.fixture
def pool(funded_pool):
    return funded_pool[1]


@pytest.fixture
def aged_pool(funded_pool):
    """
    alice staked 300 and bob 700 TKN at T0 on plan 4; the clock is at
    T0 + 30 days, exactly at the dividend lock boundary.
    """
    ledger, pool = funded_pool
    pool.stake("alice", Decimal("300"), 4)
    pool.stake("bob", Decimal("700"), 4)
    ledger.advance_time(T0 + days(30))
    return ledger, pool


@pytest.fixture
def distribution_pool(aged_pool):
    """aged_pool with a 1,000 USDT distribution created at T0 + 30 days."""
    ledger, pool = aged_pool
    distribution = pool.create_distribution(ADMIN, Decimal("1000"))
    return ledger, pool, distribution
