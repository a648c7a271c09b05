"""
Tests for units/staking_pool.py - pure pool functions

Tests:
- create_staking_pool factory (validation, initial state)
- load_staking_pool / to_state_dict adapters
- compute_stake and compute_unstake against a FakeView
- Pure calculations (eligibility, pending interest, shares, snapshots)
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from staking_ledger import (
    create_staking_pool, load_staking_pool, to_state_dict,
    compute_stake, compute_unstake, compute_pending_interest,
    calculate_user_principal, calculate_eligible_amount, calculate_pending_interest,
    calculate_share, take_eligibility_snapshot,
    StakePosition, Plan, DEFAULT_PLANS, RATE_SCALE, SECONDS_PER_DAY,
    MIN_DIVIDEND_LOCK, UNIT_TYPE_STAKING_POOL, OriginType, SYSTEM_WALLET,
    ZeroAmount, BelowMinimum, InvalidPlan, InvalidIndex, InvalidAddress,
    AlreadyWithdrawn, StillLocked, InsufficientReserve, ValidationError,
)
from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)


def _pool_unit(**kwargs):
    params = dict(
        symbol="POOL", name="Pool",
        principal_unit="TKN", settlement_unit="USDT",
        admin_wallet="admin", pool_wallet="pool",
        principal_decimals=18, settlement_decimals=6,
    )
    params.update(kwargs)
    return create_staking_pool(**params)


def _view(state, usdt=Decimal("10000"), tkn=Decimal("0"), time=T0):
    return FakeView(
        balances={'pool': {'USDT': usdt, 'TKN': tkn}},
        states={'POOL': state},
        time=time,
    )


def _after(state, pending):
    """Full pool state once `pending` is applied on top of `state`."""
    merged = dict(state)
    merged.update(pending.state_changes[0].new_state)
    return merged


def _position(principal, start=T0, duration=90 * SECONDS_PER_DAY, withdrawn=False):
    return StakePosition(
        principal=Decimal(principal), start_time=start, duration=duration,
        apy_bps=897, interest=Decimal("0"), withdrawn=withdrawn,
    )


# ============================================================================
# create_staking_pool Tests
# ============================================================================

class TestCreateStakingPool:

    def test_basic(self):
        unit = _pool_unit()
        assert unit.symbol == "POOL"
        assert unit.unit_type == UNIT_TYPE_STAKING_POOL
        state = unit.state
        assert state['principal_unit'] == "TKN"
        assert state['settlement_unit'] == "USDT"
        assert state['exchange_rate'] == RATE_SCALE
        assert state['total_staked'] == 0
        assert state['next_distribution_id'] == 1
        assert state['plans'][1] == {'apy_bps': 897, 'duration': 90 * SECONDS_PER_DAY}

    def test_custom_plans(self):
        plans = dict(DEFAULT_PLANS)
        plans[2] = Plan(500, 30 * SECONDS_PER_DAY)
        state = _pool_unit(plans=plans).state
        assert state['plans'][2] == {'apy_bps': 500, 'duration': 30 * SECONDS_PER_DAY}

    def test_missing_plan_slot(self):
        plans = {1: DEFAULT_PLANS[1]}
        with pytest.raises(ValueError, match="missing slots"):
            _pool_unit(plans=plans)

    def test_same_units_rejected(self):
        with pytest.raises(ValueError, match="must be different"):
            _pool_unit(settlement_unit="TKN")

    def test_admin_is_pool_wallet_rejected(self):
        with pytest.raises(ValueError):
            _pool_unit(admin_wallet="pool")

    def test_system_wallet_rejected(self):
        with pytest.raises(ValueError, match="system wallet"):
            _pool_unit(pool_wallet=SYSTEM_WALLET)

    def test_empty_wallet_rejected(self):
        with pytest.raises(ValueError, match="admin_wallet"):
            _pool_unit(admin_wallet="")

    def test_zero_rate_rejected(self):
        with pytest.raises(ValueError, match="exchange_rate"):
            _pool_unit(exchange_rate=0)

    def test_negative_min_stake_rejected(self):
        with pytest.raises(ValueError, match="min_stake"):
            _pool_unit(min_stake=Decimal("-1"))


class TestAdapters:

    def test_load_round_trips_through_state_dict(self):
        view = _view(_pool_unit(min_stake=Decimal("5")).state)
        terms, state = load_staking_pool(view, "POOL")
        assert terms.pool_wallet == "pool"
        assert terms.min_dividend_lock == MIN_DIVIDEND_LOCK
        assert state.min_stake == Decimal("5")
        assert state.plans[4] == DEFAULT_PLANS[4]
        assert to_state_dict(terms, state) == view.get_unit_state("POOL")


# ============================================================================
# compute_stake Tests
# ============================================================================

class TestComputeStake:

    def test_stake_moves_principal_and_reserves_interest(self):
        view = _view(_pool_unit().state)
        pending = compute_stake(view, "POOL", "alice", Decimal("1000"), 1)

        assert len(pending.moves) == 1
        move = pending.moves[0]
        assert (move.source, move.dest, move.unit_symbol) == ("alice", "pool", "TKN")
        assert move.quantity == Decimal("1000")

        new_state = pending.state_changes[0].new_state
        assert new_state['total_staked'] == Decimal("1000")
        assert new_state['interest_reserve'] == Decimal("22.117808")
        assert new_state['active_stakers'] == ["alice"]
        assert new_state['stake:alice'][0]['interest'] == Decimal("22.117808")
        assert new_state['stake:alice'][0]['start_time'] == T0
        assert new_state['operation_count'] == 1

    def test_change_carries_only_touched_keys(self):
        view = _view(_pool_unit().state)
        change = compute_stake(view, "POOL", "alice", Decimal("1000"), 1).state_changes[0]
        assert set(change.new_state) == {
            'stake:alice', 'total_staked', 'interest_reserve', 'active_stakers', 'operation_count',
        }
        assert change.old_state['stake:alice'] is None
        assert change.old_state['operation_count'] == 0

    def test_origin_is_user_action(self):
        pending = compute_stake(_view(_pool_unit().state), "POOL", "alice", Decimal("1"), 1)
        assert pending.origin.origin_type == OriginType.USER_ACTION
        assert pending.origin.source_id == "alice"
        assert pending.origin.event_type == "STAKE"

    def test_interest_snapshot_uses_current_rate(self):
        view = _view(_pool_unit(exchange_rate=2 * RATE_SCALE).state)
        pending = compute_stake(view, "POOL", "alice", Decimal("1000"), 1)
        assert pending.state_changes[0].new_state['interest_reserve'] == Decimal("44.235616")

    def test_zero_amount(self):
        with pytest.raises(ZeroAmount):
            compute_stake(_view(_pool_unit().state), "POOL", "alice", Decimal("0"), 1)

    def test_below_minimum(self):
        view = _view(_pool_unit(min_stake=Decimal("100")).state)
        with pytest.raises(BelowMinimum):
            compute_stake(view, "POOL", "alice", Decimal("99.99"), 1)

    def test_exactly_minimum(self):
        view = _view(_pool_unit(min_stake=Decimal("100")).state)
        compute_stake(view, "POOL", "alice", Decimal("100"), 1)

    def test_invalid_plan(self):
        with pytest.raises(InvalidPlan):
            compute_stake(_view(_pool_unit().state), "POOL", "alice", Decimal("1"), 5)

    def test_empty_user(self):
        with pytest.raises(InvalidAddress):
            compute_stake(_view(_pool_unit().state), "POOL", "", Decimal("1"), 1)

    def test_over_precise_amount(self):
        view = _view(_pool_unit(principal_decimals=2).state)
        with pytest.raises(ValidationError):
            compute_stake(view, "POOL", "alice", Decimal("1.001"), 1)

    def test_insufficient_reserve(self):
        view = _view(_pool_unit().state, usdt=Decimal("22.117807"))
        with pytest.raises(InsufficientReserve):
            compute_stake(view, "POOL", "alice", Decimal("1000"), 1)

    def test_reserve_exact_fit(self):
        view = _view(_pool_unit().state, usdt=Decimal("22.117808"))
        compute_stake(view, "POOL", "alice", Decimal("1000"), 1)

    def test_zero_interest_needs_no_reserve(self):
        view = _view(_pool_unit().state, usdt=Decimal("0"))
        pending = compute_stake(view, "POOL", "alice", Decimal("0.000001"), 1)
        new_state = pending.state_changes[0].new_state
        assert 'interest_reserve' not in new_state
        assert new_state['total_staked'] == Decimal("0.000001")

    def test_identical_stakes_have_distinct_intents(self):
        base = _pool_unit().state
        first = compute_stake(_view(base), "POOL", "alice", Decimal("10"), 1)
        second_view = _view(_after(base, first))
        second = compute_stake(second_view, "POOL", "alice", Decimal("10"), 1)
        assert first.intent_id != second.intent_id


# ============================================================================
# compute_unstake Tests
# ============================================================================

class TestComputeUnstake:

    @pytest.fixture
    def staked_state(self):
        base = _pool_unit().state
        return _after(base, compute_stake(_view(base), "POOL", "alice", Decimal("1000"), 1))

    def test_unstake_at_maturity(self, staked_state):
        view = _view(staked_state, tkn=Decimal("1000"), time=T0 + timedelta(days=90))
        pending = compute_unstake(view, "POOL", "alice", 0)

        quantities = {m.unit_symbol: m.quantity for m in pending.moves}
        assert quantities == {"TKN": Decimal("1000"), "USDT": Decimal("22.117808")}
        assert all(m.source == "pool" and m.dest == "alice" for m in pending.moves)

        new_state = pending.state_changes[0].new_state
        assert new_state['stake:alice'][0]['withdrawn'] is True
        assert new_state['total_staked'] == 0
        assert new_state['interest_reserve'] == 0
        assert new_state['active_stakers'] == []

    def test_still_locked_one_second_early(self, staked_state):
        view = _view(staked_state, time=T0 + timedelta(days=90) - timedelta(seconds=1))
        with pytest.raises(StillLocked):
            compute_unstake(view, "POOL", "alice", 0)

    def test_invalid_index(self, staked_state):
        view = _view(staked_state, time=T0 + timedelta(days=90))
        with pytest.raises(InvalidIndex):
            compute_unstake(view, "POOL", "alice", 1)
        with pytest.raises(InvalidIndex):
            compute_unstake(view, "POOL", "bob", 0)
        with pytest.raises(InvalidIndex):
            compute_unstake(view, "POOL", "alice", -1)

    def test_already_withdrawn(self, staked_state):
        view = _view(staked_state, time=T0 + timedelta(days=90))
        after = _after(staked_state, compute_unstake(view, "POOL", "alice", 0))
        with pytest.raises(AlreadyWithdrawn):
            compute_unstake(_view(after, time=T0 + timedelta(days=90)), "POOL", "alice", 0)

    def test_drained_pool_cannot_pay_interest(self, staked_state):
        view = _view(staked_state, usdt=Decimal("0"), time=T0 + timedelta(days=90))
        with pytest.raises(InsufficientReserve):
            compute_unstake(view, "POOL", "alice", 0)

    def test_staker_stays_active_with_other_positions(self, staked_state):
        second = compute_stake(_view(staked_state), "POOL", "alice", Decimal("5"), 4)
        state = _after(staked_state, second)
        view = _view(state, time=T0 + timedelta(days=90))
        new_state = _after(state, compute_unstake(view, "POOL", "alice", 0))
        assert new_state['active_stakers'] == ["alice"]
        assert new_state['total_staked'] == Decimal("5")


class TestComputePendingInterest:

    def test_half_way(self):
        base = _pool_unit().state
        pending = compute_stake(_view(base), "POOL", "alice", Decimal("1000"), 1)
        view = _view(_after(base, pending), time=T0 + timedelta(days=45))
        assert compute_pending_interest(view, "POOL", "alice") == Decimal("11.058904")

    def test_unknown_user(self):
        assert compute_pending_interest(_view(_pool_unit().state), "POOL", "nobody") == 0


# ============================================================================
# Pure calculation Tests
# ============================================================================

class TestPureCalculations:

    def test_user_principal_skips_withdrawn(self):
        positions = (_position("10"), _position("5", withdrawn=True), _position("2.5"))
        assert calculate_user_principal(positions) == Decimal("12.5")

    def test_eligible_boundary(self):
        lock = 30 * SECONDS_PER_DAY
        positions = (_position("100"),)
        assert calculate_eligible_amount(positions, T0 + timedelta(days=30), lock) == Decimal("100")
        just_before = T0 + timedelta(days=30) - timedelta(seconds=1)
        assert calculate_eligible_amount(positions, just_before, lock) == 0

    def test_eligible_ignores_plan_duration(self):
        lock = 30 * SECONDS_PER_DAY
        positions = (_position("100", duration=365 * SECONDS_PER_DAY),)
        assert calculate_eligible_amount(positions, T0 + timedelta(days=31), lock) == Decimal("100")

    def test_eligible_excludes_withdrawn(self):
        positions = (_position("100", withdrawn=True), _position("40"))
        assert calculate_eligible_amount(positions, T0 + timedelta(days=60), 0) == Decimal("40")

    def test_pending_interest_sums_open_positions(self):
        positions = (_position("1000"), _position("1000"), _position("1000", withdrawn=True))
        total = calculate_pending_interest(positions, T0 + timedelta(days=90), RATE_SCALE, 18, 6)
        assert total == Decimal("44.235616")

    def test_share_pro_rata(self):
        assert calculate_share(Decimal("300"), Decimal("1000"), Decimal("1000"), 6) == Decimal("300")
        assert calculate_share(Decimal("1"), Decimal("1"), Decimal("3"), 6) == Decimal("0.333333")

    def test_share_zero_cases(self):
        assert calculate_share(Decimal("0"), Decimal("1000"), Decimal("1000"), 6) == 0
        assert calculate_share(Decimal("5"), Decimal("1000"), Decimal("0"), 6) == 0

    def test_snapshot_skips_ineligible(self):
        stakes = {
            "alice": (_position("300"),),
            "bob": (_position("700", start=T0 + timedelta(days=10)),),
        }
        snapshot = take_eligibility_snapshot(
            stakes, ("alice", "bob"), T0 + timedelta(days=30), 30 * SECONDS_PER_DAY)
        assert snapshot == {"alice": Decimal("300")}
