"""
staking_pool.py - Staking Pool Unit: fixed-plan stakes and snapshot dividends

This module implements the staking and dividend engine as a unit whose state
lives on the ledger. It uses the same pure function architecture as the rest
of the package.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - PoolTerms: identity of the pool (currencies, wallets, lock periods)
   - PoolState: everything that changes (rate, plans, stakes, distributions)
   - StakePosition, Distribution: records held inside PoolState

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - No LedgerView, all inputs explicit

3. ADAPTER FUNCTIONS (load_staking_pool, to_state_dict):
   - The ONLY place that converts between ledger state dicts and dataclasses

4. COMPUTE FUNCTIONS (compute_*):
   - Take (view, symbol, ...), validate, run the conservation checks against
     the pool wallet's live balances and return a PendingTransaction with
     the token moves and the new pool state. Executing it on the ledger
     applies everything or nothing.

Lifecycle of a stake:
    stake       principal user -> pool, interest snapshotted at current rate
    (locked)    pending interest preview tracks the live rate
    unstake     at or after start + duration: principal and snapshotted
                interest pool -> user

Lifecycle of a distribution:
    create      admin funds; eligible principal of every active staker whose
                stake is older than min_dividend_lock is snapshotted
    claim       each eligible staker takes floor(eligible * total / eligible_total) once
    recover     after min_recovery_wait the admin takes the unclaimed remainder;
                the distribution is then closed for good
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_STAKING_POOL, SYSTEM_WALLET,
    build_transaction, quantize_down, _freeze_state,
    ValidationError, ZeroAmount, BelowMinimum, InvalidIndex, InvalidAddress,
    InvalidRate, AlreadyWithdrawn, StillLocked, AlreadyClaimed,
    DistributionNotFound, NoEligibleSnapshot, NoEligibleStakers,
    RecoveryWindowOpen, NothingToRecover, Unauthorized,
)
from ..accounts import PoolAccounts
from ..registry import ActiveStakerSet
from ..rates import (
    Plan, DEFAULT_PLANS, PLAN_IDS, RATE_SCALE, SECONDS_PER_DAY,
    resolve_plan, calculate_settlement_interest,
)


# A stake must be this old at snapshot time to count toward a distribution.
MIN_DIVIDEND_LOCK = 30 * SECONDS_PER_DAY

# Unclaimed distribution funds can be recovered this long after creation.
MIN_RECOVERY_WAIT_PERIOD = 90 * SECONDS_PER_DAY

# Per-user and per-distribution records live under their own state keys,
# e.g. "stake:alice" or "claims:3", so an operation rewrites only the
# records it touches.
KEY_SEPARATOR = ":"
STAKE_KEY = "stake"
DISTRIBUTION_KEY = "distribution"
SNAPSHOT_KEY = "snapshot"
CLAIMS_KEY = "claims"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class StakePosition:
    """
    One locked stake. Append-only: the only change ever made is withdrawn=True.

    interest is the settlement amount owed at maturity, fixed at open time
    with the exchange rate in effect then.
    """
    principal: Decimal
    start_time: datetime
    duration: int
    apy_bps: int
    interest: Decimal
    withdrawn: bool = False

    @property
    def maturity(self) -> datetime:
        return self.start_time + timedelta(seconds=self.duration)


@dataclass(frozen=True, slots=True)
class Distribution:
    """
    A funded dividend round.

    claimed_amount never exceeds total_amount. Once exists is False (after
    recovery) no further claims are possible.
    """
    distribution_id: int
    timestamp: datetime
    total_amount: Decimal
    eligible_total: Decimal
    claimed_amount: Decimal = Decimal("0")
    exists: bool = True

    @property
    def remaining(self) -> Decimal:
        return self.total_amount - self.claimed_amount

    @property
    def is_closed(self) -> bool:
        return not self.exists or self.claimed_amount >= self.total_amount


@dataclass(frozen=True, slots=True)
class PoolTerms:
    """Immutable pool identity - set at creation, never changes."""
    principal_unit: str
    settlement_unit: str
    admin_wallet: str
    pool_wallet: str
    principal_decimals: int
    settlement_decimals: int
    min_dividend_lock: int = MIN_DIVIDEND_LOCK
    min_recovery_wait: int = MIN_RECOVERY_WAIT_PERIOD


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Snapshot of everything in a pool that changes over time.

    Each operation produces a NEW instance (value semantics).
    """
    exchange_rate: int
    min_stake: Decimal
    plans: Mapping[int, Plan]
    accounts: PoolAccounts
    stakes: Mapping[str, Tuple[StakePosition, ...]] = field(default_factory=dict)
    active_stakers: Tuple[str, ...] = ()
    distributions: Mapping[int, Distribution] = field(default_factory=dict)
    snapshots: Mapping[int, Mapping[str, Decimal]] = field(default_factory=dict)
    claims: Mapping[int, FrozenSet[str]] = field(default_factory=dict)
    next_distribution_id: int = 1
    operation_count: int = 0


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _position_from_dict(raw: Mapping[str, Any]) -> StakePosition:
    return StakePosition(
        principal=Decimal(str(raw['principal'])),
        start_time=raw['start_time'],
        duration=int(raw['duration']),
        apy_bps=int(raw['apy_bps']),
        interest=Decimal(str(raw['interest'])),
        withdrawn=bool(raw.get('withdrawn', False)),
    )


def _position_to_dict(position: StakePosition) -> Dict[str, Any]:
    return {
        'principal': position.principal,
        'start_time': position.start_time,
        'duration': position.duration,
        'apy_bps': position.apy_bps,
        'interest': position.interest,
        'withdrawn': position.withdrawn,
    }


def _distribution_from_dict(distribution_id: int, raw: Mapping[str, Any]) -> Distribution:
    return Distribution(
        distribution_id=distribution_id,
        timestamp=raw['timestamp'],
        total_amount=Decimal(str(raw['total_amount'])),
        eligible_total=Decimal(str(raw['eligible_total'])),
        claimed_amount=Decimal(str(raw.get('claimed_amount', 0))),
        exists=bool(raw.get('exists', True)),
    )


def _distribution_to_dict(distribution: Distribution) -> Dict[str, Any]:
    return {
        'timestamp': distribution.timestamp,
        'total_amount': distribution.total_amount,
        'eligible_total': distribution.eligible_total,
        'claimed_amount': distribution.claimed_amount,
        'exists': distribution.exists,
    }


def from_state_dict(raw: Mapping[str, Any]) -> Tuple[PoolTerms, PoolState]:
    """Convert a raw pool state dict into (PoolTerms, PoolState)."""
    stakes: Dict[str, Tuple[StakePosition, ...]] = {}
    distributions: Dict[int, Distribution] = {}
    snapshots: Dict[int, Dict[str, Decimal]] = {}
    claims: Dict[int, FrozenSet[str]] = {}
    for key, value in raw.items():
        kind, sep, ident = key.partition(KEY_SEPARATOR)
        if not sep:
            continue
        if kind == STAKE_KEY:
            stakes[ident] = tuple(_position_from_dict(p) for p in value)
        elif kind == DISTRIBUTION_KEY:
            distributions[int(ident)] = _distribution_from_dict(int(ident), value)
        elif kind == SNAPSHOT_KEY:
            snapshots[int(ident)] = {user: Decimal(str(amount)) for user, amount in value.items()}
        elif kind == CLAIMS_KEY:
            claims[int(ident)] = frozenset(value)

    terms = PoolTerms(
        principal_unit=raw['principal_unit'],
        settlement_unit=raw['settlement_unit'],
        admin_wallet=raw['admin_wallet'],
        pool_wallet=raw['pool_wallet'],
        principal_decimals=int(raw['principal_decimals']),
        settlement_decimals=int(raw['settlement_decimals']),
        min_dividend_lock=int(raw.get('min_dividend_lock', MIN_DIVIDEND_LOCK)),
        min_recovery_wait=int(raw.get('min_recovery_wait', MIN_RECOVERY_WAIT_PERIOD)),
    )

    state = PoolState(
        exchange_rate=int(raw['exchange_rate']),
        min_stake=Decimal(str(raw.get('min_stake', 0))),
        plans={
            int(plan_id): Plan(apy_bps=int(p['apy_bps']), duration=int(p['duration']))
            for plan_id, p in raw.get('plans', {}).items()
        },
        accounts=PoolAccounts(
            total_staked=Decimal(str(raw.get('total_staked', 0))),
            interest_reserve=Decimal(str(raw.get('interest_reserve', 0))),
            distribution_reserve=Decimal(str(raw.get('distribution_reserve', 0))),
        ),
        stakes=stakes,
        active_stakers=tuple(raw.get('active_stakers', ())),
        distributions=distributions,
        snapshots=snapshots,
        claims=claims,
        next_distribution_id=int(raw.get('next_distribution_id', 1)),
        operation_count=int(raw.get('operation_count', 0)),
    )
    return terms, state


def entity_key(kind: str, ident: Any) -> str:
    return f"{kind}{KEY_SEPARATOR}{ident}"


def load_staking_pool(view: LedgerView, symbol: str) -> Tuple[PoolTerms, PoolState]:
    """
    Load a staking pool from ledger state as typed frozen dataclasses.

    Example:
        terms, state = load_staking_pool(view, "POOL")
        principal = calculate_user_principal(state.stakes.get("alice", ()))
    """
    return from_state_dict(view.get_unit_state(symbol))


def to_state_dict(terms: PoolTerms, state: PoolState) -> Dict[str, Any]:
    """Inverse of from_state_dict(), for building the pool's UnitStateChange."""
    raw = {
        'principal_unit': terms.principal_unit,
        'settlement_unit': terms.settlement_unit,
        'admin_wallet': terms.admin_wallet,
        'pool_wallet': terms.pool_wallet,
        'principal_decimals': terms.principal_decimals,
        'settlement_decimals': terms.settlement_decimals,
        'min_dividend_lock': terms.min_dividend_lock,
        'min_recovery_wait': terms.min_recovery_wait,
        'exchange_rate': state.exchange_rate,
        'min_stake': state.min_stake,
        'plans': {
            plan_id: {'apy_bps': plan.apy_bps, 'duration': plan.duration}
            for plan_id, plan in sorted(state.plans.items())
        },
        'total_staked': state.accounts.total_staked,
        'interest_reserve': state.accounts.interest_reserve,
        'distribution_reserve': state.accounts.distribution_reserve,
        'active_stakers': list(state.active_stakers),
        'next_distribution_id': state.next_distribution_id,
        'operation_count': state.operation_count,
    }
    for user, positions in state.stakes.items():
        raw[entity_key(STAKE_KEY, user)] = [_position_to_dict(p) for p in positions]
    for dist_id, distribution in state.distributions.items():
        raw[entity_key(DISTRIBUTION_KEY, dist_id)] = _distribution_to_dict(distribution)
    for dist_id, snapshot in state.snapshots.items():
        raw[entity_key(SNAPSHOT_KEY, dist_id)] = dict(snapshot)
    for dist_id, users in state.claims.items():
        raw[entity_key(CLAIMS_KEY, dist_id)] = sorted(users)
    return raw


def state_delta(old_raw: Mapping[str, Any], new_raw: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split two state dicts into (old_values, new_values) for the keys that differ.

    Keys absent on one side map to None there.
    """
    changed = sorted(
        key for key in set(old_raw) | set(new_raw)
        if old_raw.get(key) != new_raw.get(key)
    )
    return (
        {key: old_raw.get(key) for key in changed},
        {key: new_raw.get(key) for key in changed},
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_user_principal(positions: Tuple[StakePosition, ...]) -> Decimal:
    """Sum of principal over a user's open (non-withdrawn) positions."""
    return sum((p.principal for p in positions if not p.withdrawn), Decimal("0"))


def calculate_eligible_amount(
    positions: Tuple[StakePosition, ...],
    now: datetime,
    min_dividend_lock: int,
) -> Decimal:
    """
    Principal of open positions at least min_dividend_lock seconds old.

    The floor is independent of each position's own plan duration.
    """
    lock = timedelta(seconds=min_dividend_lock)
    return sum(
        (p.principal for p in positions if not p.withdrawn and p.start_time + lock <= now),
        Decimal("0"),
    )


def calculate_pending_interest(
    positions: Tuple[StakePosition, ...],
    now: datetime,
    rate: int,
    principal_decimals: int,
    settlement_decimals: int,
) -> Decimal:
    """
    Estimate of settlement interest accrued so far on open positions.

    Uses the live rate over min(now - start, duration), so it can differ
    from the snapshotted amount actually paid at unstake.
    """
    total = Decimal("0")
    for p in positions:
        if p.withdrawn:
            continue
        elapsed = int((now - p.start_time).total_seconds())
        total += calculate_settlement_interest(
            p.principal, Plan(p.apy_bps, p.duration), elapsed, rate,
            principal_decimals, settlement_decimals,
        )
    return total


def calculate_share(
    user_eligible: Decimal,
    total_amount: Decimal,
    eligible_total: Decimal,
    decimal_places: int,
) -> Decimal:
    """
    Pro-rata share of a distribution, floored to the settlement precision.

    The sum of all shares never exceeds total_amount; the rounding
    remainder stays in the distribution until recovered.
    """
    if eligible_total <= 0 or user_eligible <= 0:
        return Decimal("0")
    return quantize_down(user_eligible * total_amount / eligible_total, decimal_places)


def take_eligibility_snapshot(
    stakes: Mapping[str, Tuple[StakePosition, ...]],
    active_stakers: Tuple[str, ...],
    now: datetime,
    min_dividend_lock: int,
) -> Dict[str, Decimal]:
    """
    Eligible amount per active staker at `now`. Stakers with nothing
    eligible get no entry.
    """
    snapshot: Dict[str, Decimal] = {}
    for user in active_stakers:
        eligible = calculate_eligible_amount(stakes.get(user, ()), now, min_dividend_lock)
        if eligible > 0:
            snapshot[user] = eligible
    return snapshot


# ============================================================================
# POOL CREATION
# ============================================================================

def create_staking_pool(
    symbol: str,
    name: str,
    principal_unit: str,
    settlement_unit: str,
    admin_wallet: str,
    pool_wallet: str,
    principal_decimals: int = 18,
    settlement_decimals: int = 18,
    exchange_rate: int = RATE_SCALE,
    min_stake: Decimal = Decimal("0"),
    plans: Optional[Mapping[int, Plan]] = None,
    min_dividend_lock: int = MIN_DIVIDEND_LOCK,
    min_recovery_wait: int = MIN_RECOVERY_WAIT_PERIOD,
) -> Unit:
    """
    Create a staking pool unit.

    The unit itself is never held by any wallet; it carries the pool state.
    Staked principal and settlement funds sit in pool_wallet.

    Args:
        symbol: Pool identifier (e.g., "POOL")
        name: Human-readable name
        principal_unit: Token that is staked and returned at maturity
        settlement_unit: Token in which interest and dividends are paid
        admin_wallet: The only wallet allowed to run admin operations
        pool_wallet: Wallet holding the pool's tokens
        principal_decimals: Precision of principal_unit
        settlement_decimals: Precision of settlement_unit
        exchange_rate: Settlement units per principal token, scaled by 10^18
        min_stake: Smallest principal accepted by stake
        plans: Plan slots 1-4 (default: DEFAULT_PLANS)
        min_dividend_lock: Seconds a stake must age to count for dividends
        min_recovery_wait: Seconds before unclaimed dividends can be recovered

    Raises:
        ValueError: on empty or clashing wallets/units, negative values,
                    a non-positive exchange rate or missing plan slots.

    Example:
        pool = create_staking_pool(
            symbol="POOL", name="TKN staking",
            principal_unit="TKN", settlement_unit="USDT",
            admin_wallet="admin", pool_wallet="pool",
            principal_decimals=18, settlement_decimals=6,
        )
        ledger.register_unit(pool)
    """
    for label, value in (
        ('principal_unit', principal_unit),
        ('settlement_unit', settlement_unit),
        ('admin_wallet', admin_wallet),
        ('pool_wallet', pool_wallet),
    ):
        if not value or not value.strip():
            raise ValueError(f"{label} cannot be empty")
    if principal_unit == settlement_unit:
        raise ValueError("principal_unit and settlement_unit must be different")
    if admin_wallet == pool_wallet:
        raise ValueError("admin_wallet and pool_wallet must be different")
    if SYSTEM_WALLET in (admin_wallet, pool_wallet):
        raise ValueError("admin_wallet and pool_wallet cannot be the system wallet")
    if principal_decimals < 0 or settlement_decimals < 0:
        raise ValueError("decimal precision cannot be negative")
    if exchange_rate <= 0:
        raise ValueError(f"exchange_rate must be positive, got {exchange_rate}")
    if not isinstance(min_stake, Decimal):
        min_stake = Decimal(str(min_stake))
    if min_stake < 0:
        raise ValueError(f"min_stake cannot be negative, got {min_stake}")
    if min_dividend_lock < 0 or min_recovery_wait < 0:
        raise ValueError("lock periods cannot be negative")

    plans = dict(plans if plans is not None else DEFAULT_PLANS)
    missing = [plan_id for plan_id in PLAN_IDS if plan_id not in plans]
    if missing:
        raise ValueError(f"plans missing slots {missing}")

    terms = PoolTerms(
        principal_unit=principal_unit,
        settlement_unit=settlement_unit,
        admin_wallet=admin_wallet,
        pool_wallet=pool_wallet,
        principal_decimals=principal_decimals,
        settlement_decimals=settlement_decimals,
        min_dividend_lock=min_dividend_lock,
        min_recovery_wait=min_recovery_wait,
    )
    state = PoolState(
        exchange_rate=exchange_rate,
        min_stake=min_stake,
        plans={plan_id: plans[plan_id] for plan_id in PLAN_IDS},
        accounts=PoolAccounts(),
    )

    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_STAKING_POOL,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=None,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


# ============================================================================
# HELPERS
# ============================================================================

def _require_admin(terms: PoolTerms, caller: str) -> None:
    if caller != terms.admin_wallet:
        raise Unauthorized(f"{caller} is not the pool administrator")


def _require_address(address: str, label: str = "address") -> None:
    if not address or not address.strip():
        raise InvalidAddress(f"{label} cannot be empty")


def _require_counterparty(terms: PoolTerms, address: str, label: str) -> None:
    """A wallet tokens move to or from; never the pool itself or the issuer."""
    _require_address(address, label)
    if address == terms.pool_wallet:
        raise InvalidAddress(f"{label} cannot be the pool wallet {address}")
    if address == SYSTEM_WALLET:
        raise InvalidAddress(f"{label} cannot be the system wallet")


def _require_amount(amount: Decimal, decimal_places: int) -> Decimal:
    """Coerce to Decimal; reject zero, negative and over-precise amounts."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise ValidationError(f"amount must be finite, got {amount}")
    if amount == 0:
        raise ZeroAmount("amount must be non-zero")
    if amount < 0:
        raise ValidationError(f"amount cannot be negative, got {amount}")
    if quantize_down(amount, decimal_places) != amount:
        raise ValidationError(f"amount {amount} exceeds {decimal_places} decimal places")
    return amount


def _pool_transaction(
    view: LedgerView,
    symbol: str,
    old_raw: Dict[str, Any],
    terms: PoolTerms,
    state: PoolState,
    moves: List[Move],
    caller: str,
    event_type: str,
    origin_type: OriginType = OriginType.USER_ACTION,
) -> PendingTransaction:
    """
    Wrap moves and the changed pool state keys into one PendingTransaction.

    Only keys whose value differs are carried, so the intent hash and the
    audit record grow with what the operation touched, not with pool history.
    """
    # operation_count makes every pool intent unique, so two identical
    # deposits in the same instant are not mistaken for a replay
    new_state = replace(state, operation_count=state.operation_count + 1)
    old_values, new_values = state_delta(old_raw, to_state_dict(terms, new_state))
    changes = [UnitStateChange(unit=symbol, old_state=old_values, new_state=new_values)]
    origin = TransactionOrigin(
        origin_type=origin_type,
        source_id=caller,
        unit_symbol=symbol,
        event_type=event_type,
    )
    return build_transaction(view, moves, changes, origin)


def _with_positions(state: PoolState, user: str, positions: Tuple[StakePosition, ...]) -> PoolState:
    stakes = dict(state.stakes)
    stakes[user] = positions
    return replace(state, stakes=stakes)


# ============================================================================
# STAKE LEDGER
# ============================================================================

def compute_stake(
    view: LedgerView,
    symbol: str,
    user: str,
    amount: Decimal,
    plan_id: int,
) -> PendingTransaction:
    """
    Open a new stake for `user`.

    The settlement interest for the full plan duration is computed at the
    current exchange rate and stored in the position; later rate changes do
    not affect it.

    Raises:
        InvalidAddress: user is empty, the pool wallet or the system wallet
        ZeroAmount / BelowMinimum: amount is zero or under min_stake
        InvalidPlan: plan_id not in 1..4
        InvalidRate: exchange rate is not positive
        InsufficientReserve: settlement balance cannot cover the new interest
            on top of existing reserves

    Returns:
        PendingTransaction moving principal user -> pool and appending the position.
    """
    _require_address(user, "user")
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_counterparty(terms, user, "user")

    amount = _require_amount(amount, terms.principal_decimals)
    if amount < state.min_stake:
        raise BelowMinimum(f"amount {amount} is below the minimum stake {state.min_stake}")

    plan = resolve_plan(state.plans, plan_id)
    interest = calculate_settlement_interest(
        amount, plan, plan.duration, state.exchange_rate,
        terms.principal_decimals, terms.settlement_decimals,
    )

    settlement_balance = view.get_balance(terms.pool_wallet, terms.settlement_unit)
    accounts = state.accounts.reserve_interest(interest, settlement_balance)
    accounts = accounts.add_principal(amount)

    positions = state.stakes.get(user, ())
    position = StakePosition(
        principal=amount,
        start_time=view.current_time,
        duration=plan.duration,
        apy_bps=plan.apy_bps,
        interest=interest,
    )

    stakers = ActiveStakerSet(list(state.active_stakers))
    if calculate_user_principal(positions) == 0:
        stakers.add(user)

    new_state = _with_positions(state, user, positions + (position,))
    new_state = replace(new_state, accounts=accounts, active_stakers=tuple(stakers.to_list()))

    moves = [Move(
        quantity=amount,
        unit_symbol=terms.principal_unit,
        source=user,
        dest=terms.pool_wallet,
        contract_id=f"{symbol}_stake_{user}_{len(positions)}",
    )]
    return _pool_transaction(view, symbol, raw, terms, new_state, moves, user, "STAKE")


def compute_unstake(
    view: LedgerView,
    symbol: str,
    user: str,
    index: int,
) -> PendingTransaction:
    """
    Close a matured stake, returning principal and the snapshotted interest.

    Raises:
        InvalidIndex: index out of range for the user's positions
        AlreadyWithdrawn: the position was already closed
        StillLocked: now < start + duration
        InsufficientReserve: the pool cannot currently pay the interest
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)

    positions = state.stakes.get(user, ())
    if not isinstance(index, int) or index < 0 or index >= len(positions):
        raise InvalidIndex(f"{user} has no stake at index {index}")
    position = positions[index]
    if position.withdrawn:
        raise AlreadyWithdrawn(f"stake {index} of {user} already withdrawn")
    now = view.current_time
    if now < position.maturity:
        raise StillLocked(f"stake {index} of {user} is locked until {position.maturity}")

    settlement_balance = view.get_balance(terms.pool_wallet, terms.settlement_unit)
    accounts = state.accounts.release_interest(position.interest, settlement_balance)
    accounts = accounts.remove_principal(position.principal)

    updated = list(positions)
    updated[index] = replace(position, withdrawn=True)
    updated = tuple(updated)

    stakers = ActiveStakerSet(list(state.active_stakers))
    if calculate_user_principal(updated) == 0:
        stakers.discard(user)

    new_state = _with_positions(state, user, updated)
    new_state = replace(new_state, accounts=accounts, active_stakers=tuple(stakers.to_list()))

    moves = [Move(
        quantity=position.principal,
        unit_symbol=terms.principal_unit,
        source=terms.pool_wallet,
        dest=user,
        contract_id=f"{symbol}_unstake_{user}_{index}_principal",
    )]
    if position.interest > 0:
        moves.append(Move(
            quantity=position.interest,
            unit_symbol=terms.settlement_unit,
            source=terms.pool_wallet,
            dest=user,
            contract_id=f"{symbol}_unstake_{user}_{index}_interest",
        ))
    return _pool_transaction(view, symbol, raw, terms, new_state, moves, user, "UNSTAKE")


def compute_pending_interest(view: LedgerView, symbol: str, user: str) -> Decimal:
    """Live-rate estimate of interest accrued so far on the user's open stakes."""
    terms, state = load_staking_pool(view, symbol)
    return calculate_pending_interest(
        state.stakes.get(user, ()), view.current_time, state.exchange_rate,
        terms.principal_decimals, terms.settlement_decimals,
    )


def compute_preview_interest(view: LedgerView, symbol: str, principal: Decimal, plan_id: int) -> Decimal:
    """Settlement interest a new stake of `principal` on `plan_id` would lock in now."""
    terms, state = load_staking_pool(view, symbol)
    if not isinstance(principal, Decimal):
        principal = Decimal(str(principal))
    plan = resolve_plan(state.plans, plan_id)
    return calculate_settlement_interest(
        principal, plan, plan.duration, state.exchange_rate,
        terms.principal_decimals, terms.settlement_decimals,
    )


# ============================================================================
# DISTRIBUTION ENGINE
# ============================================================================

def compute_create_distribution(
    view: LedgerView,
    symbol: str,
    caller: str,
    total_amount: Decimal,
) -> PendingTransaction:
    """
    Create a distribution of `total_amount` settlement units.

    Snapshots the eligible principal of every active staker now; the
    snapshot never changes afterwards. The funds must already sit in the
    pool wallet beyond existing reserves.

    Raises:
        Unauthorized: caller is not the admin
        ZeroAmount: total_amount is zero
        InsufficientFunds: settlement balance < total + existing reserves
        NoEligibleStakers: nobody has stake older than min_dividend_lock
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    total_amount = _require_amount(total_amount, terms.settlement_decimals)

    settlement_balance = view.get_balance(terms.pool_wallet, terms.settlement_unit)
    accounts = state.accounts.reserve_distribution(total_amount, settlement_balance)

    now = view.current_time
    snapshot = take_eligibility_snapshot(
        state.stakes, state.active_stakers, now, terms.min_dividend_lock,
    )
    eligible_total = sum(snapshot.values(), Decimal("0"))
    if eligible_total <= 0:
        raise NoEligibleStakers("no active staker has stake older than the dividend lock")

    distribution_id = state.next_distribution_id
    distribution = Distribution(
        distribution_id=distribution_id,
        timestamp=now,
        total_amount=total_amount,
        eligible_total=eligible_total,
    )

    new_state = replace(
        state,
        accounts=accounts,
        distributions={**state.distributions, distribution_id: distribution},
        snapshots={**state.snapshots, distribution_id: snapshot},
        claims={**state.claims, distribution_id: frozenset()},
        next_distribution_id=distribution_id + 1,
    )
    return _pool_transaction(
        view, symbol, raw, terms, new_state, [], caller, "CREATE_DISTRIBUTION", OriginType.SYSTEM,
    )


def compute_claim(
    view: LedgerView,
    symbol: str,
    distribution_id: int,
    caller: str,
) -> PendingTransaction:
    """
    Claim the caller's pro-rata share of a distribution.

    The claim flag is set even when the share floors to zero, so a
    zero-value claim cannot be retried.

    Raises:
        DistributionNotFound: never created or already recovered
        AlreadyClaimed: caller already claimed this distribution
        NoEligibleSnapshot: caller had no eligible stake at creation
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)

    distribution = state.distributions.get(distribution_id)
    if distribution is None or not distribution.exists:
        raise DistributionNotFound(f"distribution {distribution_id} not found")
    claimed_by = state.claims.get(distribution_id, frozenset())
    if caller in claimed_by:
        raise AlreadyClaimed(f"{caller} already claimed distribution {distribution_id}")
    user_eligible = state.snapshots.get(distribution_id, {}).get(caller, Decimal("0"))
    if user_eligible <= 0:
        raise NoEligibleSnapshot(f"{caller} has no eligible stake in distribution {distribution_id}")

    share = calculate_share(
        user_eligible, distribution.total_amount, distribution.eligible_total,
        terms.settlement_decimals,
    )

    accounts = state.accounts
    moves: List[Move] = []
    if share > 0:
        accounts = accounts.release_distribution(share)
        distribution = replace(distribution, claimed_amount=distribution.claimed_amount + share)
        moves.append(Move(
            quantity=share,
            unit_symbol=terms.settlement_unit,
            source=terms.pool_wallet,
            dest=caller,
            contract_id=f"{symbol}_claim_{distribution_id}_{caller}",
        ))

    new_state = replace(
        state,
        accounts=accounts,
        distributions={**state.distributions, distribution_id: distribution},
        claims={**state.claims, distribution_id: claimed_by | {caller}},
    )
    return _pool_transaction(view, symbol, raw, terms, new_state, moves, caller, "CLAIM")


def compute_recover_undistributed(
    view: LedgerView,
    symbol: str,
    distribution_id: int,
    caller: str,
    to: str,
) -> PendingTransaction:
    """
    Recover the unclaimed remainder of a distribution and close it for good.

    Raises:
        Unauthorized: caller is not the admin
        InvalidAddress: `to` is empty, the pool wallet or the system wallet
        DistributionNotFound: never created or already recovered
        RecoveryWindowOpen: now < timestamp + min_recovery_wait
        NothingToRecover: everything has been claimed
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    _require_counterparty(terms, to, "to")

    distribution = state.distributions.get(distribution_id)
    if distribution is None or not distribution.exists:
        raise DistributionNotFound(f"distribution {distribution_id} not found")
    opens_at = distribution.timestamp + timedelta(seconds=terms.min_recovery_wait)
    if view.current_time < opens_at:
        raise RecoveryWindowOpen(f"distribution {distribution_id} recoverable from {opens_at}")
    undistributed = distribution.remaining
    if undistributed <= 0:
        raise NothingToRecover(f"distribution {distribution_id} fully claimed")

    accounts = state.accounts.release_distribution(undistributed)
    closed = replace(distribution, claimed_amount=distribution.total_amount, exists=False)

    new_state = replace(
        state,
        accounts=accounts,
        distributions={**state.distributions, distribution_id: closed},
    )
    moves = [Move(
        quantity=undistributed,
        unit_symbol=terms.settlement_unit,
        source=terms.pool_wallet,
        dest=to,
        contract_id=f"{symbol}_recover_{distribution_id}",
    )]
    return _pool_transaction(
        view, symbol, raw, terms, new_state, moves, caller, "RECOVER", OriginType.SYSTEM,
    )


# ============================================================================
# ADMINISTRATION
# ============================================================================

def compute_set_exchange_rate(view: LedgerView, symbol: str, caller: str, rate: int) -> PendingTransaction:
    """
    Set the rate used for new stakes and interest previews.

    Raises:
        Unauthorized, InvalidRate (rate <= 0)
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    if isinstance(rate, bool) or not isinstance(rate, int) or rate <= 0:
        raise InvalidRate(f"exchange rate must be a positive integer, got {rate}")
    new_state = replace(state, exchange_rate=rate)
    return _pool_transaction(view, symbol, raw, terms, new_state, [], caller, "SET_RATE", OriginType.SYSTEM)


def compute_set_min_stake(view: LedgerView, symbol: str, caller: str, min_stake: Decimal) -> PendingTransaction:
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    if not isinstance(min_stake, Decimal):
        min_stake = Decimal(str(min_stake))
    if min_stake < 0:
        raise ValidationError(f"min_stake cannot be negative, got {min_stake}")
    new_state = replace(state, min_stake=min_stake)
    return _pool_transaction(view, symbol, raw, terms, new_state, [], caller, "SET_MIN_STAKE", OriginType.SYSTEM)


def compute_set_plan(
    view: LedgerView,
    symbol: str,
    caller: str,
    plan_id: int,
    apy_bps: int,
    duration: int,
) -> PendingTransaction:
    """
    Reconfigure one plan slot. Only future stakes are affected.

    Raises:
        Unauthorized, InvalidPlan, ValidationError (negative APY, non-positive duration)
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    resolve_plan(state.plans, plan_id)
    try:
        plan = Plan(apy_bps=apy_bps, duration=duration)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    new_state = replace(state, plans={**state.plans, plan_id: plan})
    return _pool_transaction(view, symbol, raw, terms, new_state, [], caller, "SET_PLAN", OriginType.SYSTEM)


def _unit_decimals(terms: PoolTerms, unit_symbol: str) -> int:
    if unit_symbol == terms.principal_unit:
        return terms.principal_decimals
    if unit_symbol == terms.settlement_unit:
        return terms.settlement_decimals
    raise ValidationError(f"{unit_symbol} is not a currency of this pool")


def compute_deposit(
    view: LedgerView,
    symbol: str,
    caller: str,
    unit_symbol: str,
    amount: Decimal,
) -> PendingTransaction:
    """Move admin funds of either pool currency into the pool wallet."""
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    amount = _require_amount(amount, _unit_decimals(terms, unit_symbol))
    moves = [Move(
        quantity=amount,
        unit_symbol=unit_symbol,
        source=caller,
        dest=terms.pool_wallet,
        contract_id=f"{symbol}_deposit_{unit_symbol}",
    )]
    return _pool_transaction(view, symbol, raw, terms, state, moves, caller, "DEPOSIT", OriginType.SYSTEM)


def compute_withdraw(
    view: LedgerView,
    symbol: str,
    caller: str,
    unit_symbol: str,
    amount: Decimal,
    to: Optional[str] = None,
) -> PendingTransaction:
    """
    Withdraw unobligated funds of either pool currency.

    Raises:
        Unauthorized, ZeroAmount, InvalidAddress
        InsufficientFunds: principal left would not cover staked principal,
            or settlement left would not cover both reserves
    """
    raw = view.get_unit_state(symbol)
    terms, state = from_state_dict(raw)
    _require_admin(terms, caller)
    amount = _require_amount(amount, _unit_decimals(terms, unit_symbol))
    to = caller if to is None else to
    _require_counterparty(terms, to, "to")

    balance = view.get_balance(terms.pool_wallet, unit_symbol)
    if unit_symbol == terms.principal_unit:
        state.accounts.check_principal_withdrawal(amount, balance)
    else:
        state.accounts.check_settlement_withdrawal(amount, balance)

    moves = [Move(
        quantity=amount,
        unit_symbol=unit_symbol,
        source=terms.pool_wallet,
        dest=to,
        contract_id=f"{symbol}_withdraw_{unit_symbol}",
    )]
    return _pool_transaction(view, symbol, raw, terms, state, moves, caller, "WITHDRAW", OriginType.SYSTEM)
