"""
pool.py - Staking Pool Service

Binds a staking pool unit to a Ledger and exposes the pool's operations as
methods. Each state-changing method:

1. Marks the pool busy on the ledger (reentrancy guard)
2. Calls the matching compute_* function (pure, validates and raises)
3. Executes the PendingTransaction on the ledger (all or nothing)
4. Releases the guard, whether the operation succeeded or not

Reads go straight to the ledger; nothing is cached in the service, so two
StakingPool objects over the same ledger and symbol see the same pool.
"""

from __future__ import annotations
import functools
from decimal import Decimal
from typing import List, Optional

from .core import (
    PendingTransaction, ExecuteResult,
    UNIT_TYPE_STAKING_POOL,
    UnitNotRegistered, ReentrantCall, TransferRejected, DistributionNotFound,
)
from .ledger import Ledger
from .units.staking_pool import (
    PoolTerms, PoolState, StakePosition, Distribution,
    load_staking_pool,
    calculate_user_principal, calculate_eligible_amount, calculate_share,
    compute_stake, compute_unstake, compute_pending_interest, compute_preview_interest,
    compute_create_distribution, compute_claim, compute_recover_undistributed,
    compute_set_exchange_rate, compute_set_min_stake, compute_set_plan,
    compute_deposit, compute_withdraw,
)


def nonreentrant(method):
    """
    Refuse to enter `method` while any guarded operation on the same pool is
    running. The busy flag lives on the ledger, keyed by pool symbol, so every
    StakingPool over that ledger and symbol sees it. It is released when the
    outer call finishes, even if it raised.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        busy = self.ledger.busy_units
        if self.symbol in busy:
            raise ReentrantCall(f"{method.__name__} entered while {self.symbol} is busy")
        busy.add(self.symbol)
        try:
            return method(self, *args, **kwargs)
        finally:
            busy.discard(self.symbol)
    return wrapper


class StakingPool:
    """
    Service facade over a staking pool registered on a Ledger.

    Example:
        ledger.register_unit(create_staking_pool("POOL", ...))
        pool = StakingPool(ledger, "POOL")
        pool.deposit_settlement("admin", Decimal("10000"))
        pool.stake("alice", Decimal("1000"), plan_id=1)
    """

    def __init__(self, ledger: Ledger, symbol: str):
        if symbol not in ledger.units:
            raise UnitNotRegistered(f"pool {symbol} not registered")
        unit = ledger.get_unit(symbol)
        if unit.unit_type != UNIT_TYPE_STAKING_POOL:
            raise ValueError(f"{symbol} is a {unit.unit_type}, not a staking pool")
        self.ledger = ledger
        self.symbol = symbol
        self.verbose = ledger.verbose

    def __repr__(self) -> str:
        return f"StakingPool({self.symbol})"

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _load(self):
        return load_staking_pool(self.ledger, self.symbol)

    def _commit(self, pending: PendingTransaction) -> ExecuteResult:
        """Execute on the ledger; a rejection becomes TransferRejected."""
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransferRejected(
                f"ledger rejected {pending.origin.event_type} on {self.symbol} "
                f"by {pending.origin.source_id}"
            )
        return result

    def _log(self, event: str, message: str) -> None:
        if self.verbose:
            print(f"[{event}] {self.symbol}: {message}")

    @property
    def busy(self) -> bool:
        """True while a guarded operation on this pool is in flight."""
        return self.symbol in self.ledger.busy_units

    @property
    def terms(self) -> PoolTerms:
        return self._load()[0]

    @property
    def state(self) -> PoolState:
        return self._load()[1]

    # ------------------------------------------------------------------
    # stake ledger
    # ------------------------------------------------------------------

    @nonreentrant
    def stake(self, user: str, amount: Decimal, plan_id: int) -> StakePosition:
        """
        Lock `amount` principal on plan `plan_id`. Returns the new position.
        """
        pending = compute_stake(self.ledger, self.symbol, user, amount, plan_id)
        self._commit(pending)
        position = self.get_stakes(user)[-1]
        self._log("STAKE", f"{user} staked {position.principal} on plan {plan_id}, "
                           f"interest {position.interest} due {position.maturity}")
        return position

    @nonreentrant
    def unstake(self, user: str, index: int) -> StakePosition:
        """Close matured position `index`, paying principal and interest."""
        pending = compute_unstake(self.ledger, self.symbol, user, index)
        self._commit(pending)
        position = self.get_stakes(user)[index]
        self._log("UNSTAKE", f"{user} withdrew {position.principal} + interest {position.interest}")
        return position

    def staked_balance(self, user: str) -> Decimal:
        """Principal of the user's open positions."""
        return calculate_user_principal(self.state.stakes.get(user, ()))

    def get_stakes(self, user: str) -> List[StakePosition]:
        return list(self.state.stakes.get(user, ()))

    def pending_interest(self, user: str) -> Decimal:
        return compute_pending_interest(self.ledger, self.symbol, user)

    def preview_interest(self, principal: Decimal, plan_id: int) -> Decimal:
        return compute_preview_interest(self.ledger, self.symbol, principal, plan_id)

    def total_staked(self) -> Decimal:
        return self.state.accounts.total_staked

    def active_staker_count(self) -> int:
        return len(self.state.active_stakers)

    def active_stakers(self) -> List[str]:
        return list(self.state.active_stakers)

    def exchange_rate(self) -> int:
        return self.state.exchange_rate

    # ------------------------------------------------------------------
    # balances and reserves
    # ------------------------------------------------------------------

    def principal_balance(self) -> Decimal:
        terms = self.terms
        return self.ledger.get_balance(terms.pool_wallet, terms.principal_unit)

    def settlement_balance(self) -> Decimal:
        terms = self.terms
        return self.ledger.get_balance(terms.pool_wallet, terms.settlement_unit)

    def available_principal_balance(self) -> Decimal:
        """Principal in the pool wallet beyond what stakers are owed."""
        return self.state.accounts.available_principal(self.principal_balance())

    def available_settlement_balance(self) -> Decimal:
        """Settlement in the pool wallet beyond interest and dividend reserves."""
        return self.state.accounts.available_settlement(self.settlement_balance())

    # ------------------------------------------------------------------
    # distributions
    # ------------------------------------------------------------------

    @nonreentrant
    def create_distribution(self, caller: str, total_amount: Decimal) -> Distribution:
        """
        Fund a new distribution from settlement already held by the pool.
        Returns the distribution record, including its id.
        """
        pending = compute_create_distribution(self.ledger, self.symbol, caller, total_amount)
        self._commit(pending)
        state = self.state
        distribution = state.distributions[state.next_distribution_id - 1]
        self._log("DISTRIBUTION", f"#{distribution.distribution_id} of {distribution.total_amount} "
                                  f"over eligible {distribution.eligible_total}")
        return distribution

    @nonreentrant
    def claim(self, distribution_id: int, caller: str) -> Decimal:
        """Claim the caller's share. Returns the amount paid (may be zero)."""
        before = self.get_distribution(distribution_id).claimed_amount
        pending = compute_claim(self.ledger, self.symbol, distribution_id, caller)
        self._commit(pending)
        share = self.get_distribution(distribution_id).claimed_amount - before
        self._log("CLAIM", f"{caller} claimed {share} from #{distribution_id}")
        return share

    @nonreentrant
    def recover_undistributed(self, caller: str, distribution_id: int, to: Optional[str] = None) -> Decimal:
        """Move the unclaimed remainder to `to` (default: caller). Returns the amount."""
        to = caller if to is None else to
        pending = compute_recover_undistributed(self.ledger, self.symbol, distribution_id, caller, to)
        distribution = self.get_distribution(distribution_id)
        self._commit(pending)
        recovered = distribution.remaining
        self._log("RECOVER", f"#{distribution_id} remainder {recovered} sent to {to}")
        return recovered

    def get_distribution(self, distribution_id: int) -> Distribution:
        """
        Return a distribution record, including recovered ones.

        Raises:
            DistributionNotFound: if the id was never created.
        """
        distribution = self.state.distributions.get(distribution_id)
        if distribution is None:
            raise DistributionNotFound(f"distribution {distribution_id} not found")
        return distribution

    def list_distributions(self) -> List[Distribution]:
        return [d for _, d in sorted(self.state.distributions.items())]

    def get_eligible_amount(self, distribution_id: int, user: str) -> Decimal:
        """The user's snapshotted eligible principal (zero if not in the snapshot)."""
        self.get_distribution(distribution_id)
        return self.state.snapshots.get(distribution_id, {}).get(user, Decimal("0"))

    def get_claimable(self, distribution_id: int, user: str) -> Decimal:
        """What claim() would pay the user now, zero if claimed or ineligible."""
        distribution = self.get_distribution(distribution_id)
        if not distribution.exists or self.has_claimed(distribution_id, user):
            return Decimal("0")
        return calculate_share(
            self.get_eligible_amount(distribution_id, user),
            distribution.total_amount, distribution.eligible_total,
            self.terms.settlement_decimals,
        )

    def has_claimed(self, distribution_id: int, user: str) -> bool:
        return user in self.state.claims.get(distribution_id, frozenset())

    def preview_eligible_amount(self, user: str) -> Decimal:
        """
        Principal of the user's positions old enough to count if a
        distribution were created right now.
        """
        terms, state = self._load()
        return calculate_eligible_amount(
            state.stakes.get(user, ()), self.ledger.current_time, terms.min_dividend_lock,
        )

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    @nonreentrant
    def set_exchange_rate(self, caller: str, rate: int) -> None:
        old = self.state.exchange_rate
        self._commit(compute_set_exchange_rate(self.ledger, self.symbol, caller, rate))
        self._log("RATE", f"{old} -> {rate}")

    @nonreentrant
    def set_min_stake(self, caller: str, min_stake: Decimal) -> None:
        self._commit(compute_set_min_stake(self.ledger, self.symbol, caller, min_stake))
        self._log("MIN_STAKE", f"{min_stake}")

    @nonreentrant
    def set_plan(self, caller: str, plan_id: int, apy_bps: int, duration: int) -> None:
        self._commit(compute_set_plan(self.ledger, self.symbol, caller, plan_id, apy_bps, duration))
        self._log("PLAN", f"plan {plan_id} -> {apy_bps} bps for {duration}s")

    @nonreentrant
    def deposit_principal(self, caller: str, amount: Decimal) -> None:
        unit = self.terms.principal_unit
        self._commit(compute_deposit(self.ledger, self.symbol, caller, unit, amount))
        self._log("DEPOSIT", f"{amount} {unit}")

    @nonreentrant
    def deposit_settlement(self, caller: str, amount: Decimal) -> None:
        unit = self.terms.settlement_unit
        self._commit(compute_deposit(self.ledger, self.symbol, caller, unit, amount))
        self._log("DEPOSIT", f"{amount} {unit}")

    @nonreentrant
    def withdraw_principal(self, caller: str, amount: Decimal, to: Optional[str] = None) -> None:
        unit = self.terms.principal_unit
        self._commit(compute_withdraw(self.ledger, self.symbol, caller, unit, amount, to))
        self._log("WITHDRAW", f"{amount} {unit}")

    @nonreentrant
    def withdraw_settlement(self, caller: str, amount: Decimal, to: Optional[str] = None) -> None:
        unit = self.terms.settlement_unit
        self._commit(compute_withdraw(self.ledger, self.symbol, caller, unit, amount, to))
        self._log("WITHDRAW", f"{amount} {unit}")
