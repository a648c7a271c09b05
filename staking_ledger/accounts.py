"""
accounts.py - Pool accounting counters and the conservation checks guarding them.

PoolAccounts holds the three global counters of a staking pool:

    total_staked          principal currently locked in open positions
    interest_reserve      settlement owed as interest on open positions
    distribution_reserve  settlement owed to unclaimed distribution shares

It is a frozen value: every mutator returns a new PoolAccounts and is the
only way to change a counter. Mutators that add an obligation take the
pool's live settlement balance and refuse if the balance would not cover
all reserves afterwards.

Invariants (checked against live balances, never cached):
    settlement_balance >= interest_reserve + distribution_reserve
    principal_balance  >= total_staked
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal

from .core import InsufficientFunds, InsufficientReserve


@dataclass(frozen=True, slots=True)
class PoolAccounts:
    total_staked: Decimal = Decimal("0")
    interest_reserve: Decimal = Decimal("0")
    distribution_reserve: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ('total_staked', 'interest_reserve', 'distribution_reserve'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                value = Decimal(str(value))
                object.__setattr__(self, name, value)
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")

    @property
    def total_reserved(self) -> Decimal:
        """Settlement currency the pool must hold for all obligations."""
        return self.interest_reserve + self.distribution_reserve

    # ------------------------------------------------------------------
    # principal
    # ------------------------------------------------------------------

    def add_principal(self, amount: Decimal) -> PoolAccounts:
        return replace(self, total_staked=self.total_staked + amount)

    def remove_principal(self, amount: Decimal) -> PoolAccounts:
        return replace(self, total_staked=self.total_staked - amount)

    # ------------------------------------------------------------------
    # interest
    # ------------------------------------------------------------------

    def reserve_interest(self, amount: Decimal, settlement_balance: Decimal) -> PoolAccounts:
        """
        Set aside interest for a new position.

        Raises:
            InsufficientReserve: if the settlement balance would not cover
                both reserves after the increase.
        """
        updated = replace(self, interest_reserve=self.interest_reserve + amount)
        if settlement_balance < updated.total_reserved:
            raise InsufficientReserve(
                f"settlement balance {settlement_balance} cannot cover "
                f"reserves {updated.total_reserved} after reserving {amount} interest"
            )
        return updated

    def release_interest(self, amount: Decimal, settlement_balance: Decimal) -> PoolAccounts:
        """
        Release the interest of a closing position so it can be paid out.

        Raises:
            InsufficientReserve: if the settlement balance cannot currently
                pay the interest (e.g. after an external drain).
        """
        if settlement_balance < amount:
            raise InsufficientReserve(
                f"settlement balance {settlement_balance} cannot pay interest {amount}"
            )
        return replace(self, interest_reserve=self.interest_reserve - amount)

    # ------------------------------------------------------------------
    # distributions
    # ------------------------------------------------------------------

    def reserve_distribution(self, amount: Decimal, settlement_balance: Decimal) -> PoolAccounts:
        """
        Set aside settlement currency for a new distribution.

        Raises:
            InsufficientFunds: if the settlement balance would not cover
                both reserves after the increase.
        """
        updated = replace(self, distribution_reserve=self.distribution_reserve + amount)
        if settlement_balance < updated.total_reserved:
            raise InsufficientFunds(
                f"settlement balance {settlement_balance} cannot fund distribution of "
                f"{amount} on top of reserves {self.total_reserved}"
            )
        return updated

    def release_distribution(self, amount: Decimal) -> PoolAccounts:
        return replace(self, distribution_reserve=self.distribution_reserve - amount)

    # ------------------------------------------------------------------
    # raw withdrawals
    # ------------------------------------------------------------------

    def check_principal_withdrawal(self, amount: Decimal, principal_balance: Decimal) -> None:
        """
        Raises:
            InsufficientFunds: if the principal left after withdrawing would
                not cover total_staked.
        """
        if principal_balance - amount < self.total_staked:
            raise InsufficientFunds(
                f"withdrawing {amount} leaves {principal_balance - amount}, "
                f"below staked principal {self.total_staked}"
            )

    def check_settlement_withdrawal(self, amount: Decimal, settlement_balance: Decimal) -> None:
        """
        Raises:
            InsufficientFunds: if the settlement left after withdrawing would
                not cover both reserves.
        """
        if settlement_balance - amount < self.total_reserved:
            raise InsufficientFunds(
                f"withdrawing {amount} leaves {settlement_balance - amount}, "
                f"below reserved {self.total_reserved}"
            )

    def available_principal(self, principal_balance: Decimal) -> Decimal:
        """Principal held beyond what open positions are owed."""
        return max(principal_balance - self.total_staked, Decimal("0"))

    def available_settlement(self, settlement_balance: Decimal) -> Decimal:
        """Settlement currency held beyond all reserves."""
        return max(settlement_balance - self.total_reserved, Decimal("0"))
