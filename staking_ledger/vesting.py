"""
vesting.py - Vesting sources for governance weight

A vesting source reports, per user, how much of a token allocation has
vested by a given time and how much of that has already been released to
the user. Governance counts the vested-but-unreleased part as voting weight.

Classes:
- VestingSource: Protocol defining the read interface
- StaticVestingSource: Fixed vested/released amounts per user
- LinearVestingSchedule: Cliff followed by linear vesting, with releases
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional, Protocol, runtime_checkable

from .core import ValidationError, ZeroAmount, quantize_down


@runtime_checkable
class VestingSource(Protocol):
    """Read-only view of vested and released token amounts per user."""

    def total_vested(self, user: str, at: datetime) -> Decimal:
        """Total amount vested to `user` as of `at`."""
        ...

    def total_released(self, user: str) -> Decimal:
        """Total amount already released to `user`."""
        ...


class StaticVestingSource:
    """
    Vesting source with fixed amounts (time-independent).

    Useful when vesting is tracked elsewhere and only current totals are known.
    """

    def __init__(
        self,
        vested: Optional[Dict[str, Decimal]] = None,
        released: Optional[Dict[str, Decimal]] = None,
    ):
        self.vested = dict(vested or {})
        self.released = dict(released or {})

    def total_vested(self, user: str, at: datetime) -> Decimal:
        return self.vested.get(user, Decimal("0"))

    def total_released(self, user: str) -> Decimal:
        return self.released.get(user, Decimal("0"))

    def update(self, user: str, vested: Decimal, released: Decimal = Decimal("0")):
        """Set both totals for a user."""
        if released > vested:
            raise ValueError(f"released {released} exceeds vested {vested}")
        self.vested[user] = vested
        self.released[user] = released

    def __repr__(self):
        return f"StaticVestingSource({len(self.vested)} users)"


@dataclass(frozen=True, slots=True)
class VestingGrant:
    """
    An allocation that vests linearly between cliff and end.

    Nothing vests before start + cliff; everything has vested at
    start + duration.
    """
    total: Decimal
    start: datetime
    cliff: int     # seconds
    duration: int  # seconds

    def __post_init__(self):
        if not isinstance(self.total, Decimal):
            object.__setattr__(self, 'total', Decimal(str(self.total)))
        if self.total <= 0:
            raise ValueError(f"total must be positive, got {self.total}")
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if not 0 <= self.cliff <= self.duration:
            raise ValueError(f"cliff must be between 0 and duration, got {self.cliff}")

    def vested_at(self, at: datetime, decimal_places: int) -> Decimal:
        elapsed = int((at - self.start).total_seconds())
        if elapsed < self.cliff:
            return Decimal("0")
        if elapsed >= self.duration:
            return self.total
        return quantize_down(self.total * Decimal(elapsed) / Decimal(self.duration), decimal_places)


class LinearVestingSchedule:
    """
    Per-user linear vesting with a cliff.

    Example:
        schedule = LinearVestingSchedule(decimal_places=18)
        schedule.add_grant("alice", Decimal("1200"), start, cliff=90 * 86400, duration=365 * 86400)
        schedule.releasable("alice", now)
        schedule.release("alice", now)
    """

    def __init__(self, decimal_places: int = 18):
        self.decimal_places = decimal_places
        self.grants: Dict[str, VestingGrant] = {}
        self.released: Dict[str, Decimal] = {}

    def add_grant(
        self,
        user: str,
        total: Decimal,
        start: datetime,
        cliff: int,
        duration: int,
    ) -> VestingGrant:
        if user in self.grants:
            raise ValidationError(f"{user} already has a vesting grant")
        grant = VestingGrant(total=total, start=start, cliff=cliff, duration=duration)
        self.grants[user] = grant
        self.released[user] = Decimal("0")
        return grant

    def total_vested(self, user: str, at: datetime) -> Decimal:
        grant = self.grants.get(user)
        if grant is None:
            return Decimal("0")
        return grant.vested_at(at, self.decimal_places)

    def total_released(self, user: str) -> Decimal:
        return self.released.get(user, Decimal("0"))

    def releasable(self, user: str, at: datetime) -> Decimal:
        return self.total_vested(user, at) - self.total_released(user)

    def release(self, user: str, at: datetime) -> Decimal:
        """
        Mark everything vested so far as released. Returns the amount.

        Raises:
            ZeroAmount: nothing is releasable yet.
        """
        amount = self.releasable(user, at)
        if amount <= 0:
            raise ZeroAmount(f"nothing releasable for {user} at {at}")
        self.released[user] = self.total_released(user) + amount
        return amount

    def end_of(self, user: str) -> Optional[datetime]:
        grant = self.grants.get(user)
        if grant is None:
            return None
        return grant.start + timedelta(seconds=grant.duration)

    def __repr__(self):
        return f"LinearVestingSchedule({len(self.grants)} grants)"
