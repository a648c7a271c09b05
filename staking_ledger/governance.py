"""
governance.py - Proposal voting weighted by stake and unreleased vesting

Voting weight is read from current state only:

    weight = staked principal + (vested - released)

There is no historic snapshot; a vote records the voter's weight at the
moment it is cast. Proposals only record whether they passed. Nothing is
executed on-ledger as a result of a vote.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .core import (
    ProposalNotFound, InsufficientVotingPower, AlreadyVoted, VotingClosed, VotingOpen,
)
from .pool import StakingPool
from .rates import SECONDS_PER_DAY
from .vesting import VestingSource


DEFAULT_VOTING_PERIOD = 7 * SECONDS_PER_DAY


def voting_weight(
    pool: StakingPool,
    vesting: Optional[VestingSource],
    user: str,
    at: Optional[datetime] = None,
) -> Decimal:
    """Current staked principal plus vested tokens not yet released."""
    at = at or pool.ledger.current_time
    weight = pool.staked_balance(user)
    if vesting is not None:
        unreleased = vesting.total_vested(user, at) - vesting.total_released(user)
        weight += max(unreleased, Decimal("0"))
    return weight


class ProposalStatus(Enum):
    ACTIVE = "active"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Proposal:
    proposal_id: int
    proposer: str
    description: str
    start: datetime
    end: datetime
    votes_for: Decimal = Decimal("0")
    votes_against: Decimal = Decimal("0")
    voters: FrozenSet[str] = field(default_factory=frozenset)
    status: ProposalStatus = ProposalStatus.ACTIVE

    @property
    def total_votes(self) -> Decimal:
        return self.votes_for + self.votes_against


class Governance:
    """
    Records proposals and weighted votes over a staking pool.

    Args:
        pool: Pool whose staked balances count as weight
        vesting: Optional vesting source whose unreleased balance counts too
        voting_period: Seconds a proposal stays open
        proposal_threshold: Minimum weight needed to propose
        quorum: Minimum total weight cast for a proposal to pass

    Example:
        gov = Governance(pool, vesting, quorum=Decimal("1000"))
        p = gov.propose("alice", "Raise plan 4 APY")
        gov.vote("bob", p.proposal_id, support=True)
        ledger.advance_time(p.end)
        gov.finalize(p.proposal_id).status   # PASSED or FAILED
    """

    def __init__(
        self,
        pool: StakingPool,
        vesting: Optional[VestingSource] = None,
        voting_period: int = DEFAULT_VOTING_PERIOD,
        proposal_threshold: Decimal = Decimal("0"),
        quorum: Decimal = Decimal("0"),
    ):
        if voting_period <= 0:
            raise ValueError(f"voting_period must be positive, got {voting_period}")
        if proposal_threshold < 0 or quorum < 0:
            raise ValueError("threshold and quorum cannot be negative")
        self.pool = pool
        self.vesting = vesting
        self.voting_period = voting_period
        self.proposal_threshold = proposal_threshold
        self.quorum = quorum
        self.proposals: Dict[int, Proposal] = {}
        self._next_id = 1
        self.verbose = pool.verbose

    @property
    def now(self) -> datetime:
        return self.pool.ledger.current_time

    def weight_of(self, user: str) -> Decimal:
        return voting_weight(self.pool, self.vesting, user, self.now)

    def get_proposal(self, proposal_id: int) -> Proposal:
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFound(f"proposal {proposal_id} not found")
        return proposal

    def list_proposals(self) -> List[Proposal]:
        return [p for _, p in sorted(self.proposals.items())]

    def propose(self, proposer: str, description: str) -> Proposal:
        """
        Raises:
            InsufficientVotingPower: proposer's weight is zero or under the threshold.
        """
        weight = self.weight_of(proposer)
        if weight <= 0 or weight < self.proposal_threshold:
            raise InsufficientVotingPower(
                f"{proposer} has weight {weight}, needs {self.proposal_threshold}"
            )
        proposal = Proposal(
            proposal_id=self._next_id,
            proposer=proposer,
            description=description,
            start=self.now,
            end=self.now + timedelta(seconds=self.voting_period),
        )
        self.proposals[proposal.proposal_id] = proposal
        self._next_id += 1
        if self.verbose:
            print(f"[PROPOSAL] #{proposal.proposal_id} by {proposer}: {description}")
        return proposal

    def vote(self, voter: str, proposal_id: int, support: bool) -> Decimal:
        """
        Cast the voter's current weight for or against. Returns the weight.

        Raises:
            ProposalNotFound, VotingClosed (past end or finalized),
            AlreadyVoted, InsufficientVotingPower (zero weight)
        """
        proposal = self.get_proposal(proposal_id)
        if proposal.status != ProposalStatus.ACTIVE or self.now >= proposal.end:
            raise VotingClosed(f"voting on proposal {proposal_id} has ended")
        if voter in proposal.voters:
            raise AlreadyVoted(f"{voter} already voted on proposal {proposal_id}")
        weight = self.weight_of(voter)
        if weight <= 0:
            raise InsufficientVotingPower(f"{voter} has no voting weight")

        if support:
            proposal = replace(proposal, votes_for=proposal.votes_for + weight)
        else:
            proposal = replace(proposal, votes_against=proposal.votes_against + weight)
        self.proposals[proposal_id] = replace(proposal, voters=proposal.voters | {voter})
        return weight

    def finalize(self, proposal_id: int) -> Proposal:
        """
        Record the outcome once voting has ended.

        Passes when total votes reach quorum and votes for exceed votes against.

        Raises:
            ProposalNotFound, VotingOpen (before end), VotingClosed (already finalized)
        """
        proposal = self.get_proposal(proposal_id)
        if proposal.status != ProposalStatus.ACTIVE:
            raise VotingClosed(f"proposal {proposal_id} already finalized")
        if self.now < proposal.end:
            raise VotingOpen(f"proposal {proposal_id} open until {proposal.end}")

        passed = proposal.total_votes >= self.quorum and proposal.votes_for > proposal.votes_against
        proposal = replace(proposal, status=ProposalStatus.PASSED if passed else ProposalStatus.FAILED)
        self.proposals[proposal_id] = proposal
        if self.verbose:
            print(f"[PROPOSAL] #{proposal_id} {proposal.status.value}: "
                  f"{proposal.votes_for} for / {proposal.votes_against} against")
        return proposal
