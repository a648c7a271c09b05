"""
staking_ledger - Token Staking and Dividend Ledger

Fixed-plan staking with settlement-currency interest and snapshot-based
pro-rata dividends, built on a double-entry ledger.

Usage:
    from staking_ledger import (
        Ledger, token, create_staking_pool, StakingPool, Move,
        build_transaction, SYSTEM_WALLET,
    )

    ledger = Ledger("main", datetime(2025, 1, 1))
    ledger.register_unit(token("TKN", "Staked Token", 18))
    ledger.register_unit(token("USDT", "Tether", 6))
    for wallet in ("admin", "pool", "alice"):
        ledger.register_wallet(wallet)
    ledger.register_unit(create_staking_pool(
        "POOL", "TKN staking", "TKN", "USDT", "admin", "pool", 18, 6,
    ))

    # Fund wallets via SYSTEM_WALLET (issuance)
    ledger.execute(build_transaction(ledger, [
        Move(Decimal("1000"), "TKN", SYSTEM_WALLET, "alice", "mint_alice"),
        Move(Decimal("5000"), "USDT", SYSTEM_WALLET, "admin", "mint_admin"),
    ]))

    pool = StakingPool(ledger, "POOL")
    pool.deposit_settlement("admin", Decimal("5000"))
    pool.stake("alice", Decimal("1000"), plan_id=1)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    quantize_down,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_STAKING_POOL,
    # Errors
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferRuleViolation,
    StakingError,
    ValidationError,
    StateError,
    SolvencyError,
    ZeroAmount,
    BelowMinimum,
    InvalidPlan,
    InvalidIndex,
    InvalidRate,
    InvalidAddress,
    AlreadyWithdrawn,
    StillLocked,
    AlreadyClaimed,
    DistributionNotFound,
    NoEligibleSnapshot,
    NoEligibleStakers,
    RecoveryWindowOpen,
    NothingToRecover,
    Unauthorized,
    ReentrantCall,
    InsufficientReserve,
    InsufficientFunds,
    TransferRejected,
    GovernanceError,
    ProposalNotFound,
    InsufficientVotingPower,
    AlreadyVoted,
    VotingClosed,
    VotingOpen,
)

# Ledger
from .ledger import Ledger

# Interest and rates
from .rates import (
    Plan,
    DEFAULT_PLANS,
    PLAN_IDS,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    BPS_DENOMINATOR,
    RATE_SCALE,
    resolve_plan,
    calculate_interest,
    convert_to_settlement,
    calculate_settlement_interest,
)

# Accounting and registry
from .accounts import PoolAccounts
from .registry import ActiveStakerSet

# Staking pool unit
from .units.staking_pool import (
    StakePosition,
    Distribution,
    PoolTerms,
    PoolState,
    MIN_DIVIDEND_LOCK,
    MIN_RECOVERY_WAIT_PERIOD,
    create_staking_pool,
    load_staking_pool,
    to_state_dict,
    entity_key,
    state_delta,
    calculate_user_principal,
    calculate_eligible_amount,
    calculate_pending_interest,
    calculate_share,
    take_eligibility_snapshot,
    compute_stake,
    compute_unstake,
    compute_pending_interest,
    compute_preview_interest,
    compute_create_distribution,
    compute_claim,
    compute_recover_undistributed,
    compute_set_exchange_rate,
    compute_set_min_stake,
    compute_set_plan,
    compute_deposit,
    compute_withdraw,
)

# Service
from .pool import StakingPool, nonreentrant

# Collaborators
from .vesting import VestingSource, StaticVestingSource, LinearVestingSchedule, VestingGrant
from .governance import (
    Governance,
    Proposal,
    ProposalStatus,
    voting_weight,
    DEFAULT_VOTING_PERIOD,
)


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction', 'Unit',
    'UnitStateChange', 'ExecuteResult', 'token', 'quantize_down',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_STAKING_POOL',
    # Errors
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered', 'TransferRuleViolation',
    'StakingError', 'ValidationError', 'StateError', 'SolvencyError',
    'ZeroAmount', 'BelowMinimum', 'InvalidPlan', 'InvalidIndex', 'InvalidRate',
    'InvalidAddress', 'AlreadyWithdrawn', 'StillLocked', 'AlreadyClaimed',
    'DistributionNotFound', 'NoEligibleSnapshot', 'NoEligibleStakers',
    'RecoveryWindowOpen', 'NothingToRecover', 'Unauthorized', 'ReentrantCall',
    'InsufficientReserve', 'InsufficientFunds', 'TransferRejected',
    'GovernanceError', 'ProposalNotFound', 'InsufficientVotingPower',
    'AlreadyVoted', 'VotingClosed', 'VotingOpen',
    # Ledger
    'Ledger',
    # Rates
    'Plan', 'DEFAULT_PLANS', 'PLAN_IDS', 'SECONDS_PER_DAY', 'SECONDS_PER_YEAR',
    'BPS_DENOMINATOR', 'RATE_SCALE', 'resolve_plan', 'calculate_interest',
    'convert_to_settlement', 'calculate_settlement_interest',
    # Accounting
    'PoolAccounts', 'ActiveStakerSet',
    # Staking pool
    'StakePosition', 'Distribution', 'PoolTerms', 'PoolState',
    'MIN_DIVIDEND_LOCK', 'MIN_RECOVERY_WAIT_PERIOD',
    'create_staking_pool', 'load_staking_pool', 'to_state_dict',
    'entity_key', 'state_delta',
    'calculate_user_principal', 'calculate_eligible_amount',
    'calculate_pending_interest', 'calculate_share', 'take_eligibility_snapshot',
    'compute_stake', 'compute_unstake', 'compute_pending_interest',
    'compute_preview_interest', 'compute_create_distribution', 'compute_claim',
    'compute_recover_undistributed', 'compute_set_exchange_rate',
    'compute_set_min_stake', 'compute_set_plan', 'compute_deposit', 'compute_withdraw',
    # Service
    'StakingPool', 'nonreentrant',
    # Collaborators
    'VestingSource', 'StaticVestingSource', 'LinearVestingSchedule', 'VestingGrant',
    'Governance', 'Proposal', 'ProposalStatus', 'voting_weight', 'DEFAULT_VOTING_PERIOD',
]

__version__ = '1.0.0'
