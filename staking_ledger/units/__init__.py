"""
Units module - the staking pool unit and its pure compute functions.

Re-exported here for convenience.
"""

from .staking_pool import (
    StakePosition,
    Distribution,
    PoolTerms,
    PoolState,
    MIN_DIVIDEND_LOCK,
    MIN_RECOVERY_WAIT_PERIOD,
    create_staking_pool,
    load_staking_pool,
    from_state_dict,
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
