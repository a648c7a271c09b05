#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Staking and Dividends Step by Step

Walks through a staking pool's life on the ledger. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup          - Tokens, wallets, the pool unit, funding the reserve
  4-5:  Staking        - Fixed plans, interest snapshots, rate changes
  6-8:  Dividends      - Snapshots, pro-rata claims, recovering the remainder
  9:    Governance     - Voting weight from stake and vesting
  10:   Conservation   - Reserves, double entry and the audit trail

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from staking_ledger import (
    Ledger, Move, build_transaction, token, SYSTEM_WALLET,
    create_staking_pool, StakingPool, RATE_SCALE,
    StakingError,
    StaticVestingSource, Governance, voting_weight,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    principal_decimals: int = 18
    settlement_decimals: int = 6

    alice_tokens: Decimal = Decimal("5000")
    bob_tokens: Decimal = Decimal("5000")
    admin_settlement: Decimal = Decimal("50000")

    alice_stake: Decimal = Decimal("300")
    bob_stake: Decimal = Decimal("700")
    dividend: Decimal = Decimal("1000")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def at(days: int) -> datetime:
    return CONFIG.start_time + timedelta(days=days)


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_tokens_and_wallets():
    step_header(1, "Tokens and Wallets",
        "Register a principal token, a settlement token and the participants.")

    ledger = Ledger("staking", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(token("TKN", "Staked Token", CONFIG.principal_decimals))
    ledger.register_unit(token("USDT", "Tether USD", CONFIG.settlement_decimals))
    for wallet in ("admin", "pool", "alice", "bob", "carol"):
        ledger.register_wallet(wallet)

    mint = build_transaction(ledger, [
        Move(CONFIG.alice_tokens, "TKN", SYSTEM_WALLET, "alice", "mint_alice"),
        Move(CONFIG.bob_tokens, "TKN", SYSTEM_WALLET, "bob", "mint_bob"),
        Move(CONFIG.admin_settlement, "USDT", SYSTEM_WALLET, "admin", "mint_admin"),
    ])
    ledger.execute(mint)

    section_header("Balances")
    for wallet in ("alice", "bob", "admin"):
        print(f"  {wallet:6s} {ledger.get_wallet_balances(wallet)}")
    return ledger


def step_02_create_pool(ledger: Ledger) -> StakingPool:
    step_header(2, "The Pool Unit",
        "Pool state lives on the ledger as a unit; tokens sit in the pool wallet.")

    ledger.register_unit(create_staking_pool(
        symbol="POOL", name="TKN staking",
        principal_unit="TKN", settlement_unit="USDT",
        admin_wallet="admin", pool_wallet="pool",
        principal_decimals=CONFIG.principal_decimals,
        settlement_decimals=CONFIG.settlement_decimals,
    ))
    pool = StakingPool(ledger, "POOL")
    pool.verbose = True

    terms, state = pool.terms, pool.state
    print(f"  principal/settlement: {terms.principal_unit}/{terms.settlement_unit}")
    print(f"  exchange rate:        {state.exchange_rate / RATE_SCALE} USDT per TKN")
    for plan_id, plan in sorted(state.plans.items()):
        print(f"  plan {plan_id}: {plan.apy_bps} bps for {plan.duration // 86400} days")
    return pool


def step_03_fund_reserve(pool: StakingPool):
    step_header(3, "Funding the Interest Reserve",
        "A stake is refused unless the pool can already pay its interest.")

    section_header("Staking into an empty pool")
    try:
        pool.stake("alice", Decimal("1000"), 1)
    except StakingError as e:
        print(f"  refused: {type(e).__name__}: {e}")

    section_header("Admin deposits settlement")
    pool.deposit_settlement("admin", Decimal("20000"))
    print(f"  available settlement: {pool.available_settlement_balance()}")


# ============================================================================
# PHASE 2: STAKING
# ============================================================================

def step_04_stake(pool: StakingPool):
    step_header(4, "Fixed-Plan Stakes",
        "Interest is computed for the whole plan at the rate in effect now.")

    print(f"  preview 1000 TKN on plan 1: {pool.preview_interest(Decimal('1000'), 1)} USDT")
    pool.stake("alice", CONFIG.alice_stake, 4)
    pool.stake("bob", CONFIG.bob_stake, 4)
    pool.stake("alice", Decimal("1000"), 1)
    print(f"  active stakers: {pool.active_stakers()}")
    print(f"  reserved:       {pool.state.accounts.total_reserved} USDT")


def step_05_rate_change(ledger: Ledger, pool: StakingPool):
    step_header(5, "Rate Changes",
        "Previews follow the live rate; payouts keep their snapshot.")

    pool.set_exchange_rate("admin", 2 * RATE_SCALE)
    ledger.advance_time(at(90))
    print(f"  alice pending (live rate): {pool.pending_interest('alice')}")
    position = pool.unstake("alice", 1)
    print(f"  alice paid (snapshot):     {position.interest}")
    pool.set_exchange_rate("admin", RATE_SCALE)


# ============================================================================
# PHASE 3: DIVIDENDS
# ============================================================================

def step_06_distribution(ledger: Ledger, pool: StakingPool):
    step_header(6, "Snapshot Distribution",
        "Only stake older than the dividend lock counts, measured once at creation.")

    print(f"  alice could count now: {pool.preview_eligible_amount('alice')}")
    distribution = pool.create_distribution("admin", CONFIG.dividend)
    for user in ("alice", "bob", "carol"):
        print(f"  {user:6s} eligible {pool.get_eligible_amount(distribution.distribution_id, user)}")
    return distribution


def step_07_claims(pool: StakingPool, distribution_id: int):
    step_header(7, "Pro-Rata Claims",
        "Each eligible staker claims once; the share is floored.")

    pool.claim(distribution_id, "alice")
    try:
        pool.claim(distribution_id, "alice")
    except StakingError as e:
        print(f"  second claim refused: {type(e).__name__}")


def step_08_recover(ledger: Ledger, pool: StakingPool, distribution_id: int):
    step_header(8, "Recovering the Remainder",
        "After the recovery wait the admin takes what nobody claimed.")

    distribution = pool.get_distribution(distribution_id)
    try:
        pool.recover_undistributed("admin", distribution_id)
    except StakingError as e:
        print(f"  too early: {type(e).__name__}")
    ledger.advance_time(distribution.timestamp + timedelta(days=90))
    pool.recover_undistributed("admin", distribution_id)
    print(f"  distribution exists: {pool.get_distribution(distribution_id).exists}")


# ============================================================================
# PHASE 4: GOVERNANCE AND CONSERVATION
# ============================================================================

def step_09_governance(ledger: Ledger, pool: StakingPool):
    step_header(9, "Voting Weight",
        "Weight is current stake plus vested tokens not yet released.")

    vesting = StaticVestingSource({"carol": Decimal("500")}, {"carol": Decimal("100")})
    for user in ("alice", "bob", "carol"):
        print(f"  {user:6s} weight {voting_weight(pool, vesting, user)}")

    gov = Governance(pool, vesting, quorum=Decimal("500"))
    proposal = gov.propose("bob", "Raise plan 4 APY")
    gov.vote("bob", proposal.proposal_id, True)
    gov.vote("alice", proposal.proposal_id, False)
    gov.vote("carol", proposal.proposal_id, True)
    ledger.advance_time(proposal.end)
    gov.finalize(proposal.proposal_id)


def step_10_conservation(ledger: Ledger, pool: StakingPool):
    step_header(10, "Conservation",
        "Every token that moved is accounted for, and the pool stays solvent.")

    accounts = pool.state.accounts
    print(f"  principal held {pool.principal_balance()} >= staked {accounts.total_staked}")
    print(f"  settlement held {pool.settlement_balance()} >= reserved {accounts.total_reserved}")
    result = ledger.verify_double_entry({"TKN": Decimal("0"), "USDT": Decimal("0")})
    print(f"  double entry valid: {result['valid']}")
    print(f"  transactions logged: {len(ledger.transaction_log)}")
    print(ledger.transaction_log[-1])


def main():
    print("=" * 70)
    print("       STAKING LEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    wait_for_enter()

    ledger = step_01_tokens_and_wallets()
    wait_for_enter()
    pool = step_02_create_pool(ledger)
    wait_for_enter()
    step_03_fund_reserve(pool)
    wait_for_enter()
    step_04_stake(pool)
    wait_for_enter()
    step_05_rate_change(ledger, pool)
    wait_for_enter()
    distribution = step_06_distribution(ledger, pool)
    wait_for_enter()
    step_07_claims(pool, distribution.distribution_id)
    wait_for_enter()
    step_08_recover(ledger, pool, distribution.distribution_id)
    wait_for_enter()
    step_09_governance(ledger, pool)
    wait_for_enter()
    step_10_conservation(ledger, pool)


if __name__ == "__main__":
    main()
