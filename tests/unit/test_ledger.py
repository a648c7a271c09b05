"""
test_ledger.py - Unit tests for core.py and ledger.py

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Move validation and token rounding
- Transaction execution (validation, idempotency, rejection, stale state,
  key-level state changes)
- Time management and clone()
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from staking_ledger import (
    Ledger, Move, ExecuteResult, UnitStateChange, build_transaction,
    token, quantize_down, SYSTEM_WALLET,
    LedgerError, WalletNotRegistered, UnitNotRegistered,
)
from staking_ledger.core import Unit, _freeze_state


T0 = datetime(2025, 1, 1)


def _ledger():
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(token("USDT", "Tether", 6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


class TestLedgerCreation:

    def test_create_ledger(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.name == "test"
        assert ledger.verbose is False
        assert ledger.current_time == datetime(1970, 1, 1)

    def test_system_wallet_preregistered(self):
        assert Ledger("test", verbose=False).is_registered(SYSTEM_WALLET)


class TestRegistration:

    def test_register_duplicate_wallet_raises(self):
        ledger = _ledger()
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_register_empty_wallet_raises(self):
        with pytest.raises(ValueError):
            _ledger().register_wallet("  ")

    def test_register_duplicate_unit_raises(self):
        with pytest.raises(ValueError, match="already registered"):
            _ledger().register_unit(token("USDT", "Again", 6))

    def test_unknown_lookups_raise(self):
        ledger = _ledger()
        with pytest.raises(UnitNotRegistered):
            ledger.get_unit_state("NOPE")
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("zed", "USDT")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", verbose=False)
        ledger.register_unit(token("USDT", "Tether", 6))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "USDT", Decimal("1"))


class TestCoreTypes:

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1"), Decimal("NaN"), Decimal("Infinity")])
    def test_move_rejects_bad_quantity(self, quantity):
        with pytest.raises(ValueError):
            Move(quantity, "USDT", "alice", "bob", "x")

    def test_move_rejects_float(self):
        with pytest.raises(ValueError, match="Decimal"):
            Move(1.5, "USDT", "alice", "bob", "x")

    def test_move_rejects_self_transfer(self):
        with pytest.raises(ValueError, match="different"):
            Move(Decimal("1"), "USDT", "alice", "alice", "x")

    def test_token_round_floors(self):
        unit = token("USDT", "Tether", 6)
        assert unit.round(Decimal("1.2345679")) == Decimal("1.234567")
        assert quantize_down(Decimal("0.9999999"), 6) == Decimal("0.999999")

    def test_token_negative_precision(self):
        with pytest.raises(ValueError):
            token("BAD", "Bad", -1)

    def test_changed_fields(self):
        sc = UnitStateChange("POOL", {'a': 1, 'b': 2}, {'a': 1, 'b': 3, 'c': 4})
        assert sc.changed_fields() == {'b': (2, 3), 'c': (None, 4)}


class TestExecute:

    def test_transfer(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("100"))
        tx = build_transaction(ledger, [Move(Decimal("40"), "USDT", "alice", "bob", "pay")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "USDT") == Decimal("60")
        assert ledger.get_balance("bob", "USDT") == Decimal("40")
        assert ledger.get_wallet_balances("bob") == {"USDT": Decimal("40")}

    def test_overdraft_rejected(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("10"))
        tx = build_transaction(ledger, [Move(Decimal("10.000001"), "USDT", "alice", "bob", "pay")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.get_balance("alice", "USDT") == Decimal("10")

    def test_system_wallet_issues(self):
        ledger = _ledger()
        tx = build_transaction(ledger, [Move(Decimal("5"), "USDT", SYSTEM_WALLET, "alice", "mint")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.total_supply("USDT") == 0
        assert ledger.verify_double_entry({"USDT": Decimal("0")})['valid']

    def test_replay_is_already_applied(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("100"))
        tx = build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "bob", "pay")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "USDT") == Decimal("1")

    def test_unregistered_wallet_rejected(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("100"))
        tx = build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "zed", "pay")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED

    def test_multi_move_all_or_nothing(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("5"))
        tx = build_transaction(ledger, [
            Move(Decimal("5"), "USDT", "alice", "bob", "a"),
            Move(Decimal("1"), "USDT", "bob", SYSTEM_WALLET, "b"),
            Move(Decimal("1"), "USDT", "alice", "bob", "c"),
        ])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.get_balance("alice", "USDT") == Decimal("5")
        assert ledger.get_balance("bob", "USDT") == 0
        assert ledger.transaction_log == []

    def test_stale_state_rejected(self):
        ledger = _ledger()
        ledger.register_unit(Unit("S", "State", "TEST", _frozen_state=_freeze_state({'n': 0})))
        first = build_transaction(ledger, [], [UnitStateChange("S", {'n': 0}, {'n': 1})])
        stale = build_transaction(ledger, [], [UnitStateChange("S", {'n': 0}, {'n': 2})])
        assert ledger.execute(first) == ExecuteResult.APPLIED
        assert ledger.execute(stale) == ExecuteResult.REJECTED
        assert ledger.get_unit_state("S") == {'n': 1}

    def test_state_change_touches_only_named_keys(self):
        ledger = _ledger()
        ledger.register_unit(Unit("S", "State", "TEST", _frozen_state=_freeze_state({'n': 0, 'log': [1, 2]})))
        tx = build_transaction(ledger, [], [UnitStateChange("S", {'n': 0, 'm': None}, {'n': 1, 'm': 5})])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_unit_state("S") == {'n': 1, 'm': 5, 'log': [1, 2]}
        assert ledger.transaction_log[-1].state_changes[0].new_state == {'n': 1, 'm': 5}

    def test_stale_check_ignores_untouched_keys(self):
        ledger = _ledger()
        ledger.register_unit(Unit("S", "State", "TEST", _frozen_state=_freeze_state({'n': 0, 'k': 0})))
        bump_k = build_transaction(ledger, [], [UnitStateChange("S", {'k': 0}, {'k': 1})])
        bump_n = build_transaction(ledger, [], [UnitStateChange("S", {'n': 0}, {'n': 1})])
        assert ledger.execute(bump_k) == ExecuteResult.APPLIED
        assert ledger.execute(bump_n) == ExecuteResult.APPLIED
        assert ledger.get_unit_state("S") == {'n': 1, 'k': 1}

    def test_future_timestamp_rejected(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("1"))
        later = Ledger("other", T0 + timedelta(days=1), verbose=False)
        tx = build_transaction(later, [Move(Decimal("1"), "USDT", "alice", "bob", "pay")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED

    def test_unit_state_is_a_copy(self):
        ledger = _ledger()
        ledger.register_unit(Unit("S", "State", "TEST", _frozen_state=_freeze_state({'items': [1]})))
        ledger.get_unit_state("S")['items'].append(2)
        assert ledger.get_unit_state("S") == {'items': [1]}


class TestTimeAndClone:

    def test_time_only_moves_forward(self):
        ledger = _ledger()
        ledger.advance_time(T0 + timedelta(hours=1))
        with pytest.raises(ValueError, match="backwards"):
            ledger.advance_time(T0)

    def test_clone_is_independent(self):
        ledger = _ledger()
        ledger.set_balance("alice", "USDT", Decimal("10"))
        cloned = ledger.clone()
        tx = build_transaction(cloned, [Move(Decimal("10"), "USDT", "alice", "bob", "pay")])
        assert cloned.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "USDT") == Decimal("10")
        assert cloned.get_balance("alice", "USDT") == 0

    def test_clone_starts_with_no_busy_units(self):
        ledger = _ledger()
        ledger.busy_units.add("POOL")
        assert ledger.clone().busy_units == set()
        assert ledger.busy_units == {"POOL"}
