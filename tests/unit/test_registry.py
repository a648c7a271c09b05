"""
Tests for registry.py - ActiveStakerSet
"""

from staking_ledger import ActiveStakerSet


class TestActiveStakerSet:

    def test_add_and_contains(self):
        stakers = ActiveStakerSet()
        assert stakers.add("alice") is True
        assert "alice" in stakers
        assert len(stakers) == 1

    def test_add_is_idempotent(self):
        stakers = ActiveStakerSet(["alice"])
        assert stakers.add("alice") is False
        assert len(stakers) == 1

    def test_discard_absent_is_noop(self):
        stakers = ActiveStakerSet(["alice"])
        assert stakers.discard("bob") is False
        assert stakers.to_list() == ["alice"]

    def test_discard_moves_last_into_slot(self):
        stakers = ActiveStakerSet(["alice", "bob", "carol"])
        stakers.discard("alice")
        assert stakers.to_list() == ["carol", "bob"]
        assert stakers.index_of("carol") == 0
        assert stakers.index_of("bob") == 1
        assert stakers.index_of("alice") is None

    def test_discard_last(self):
        stakers = ActiveStakerSet(["alice", "bob"])
        stakers.discard("bob")
        assert stakers.to_list() == ["alice"]
        assert stakers.index_of("alice") == 0

    def test_discard_only_member(self):
        stakers = ActiveStakerSet(["alice"])
        stakers.discard("alice")
        assert len(stakers) == 0
        assert list(stakers) == []

    def test_readd_after_discard(self):
        stakers = ActiveStakerSet(["alice", "bob"])
        stakers.discard("alice")
        stakers.add("alice")
        assert sorted(stakers) == ["alice", "bob"]
        assert stakers.index_of("alice") == 1

    def test_iteration_safe_during_discard(self):
        stakers = ActiveStakerSet(["alice", "bob", "carol"])
        for address in stakers:
            stakers.discard(address)
        assert len(stakers) == 0

    def test_index_map_consistent(self):
        stakers = ActiveStakerSet([f"user{i}" for i in range(10)])
        for i in (3, 0, 9, 5):
            stakers.discard(f"user{i}")
        for slot, address in enumerate(stakers.to_list()):
            assert stakers.index_of(address) == slot
