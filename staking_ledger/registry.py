"""
registry.py - Set of addresses holding at least one open stake.

A dense list of addresses plus an index map address -> slot. Membership
tests, adds and removals are all O(1); removal moves the last address into
the freed slot. Distributions iterate this set to take their snapshot, so a
scan costs O(active stakers) rather than O(everyone who ever staked).
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Optional


class ActiveStakerSet:
    """
    Unordered set of active staker addresses with swap-with-last removal.

    Example:
        stakers = ActiveStakerSet()
        stakers.add("alice")
        stakers.add("bob")
        stakers.discard("alice")   # bob moves into slot 0
        list(stakers)              # ["bob"]
    """

    def __init__(self, addresses: Optional[List[str]] = None):
        self._addresses: List[str] = []
        self._index: Dict[str, int] = {}
        for address in addresses or ():
            self.add(address)

    def add(self, address: str) -> bool:
        """Append address if absent. Returns True if it was added."""
        if address in self._index:
            return False
        self._index[address] = len(self._addresses)
        self._addresses.append(address)
        return True

    def discard(self, address: str) -> bool:
        """Remove address if present. Returns True if it was removed."""
        slot = self._index.pop(address, None)
        if slot is None:
            return False
        last = self._addresses.pop()
        if last != address:
            self._addresses[slot] = last
            self._index[last] = slot
        return True

    def index_of(self, address: str) -> Optional[int]:
        return self._index.get(address)

    def to_list(self) -> List[str]:
        """Dense list in slot order, for persisting into pool state."""
        return list(self._addresses)

    def __contains__(self, address: object) -> bool:
        return address in self._index

    def __len__(self) -> int:
        return len(self._addresses)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._addresses))

    def __repr__(self) -> str:
        return f"ActiveStakerSet({len(self)} stakers)"
