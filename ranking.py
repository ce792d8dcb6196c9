# ranking.py
"""
Ranking ledger of best-found layouts.

A singly linked list of (name, score) nodes kept sorted by descending
score. A new node is inserted in front of the first node whose score is
not strictly greater, so among equal scores the most recent entry comes
first. The ledger does no locking of its own: callers that insert from
several threads must serialize the calls.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple


@dataclass
class LayoutNode:
    """One ledger entry."""
    name: str
    score: float
    next: Optional["LayoutNode"] = None


class RankingLedger:
    """Caller-owned, descending-sorted ledger with unbounded insert."""

    def __init__(self):
        self.head: Optional[LayoutNode] = None
        self._length = 0

    def insert(self, name: str, score: float) -> LayoutNode:
        """Insert a node, keeping the list sorted by descending score (O(n))."""
        node = LayoutNode(name, score)

        if self.head is None or self.head.score <= score:
            node.next = self.head
            self.head = node
        else:
            current = self.head
            while current.next is not None and current.next.score > score:
                current = current.next
            node.next = current.next
            current.next = node

        self._length += 1
        return node

    def clear(self) -> None:
        """Release every node; safe on an empty ledger."""
        current = self.head
        while current is not None:
            next_node = current.next
            current.next = None
            current = next_node
        self.head = None
        self._length = 0

    def __iter__(self) -> Iterator[LayoutNode]:
        current = self.head
        while current is not None:
            yield current
            current = current.next

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self.head is not None

    def top(self, n: int) -> List[Tuple[str, float]]:
        """The n best (name, score) entries."""
        result = []
        for node in self:
            if len(result) >= n:
                break
            result.append((node.name, node.score))
        return result

    def scores(self) -> List[float]:
        return [node.score for node in self]

    def names(self) -> List[str]:
        return [node.name for node in self]
