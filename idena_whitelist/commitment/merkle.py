"""Binary Merkle tree over whitelist addresses.

Commitment format (v1):
  Leaf:   SHA-256(0x00 || address)      address = lowercase ASCII, 0x-prefixed
  Node:   SHA-256(0x01 || left || right)
  Order:  leaves sorted byte-lexicographically by address
  Odd:    an unpaired last node is promoted unchanged to the next level
  Empty:  SHA-256(0x00) - the leaf hash of the empty string
  Root:   lowercase hex of the final 32-byte digest

Because an unpaired node is promoted rather than hashed with itself, every
proof step has a sibling distinct from the running hash, so both the
sibling digest and its side are load-bearing.
"""

from __future__ import annotations

import bisect
import hashlib
from dataclasses import dataclass
from typing import Iterable, Sequence

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

SIDE_LEFT = "left"
SIDE_RIGHT = "right"


def leaf_hash(address: str) -> bytes:
    return hashlib.sha256(LEAF_PREFIX + address.encode("utf-8")).digest()


def node_hash(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(NODE_PREFIX + left + right).digest()


EMPTY_ROOT = leaf_hash("").hex()


@dataclass(frozen=True)
class ProofStep:
    """One level of an inclusion proof: the sibling digest and its side."""

    sibling: str  # hex digest
    side: str  # SIDE_LEFT | SIDE_RIGHT

    def to_dict(self) -> dict[str, str]:
        return {"sibling": self.sibling, "side": self.side}


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for one address."""

    address: str
    leaf_index: int
    leaf_count: int
    steps: tuple[ProofStep, ...]
    root: str

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "leaf_index": self.leaf_index,
            "leaf_count": self.leaf_count,
            "steps": [s.to_dict() for s in self.steps],
            "root": self.root,
        }


class MerkleTree:
    """Immutable Merkle tree over a set of addresses.

    Usage:
        tree = MerkleTree.build(["0xabc...", "0xdef..."])
        tree.root
        proof = tree.proof("0xabc...")
        verify_proof("0xabc...", proof.steps, tree.root)
    """

    def __init__(self, leaves: Sequence[str], levels: list[list[bytes]]):
        self._leaves = tuple(leaves)
        self._levels = levels
        if levels:
            self._root = levels[-1][0].hex()
        else:
            self._root = EMPTY_ROOT

    @classmethod
    def build(cls, addresses: Iterable[str]) -> MerkleTree:
        """Build from addresses in any order; duplicates collapse."""
        leaves = sorted(set(addresses))
        return cls.from_sorted(leaves)

    @classmethod
    def from_sorted(cls, leaves: Sequence[str]) -> MerkleTree:
        """Build from an already sorted, duplicate-free sequence."""
        if not leaves:
            return cls((), [])

        level = [leaf_hash(a) for a in leaves]
        levels = [level]
        while len(level) > 1:
            nxt = [node_hash(level[i], level[i + 1]) for i in range(0, len(level) - 1, 2)]
            if len(level) % 2 == 1:
                nxt.append(level[-1])  # promote unpaired node
            levels.append(nxt)
            level = nxt
        return cls(leaves, levels)

    @property
    def root(self) -> str:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def leaves(self) -> tuple[str, ...]:
        return self._leaves

    def index_of(self, address: str) -> int | None:
        """Binary search for an address's leaf index."""
        i = bisect.bisect_left(self._leaves, address)
        if i < len(self._leaves) and self._leaves[i] == address:
            return i
        return None

    def proof(self, address: str) -> MerkleProof | None:
        """Inclusion proof for address, or None if it is not a leaf."""
        index = self.index_of(address)
        if index is None:
            return None

        steps: list[ProofStep] = []
        idx = index
        for level in self._levels[:-1]:
            if idx % 2 == 1:
                steps.append(ProofStep(sibling=level[idx - 1].hex(), side=SIDE_LEFT))
            elif idx + 1 < len(level):
                steps.append(ProofStep(sibling=level[idx + 1].hex(), side=SIDE_RIGHT))
            # else: promoted, no sibling at this level
            idx //= 2

        return MerkleProof(
            address=address,
            leaf_index=index,
            leaf_count=self.leaf_count,
            steps=tuple(steps),
            root=self._root,
        )


def compute_root(addresses: Iterable[str]) -> str:
    return MerkleTree.build(addresses).root


def verify_proof(address: str, steps: Sequence[ProofStep], root: str) -> bool:
    """Recompute the path from address's leaf and compare to root.

    Returns False for any malformed step instead of raising.
    """
    current = leaf_hash(address)
    for step in steps:
        try:
            sibling = bytes.fromhex(step.sibling)
        except (TypeError, ValueError):
            return False
        if len(sibling) != 32:
            return False
        if step.side == SIDE_LEFT:
            current = node_hash(sibling, current)
        elif step.side == SIDE_RIGHT:
            current = node_hash(current, sibling)
        else:
            return False
    return current.hex() == root.lower()


__all__ = [
    "EMPTY_ROOT",
    "MerkleProof",
    "MerkleTree",
    "ProofStep",
    "SIDE_LEFT",
    "SIDE_RIGHT",
    "compute_root",
    "leaf_hash",
    "node_hash",
    "verify_proof",
]
