"""Builds a Commitment from one consistent read of the identity store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import bittensor as bt

from idena_whitelist.eligibility import DEFAULT_MIN_STAKE, evaluate
from idena_whitelist.identity.models import utcnow
from idena_whitelist.store import IdentityReader

from .merkle import MerkleProof, MerkleTree


@dataclass(frozen=True)
class Snapshot:
    """Sorted, eligible addresses from one consistent store read."""

    addresses: tuple[str, ...]
    as_of: datetime | None
    taken_at: datetime

    def __len__(self) -> int:
        return len(self.addresses)


@dataclass(frozen=True)
class Commitment:
    """A snapshot together with the Merkle tree built from it."""

    snapshot: Snapshot
    tree: MerkleTree
    built_at: datetime

    @property
    def root(self) -> str:
        return self.tree.root

    @property
    def leaf_count(self) -> int:
        return self.tree.leaf_count

    @property
    def as_of(self) -> datetime | None:
        return self.snapshot.as_of

    def proof(self, address: str) -> MerkleProof | None:
        return self.tree.proof(address)


class CommitmentBuilder:
    """Reads the store, filters through the evaluator, builds the tree.

    A store failure part-way through the read propagates as
    StoreUnavailable; no partial snapshot or tree is ever returned.
    """

    def __init__(self, reader: IdentityReader, min_stake: Decimal = DEFAULT_MIN_STAKE):
        self.reader = reader
        self.min_stake = min_stake

    async def take_snapshot(self, as_of: datetime | None = None) -> Snapshot:
        taken_at = utcnow()
        eligible: list[str] = []
        async for record in self.reader.list_all():
            if evaluate(record, self.min_stake).eligible:
                eligible.append(record.address)
        eligible.sort()
        return Snapshot(addresses=tuple(eligible), as_of=as_of, taken_at=taken_at)

    async def build(self, as_of: datetime | None = None) -> Commitment:
        snapshot = await self.take_snapshot(as_of)
        tree = MerkleTree.from_sorted(snapshot.addresses)
        commitment = Commitment(snapshot=snapshot, tree=tree, built_at=utcnow())
        bt.logging.info({
            "commitment_built": {
                "root": commitment.root,
                "leaf_count": commitment.leaf_count,
                "as_of": as_of.isoformat() if as_of else None,
            }
        })
        return commitment


__all__ = ["Commitment", "CommitmentBuilder", "Snapshot"]
