"""Read-only query operations over the store and the current commitment.

Every commitment-bearing view carries as_of, the watermark's
last_success_at at the time the snapshot was read. Built commitments are
cached per last_success_at, so a new tree is built exactly once after each
successful ingestion cycle.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Callable

import bittensor as bt
from pydantic import BaseModel, Field

from idena_whitelist.commitment import Commitment, CommitmentBuilder
from idena_whitelist.eligibility import DEFAULT_MIN_STAKE, evaluate, not_found
from idena_whitelist.identity.models import IngestionWatermark, normalize_address
from idena_whitelist.store import IdentityReader


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


class WhitelistView(BaseModel):
    addresses: list[str] = Field(default_factory=list)
    count: int = 0
    as_of: datetime | None = None


class EligibilityCheck(BaseModel):
    """Result of checking one address. Not-found is an outcome, not an error."""

    address: str
    eligible: bool
    reason_code: str
    reason: str
    state: str | None = None
    stake: Decimal | None = None
    as_of: datetime | None = None


class CommitmentView(BaseModel):
    root: str
    leaf_count: int
    as_of: datetime | None = None
    built_at: datetime


class ProofStepView(BaseModel):
    sibling: str
    side: str


class ProofView(BaseModel):
    """Inclusion proof; root and steps always come from the same tree."""

    address: str
    found: bool
    root: str
    leaf_count: int
    as_of: datetime | None = None
    leaf_index: int | None = None
    proof: list[ProofStepView] = Field(default_factory=list)
    reason: str | None = None


# ---------------------------------------------------------------------------
# Query surface
# ---------------------------------------------------------------------------


class WhitelistQuery:
    """Query operations consumed by the HTTP layer."""

    def __init__(
        self,
        reader: IdentityReader,
        watermark: Callable[[], IngestionWatermark],
        min_stake: Decimal = DEFAULT_MIN_STAKE,
    ):
        self.reader = reader
        self.min_stake = min_stake
        self._watermark = watermark
        self._builder = CommitmentBuilder(reader, min_stake)
        self._cache: Commitment | None = None
        self._cache_key: datetime | None = None
        self._lock = asyncio.Lock()

    def watermark(self) -> IngestionWatermark:
        return self._watermark()

    def _as_of(self) -> datetime | None:
        return self._watermark().last_success_at

    async def current_commitment(self) -> Commitment:
        """The commitment for the current watermark, built on first use."""
        key = self._as_of()
        cached = self._cache
        if cached is not None and self._cache_key == key:
            return cached

        async with self._lock:
            key = self._as_of()
            if self._cache is not None and self._cache_key == key:
                return self._cache
            commitment = await self._builder.build(as_of=key)
            self._cache = commitment
            self._cache_key = key
            bt.logging.debug({"query_cache": {"event": "rebuilt", "as_of": key.isoformat() if key else None}})
            return commitment

    def invalidate(self) -> None:
        self._cache = None
        self._cache_key = None

    async def list_whitelist(self) -> WhitelistView:
        commitment = await self.current_commitment()
        addresses = list(commitment.snapshot.addresses)
        return WhitelistView(addresses=addresses, count=len(addresses), as_of=commitment.as_of)

    async def check_address(self, address: str) -> EligibilityCheck:
        """Eligibility of one address against the live store.

        Raises InvalidInput on a malformed address.
        """
        normalized = normalize_address(address)
        as_of = self._as_of()
        record = await self.reader.get(normalized)
        if record is None:
            result = not_found()
            return EligibilityCheck(
                address=normalized,
                eligible=False,
                reason_code=result.reason_code.value,
                reason=result.reason,
                as_of=as_of,
            )

        result = evaluate(record, self.min_stake)
        return EligibilityCheck(
            address=normalized,
            eligible=result.eligible,
            reason_code=result.reason_code.value,
            reason=result.reason,
            state=record.state,
            stake=record.stake,
            as_of=as_of,
        )

    async def get_commitment(self) -> CommitmentView:
        commitment = await self.current_commitment()
        return CommitmentView(
            root=commitment.root,
            leaf_count=commitment.leaf_count,
            as_of=commitment.as_of,
            built_at=commitment.built_at,
        )

    async def get_proof(self, address: str) -> ProofView:
        """Inclusion proof against the current root.

        Raises InvalidInput on a malformed address.
        """
        normalized = normalize_address(address)
        commitment = await self.current_commitment()
        proof = commitment.proof(normalized)
        if proof is None:
            return ProofView(
                address=normalized,
                found=False,
                root=commitment.root,
                leaf_count=commitment.leaf_count,
                as_of=commitment.as_of,
                reason="Address not in whitelist",
            )

        return ProofView(
            address=normalized,
            found=True,
            root=proof.root,
            leaf_count=proof.leaf_count,
            as_of=commitment.as_of,
            leaf_index=proof.leaf_index,
            proof=[ProofStepView(sibling=s.sibling, side=s.side) for s in proof.steps],
        )


__all__ = [
    "CommitmentView",
    "EligibilityCheck",
    "ProofStepView",
    "ProofView",
    "WhitelistQuery",
    "WhitelistView",
]
