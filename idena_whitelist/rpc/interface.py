"""IdentitySource protocol - the contract the ingestion scheduler consumes.

Implementations: IdentityRPCClient (Idena node JSON-RPC). Tests drive the
scheduler with in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from idena_whitelist.identity.models import IdentityRecord


@dataclass
class BatchFetchResult:
    """Outcome of a per-address batched fetch.

    failed maps address -> error description. An address is in exactly one
    of records / failed.
    """

    records: list[IdentityRecord] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.records) + len(self.failed)


@runtime_checkable
class IdentitySource(Protocol):
    """Abstract interface for reading identities from the remote authority."""

    async def fetch_all(self) -> list[IdentityRecord]:
        """Fetch every identity. Raises a RemoteError with zero records on failure."""
        ...

    async def fetch_one(self, address: str) -> IdentityRecord:
        """Fetch a single identity. Raises a RemoteError on failure."""
        ...

    async def fetch_batch(
        self, addresses: list[str], batch_size: int, pause: float,
    ) -> BatchFetchResult:
        """Fetch addresses one by one in batches; per-address failures are collected."""
        ...


__all__ = ["BatchFetchResult", "IdentitySource"]
