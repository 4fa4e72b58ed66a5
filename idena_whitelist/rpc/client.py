"""HTTP JSON-RPC client for the Idena node identity API.

Every call carries a bounded timeout. A call either returns a complete,
validated batch of records or raises a RemoteError with nothing returned.
"""

from __future__ import annotations

import asyncio
import itertools
from decimal import Decimal
from typing import Any

import bittensor as bt
import httpx
from pydantic import ValidationError

from idena_whitelist.errors import (
    InvalidInput,
    RemoteAuthorityError,
    RemoteError,
    RemoteMalformed,
    RemoteUnreachable,
)
from idena_whitelist.identity.models import IdentityRecord, normalize_address

from .interface import BatchFetchResult
from .models import METHOD_IDENTITIES, METHOD_IDENTITY, RPCRequest, RPCResponse


def _short(address: str) -> str:
    """Truncate address for log readability."""
    return address[:12] if address else "none"


def _parse_record(raw: Any, address: str | None = None) -> IdentityRecord:
    """Build an IdentityRecord from one RPC result object.

    When address is given it overrides whatever the payload carries.
    """
    if not isinstance(raw, dict):
        raise RemoteMalformed(f"identity must be an object, got {type(raw).__name__}")
    try:
        return IdentityRecord(
            address=address if address is not None else raw.get("address"),
            state=raw.get("state"),
            stake=raw.get("stake"),
        )
    except ValidationError as e:
        raise RemoteMalformed(f"invalid identity payload: {e.errors()[0]['msg']}") from e


class IdentityRPCClient:
    """Remote identity source backed by an Idena node."""

    def __init__(
        self,
        rpc_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.api_key = api_key or None
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _call(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC request and return its non-null result."""
        request = RPCRequest(method=method, params=params, id=next(self._ids), key=self.api_key)

        try:
            resp = await self._client.post(
                self.rpc_url,
                json=request.model_dump(exclude_none=True),
                headers=self._headers(),
            )
        except httpx.TimeoutException as e:
            raise RemoteUnreachable(f"{method} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise RemoteUnreachable(f"{method} transport error: {e}") from e
        except httpx.DecodingError as e:
            raise RemoteMalformed(f"{method} returned undecodable content: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteUnreachable(f"{method} request failed: {e}") from e

        if resp.status_code >= 400:
            raise RemoteUnreachable(f"{method} HTTP {resp.status_code}")

        try:
            body = resp.json(parse_float=Decimal)
        except ValueError as e:
            raise RemoteMalformed(f"{method} returned undecodable body") from e
        if not isinstance(body, dict):
            raise RemoteMalformed(f"{method} returned {type(body).__name__}, expected object")

        try:
            envelope = RPCResponse(**body)
        except ValidationError as e:
            raise RemoteMalformed(f"{method} returned invalid envelope") from e

        if envelope.error is not None:
            raise RemoteAuthorityError(envelope.error.code, envelope.error.message)
        if envelope.result is None:
            raise RemoteMalformed(f"{method} returned no result")
        return envelope.result

    # -- IdentitySource interface --

    async def fetch_all(self) -> list[IdentityRecord]:
        """Fetch every identity via dna_identities."""
        result = await self._call(METHOD_IDENTITIES, [])
        if not isinstance(result, list):
            raise RemoteMalformed(f"{METHOD_IDENTITIES} result must be a list")

        records: dict[str, IdentityRecord] = {}
        for raw in result:
            record = _parse_record(raw)
            existing = records.get(record.address)
            if existing is not None and existing != record:
                raise RemoteMalformed(f"conflicting entries for {record.address}")
            records[record.address] = record

        bt.logging.debug({"rpc_client": {"method": METHOD_IDENTITIES, "records": len(records)}})
        return list(records.values())

    async def fetch_one(self, address: str) -> IdentityRecord:
        """Fetch a single identity via dna_identity."""
        normalized = normalize_address(address)
        result = await self._call(METHOD_IDENTITY, [normalized])
        return _parse_record(result, address=normalized)

    async def fetch_batch(
        self, addresses: list[str], batch_size: int = 100, pause: float = 0.1,
    ) -> BatchFetchResult:
        """Fetch addresses sequentially in fixed-size batches.

        A failure on one address is recorded and never aborts the rest.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        out = BatchFetchResult()
        total = len(addresses)
        for start in range(0, total, batch_size):
            end = min(start + batch_size, total)
            bt.logging.info({"rpc_batch": {"from": start + 1, "to": end, "total": total}})

            for address in addresses[start:end]:
                try:
                    out.records.append(await self.fetch_one(address))
                except (RemoteError, InvalidInput) as e:
                    bt.logging.warning({"rpc_batch_error": {"address": _short(address), "error": str(e)}})
                    out.failed[address] = str(e)

            # Small pause between batches
            if end < total and pause > 0:
                await asyncio.sleep(pause)

        return out


__all__ = ["IdentityRPCClient"]
