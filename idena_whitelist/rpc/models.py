"""JSON-RPC envelope for the Idena node API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

METHOD_IDENTITIES = "dna_identities"
METHOD_IDENTITY = "dna_identity"


class RPCRequest(BaseModel):
    method: str
    params: list[Any] = []
    id: int = 1
    key: str | None = None


class RPCError(BaseModel):
    code: int = 0
    message: str = ""


class RPCResponse(BaseModel):
    result: Any = None
    error: RPCError | None = None
    id: int | str | None = None


__all__ = [
    "METHOD_IDENTITIES",
    "METHOD_IDENTITY",
    "RPCError",
    "RPCRequest",
    "RPCResponse",
]
