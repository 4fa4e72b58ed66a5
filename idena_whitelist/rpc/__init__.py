"""Remote identity source: Idena node JSON-RPC."""

from .client import IdentityRPCClient
from .interface import BatchFetchResult, IdentitySource

__all__ = ["BatchFetchResult", "IdentityRPCClient", "IdentitySource"]
