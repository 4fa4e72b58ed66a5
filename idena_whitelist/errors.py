"""Error taxonomy for the whitelist engine.

Remote* errors are recovered by the ingestion scheduler and never reach
query callers. StoreUnavailable is fatal to a request, not to the process.
"Not found" is an outcome, not an exception.
"""

from __future__ import annotations


class WhitelistError(Exception):
    """Base class for all engine errors."""


# ---------------------------------------------------------------------------
# Remote identity source
# ---------------------------------------------------------------------------


class RemoteError(WhitelistError):
    """Base class for failures talking to the remote RPC authority."""


class RemoteUnreachable(RemoteError):
    """Transport failure, timeout, or non-2xx HTTP status."""


class RemoteMalformed(RemoteError):
    """Response could not be decoded into identity records."""


class RemoteAuthorityError(RemoteError):
    """The authority answered with an explicit JSON-RPC error."""

    def __init__(self, code: int, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------


class StoreUnavailable(WhitelistError):
    """The persistence layer failed (connection, I/O, constraint)."""


class InvalidInput(WhitelistError, ValueError):
    """Caller supplied a malformed value (e.g. address format)."""


__all__ = [
    "InvalidInput",
    "RemoteAuthorityError",
    "RemoteError",
    "RemoteMalformed",
    "RemoteUnreachable",
    "StoreUnavailable",
    "WhitelistError",
]
