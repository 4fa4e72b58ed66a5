"""Pydantic models for identity records and ingestion bookkeeping.

IdentityRecord is the unit the remote authority reports and the store keys
by address. IngestionWatermark is the scheduler's view of its last cycles.
OfflineSnapshot is the standalone file produced by the batch fetcher.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from idena_whitelist.errors import InvalidInput


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


class IdentityState(str, Enum):
    """Identity states known to the Idena authority."""

    UNDEFINED = "Undefined"
    CANDIDATE = "Candidate"
    NEWBIE = "Newbie"
    VERIFIED = "Verified"
    HUMAN = "Human"
    SUSPENDED = "Suspended"
    ZOMBIE = "Zombie"


KNOWN_STATES = frozenset(s.value for s in IdentityState)
ELIGIBLE_STATES = frozenset({
    IdentityState.HUMAN.value,
    IdentityState.VERIFIED.value,
    IdentityState.NEWBIE.value,
})


def normalize_address(address: Any) -> str:
    """Lowercase and validate an address. Raises InvalidInput if malformed."""
    if not isinstance(address, str):
        raise InvalidInput(f"address must be a string, got {type(address).__name__}")
    normalized = address.strip().lower()
    if not _ADDRESS_RE.match(normalized):
        raise InvalidInput(f"malformed address: {address!r}")
    return normalized


def parse_stake(value: Any) -> Decimal:
    """Convert a payload stake into an exact Decimal.

    Floats go through their shortest repr so 10000.0 stays 10000.0 rather
    than picking up binary noise.
    """
    if isinstance(value, bool):
        raise ValueError("stake must be numeric, got bool")
    if isinstance(value, Decimal):
        stake = value
    elif isinstance(value, int):
        stake = Decimal(value)
    elif isinstance(value, float):
        stake = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            stake = Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"stake is not a decimal: {value!r}") from e
    else:
        raise ValueError(f"stake must be numeric, got {type(value).__name__}")
    if not stake.is_finite():
        raise ValueError(f"stake must be finite, got {value!r}")
    return stake


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Identity record
# ---------------------------------------------------------------------------


class IdentityRecord(BaseModel):
    """The authority's latest statement about one address."""

    model_config = ConfigDict(frozen=True)

    address: str
    state: str = Field(min_length=1)
    stake: Decimal = Field(ge=0)
    last_seen_at: datetime | None = None

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str:
        return normalize_address(v)

    @field_validator("stake", mode="before")
    @classmethod
    def _parse_stake(cls, v: Any) -> Decimal:
        return parse_stake(v)

    @property
    def known_state(self) -> IdentityState | None:
        """The state as an enum member, or None if outside the vocabulary."""
        try:
            return IdentityState(self.state)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Ingestion watermark
# ---------------------------------------------------------------------------


class IngestionWatermark(BaseModel):
    """Bookkeeping of the last attempted / successful ingestion cycle."""

    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    records_applied: int = 0
    failed_addresses: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _success_not_after_attempt(self) -> IngestionWatermark:
        if self.last_success_at is not None:
            if self.last_attempt_at is None or self.last_success_at > self.last_attempt_at:
                raise ValueError("last_success_at must not be after last_attempt_at")
        return self


# ---------------------------------------------------------------------------
# Offline snapshot file (batch fetcher output)
# ---------------------------------------------------------------------------


class SnapshotIdentity(BaseModel):
    """One identity as written to the offline snapshot file."""

    address: str
    state: str
    stake: Decimal

    @classmethod
    def from_record(cls, record: IdentityRecord) -> SnapshotIdentity:
        return cls(address=record.address, state=record.state, stake=record.stake)


class OfflineSnapshot(BaseModel):
    """Point-in-time dump written by the batch fetcher."""

    timestamp: datetime
    identities: list[SnapshotIdentity] = Field(default_factory=list)
    total: int = 0
    successful: int = 0
    failed: list[str] = Field(default_factory=list)


__all__ = [
    "ELIGIBLE_STATES",
    "KNOWN_STATES",
    "IdentityRecord",
    "IdentityState",
    "IngestionWatermark",
    "OfflineSnapshot",
    "SnapshotIdentity",
    "normalize_address",
    "parse_stake",
    "utcnow",
]
