"""Identity records as reported by the Idena authority."""

from .models import (
    ELIGIBLE_STATES,
    KNOWN_STATES,
    IdentityRecord,
    IdentityState,
    IngestionWatermark,
    OfflineSnapshot,
    SnapshotIdentity,
    normalize_address,
)

__all__ = [
    "ELIGIBLE_STATES",
    "KNOWN_STATES",
    "IdentityRecord",
    "IdentityState",
    "IngestionWatermark",
    "OfflineSnapshot",
    "SnapshotIdentity",
    "normalize_address",
]
