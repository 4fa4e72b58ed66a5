"""Eligibility evaluator for the whitelist.

Pure and total: defined for every record, including states outside the
known vocabulary, with no I/O and no shared state. Safe to call from any
number of concurrent tasks.

Rule: state in {Human, Verified, Newbie} AND stake >= min_stake.
When several conditions fail, the state reason wins over the stake reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from idena_whitelist.identity.models import ELIGIBLE_STATES, KNOWN_STATES, IdentityRecord

DEFAULT_MIN_STAKE = Decimal("10000")


class ReasonCode(str, Enum):
    ELIGIBLE = "eligible"
    UNRECOGNIZED_STATE = "unrecognized_state"
    INELIGIBLE_STATE = "ineligible_state"
    INSUFFICIENT_STAKE = "insufficient_stake"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of an eligibility check. Never a bare boolean."""

    eligible: bool
    reason_code: ReasonCode
    reason: str

    def __bool__(self) -> bool:
        return self.eligible


def evaluate(record: IdentityRecord, min_stake: Decimal = DEFAULT_MIN_STAKE) -> EligibilityResult:
    """Decide whether a record belongs on the whitelist."""
    state = record.state
    if state not in KNOWN_STATES:
        return EligibilityResult(
            eligible=False,
            reason_code=ReasonCode.UNRECOGNIZED_STATE,
            reason=f"Unrecognized state: {state}",
        )
    if state not in ELIGIBLE_STATES:
        return EligibilityResult(
            eligible=False,
            reason_code=ReasonCode.INELIGIBLE_STATE,
            reason=f"Ineligible state: {state}",
        )
    if record.stake < min_stake:
        return EligibilityResult(
            eligible=False,
            reason_code=ReasonCode.INSUFFICIENT_STAKE,
            reason=f"Insufficient stake: {record.stake:.2f} iDNA (minimum {min_stake:,})",
        )
    return EligibilityResult(eligible=True, reason_code=ReasonCode.ELIGIBLE, reason="Eligible")


def is_eligible(record: IdentityRecord, min_stake: Decimal = DEFAULT_MIN_STAKE) -> bool:
    return evaluate(record, min_stake).eligible


def not_found() -> EligibilityResult:
    """Outcome for an address the store has never seen."""
    return EligibilityResult(
        eligible=False,
        reason_code=ReasonCode.NOT_FOUND,
        reason="Address not found in database",
    )


__all__ = [
    "DEFAULT_MIN_STAKE",
    "EligibilityResult",
    "ReasonCode",
    "evaluate",
    "is_eligible",
    "not_found",
]
