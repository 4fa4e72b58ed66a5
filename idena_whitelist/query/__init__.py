"""Query surface over the identity store and whitelist commitment."""

from .surface import (
    CommitmentView,
    EligibilityCheck,
    ProofStepView,
    ProofView,
    WhitelistQuery,
    WhitelistView,
)

__all__ = [
    "CommitmentView",
    "EligibilityCheck",
    "ProofStepView",
    "ProofView",
    "WhitelistQuery",
    "WhitelistView",
]
