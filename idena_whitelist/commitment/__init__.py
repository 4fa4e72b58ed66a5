"""Merkle commitment over the eligible address set."""

from .builder import Commitment, CommitmentBuilder, Snapshot
from .merkle import (
    EMPTY_ROOT,
    MerkleProof,
    MerkleTree,
    ProofStep,
    compute_root,
    verify_proof,
)

__all__ = [
    "EMPTY_ROOT",
    "Commitment",
    "CommitmentBuilder",
    "MerkleProof",
    "MerkleTree",
    "ProofStep",
    "Snapshot",
    "compute_root",
    "verify_proof",
]
