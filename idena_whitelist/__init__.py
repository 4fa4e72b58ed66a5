"""Idena identity snapshot and whitelist commitment engine.

Ingests identity records from an Idena node, evaluates the whitelist
eligibility rule, and commits to the eligible address set with a Merkle
root that third parties can verify membership against.
"""

__version__ = "0.1.0"
