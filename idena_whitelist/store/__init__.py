"""Durable identity store (SQLite via SQLAlchemy async)."""

from .identity_store import IdentityReader, IdentityStore

__all__ = ["IdentityReader", "IdentityStore"]
