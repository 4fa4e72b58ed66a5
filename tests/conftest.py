"""Shared fixtures: the four reference identities and a temp SQLite store."""

from __future__ import annotations

import os
from decimal import Decimal

import pytest
import pytest_asyncio

from idena_whitelist.identity.models import IdentityRecord
from idena_whitelist.store import IdentityStore

os.environ.setdefault("IDENA_WHITELIST_TEST_MODE", "true")

HUMAN = "0x1234567890abcdef1234567890abcdef12345678"
VERIFIED = "0xabcdef1234567890abcdef1234567890abcdef12"
NEWBIE = "0x9876543210fedcba9876543210fedcba98765432"
CANDIDATE = "0xfedcba0987654321fedcba0987654321fedcba09"
UNKNOWN = "0x0000000000000000000000000000000000000001"


def make_record(address: str, state: str, stake) -> IdentityRecord:
    return IdentityRecord(address=address, state=state, stake=stake)


@pytest.fixture
def reference_records() -> list[IdentityRecord]:
    """Human/15000 and Verified/25000 are eligible; the other two are not."""
    return [
        make_record(HUMAN, "Human", Decimal("15000")),
        make_record(VERIFIED, "Verified", Decimal("25000")),
        make_record(NEWBIE, "Newbie", Decimal("5000")),
        make_record(CANDIDATE, "Candidate", Decimal("12000")),
    ]


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "identities.db")


@pytest_asyncio.fixture
async def store(db_path):
    s = await IdentityStore.open(db_path)
    try:
        yield s
    finally:
        await s.close()


@pytest_asyncio.fixture
async def seeded_store(store, reference_records):
    await store.bulk_upsert(reference_records)
    return store
