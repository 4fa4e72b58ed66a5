"""Tests for the read-only query surface."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from idena_whitelist.commitment import EMPTY_ROOT, ProofStep, verify_proof
from idena_whitelist.errors import InvalidInput
from idena_whitelist.identity.models import IdentityRecord, IngestionWatermark
from idena_whitelist.ingestion import IngestionScheduler
from idena_whitelist.query import WhitelistQuery

HUMAN = "0x1234567890abcdef1234567890abcdef12345678"
VERIFIED = "0xabcdef1234567890abcdef1234567890abcdef12"
NEWBIE = "0x9876543210fedcba9876543210fedcba98765432"
CANDIDATE = "0xfedcba0987654321fedcba0987654321fedcba09"
UNKNOWN = "0x0000000000000000000000000000000000000001"


class WatermarkBox:
    """Mutable stand-in for the scheduler's watermark accessor."""

    def __init__(self):
        t = datetime(2026, 3, 1, tzinfo=timezone.utc)
        self.value = IngestionWatermark(last_attempt_at=t, last_success_at=t)

    def __call__(self) -> IngestionWatermark:
        return self.value

    def advance(self):
        t = self.value.last_success_at + timedelta(minutes=10)
        self.value = IngestionWatermark(last_attempt_at=t, last_success_at=t)


class StaticSource:
    """Identity source that serves a fixed, editable list."""

    def __init__(self, records):
        self.records = list(records)

    async def fetch_all(self):
        return list(self.records)


class CountingReader:
    """Wraps a store and counts list_all() calls."""

    def __init__(self, inner):
        self.inner = inner
        self.list_calls = 0

    async def get(self, address):
        return await self.inner.get(address)

    async def list_all(self):
        self.list_calls += 1
        async for r in self.inner.list_all():
            yield r

    async def count(self):
        return await self.inner.count()


@pytest.mark.asyncio
class TestCheckAddress:

    async def test_eligible(self, seeded_store):
        query = WhitelistQuery(seeded_store, WatermarkBox())
        check = await query.check_address(HUMAN)
        assert check.eligible
        assert check.reason == "Eligible"
        assert check.state == "Human"
        assert check.stake == Decimal("15000")
        assert check.as_of == datetime(2026, 3, 1, tzinfo=timezone.utc)

    async def test_insufficient_stake(self, seeded_store):
        check = await WhitelistQuery(seeded_store, WatermarkBox()).check_address(NEWBIE)
        assert not check.eligible
        assert check.reason == "Insufficient stake: 5000.00 iDNA (minimum 10,000)"

    async def test_ineligible_state(self, seeded_store):
        check = await WhitelistQuery(seeded_store, WatermarkBox()).check_address(CANDIDATE)
        assert not check.eligible
        assert check.reason == "Ineligible state: Candidate"

    async def test_not_found_is_an_outcome(self, seeded_store):
        check = await WhitelistQuery(seeded_store, WatermarkBox()).check_address(UNKNOWN)
        assert not check.eligible
        assert check.reason_code == "not_found"
        assert check.reason == "Address not found in database"
        assert check.state is None

    async def test_malformed_address_raises(self, seeded_store):
        with pytest.raises(InvalidInput):
            await WhitelistQuery(seeded_store, WatermarkBox()).check_address("0xinexistant")

    async def test_uppercase_input_normalized(self, seeded_store):
        check = await WhitelistQuery(seeded_store, WatermarkBox()).check_address(HUMAN.upper().replace("0X", "0x"))
        assert check.address == HUMAN
        assert check.eligible


@pytest.mark.asyncio
class TestWhitelistAndCommitment:

    async def test_list_whitelist(self, seeded_store):
        view = await WhitelistQuery(seeded_store, WatermarkBox()).list_whitelist()
        assert view.addresses == sorted([HUMAN, VERIFIED])
        assert view.count == 2
        assert view.as_of is not None

    async def test_empty_store_commitment(self, store):
        view = await WhitelistQuery(store, WatermarkBox()).get_commitment()
        assert view.root == EMPTY_ROOT
        assert view.leaf_count == 0

    async def test_threshold_applied(self, seeded_store):
        query = WhitelistQuery(seeded_store, WatermarkBox(), min_stake=Decimal("5000"))
        view = await query.list_whitelist()
        assert NEWBIE in view.addresses

    async def test_proof_matches_commitment(self, seeded_store):
        query = WhitelistQuery(seeded_store, WatermarkBox())
        commitment = await query.get_commitment()
        proof = await query.get_proof(HUMAN)

        assert proof.found
        assert proof.root == commitment.root
        assert proof.as_of == commitment.as_of
        steps = [ProofStep(s.sibling, s.side) for s in proof.proof]
        assert verify_proof(HUMAN, steps, commitment.root)

    async def test_proof_for_ineligible_not_found(self, seeded_store):
        proof = await WhitelistQuery(seeded_store, WatermarkBox()).get_proof(NEWBIE)
        assert not proof.found
        assert proof.proof == []
        assert proof.leaf_index is None

    async def test_proof_malformed_address_raises(self, seeded_store):
        with pytest.raises(InvalidInput):
            await WhitelistQuery(seeded_store, WatermarkBox()).get_proof("nope")


@pytest.mark.asyncio
class TestCommitmentCache:

    async def test_built_once_per_watermark(self, seeded_store):
        reader = CountingReader(seeded_store)
        query = WhitelistQuery(reader, WatermarkBox())
        await query.get_commitment()
        await query.list_whitelist()
        await query.get_proof(HUMAN)
        assert reader.list_calls == 1

    async def test_rebuilt_after_new_success(self, seeded_store):
        reader = CountingReader(seeded_store)
        box = WatermarkBox()
        query = WhitelistQuery(reader, box)
        before = await query.get_commitment()

        await seeded_store.bulk_upsert([IdentityRecord(address=NEWBIE, state="Newbie", stake=10000)])
        assert (await query.get_commitment()).root == before.root

        box.advance()
        after = await query.get_commitment()
        assert after.root != before.root
        assert after.leaf_count == 3
        assert reader.list_calls == 2

    async def test_concurrent_misses_build_once(self, seeded_store):
        reader = CountingReader(seeded_store)
        query = WhitelistQuery(reader, WatermarkBox())
        views = await asyncio.gather(*[query.get_commitment() for _ in range(10)])
        assert len({v.root for v in views}) == 1
        assert reader.list_calls == 1

    async def test_invalidate(self, seeded_store):
        reader = CountingReader(seeded_store)
        query = WhitelistQuery(reader, WatermarkBox())
        await query.get_commitment()
        query.invalidate()
        await query.get_commitment()
        assert reader.list_calls == 2

    async def test_rebuilt_after_each_cycle_when_clock_is_behind(self, store):
        ahead = datetime.now(timezone.utc) + timedelta(hours=1)
        await store.save_watermark(IngestionWatermark(last_attempt_at=ahead, last_success_at=ahead))

        source = StaticSource([IdentityRecord(address=HUMAN, state="Human", stake=15000)])
        scheduler = IngestionScheduler(source, store)
        await scheduler.initialize()
        query = WhitelistQuery(store, lambda: scheduler.watermark)

        await scheduler.run_cycle()
        first = await query.get_commitment()

        source.records.append(IdentityRecord(address=VERIFIED, state="Verified", stake=25000))
        await scheduler.run_cycle()
        second = await query.get_commitment()

        assert first.leaf_count == 1
        assert second.leaf_count == 2
        assert second.root != first.root
