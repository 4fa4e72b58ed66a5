"""Tests for the Idena JSON-RPC client against an in-process mock transport."""

import json
from decimal import Decimal

import httpx
import pytest

from idena_whitelist.errors import (
    InvalidInput,
    RemoteAuthorityError,
    RemoteMalformed,
    RemoteUnreachable,
)
from idena_whitelist.rpc import IdentityRPCClient, IdentitySource

HUMAN = "0x1234567890abcdef1234567890abcdef12345678"
VERIFIED = "0xabcdef1234567890abcdef1234567890abcdef12"
NEWBIE = "0x9876543210fedcba9876543210fedcba98765432"
CANDIDATE = "0xfedcba0987654321fedcba0987654321fedcba09"

IDENTITIES = {
    HUMAN: {"address": HUMAN, "state": "Human", "stake": 15000},
    VERIFIED: {"address": VERIFIED, "state": "Verified", "stake": "25000"},
    NEWBIE: {"address": NEWBIE, "state": "Newbie", "stake": 5000.0},
    CANDIDATE: {"address": CANDIDATE, "state": "Candidate", "stake": 12000},
}


class _FakeNode:
    """Minimal dna_identity / dna_identities responder."""

    def __init__(self, identities=None, fail_for=(), status=200):
        self.identities = dict(IDENTITIES if identities is None else identities)
        self.fail_for = set(fail_for)
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, text="nope")

        body = json.loads(request.content)
        method, params, rid = body["method"], body["params"], body["id"]

        if method == "dna_identities":
            return httpx.Response(200, json={"result": list(self.identities.values()), "error": None, "id": rid})

        address = params[0]
        if address in self.fail_for:
            return httpx.Response(200, json={"result": None, "error": {"code": -32000, "message": "boom"}, "id": rid})
        identity = self.identities.get(address, {"address": address, "state": "Undefined", "stake": "0"})
        return httpx.Response(200, json={"result": identity, "error": None, "id": rid})


def _client(handler, **kwargs) -> IdentityRPCClient:
    return IdentityRPCClient("http://node.test", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
class TestFetchAll:

    async def test_returns_validated_records(self):
        client = _client(_FakeNode())
        try:
            records = await client.fetch_all()
        finally:
            await client.close()

        by_addr = {r.address: r for r in records}
        assert set(by_addr) == set(IDENTITIES)
        assert by_addr[HUMAN].stake == Decimal("15000")
        assert by_addr[VERIFIED].stake == Decimal("25000")

    async def test_float_stake_parsed_exactly(self):
        # written as raw text: the literal is not representable as a binary float
        raw = (
            '{"result": [{"address": "%s", "state": "Human", "stake": 9999.999999999999999999}],'
            ' "error": null, "id": 1}' % HUMAN
        )
        client = _client(lambda request: httpx.Response(200, content=raw.encode()))
        try:
            [record] = await client.fetch_all()
        finally:
            await client.close()
        assert record.stake == Decimal("9999.999999999999999999")

    async def test_conflicting_duplicates_rejected(self):
        def handler(request):
            result = [
                {"address": HUMAN, "state": "Human", "stake": 1},
                {"address": HUMAN, "state": "Zombie", "stake": 1},
            ]
            return httpx.Response(200, json={"result": result, "error": None, "id": 1})

        client = _client(handler)
        try:
            with pytest.raises(RemoteMalformed):
                await client.fetch_all()
        finally:
            await client.close()

    async def test_invalid_record_rejects_whole_batch(self):
        node = _FakeNode({HUMAN: {"address": "not-an-address", "state": "Human", "stake": 1}})
        client = _client(node)
        try:
            with pytest.raises(RemoteMalformed):
                await client.fetch_all()
        finally:
            await client.close()


@pytest.mark.asyncio
class TestErrors:

    async def test_http_error_is_unreachable(self):
        client = _client(_FakeNode(status=502))
        try:
            with pytest.raises(RemoteUnreachable):
                await client.fetch_all()
        finally:
            await client.close()

    async def test_transport_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        try:
            with pytest.raises(RemoteUnreachable):
                await client.fetch_one(HUMAN)
        finally:
            await client.close()

    async def test_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler, timeout=0.5)
        try:
            with pytest.raises(RemoteUnreachable, match="timed out"):
                await client.fetch_all()
        finally:
            await client.close()

    async def test_undecodable_body_is_malformed(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        try:
            with pytest.raises(RemoteMalformed):
                await client.fetch_all()
        finally:
            await client.close()

    async def test_null_result_is_malformed(self):
        client = _client(lambda request: httpx.Response(200, json={"result": None, "error": None, "id": 1}))
        try:
            with pytest.raises(RemoteMalformed):
                await client.fetch_one(HUMAN)
        finally:
            await client.close()

    async def test_rpc_error_carries_code_and_message(self):
        client = _client(_FakeNode(fail_for={HUMAN}))
        try:
            with pytest.raises(RemoteAuthorityError) as exc:
                await client.fetch_one(HUMAN)
        finally:
            await client.close()
        assert exc.value.code == -32000
        assert exc.value.message == "boom"
        assert str(exc.value) == "RPC error -32000: boom"

    async def test_corrupt_content_encoding_is_malformed(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all")

        client = _client(handler)
        try:
            with pytest.raises(RemoteMalformed, match="undecodable"):
                await client.fetch_all()
        finally:
            await client.close()

    async def test_other_http_error_is_unreachable(self):
        def handler(request):
            raise httpx.TooManyRedirects("redirect loop", request=request)

        client = _client(handler)
        try:
            with pytest.raises(RemoteUnreachable, match="request failed"):
                await client.fetch_one(HUMAN)
        finally:
            await client.close()


@pytest.mark.asyncio
class TestFetchOne:

    async def test_address_forced_onto_record(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"state": "Human", "stake": 15000}, "error": None, "id": 1})

        client = _client(handler)
        try:
            record = await client.fetch_one(HUMAN.upper().replace("0X", "0x"))
        finally:
            await client.close()
        assert record.address == HUMAN

    async def test_malformed_address_rejected_before_call(self):
        node = _FakeNode()
        client = _client(node)
        try:
            with pytest.raises(InvalidInput):
                await client.fetch_one("0xinexistant")
        finally:
            await client.close()
        assert node.requests == []

    async def test_api_key_sent(self):
        node = _FakeNode()
        client = _client(node, api_key="secret")
        try:
            await client.fetch_one(HUMAN)
        finally:
            await client.close()

        request = node.requests[0]
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["key"] == "secret"
        assert body["method"] == "dna_identity"
        assert body["params"] == [HUMAN]

    async def test_no_key_no_auth_header(self):
        node = _FakeNode()
        client = _client(node)
        try:
            await client.fetch_one(HUMAN)
        finally:
            await client.close()
        assert "Authorization" not in node.requests[0].headers
        assert "key" not in json.loads(node.requests[0].content)


@pytest.mark.asyncio
class TestFetchBatch:

    async def test_collects_failures_without_aborting(self):
        node = _FakeNode(fail_for={VERIFIED})
        client = _client(node)
        try:
            result = await client.fetch_batch([HUMAN, VERIFIED, NEWBIE, CANDIDATE], batch_size=2, pause=0)
        finally:
            await client.close()

        assert [r.address for r in result.records] == [HUMAN, NEWBIE, CANDIDATE]
        assert list(result.failed) == [VERIFIED]
        assert result.total == 4

    async def test_malformed_address_recorded_as_failure(self):
        client = _client(_FakeNode())
        try:
            result = await client.fetch_batch(["0xinexistant", HUMAN], batch_size=10, pause=0)
        finally:
            await client.close()
        assert "0xinexistant" in result.failed
        assert len(result.records) == 1

    async def test_corrupt_response_does_not_abort_batch(self):
        node = _FakeNode()

        def handler(request):
            if json.loads(request.content)["params"] == [HUMAN]:
                return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all")
            return node(request)

        client = _client(handler)
        try:
            result = await client.fetch_batch([HUMAN, VERIFIED], batch_size=1, pause=0)
        finally:
            await client.close()

        assert list(result.failed) == [HUMAN]
        assert [r.address for r in result.records] == [VERIFIED]

    async def test_rejects_zero_batch_size(self):
        client = _client(_FakeNode())
        try:
            with pytest.raises(ValueError):
                await client.fetch_batch([HUMAN], batch_size=0)
        finally:
            await client.close()

    async def test_satisfies_source_protocol(self):
        client = _client(_FakeNode())
        try:
            assert isinstance(client, IdentitySource)
        finally:
            await client.close()
