"""HTTP endpoint serving the whitelist, eligibility checks and Merkle proofs.

Runs as an async task in the service's event loop. Routes:
  GET /whitelist                  - current eligible addresses
  GET /whitelist/check?address=X  - eligibility of one address
  GET /merkle_root                - current commitment root
  GET /merkle_proof?address=X     - inclusion proof against the current root
  GET /health                     - store reachability and ingestion watermark
"""

from __future__ import annotations

from typing import Awaitable, Callable

import bittensor as bt
from aiohttp import web

from idena_whitelist.errors import InvalidInput, StoreUnavailable
from idena_whitelist.query import WhitelistQuery
from idena_whitelist.store import IdentityStore


def _addr(address: str | None) -> str:
    """Truncate address for log readability."""
    if not address:
        return "none"
    return address[:12]


def _iso(value) -> str | None:
    return value.isoformat() if value else None


Handler = Callable[[web.Request], Awaitable[web.Response]]


class WhitelistHTTPServer:
    """Lightweight async HTTP server over the query surface."""

    def __init__(
        self,
        query: WhitelistQuery,
        store: IdentityStore,
        host: str = "0.0.0.0",
        port: int = 3030,
    ):
        self.query = query
        self.store = store
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/whitelist", self._guard("whitelist", self._handle_whitelist))
        app.router.add_get("/whitelist/check", self._guard("whitelist/check", self._handle_check))
        app.router.add_get("/merkle_root", self._guard("merkle_root", self._handle_merkle_root))
        app.router.add_get("/merkle_proof", self._guard("merkle_proof", self._handle_merkle_proof))
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self._build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        bt.logging.info({"whitelist_http": {"status": "started", "host": self.host, "port": self.port}})

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            bt.logging.info({"whitelist_http": "stopped"})

    # -- Error mapping --

    def _guard(self, endpoint: str, handler: Handler) -> Handler:
        """Map InvalidInput to 400 and StoreUnavailable to 503."""

        async def wrapped(request: web.Request) -> web.Response:
            try:
                return await handler(request)
            except InvalidInput as e:
                bt.logging.info({"whitelist_request": {"endpoint": endpoint, "status": 400, "error": str(e)}})
                return web.json_response({"error": "invalid_address", "detail": str(e)}, status=400)
            except StoreUnavailable as e:
                bt.logging.warning({"whitelist_request": {"endpoint": endpoint, "status": 503, "error": str(e)}})
                return web.json_response({"error": "store_unavailable"}, status=503)

        return wrapped

    @staticmethod
    def _require_address(request: web.Request) -> str:
        address = request.query.get("address", "").strip()
        if not address:
            raise InvalidInput("address parameter required")
        return address

    # -- Routes --

    async def _handle_whitelist(self, request: web.Request) -> web.Response:
        view = await self.query.list_whitelist()
        bt.logging.debug({"whitelist_request": {"endpoint": "whitelist", "status": 200, "count": view.count}})
        return web.json_response(view.model_dump(mode="json"))

    async def _handle_check(self, request: web.Request) -> web.Response:
        address = self._require_address(request)
        check = await self.query.check_address(address)
        bt.logging.debug({
            "whitelist_request": {
                "endpoint": "whitelist/check",
                "address": _addr(check.address),
                "status": 200,
                "eligible": check.eligible,
            }
        })
        return web.json_response(check.model_dump(mode="json"))

    async def _handle_merkle_root(self, request: web.Request) -> web.Response:
        view = await self.query.get_commitment()
        bt.logging.debug({"whitelist_request": {"endpoint": "merkle_root", "status": 200, "leaf_count": view.leaf_count}})
        return web.json_response({
            "merkle_root": view.root,
            "addresses_count": view.leaf_count,
            "as_of": _iso(view.as_of),
            "built_at": _iso(view.built_at),
        })

    async def _handle_merkle_proof(self, request: web.Request) -> web.Response:
        address = self._require_address(request)
        view = await self.query.get_proof(address)
        bt.logging.debug({
            "whitelist_request": {
                "endpoint": "merkle_proof",
                "address": _addr(view.address),
                "status": 200,
                "found": view.found,
            }
        })
        return web.json_response(view.model_dump(mode="json"))

    async def _handle_health(self, request: web.Request) -> web.Response:
        watermark = self.query.watermark()
        try:
            identities = await self.store.count()
        except StoreUnavailable as e:
            bt.logging.warning({"whitelist_request": {"endpoint": "health", "status": 503, "error": str(e)}})
            return web.json_response(
                {"status": "unhealthy", "error": "store_unavailable"}, status=503,
            )

        return web.json_response({
            "status": "healthy",
            "identities": identities,
            "last_success_at": _iso(watermark.last_success_at),
            "last_attempt_at": _iso(watermark.last_attempt_at),
            "last_error": watermark.last_error,
        })


__all__ = ["WhitelistHTTPServer"]
