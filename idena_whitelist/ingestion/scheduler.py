"""Ingestion scheduler.

Periodically pulls identities from the remote source and reconciles them
into the store:

    IDLE -> FETCHING -> RECONCILING -> IDLE   (STOPPED on shutdown)

Cycles never overlap. A tick that arrives while a cycle is still running is
skipped, not queued. Remote and store failures end the cycle, are recorded
in the watermark, and the next tick is the retry.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

import bittensor as bt

from idena_whitelist.base.config import WhitelistConfig, load_addresses
from idena_whitelist.errors import InvalidInput, RemoteError, StoreUnavailable
from idena_whitelist.identity.models import (
    IdentityRecord,
    IngestionWatermark,
    normalize_address,
    utcnow,
)
from idena_whitelist.rpc.interface import IdentitySource
from idena_whitelist.store import IdentityStore


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    STOPPED = "stopped"


CYCLE_STARTED = "cycle_started"
CYCLE_COMPLETED = "cycle_completed"
CYCLE_FAILED = "cycle_failed"
CYCLE_SKIPPED = "cycle_skipped"


@dataclass(frozen=True)
class IngestionEvent:
    """Diagnostic event emitted to listeners."""

    kind: str
    at: datetime
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class CycleResult:
    """Outcome of one run_cycle() call."""

    status: str  # "success", "failed", "skipped"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    records_applied: int = 0
    failed_addresses: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


IngestionListener = Callable[[IngestionEvent], Any]


class IngestionScheduler:
    """Sole writer of the identity store and owner of the watermark."""

    def __init__(
        self,
        source: IdentitySource,
        store: IdentityStore,
        config: WhitelistConfig | None = None,
        listeners: list[IngestionListener] | None = None,
    ):
        self.source = source
        self.store = store
        self.config = config or WhitelistConfig()
        self._listeners: list[IngestionListener] = list(listeners or [])

        self._watermark = IngestionWatermark()
        self._state = SchedulerState.IDLE
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._current: asyncio.Task | None = None
        self._running = False

    # -- Accessors --

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def watermark(self) -> IngestionWatermark:
        """A copy; callers never see the scheduler's own instance."""
        return self._watermark.model_copy(deep=True)

    def add_listener(self, listener: IngestionListener) -> None:
        self._listeners.append(listener)

    async def initialize(self) -> None:
        """Restore the persisted watermark, if any."""
        try:
            self._watermark = await self.store.load_watermark()
        except StoreUnavailable as e:
            bt.logging.warning({"ingestion_scheduler": {"event": "watermark_load_failed", "error": str(e)}})
            return
        bt.logging.info({
            "ingestion_scheduler": {
                "event": "watermark_loaded",
                "last_success_at": _iso(self._watermark.last_success_at),
                "last_attempt_at": _iso(self._watermark.last_attempt_at),
            }
        })

    # -- Main loop --

    async def run(self) -> None:
        """Run cycles until stop(). The first cycle starts immediately."""
        self._running = True
        self._stop_event.clear()
        self._state = SchedulerState.IDLE

        loop = asyncio.get_running_loop()
        period = self.config.poll_interval
        started = loop.time()
        bt.logging.info({
            "ingestion_scheduler": {
                "status": "starting",
                "poll_interval": period,
                "fetch_mode": self.config.fetch_mode,
            }
        })

        try:
            while self._running:
                self._current = asyncio.create_task(self.run_cycle())
                try:
                    await self._current
                except asyncio.CancelledError:
                    if self._running:
                        raise
                    break
                except Exception as e:
                    bt.logging.error({"ingestion_cycle_error": str(e)})
                finally:
                    self._current = None

                if not self._running:
                    break

                # Next boundary on the fixed grid; missed ticks are dropped
                now = loop.time()
                ticks = int((now - started) // period) + 1
                delay = started + ticks * period - now
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            self._state = SchedulerState.STOPPED
            bt.logging.info({"ingestion_scheduler": "stopped"})

    def stop(self) -> None:
        """Interrupt the sleep and cancel any in-flight cycle before commit."""
        self._running = False
        self._stop_event.set()
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._state = SchedulerState.STOPPED

    # -- Cycle --

    async def run_cycle(self) -> CycleResult:
        """Execute one ingestion cycle, or skip if one is already running."""
        if self._cycle_lock.locked():
            bt.logging.info({"ingestion_cycle": {"status": "skipped", "reason": "busy"}})
            await self._emit(CYCLE_SKIPPED, {"reason": "busy"})
            return CycleResult(status="skipped")

        async with self._cycle_lock:
            return await self._cycle()

    async def _cycle(self) -> CycleResult:
        previous = self._watermark
        attempt_at = utcnow()
        # Strictly increasing, so every success gets a fresh cache key
        if previous.last_attempt_at is not None and attempt_at <= previous.last_attempt_at:
            attempt_at = previous.last_attempt_at + timedelta(microseconds=1)

        await self._emit(CYCLE_STARTED, {"fetch_mode": self.config.fetch_mode})
        failed: dict[str, str] = {}
        try:
            self._state = SchedulerState.FETCHING
            if self.config.fetch_mode == "per_address":
                records, failed, universe = await self._fetch_per_address()
                if universe and not records:
                    return await self._fail(
                        previous, attempt_at, f"all {universe} addresses failed", failed,
                    )
            else:
                records = await self.source.fetch_all()

            self._state = SchedulerState.RECONCILING
            applied = await self.store.bulk_upsert(records, seen_at=attempt_at)
        except (RemoteError, StoreUnavailable) as e:
            return await self._fail(previous, attempt_at, f"{type(e).__name__}: {e}", failed)
        except asyncio.CancelledError:
            self._watermark = IngestionWatermark(
                last_attempt_at=attempt_at,
                last_success_at=previous.last_success_at,
                last_error="cancelled",
                records_applied=previous.records_applied,
            )
            bt.logging.info({"ingestion_cycle": {"status": "cancelled"}})
            raise
        except Exception as e:
            bt.logging.error({"ingestion_cycle": {"status": "unexpected_error", "error": repr(e)}})
            return await self._fail(previous, attempt_at, f"{type(e).__name__}: {e}", failed)
        finally:
            if self._state is not SchedulerState.STOPPED:
                self._state = SchedulerState.IDLE

        self._watermark = IngestionWatermark(
            last_attempt_at=attempt_at,
            last_success_at=attempt_at,
            last_error=None,
            records_applied=applied,
            failed_addresses=sorted(failed),
        )
        await self._persist_watermark()

        result = CycleResult(
            status="success",
            started_at=attempt_at,
            finished_at=utcnow(),
            records_applied=applied,
            failed_addresses=sorted(failed),
        )
        bt.logging.info({
            "ingestion_cycle": {
                "status": "success",
                "records_applied": applied,
                "failed": len(failed),
            }
        })
        await self._emit(CYCLE_COMPLETED, {"records_applied": applied, "failed": len(failed)})
        return result

    async def _fail(
        self,
        previous: IngestionWatermark,
        attempt_at: datetime,
        error: str,
        failed: dict[str, str],
    ) -> CycleResult:
        self._watermark = IngestionWatermark(
            last_attempt_at=attempt_at,
            last_success_at=previous.last_success_at,
            last_error=error,
            records_applied=previous.records_applied,
            failed_addresses=sorted(failed),
        )
        await self._persist_watermark()

        bt.logging.warning({"ingestion_cycle": {"status": "failed", "error": error}})
        await self._emit(CYCLE_FAILED, {"error": error})
        return CycleResult(
            status="failed",
            started_at=attempt_at,
            finished_at=utcnow(),
            failed_addresses=sorted(failed),
            error=error,
        )

    async def _fetch_per_address(self) -> tuple[list[IdentityRecord], dict[str, str], int]:
        """Fetch the universe one address at a time.

        Universe = configured address list plus every address already
        stored. Returns (records, failed, universe size).
        """
        universe: set[str] = set(self._configured_addresses())
        async for record in self.store.list_all():
            universe.add(record.address)

        addresses = sorted(universe)
        if not addresses:
            return [], {}, 0

        result = await self.source.fetch_batch(
            addresses, self.config.batch_size, self.config.batch_pause,
        )
        return result.records, result.failed, len(addresses)

    def _configured_addresses(self) -> list[str]:
        path = self.config.address_list_file
        if not path:
            return []
        try:
            lines = load_addresses(path)
        except OSError as e:
            bt.logging.error({"ingestion_scheduler": {"event": "address_list_unreadable", "path": path, "error": str(e)}})
            return []

        addresses: list[str] = []
        for line in lines:
            try:
                addresses.append(normalize_address(line))
            except InvalidInput:
                bt.logging.warning({"ingestion_scheduler": {"event": "address_list_skip", "line": line[:50]}})
        return addresses

    async def _persist_watermark(self) -> None:
        try:
            await self.store.save_watermark(self._watermark)
        except StoreUnavailable as e:
            bt.logging.warning({"ingestion_scheduler": {"event": "watermark_save_failed", "error": str(e)}})

    # -- Events --

    async def _emit(self, kind: str, detail: dict[str, Any]) -> None:
        """Deliver an event to every listener.

        Listener failures are isolated; one broken listener doesn't stop
        the others or the cycle.
        """
        event = IngestionEvent(kind=kind, at=utcnow(), detail=detail)
        for listener in self._listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                bt.logging.warning({"ingestion_listener_error": {"event": kind, "error": str(e)}})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


__all__ = [
    "CYCLE_COMPLETED",
    "CYCLE_FAILED",
    "CYCLE_SKIPPED",
    "CYCLE_STARTED",
    "CycleResult",
    "IngestionEvent",
    "IngestionListener",
    "IngestionScheduler",
    "SchedulerState",
]
