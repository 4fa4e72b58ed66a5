"""SQLite-backed identity store.

Runs on the SQLAlchemy async engine with the aiosqlite driver. The database
is opened in WAL mode and every unit of work runs in an explicit
transaction, so:
  - bulk_upsert is all-or-nothing
  - each list_all() call reads one consistent snapshot, unaffected by a
    concurrent writer

A file-backed database is required for reader/writer isolation; ":memory:"
shares a single connection and is only suitable for throwaway use.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Protocol, runtime_checkable

import bittensor as bt
from sqlalchemy import event, func, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from idena_whitelist.errors import StoreUnavailable
from idena_whitelist.identity.models import (
    IdentityRecord,
    IngestionWatermark,
    normalize_address,
    utcnow,
)

from .schema import Base, Identity, IngestionState

_IDENTITY_COLUMNS = (
    Identity.address,
    Identity.state,
    Identity.stake,
    Identity.last_seen_at,
)


def _install_sqlite_hooks(engine: AsyncEngine, busy_timeout_ms: int) -> None:
    """WAL + explicit BEGIN, so transactions really are transactions."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Disable the driver's implicit transaction handling; we emit BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def _row_to_record(row: Any) -> IdentityRecord:
    return IdentityRecord(
        address=row.address,
        state=row.state,
        stake=row.stake,
        last_seen_at=row.last_seen_at,
    )


@runtime_checkable
class IdentityReader(Protocol):
    """Read-only view of the store handed to query-side components."""

    async def get(self, address: str) -> IdentityRecord | None:
        ...

    def list_all(self) -> AsyncIterator[IdentityRecord]:
        ...

    async def count(self) -> int:
        ...


class IdentityStore:
    """Durable address -> IdentityRecord mapping.

    The ingestion scheduler is the only caller of bulk_upsert and
    save_watermark. Everything else gets the IdentityReader view.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000, echo: bool = False):
        self.db_path = db_path
        self._engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=echo)
        _install_sqlite_hooks(self._engine, busy_timeout_ms)

    @classmethod
    async def open(cls, db_path: str, **kwargs: Any) -> IdentityStore:
        """Create the store and its tables if absent."""
        store = cls(db_path, **kwargs)
        await store.create_schema()
        return store

    async def create_schema(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"schema creation failed: {e}") from e
        bt.logging.info({"identity_store": {"status": "ready", "db_path": self.db_path}})

    async def close(self) -> None:
        await self._engine.dispose()

    # -- Writes (scheduler only) --

    async def bulk_upsert(
        self, records: Iterable[IdentityRecord], seen_at: datetime | None = None,
    ) -> int:
        """Replace the stored record for every address in one transaction.

        Either every record is applied or none is. Duplicate addresses in
        the batch collapse to the last occurrence. Returns the number of
        distinct addresses written.
        """
        seen_at = seen_at or utcnow()
        written_at = utcnow()

        rows: dict[str, dict[str, Any]] = {}
        for record in records:
            rows[record.address] = {
                "address": record.address,
                "state": record.state,
                "stake": record.stake,
                "last_seen_at": seen_at,
                "updated_at": written_at,
            }
        if not rows:
            return 0

        stmt = sqlite_insert(Identity)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Identity.address],
            set_={
                "state": stmt.excluded.state,
                "stake": stmt.excluded.stake,
                "last_seen_at": stmt.excluded.last_seen_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )

        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt, list(rows.values()))
        except (SQLAlchemyError, OSError) as e:
            bt.logging.warning({"identity_store": {"event": "bulk_upsert_failed", "rows": len(rows), "error": str(e)}})
            raise StoreUnavailable(f"bulk upsert of {len(rows)} records failed") from e

        return len(rows)

    async def save_watermark(self, watermark: IngestionWatermark) -> None:
        values = {
            "id": 1,
            "last_attempt_at": watermark.last_attempt_at,
            "last_success_at": watermark.last_success_at,
            "last_error": watermark.last_error,
            "records_applied": watermark.records_applied,
            "failed_addresses": json.dumps(watermark.failed_addresses),
        }
        stmt = sqlite_insert(IngestionState).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[IngestionState.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"saving watermark failed: {e}") from e

    # -- Reads --

    async def get(self, address: str) -> IdentityRecord | None:
        """Fetch one record. Raises InvalidInput on a malformed address."""
        normalized = normalize_address(address)
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(*_IDENTITY_COLUMNS).where(Identity.address == normalized)
                )
                row = result.first()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"get failed: {e}") from e
        return _row_to_record(row) if row is not None else None

    async def list_all(self) -> AsyncIterator[IdentityRecord]:
        """Stream every record, ordered by address.

        Each call opens its own read transaction, so each iteration sees a
        single consistent snapshot and calls are independent of each other.
        """
        try:
            async with self._engine.connect() as conn:
                async with conn.begin():
                    result = await conn.stream(
                        select(*_IDENTITY_COLUMNS).order_by(Identity.address)
                    )
                    async for row in result:
                        yield _row_to_record(row)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"list_all failed: {e}") from e

    async def read_all(self) -> list[IdentityRecord]:
        return [record async for record in self.list_all()]

    async def count(self) -> int:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(select(func.count()).select_from(Identity))
                return int(result.scalar_one())
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"count failed: {e}") from e

    async def load_watermark(self) -> IngestionWatermark:
        """Load the persisted watermark, or an empty one on first start."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(IngestionState.__table__).where(IngestionState.id == 1)
                )
                row = result.first()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"loading watermark failed: {e}") from e

        if row is None:
            return IngestionWatermark()
        return IngestionWatermark(
            last_attempt_at=row.last_attempt_at,
            last_success_at=row.last_success_at,
            last_error=row.last_error,
            records_applied=row.records_applied,
            failed_addresses=json.loads(row.failed_addresses or "[]"),
        )

    async def ping(self) -> bool:
        """Execute a trivial read to confirm the database is reachable."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("select 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            bt.logging.error({"identity_store": {"event": "ping_failed", "error": str(e)}})
            return False


__all__ = ["IdentityReader", "IdentityStore"]
