"""SQLAlchemy tables for the identity store."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    pass


class DecimalText(TypeDecorator):
    """Stores Decimal as its exact text form (SQLite has no exact numeric)."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value: Any, dialect: Any) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on top of SQLite's naive storage."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Identity(Base):
    """Latest known identity record per address."""

    __tablename__ = "identities"

    address: Mapped[str] = mapped_column(
        String(42),
        primary_key=True,
        comment="Lowercase 0x-prefixed address",
    )
    state: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Identity state as reported by the authority",
    )
    stake: Mapped[Decimal] = mapped_column(
        DecimalText,
        nullable=False,
        comment="Stake in iDNA, exact decimal text",
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="Ingestion cycle that last reported this record",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="When the row was last written",
    )

    __table_args__ = (
        Index("idx_identities_state", "state"),
    )


class IngestionState(Base):
    """Singleton table holding the ingestion watermark.

    Always contains at most one row (id=1).
    """

    __tablename__ = "ingestion_state"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        default=1,
        comment="Singleton row (always id=1)",
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        comment="Start of the most recent ingestion cycle",
    )
    last_success_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        comment="Start of the most recent successful ingestion cycle",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        comment="Error from the most recent cycle, NULL if it succeeded",
    )
    records_applied: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Records upserted by the last successful cycle",
    )
    failed_addresses: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="[]",
        comment="JSON list of addresses that failed in the last batched cycle",
    )


__all__ = ["Base", "DecimalText", "Identity", "IngestionState", "UTCDateTime"]
