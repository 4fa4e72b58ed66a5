"""Ingestion: remote identity source -> identity store."""

from .scheduler import (
    CycleResult,
    IngestionEvent,
    IngestionListener,
    IngestionScheduler,
    SchedulerState,
)

__all__ = [
    "CycleResult",
    "IngestionEvent",
    "IngestionListener",
    "IngestionScheduler",
    "SchedulerState",
]
