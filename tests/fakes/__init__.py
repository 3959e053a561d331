"""Shared test doubles: re-export memory backends."""

from __future__ import annotations

from efdloader.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryFileStore,
    MemoryJobStore,
    MemoryLedgerStore,
)

__all__ = ["MemoryCacheBackend", "MemoryFileStore", "MemoryJobStore", "MemoryLedgerStore"]
