"""Batch persister: per-destination buffers with in-buffer dedup and ordered flushes."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from efdloader.core.protocols import ILedgerStore
from efdloader.models.records import FLUSH_ORDER, NATURAL_KEYS, Destination

logger = logging.getLogger(__name__)


class BatchPersister:
    """Buffers rows per destination and writes them through an ILedgerStore.

    Rows sharing a natural key inside one buffer collapse to the first one;
    across batches the store's upsert takes care of duplicates. Write errors
    propagate as ``DestinationWriteError``.
    """

    def __init__(
        self,
        store: ILedgerStore,
        batch_size: int = 1000,
        inserted: Mapping[str, int] | None = None,
    ) -> None:
        self._store = store
        self._batch_size = batch_size
        self._buffers: dict[Destination, dict[tuple[Any, ...], dict[str, Any]]] = {
            destination: {} for destination in FLUSH_ORDER
        }
        self.inserted: dict[str, int] = {d.value: 0 for d in FLUSH_ORDER}
        for key, value in (inserted or {}).items():
            self.inserted[key] = int(value)

    def add(self, destination: Destination, row: dict[str, Any]) -> bool:
        """Buffer ``row``; returns True when the buffer reached the batch size."""
        key = tuple(row.get(column) for column in NATURAL_KEYS[destination])
        buffer = self._buffers[destination]
        buffer.setdefault(key, row)
        return len(buffer) >= self._batch_size

    def pending(self, destination: Destination) -> int:
        return len(self._buffers[destination])

    def flush(self, destination: Destination) -> int:
        buffer = self._buffers[destination]
        if not buffer:
            return 0
        rows = list(buffer.values())
        written = self._store.write_rows(destination, rows)
        buffer.clear()
        self.inserted[destination.value] = self.inserted.get(destination.value, 0) + written
        logger.debug("Flushed %d rows to %s (%d new)", len(rows), destination, written)
        return written

    def flush_for(self, destination: Destination) -> None:
        """Flush ``destination`` after any counterparties it may reference."""
        if destination is not Destination.COUNTERPARTIES:
            self.flush(Destination.COUNTERPARTIES)
        self.flush(destination)

    def flush_all(self) -> None:
        for destination in FLUSH_ORDER:
            self.flush(destination)
