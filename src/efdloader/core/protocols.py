"""Protocol interfaces for all efdloader abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

from efdloader.core.types import BranchId, DocumentNumber, JobId, Row

if TYPE_CHECKING:
    from efdloader.models.job import ImportJob, JobStatus
    from efdloader.models.records import Destination


# ---------------------------------------------------------------------------
# Persistence: Job Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IJobStore(Protocol):
    """Durable import job records."""

    def create_job(self, job: ImportJob) -> None: ...

    def get_job(self, job_id: str) -> ImportJob | None: ...

    def get_status(self, job_id: str) -> JobStatus | None: ...

    def update_job(self, job_id: str, **fields: Any) -> None:
        """Conditionally update fields; raises JobCancelledError if the job is cancelled."""
        ...

    def cancel_job(self, job_id: str, reason: str | None = None) -> bool: ...


# ---------------------------------------------------------------------------
# Persistence: Cache Backend
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def set_if_absent(self, key: str, ttl: int, value: str) -> bool: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: File Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IByteStream(Protocol):
    """Minimal readable byte stream (file object or S3 body)."""

    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...


@runtime_checkable
class IFileStore(Protocol):
    """S3-compatible file storage interface."""

    def write(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    def open_range(self, path: str, start: int = 0) -> IByteStream: ...

    def delete(self, path: str) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: Ledger Store
# ---------------------------------------------------------------------------

@runtime_checkable
class ILedgerStore(Protocol):
    """Destination tables for branches, counterparties and business rows."""

    def load_branches(self, entity_id: str) -> dict[DocumentNumber, BranchId]: ...

    def ensure_branch(
        self,
        entity_id: str,
        document_number: DocumentNumber,
        name: str,
        establishment_code: str | None = None,
    ) -> tuple[BranchId, bool]: ...

    def update_branch(
        self, branch_id: BranchId, *, name: str | None = None, establishment_code: str | None = None
    ) -> None: ...

    def write_rows(self, destination: Destination, rows: Sequence[Row]) -> int: ...

    def refresh_downstream(self) -> None: ...


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

@runtime_checkable
class ISliceDispatcher(Protocol):
    """Fire-and-forget trigger for the next slice of a job."""

    def dispatch(self, job_id: JobId) -> None: ...
