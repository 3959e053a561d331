"""In-memory backends for unit tests: dict-backed fakes."""

from __future__ import annotations

import io
import uuid
from datetime import UTC, datetime
from typing import Any, Sequence

from efdloader.core.exceptions import (
    DestinationWriteError,
    FileStoreError,
    JobCancelledError,
    JobNotFoundError,
)
from efdloader.models.job import CANCELLED_BY_USER, CANCELLABLE_STATUSES, ImportJob, JobStatus
from efdloader.models.records import NATURAL_KEYS, Destination


class MemoryJobStore:
    """Dict-backed IJobStore for unit tests."""

    def __init__(self) -> None:
        self._jobs: dict[str, ImportJob] = {}
        self.updates: list[dict[str, Any]] = []

    def create_job(self, job: ImportJob) -> None:
        self._jobs[job.job_id] = job.model_copy(deep=True)

    def get_job(self, job_id: str) -> ImportJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def get_status(self, job_id: str) -> JobStatus | None:
        job = self._jobs.get(job_id)
        return job.status if job is not None else None

    def update_job(self, job_id: str, **fields: Any) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status is JobStatus.CANCELLED:
            raise JobCancelledError(job_id)
        self.updates.append(dict(fields))
        data = job.model_dump()
        data.update(fields)
        self._jobs[job_id] = ImportJob.model_validate(data).model_copy(deep=True)

    def cancel_job(self, job_id: str, reason: str | None = None) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status not in CANCELLABLE_STATUSES:
            return False
        self._jobs[job_id] = job.model_copy(update={
            "status": JobStatus.CANCELLED,
            "error_message": reason or CANCELLED_BY_USER,
            "completed_at": datetime.now(tz=UTC),
        })
        return True


class MemoryCacheBackend:
    """Dict-backed ICacheBackend for unit tests."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def set_if_absent(self, key: str, ttl: int, value: str) -> bool:
        if key in self._store:
            return False
        self._store[key] = value
        return True

    def delete(self, key: str) -> None:
        self._store.pop(key, None)


class MemoryFileStore:
    """Dict-backed IFileStore for unit tests."""

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}
        self.opened: list[tuple[str, int]] = []

    def write(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self._files[path] = data
        return path

    def open_range(self, path: str, start: int = 0) -> io.BytesIO:
        self.opened.append((path, start))
        try:
            data = self._files[path]
        except KeyError as exc:
            raise FileStoreError(f"No such file {path!r}") from exc
        return io.BytesIO(data[start:])

    def delete(self, path: str) -> None:
        if self._files.pop(path, None) is None:
            raise FileStoreError(f"No such file {path!r}")

    def exists(self, path: str) -> bool:
        return path in self._files


class MemoryLedgerStore:
    """Dict-backed ILedgerStore that honors natural keys like the SQL upsert does."""

    def __init__(self, unconstrained: Sequence[Destination] = ()) -> None:
        self.branches: dict[str, dict[str, Any]] = {}
        self.rows: dict[Destination, list[dict[str, Any]]] = {d: [] for d in Destination}
        self._keys: dict[Destination, set[tuple[Any, ...]]] = {d: set() for d in Destination}
        self._unconstrained = set(unconstrained)
        self.fail_on: dict[Destination, str] = {}
        self.refresh_error: Exception | None = None
        self.refresh_calls = 0
        self.write_calls: list[tuple[Destination, int]] = []
        self.branch_updates: list[tuple[str, str | None, str | None]] = []

    def load_branches(self, entity_id: str) -> dict[str, str]:
        return {
            b["document_number"]: branch_id
            for branch_id, b in self.branches.items()
            if b["entity_id"] == entity_id
        }

    def ensure_branch(
        self,
        entity_id: str,
        document_number: str,
        name: str,
        establishment_code: str | None = None,
    ) -> tuple[str, bool]:
        existing = self.load_branches(entity_id).get(document_number)
        if existing is not None:
            if establishment_code:
                self.branches[existing]["establishment_code"] = establishment_code
            return existing, False
        branch_id = str(uuid.uuid4())
        self.branches[branch_id] = {
            "entity_id": entity_id,
            "document_number": document_number,
            "name": name,
            "establishment_code": establishment_code,
        }
        return branch_id, True

    def update_branch(
        self, branch_id: str, *, name: str | None = None, establishment_code: str | None = None
    ) -> None:
        self.branch_updates.append((branch_id, name, establishment_code))
        branch = self.branches[branch_id]
        if name:
            branch["name"] = name
        if establishment_code:
            branch["establishment_code"] = establishment_code

    def write_rows(self, destination: Destination, rows: Sequence[dict[str, Any]]) -> int:
        if destination in self.fail_on:
            raise DestinationWriteError(destination.value, self.fail_on[destination])
        self.write_calls.append((destination, len(rows)))
        written = 0
        for row in rows:
            key = tuple(row.get(column) for column in NATURAL_KEYS[destination])
            if destination not in self._unconstrained:
                if key in self._keys[destination]:
                    continue
                self._keys[destination].add(key)
            self.rows[destination].append(dict(row))
            written += 1
        return written

    def refresh_downstream(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
