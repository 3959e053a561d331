"""Fixtures shared by the ingest tests: memory stores and a job factory."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from efdloader.core.config import ImportConfig
from efdloader.ingest.scheduler import ChunkScheduler
from efdloader.models.job import ImportJob
from efdloader.orchestration.dispatchers import LocalSliceDispatcher
from tests.fakes import MemoryFileStore, MemoryJobStore, MemoryLedgerStore

JOB_ID = "job-1"
ENTITY_ID = "ent-1"
FILE_PATH = "uploads/ent-1/job-1/efd.txt"


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def file_store():
    return MemoryFileStore()


@pytest.fixture
def ledger():
    return MemoryLedgerStore()


@pytest.fixture
def make_job(job_store, file_store) -> Callable[..., ImportJob]:
    def _make(data: bytes, **overrides: Any) -> ImportJob:
        fields: dict[str, Any] = {
            "job_id": JOB_ID,
            "entity_id": ENTITY_ID,
            "file_path": FILE_PATH,
            "file_name": "efd.txt",
            "file_size": len(data),
        }
        fields.update(overrides)
        job = ImportJob(**fields)
        file_store.write(job.file_path, data)
        job_store.create_job(job)
        return job

    return _make


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_scheduler(job_store, file_store, ledger, sleeps) -> Callable[..., ChunkScheduler]:
    def _make(settings: ImportConfig | None = None, **overrides: Any) -> ChunkScheduler:
        kwargs: dict[str, Any] = {
            "job_store": job_store,
            "file_store": file_store,
            "ledger_store": ledger,
            "dispatcher": LocalSliceDispatcher(),
            "settings": settings or ImportConfig(),
            "clock": lambda: 0.0,
            "sleep": sleeps.append,
        }
        kwargs.update(overrides)
        return ChunkScheduler(**kwargs)

    return _make
