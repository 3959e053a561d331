"""Import job record, counters and slice outcomes."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from efdloader.models.context import ProcessingContext
from efdloader.models.records import Destination, ImportScope


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    REFRESHING_DOWNSTREAM = "refreshing_downstream"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CANCELLABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})

CANCELLED_BY_USER = "Cancelado pelo usuário"


class SliceOutcome(StrEnum):
    END_OF_INPUT = "end_of_input"
    CUTOFF = "cutoff"
    QUOTA_EXHAUSTED = "quota_exhausted"
    CANCELLED = "cancelled"


class JobCounts(BaseModel):
    """Cumulative counters plus the context checkpoint."""

    inserted: dict[str, int] = Field(default_factory=lambda: {d.value: 0 for d in Destination})
    branches_created: int = 0
    seen: dict[str, int] = Field(default_factory=dict)
    emitted: dict[str, int] = Field(default_factory=dict)
    context: Optional[ProcessingContext] = None
    refresh_success: Optional[bool] = None


class ImportJob(BaseModel):
    """Durable state of one file import (created by the upload flow)."""

    job_id: str
    entity_id: str
    branch_id: Optional[str] = None
    file_path: str
    file_name: str = ""
    file_size: int = 0
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    bytes_processed: int = 0
    chunk_number: int = 0
    total_lines_processed: int = 0
    record_limit: int = 0
    import_scope: ImportScope = ImportScope.ALL
    counts: JobCounts = Field(default_factory=JobCounts)
    error_message: str = ""
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SliceReport(BaseModel):
    """What one scheduler invocation did."""

    job_id: str
    status: JobStatus
    outcome: Optional[SliceOutcome] = None
    chunk_number: int = 0
    bytes_processed: int = 0
    total_lines_processed: int = 0
    requeued: bool = False
    message: str = ""
