"""Chunk scheduler: the job state machine around stream-driver slices.

pending -> processing (slice 1..n) -> refreshing_downstream -> completed,
with failed reachable from any processing slice and cancelled set externally.
After a cutoff the scheduler checkpoints and hands the job to an
ISliceDispatcher instead of waiting for the next slice.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Callable, Optional

from efdloader.core.config import AppSettings, ImportConfig
from efdloader.core.exceptions import (
    DispatchError,
    FileStoreError,
    JobCancelledError,
    JobNotFoundError,
    is_recoverable_transport_error,
)
from efdloader.core.protocols import (
    ICacheBackend,
    IFileStore,
    IJobStore,
    ILedgerStore,
    ISliceDispatcher,
)
from efdloader.ingest.driver import StreamDriver
from efdloader.ingest.quotas import BlockQuotas
from efdloader.models.context import ProcessingContext
from efdloader.models.job import ImportJob, JobCounts, JobStatus, SliceOutcome, SliceReport
from efdloader.orchestration.dispatchers import create_dispatcher
from efdloader.persistence import create_persistence

logger = logging.getLogger(__name__)

LEASE_PREFIX = "slice-lease:"
REFRESHING_PROGRESS = 98


def _now() -> datetime:
    return datetime.now(tz=UTC)


class ChunkScheduler:
    """Runs one slice per :meth:`process` call and decides what happens next."""

    def __init__(
        self,
        *,
        job_store: IJobStore,
        file_store: IFileStore,
        ledger_store: ILedgerStore,
        dispatcher: ISliceDispatcher,
        settings: ImportConfig | None = None,
        lease: ICacheBackend | None = None,
        lease_ttl: int = 120,
        read_chunk_size: int = 1 << 20,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.job_store = job_store
        self.file_store = file_store
        self.ledger_store = ledger_store
        self.dispatcher = dispatcher
        self.settings = settings or ImportConfig()
        self._lease = lease
        self._lease_ttl = lease_ttl
        self._read_chunk_size = read_chunk_size
        self._clock = clock
        self._sleep = sleep

    def process(self, job_id: str) -> SliceReport:
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            logger.info("Job %s is %s; nothing to do", job_id, job.status)
            return self._report(job, message=f"job already {job.status}")

        token = self._acquire(job_id)
        if token is None:
            logger.warning("Job %s: another slice holds the lease; skipping", job_id)
            return self._report(job, message="slice already running")

        retry_delay: Optional[float] = None
        try:
            report, retry_delay = self._run(job)
        finally:
            self._release(job_id, token)

        if retry_delay is not None:
            if retry_delay > 0:
                self._sleep(retry_delay)
            report.requeued = self._requeue(job_id)
        return report

    # ---- slice ----

    def _run(self, job: ImportJob) -> tuple[SliceReport, Optional[float]]:
        driver: StreamDriver | None = None
        try:
            if job.status is JobStatus.REFRESHING_DOWNSTREAM:
                logger.info("Job %s: resuming interrupted finalization", job.job_id)
                return self._finalize(job, job.counts, job.bytes_processed, job.total_lines_processed), None

            if job.status is not JobStatus.PROCESSING:
                self.job_store.update_job(
                    job.job_id, status=JobStatus.PROCESSING, started_at=_now(), error_message="",
                )
                job = job.model_copy(update={"status": JobStatus.PROCESSING})

            context = ProcessingContext.restore(
                job.counts.context,
                known_branches=self.ledger_store.load_branches(job.entity_id),
                default_branch_id=job.branch_id,
            )
            quotas = BlockQuotas.for_scope(job.record_limit, job.import_scope, job.counts.emitted)
            driver = StreamDriver(
                job,
                context,
                quotas,
                job_store=self.job_store,
                file_store=self.file_store,
                ledger_store=self.ledger_store,
                settings=self.settings,
                read_chunk_size=self._read_chunk_size,
                clock=self._clock,
            )
            logger.info(
                "Job %s: slice %d starting at byte %d", job.job_id, job.chunk_number + 1, job.bytes_processed,
                extra={"job_id": job.job_id, "chunk_number": job.chunk_number + 1},
            )
            result = driver.run()
        except JobCancelledError:
            logger.info("Job %s was cancelled during slice", job.job_id)
            return self._report(job, status=JobStatus.CANCELLED, outcome=SliceOutcome.CANCELLED), None
        except Exception as exc:
            if is_recoverable_transport_error(exc):
                return self._recover(job, exc)
            logger.exception("Job %s failed", job.job_id, extra={"job_id": job.job_id})
            self._fail(job, exc, driver)
            return self._report(job, status=JobStatus.FAILED, message=str(exc)), None

        if result.outcome is SliceOutcome.CANCELLED:
            return self._report(job, status=JobStatus.CANCELLED, outcome=result.outcome), None

        if result.outcome is SliceOutcome.CUTOFF:
            chunk_number = job.chunk_number + 1
            try:
                self.job_store.update_job(
                    job.job_id,
                    bytes_processed=result.bytes_processed,
                    chunk_number=chunk_number,
                    total_lines_processed=result.total_lines_processed,
                    progress=result.progress,
                    counts=result.counts,
                )
            except JobCancelledError:
                return self._report(job, status=JobStatus.CANCELLED, outcome=SliceOutcome.CANCELLED), None
            logger.info(
                "Job %s: slice %d stopped at byte %d (%d lines); queuing next slice",
                job.job_id, chunk_number, result.bytes_processed, result.lines_in_slice,
                extra={"job_id": job.job_id, "chunk_number": chunk_number},
            )
            report = SliceReport(
                job_id=job.job_id,
                status=JobStatus.PROCESSING,
                outcome=result.outcome,
                chunk_number=chunk_number,
                bytes_processed=result.bytes_processed,
                total_lines_processed=result.total_lines_processed,
            )
            return report, 0.0

        if result.outcome is SliceOutcome.QUOTA_EXHAUSTED:
            logger.info("Job %s: every bounded quota reached", job.job_id)
        try:
            report = self._finalize(
                job.model_copy(update={"chunk_number": job.chunk_number + 1}),
                result.counts,
                result.bytes_processed,
                result.total_lines_processed,
            )
        except JobCancelledError:
            return self._report(job, status=JobStatus.CANCELLED, outcome=SliceOutcome.CANCELLED), None
        report.outcome = result.outcome
        return report, None

    def _finalize(
        self, job: ImportJob, counts: JobCounts, bytes_processed: int, total_lines: int
    ) -> SliceReport:
        self.job_store.update_job(
            job.job_id,
            status=JobStatus.REFRESHING_DOWNSTREAM,
            progress=REFRESHING_PROGRESS,
            bytes_processed=bytes_processed,
            chunk_number=job.chunk_number,
            total_lines_processed=total_lines,
            counts=counts,
        )

        refreshed = True
        try:
            self.ledger_store.refresh_downstream()
        except Exception:
            logger.warning("Job %s: downstream refresh failed", job.job_id, exc_info=True)
            refreshed = False

        final_counts = counts.model_copy(update={"refresh_success": refreshed, "context": None})
        self.job_store.update_job(
            job.job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            completed_at=_now(),
            counts=final_counts,
        )
        logger.info(
            "Job %s completed: %d lines, inserted=%s", job.job_id, total_lines, final_counts.inserted,
            extra={"job_id": job.job_id, "chunk_number": job.chunk_number},
        )

        if self.settings.delete_source_on_complete:
            try:
                self.file_store.delete(job.file_path)
            except FileStoreError:
                logger.warning("Job %s: could not delete %s", job.job_id, job.file_path, exc_info=True)

        return SliceReport(
            job_id=job.job_id,
            status=JobStatus.COMPLETED,
            chunk_number=job.chunk_number,
            bytes_processed=bytes_processed,
            total_lines_processed=total_lines,
        )

    def _recover(self, job: ImportJob, exc: Exception) -> tuple[SliceReport, Optional[float]]:
        current = self.job_store.get_job(job.job_id) or job
        if current.bytes_processed > 0:
            logger.warning(
                "Job %s: transport error at checkpoint byte %d, retrying: %s",
                job.job_id, current.bytes_processed, exc,
            )
            report = self._report(current, message=f"recovering: {exc}")
            return report, self.settings.transport_retry_delay_seconds
        logger.error("Job %s: transport error before any checkpoint: %s", job.job_id, exc)
        self._fail(current, exc, None)
        return self._report(current, status=JobStatus.FAILED, message=str(exc)), None

    def _fail(self, job: ImportJob, exc: Exception, driver: StreamDriver | None) -> None:
        fields: dict = {
            "status": JobStatus.FAILED,
            "error_message": str(exc)[:1000] or type(exc).__name__,
            "completed_at": _now(),
        }
        if driver is not None:
            fields["counts"] = driver.failure_counts()
        try:
            self.job_store.update_job(job.job_id, **fields)
        except JobCancelledError:
            logger.info("Job %s was cancelled; not marking it failed", job.job_id)

    # ---- helpers ----

    def _requeue(self, job_id: str) -> bool:
        try:
            self.dispatcher.dispatch(job_id)
        except DispatchError:
            logger.exception("Job %s: could not queue the next slice; it resumes on the next trigger", job_id)
            return False
        return True

    def _acquire(self, job_id: str) -> Optional[str]:
        """Lease token for this slice, or None when another slice holds the lease."""
        token = uuid.uuid4().hex
        if self._lease is None:
            return token
        if not self._lease.set_if_absent(f"{LEASE_PREFIX}{job_id}", self._lease_ttl, token):
            return None
        return token

    def _release(self, job_id: str, token: str) -> None:
        if self._lease is None:
            return
        key = f"{LEASE_PREFIX}{job_id}"
        # An expired lease may already belong to the next slice.
        if self._lease.get(key) == token:
            self._lease.delete(key)

    @staticmethod
    def _report(
        job: ImportJob,
        *,
        status: JobStatus | None = None,
        outcome: SliceOutcome | None = None,
        message: str = "",
    ) -> SliceReport:
        return SliceReport(
            job_id=job.job_id,
            status=status or job.status,
            outcome=outcome,
            chunk_number=job.chunk_number,
            bytes_processed=job.bytes_processed,
            total_lines_processed=job.total_lines_processed,
            message=message,
        )


def create_scheduler(
    settings: AppSettings | None = None, dispatcher: ISliceDispatcher | None = None
) -> ChunkScheduler:
    """Wire a scheduler from application settings.

    ``dispatcher`` overrides the one selected by ``settings.importer.dispatcher``.
    """
    if settings is None:
        settings = AppSettings()
    job_store, cache, file_store, ledger_store = create_persistence(settings)
    return ChunkScheduler(
        job_store=job_store,
        file_store=file_store,
        ledger_store=ledger_store,
        dispatcher=dispatcher if dispatcher is not None else create_dispatcher(settings),
        settings=settings.importer,
        lease=cache if settings.redis.lease_enabled else None,
        lease_ttl=settings.redis.lease_ttl_seconds,
        read_chunk_size=settings.s3.read_chunk_size,
    )
