"""Stream driver: runs one bounded slice of an import job.

The driver opens the source at ``bytes_processed``, walks it line by line
through the classifier and decoders, applies branch/counterparty side
effects, enforces quotas and buffers rows in a :class:`BatchPersister`. It
stops on end of input, on the slice's time or line budget, when every bounded
quota is exhausted, or when the job is cancelled.

Offsets are counted on raw bytes, so ``bytes_processed`` always points just
past the last fully processed line and a resumed slice re-reads nothing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator

from efdloader.core.config import ImportConfig
from efdloader.core.protocols import IByteStream, IFileStore, IJobStore, ILedgerStore
from efdloader.ingest.persister import BatchPersister
from efdloader.ingest.quotas import BlockQuotas
from efdloader.models.context import ProcessingContext
from efdloader.models.job import ImportJob, JobCounts, JobStatus, SliceOutcome
from efdloader.models.records import (
    SENTINEL_COUNTERPARTIES,
    Counterparty,
    Destination,
    LedgerRecord,
)
from efdloader.parsing.classifier import classify
from efdloader.parsing.decoders import BranchInstruction, BranchSource, decode

logger = logging.getLogger(__name__)

PROGRESS_CAP = 95


def iter_lines(
    stream: IByteStream, start: int = 0, chunk_size: int = 1 << 20
) -> Iterator[tuple[bytes, int]]:
    """Yield ``(raw_line, end_offset)`` pairs.

    ``end_offset`` is the absolute offset just past the line's newline (or
    past the last byte for an unterminated final line).
    """
    offset = start
    tail = b""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        *lines, tail = (tail + chunk).split(b"\n")
        for line in lines:
            offset += len(line) + 1
            yield line, offset
    if tail:
        yield tail, offset + len(tail)


def estimate_progress(offset: int, file_size: int) -> int:
    if file_size <= 0:
        return 0
    return min(PROGRESS_CAP, offset * 100 // file_size)


@dataclass
class SliceResult:
    outcome: SliceOutcome
    bytes_processed: int
    lines_in_slice: int
    total_lines_processed: int
    progress: int
    counts: JobCounts


class StreamDriver:
    """One slice over one job. Create a new driver per slice."""

    def __init__(
        self,
        job: ImportJob,
        context: ProcessingContext,
        quotas: BlockQuotas,
        *,
        job_store: IJobStore,
        file_store: IFileStore,
        ledger_store: ILedgerStore,
        settings: ImportConfig | None = None,
        read_chunk_size: int = 1 << 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._job = job
        self._context = context
        self._quotas = quotas
        self._job_store = job_store
        self._file_store = file_store
        self._ledger = ledger_store
        self._settings = settings or ImportConfig()
        self._read_chunk_size = read_chunk_size
        self._clock = clock

        self._persister = BatchPersister(ledger_store, self._settings.batch_size, job.counts.inserted)
        self._seen: dict[str, int] = dict(job.counts.seen)
        self._branches_created = job.counts.branches_created
        self._sentinels_ready: set[str] = set()
        self._dropped = 0

        self.offset = job.bytes_processed
        self.lines_in_slice = 0
        self.total_lines = job.total_lines_processed
        self.progress = job.progress
        # Last counts persisted together with an offset.
        self.checkpoint_counts = job.counts

    # ---- public ----

    def run(self) -> SliceResult:
        started = self._clock()
        stream = self._file_store.open_range(self._job.file_path, self.offset)
        try:
            outcome = self._consume(stream, started)
        finally:
            stream.close()

        if outcome is SliceOutcome.CANCELLED:
            logger.info("Job %s cancelled after %d lines in slice", self._job.job_id, self.lines_in_slice)
            return self._result(outcome)

        if outcome is SliceOutcome.CUTOFF:
            if self._context.pending:
                logger.info(
                    "Job %s: keeping %d pending aggregates for the next slice",
                    self._job.job_id, len(self._context.pending),
                )
        else:
            for record in self._context.close_pending():
                self._emit(record)
        self._persister.flush_all()

        if self._dropped:
            logger.warning("Job %s: dropped %d records in this slice", self._job.job_id, self._dropped)
        self.progress = max(self.progress, estimate_progress(self.offset, self._job.file_size))
        return self._result(outcome)

    def counts(self) -> JobCounts:
        return JobCounts(
            inserted=dict(self._persister.inserted),
            branches_created=self._branches_created,
            seen=dict(self._seen),
            emitted=self._quotas.counts(),
            context=ProcessingContext.model_validate(self._context.snapshot()),
        )

    def failure_counts(self) -> JobCounts:
        """Current counters paired with the last checkpointed context and quotas."""
        return self.counts().model_copy(update={
            "context": self.checkpoint_counts.context,
            "emitted": self.checkpoint_counts.emitted,
        })

    def checkpoint(self) -> None:
        """Flush every buffer, then persist offset, counts and context together."""
        self._persister.flush_all()
        counts = self.counts()
        self.progress = max(self.progress, estimate_progress(self.offset, self._job.file_size))
        self._job_store.update_job(
            self._job.job_id,
            bytes_processed=self.offset,
            total_lines_processed=self.total_lines,
            progress=self.progress,
            counts=counts,
        )
        self.checkpoint_counts = counts
        logger.debug("Job %s checkpointed at byte %d", self._job.job_id, self.offset)

    # ---- line loop ----

    def _consume(self, stream: IByteStream, started: float) -> SliceOutcome:
        settings = self._settings
        for raw, end_offset in iter_lines(stream, self.offset, self._read_chunk_size):
            if self._budget_exhausted(started):
                return SliceOutcome.CUTOFF
            if self._quotas.all_exhausted():
                return SliceOutcome.QUOTA_EXHAUSTED

            self._process_line(raw.decode(settings.source_encoding, errors="replace").strip())
            self.offset = end_offset
            self.lines_in_slice += 1
            self.total_lines += 1

            if self.lines_in_slice % settings.cancel_check_interval == 0:
                if self._job_store.get_status(self._job.job_id) == JobStatus.CANCELLED:
                    return SliceOutcome.CANCELLED
                self.progress = max(self.progress, estimate_progress(self.offset, self._job.file_size))
                self._job_store.update_job(self._job.job_id, progress=self.progress)
            if self.lines_in_slice % settings.checkpoint_interval == 0:
                self.checkpoint()
        return SliceOutcome.END_OF_INPUT

    def _budget_exhausted(self, started: float) -> bool:
        if not self.lines_in_slice:
            return False
        if self.lines_in_slice >= self._settings.slice_line_budget:
            return True
        return self._clock() - started >= self._settings.slice_time_budget_seconds

    def _process_line(self, line: str) -> None:
        if not line:
            return
        kind = classify(line, self._job.import_scope)
        if kind is None:
            return
        tag = kind.value.lower()
        self._seen[tag] = self._seen.get(tag, 0) + 1

        result = decode(kind, line.split("|"), self._context)
        for record in result.records:
            self._emit(record)
        if result.branch is not None:
            self._apply_branch(result.branch)
        if result.counterparty is not None:
            self._queue_counterparty(result.counterparty)

    # ---- side effects ----

    def _apply_branch(self, instruction: BranchInstruction) -> None:
        document = instruction.document_number
        known = self._context.branch_by_document.get(document)
        if known is not None:
            if instruction.source is BranchSource.REGISTRY:
                self._ledger.update_branch(
                    known,
                    name=instruction.display_name,
                    establishment_code=instruction.establishment_code,
                )
            elif instruction.establishment_code:
                self._ledger.update_branch(known, establishment_code=instruction.establishment_code)
            self._context.switch_branch(document, known)
            return

        branch_id, created = self._ledger.ensure_branch(
            self._job.entity_id,
            document,
            instruction.display_name,
            instruction.establishment_code,
        )
        self._context.switch_branch(document, branch_id)
        if created:
            self._branches_created += 1
            logger.info(
                "Job %s: created branch %s for document %s (%s)",
                self._job.job_id, branch_id, document, instruction.source,
            )
        self._ensure_sentinels(branch_id)

    def _ensure_sentinels(self, branch_id: str) -> None:
        if branch_id in self._sentinels_ready:
            return
        self._sentinels_ready.add(branch_id)
        for code, name in SENTINEL_COUNTERPARTIES.items():
            self._persister.add(
                Destination.COUNTERPARTIES, Counterparty(code=code, name=name).to_row(branch_id)
            )

    def _queue_counterparty(self, counterparty: Counterparty) -> None:
        branch_id = self._context.current_branch_id
        if branch_id is None:
            logger.debug("Counterparty %s skipped: no active branch", counterparty.code)
            return
        if self._persister.add(Destination.COUNTERPARTIES, counterparty.to_row(branch_id)):
            self._persister.flush(Destination.COUNTERPARTIES)

    def _emit(self, record: LedgerRecord) -> None:
        if record.period is None:
            self._drop(record, "no fiscal period")
            return
        branch_id = record.branch_id or self._job.branch_id
        if branch_id is None:
            self._drop(record, "no active branch")
            return
        if not self._quotas.try_consume(record.family):
            return

        row = record.to_row(branch_id)
        if row.get("counterparty_code") in SENTINEL_COUNTERPARTIES:
            self._ensure_sentinels(branch_id)
        if self._persister.add(record.destination, row):
            self._persister.flush_for(record.destination)

    def _drop(self, record: LedgerRecord, reason: str) -> None:
        self._dropped += 1
        if self._dropped == 1:
            logger.warning(
                "Job %s: dropping %s record (%s): %s",
                self._job.job_id, record.family, reason, record.description,
            )

    def _result(self, outcome: SliceOutcome) -> SliceResult:
        return SliceResult(
            outcome=outcome,
            bytes_processed=self.offset,
            lines_in_slice=self.lines_in_slice,
            total_lines_processed=self.total_lines,
            progress=self.progress,
            counts=self.counts(),
        )
