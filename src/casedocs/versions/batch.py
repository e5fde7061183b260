"""Batch upload orchestration.

Uploads the files of one user action with bounded concurrency:
- a fixed pool of workers pulls files from a shared queue in list order
- each file reports its own progress
- each file succeeds or fails on its own; nothing is rolled back
- the job completes once every file has reached a terminal status
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from casedocs.core import get_logger, log_context
from casedocs.core.errors import InvalidStateError, ValidationError
from casedocs.core.resilience import (
    ErrorCategorizer,
    ErrorCategory,
    ErrorLogger,
    get_error_logger,
)
from casedocs.versions.config import BatchConfig
from casedocs.versions.models import Actor, DocumentSlot, DocumentVersion, FileUpload
from casedocs.versions.state_machine import VersionStateMachine

logger = get_logger(__name__)

BatchProgressCallback = Callable[[int, int], None]


class JobState(str, Enum):
    """Overall state of a batch job."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class TicketStatus(str, Enum):
    """Status of one file in a batch."""
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class BatchOutcome(str, Enum):
    """Job-level result shown to the user."""
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BatchFile:
    """A file queued for batch upload."""
    filename: str
    content: bytes = field(repr=False)
    content_type: str
    slot: Optional[DocumentSlot] = None
    notes: Optional[str] = None

    def to_upload(self) -> FileUpload:
        return FileUpload(
            filename=self.filename,
            content=self.content,
            content_type=self.content_type,
        )


@dataclass
class FileUploadTicket:
    """Progress and status of one file in a batch."""
    index: int
    file: BatchFile
    progress: int = 0
    status: TicketStatus = TicketStatus.PENDING
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TicketStatus.SUCCESS, TicketStatus.ERROR)

    def advance(self, percent: Union[int, float]) -> bool:
        """Raise progress to ``percent``; never lowers it.

        Returns:
            True if progress changed.
        """
        if self.is_terminal:
            return False
        percent = max(0, min(100, int(percent)))
        if percent <= self.progress:
            return False
        self.progress = percent
        return True


@dataclass(frozen=True)
class Fulfilled:
    """A file that was uploaded."""
    index: int
    version: DocumentVersion

    ok = True


@dataclass(frozen=True)
class Rejected:
    """A file that failed, with the reason."""
    index: int
    reason: Exception

    ok = False

    @property
    def message(self) -> str:
        return str(self.reason)

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategorizer.categorize(self.reason)


UploadResult = Union[Fulfilled, Rejected]


@dataclass
class BatchUploadReport:
    """Aggregate result of a batch, in input order.

    Counts are derived from the results on every access.
    """
    job_id: str
    results: list[UploadResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def outcome(self) -> BatchOutcome:
        if self.success_count == 0:
            return BatchOutcome.FAILED
        if self.failure_count:
            return BatchOutcome.PARTIAL
        return BatchOutcome.SUCCEEDED

    @property
    def versions(self) -> list[DocumentVersion]:
        return [r.version for r in self.results if isinstance(r, Fulfilled)]

    @property
    def failures(self) -> list[Rejected]:
        return [r for r in self.results if isinstance(r, Rejected)]

    def summary(self) -> str:
        parts = []
        if self.success_count:
            parts.append(f"{self.success_count} file(s) uploaded successfully")
        if self.failure_count:
            parts.append(f"{self.failure_count} file(s) failed to upload")
        return "; ".join(parts) or "No files uploaded"


class BatchUploadJob:
    """One user-initiated multi-file upload. Never persisted."""

    def __init__(self, slot: DocumentSlot, max_files: int, job_id: Optional[str] = None):
        self.job_id = job_id or str(uuid.uuid4())
        self.slot = slot
        self.max_files = max_files
        self.tickets: list[FileUploadTicket] = []
        self.state = JobState.IDLE
        self.discarded = False
        self.report: Optional[BatchUploadReport] = None
        self._task: Optional[asyncio.Task] = None

    def add_files(self, files: Iterable[BatchFile]) -> list[FileUploadTicket]:
        """Queue files; anything past ``max_files`` is dropped.

        Returns:
            Tickets for the files that were queued.
        """
        self._require_idle("add files to")
        room = self.max_files - len(self.tickets)
        added = []
        for batch_file in list(files)[:max(room, 0)]:
            ticket = FileUploadTicket(index=len(self.tickets), file=batch_file)
            self.tickets.append(ticket)
            added.append(ticket)
        return added

    def remove_file(self, index: int) -> None:
        """Remove a queued file; later tickets are re-indexed."""
        self._require_idle("remove files from")
        del self.tickets[index]
        for position, ticket in enumerate(self.tickets):
            ticket.index = position

    @property
    def overall_progress(self) -> float:
        if not self.tickets:
            return 0.0
        return sum(t.progress for t in self.tickets) / len(self.tickets)

    def slot_for(self, ticket: FileUploadTicket) -> DocumentSlot:
        return ticket.file.slot or self.slot

    def discard(self) -> None:
        """Stop reporting to the caller.

        In-flight uploads run to completion and anything already uploaded
        stays persisted; only callbacks stop.
        """
        self.discarded = True
        logger.info("batch_upload_discarded", job_id=self.job_id, state=self.state.value)

    def _require_idle(self, action: str) -> None:
        if self.state != JobState.IDLE:
            raise InvalidStateError(
                f"Cannot {action} a batch that is {self.state.value}",
                current_state=self.state.value,
            )


class BatchUploadOrchestrator:
    """Drives batch jobs through the version state machine."""

    def __init__(
        self,
        state_machine: VersionStateMachine,
        config: Optional[BatchConfig] = None,
        error_logger: Optional[ErrorLogger] = None,
    ):
        """Initialize the orchestrator.

        Args:
            state_machine: Performs each single-file upload.
            config: Concurrency, size and timeout limits.
            error_logger: Records per-file failures.
        """
        self.state_machine = state_machine
        self.config = config or BatchConfig()
        self.error_logger = error_logger or get_error_logger()

    def default_slot(self, case_id: str) -> DocumentSlot:
        """Slot used for bulk uploads that do not name a document type."""
        return DocumentSlot(case_id=case_id, document_type=self.config.default_document_type)

    def create_job(
        self,
        slot: DocumentSlot,
        files: Iterable[BatchFile] = (),
    ) -> BatchUploadJob:
        """Create an idle job, optionally with an initial file selection."""
        job = BatchUploadJob(slot, max_files=self.config.max_files)
        job.add_files(files)
        return job

    async def upload(
        self,
        slot: DocumentSlot,
        files: Iterable[BatchFile],
        uploader: Actor,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> BatchUploadReport:
        """Create a job for ``files`` and run it."""
        return await self.run(self.create_job(slot, files), uploader, on_progress)

    async def run(
        self,
        job: BatchUploadJob,
        uploader: Actor,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> BatchUploadReport:
        """Run a job to completion.

        Cancelling the awaiting coroutine does not cancel the uploads; they
        keep running and the job still completes.

        Args:
            job: Idle job with at least one file.
            uploader: Who is uploading.
            on_progress: Called with (file index, percent).

        Returns:
            Report with one result per file, in input order.
        """
        job._require_idle("start")
        if not job.tickets:
            raise ValidationError("No files selected for upload", field="files")

        job.state = JobState.RUNNING
        # Task inherits the bound context
        with log_context(job_id=job.job_id, case_id=job.slot.case_id):
            job._task = asyncio.ensure_future(self._drive(job, uploader, on_progress))
        return await asyncio.shield(job._task)

    async def _drive(
        self,
        job: BatchUploadJob,
        uploader: Actor,
        on_progress: Optional[BatchProgressCallback],
    ) -> BatchUploadReport:
        queue: asyncio.Queue[FileUploadTicket] = asyncio.Queue()
        for ticket in job.tickets:
            queue.put_nowait(ticket)

        results: list[Optional[UploadResult]] = [None] * len(job.tickets)
        worker_count = min(self.config.concurrency_limit, len(job.tickets))

        logger.info(
            "batch_upload_started",
            job_id=job.job_id,
            slot=job.slot.key,
            total=len(job.tickets),
            workers=worker_count,
        )

        await asyncio.gather(*(
            self._worker(job, queue, results, uploader, on_progress)
            for _ in range(worker_count)
        ))

        job.state = JobState.COMPLETED
        job.report = BatchUploadReport(job_id=job.job_id, results=list(results))

        logger.info(
            "batch_upload_completed",
            job_id=job.job_id,
            total=job.report.total,
            succeeded=job.report.success_count,
            failed=job.report.failure_count,
            outcome=job.report.outcome.value,
            discarded=job.discarded,
        )
        return job.report

    async def _worker(
        self,
        job: BatchUploadJob,
        queue: "asyncio.Queue[FileUploadTicket]",
        results: list[Optional[UploadResult]],
        uploader: Actor,
        on_progress: Optional[BatchProgressCallback],
    ) -> None:
        while True:
            try:
                ticket = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[ticket.index] = await self._upload_one(job, ticket, uploader, on_progress)

    async def _upload_one(
        self,
        job: BatchUploadJob,
        ticket: FileUploadTicket,
        uploader: Actor,
        on_progress: Optional[BatchProgressCallback],
    ) -> UploadResult:
        def report(percent: int) -> None:
            if ticket.advance(percent):
                self._notify(job, ticket, on_progress)

        ticket.status = TicketStatus.UPLOADING
        try:
            version = await self.state_machine.record_upload(
                job.slot_for(ticket),
                ticket.file.to_upload(),
                uploader,
                notes=ticket.file.notes,
                on_progress=report,
                timeout=self.config.upload_timeout,
            )
        except Exception as e:
            ticket.status = TicketStatus.ERROR
            ticket.error = str(e)
            self.error_logger.log_error(
                e,
                "batch_upload",
                details={
                    "job_id": job.job_id,
                    "file_index": ticket.index,
                    "file_name": ticket.file.filename,
                },
            )
            return Rejected(index=ticket.index, reason=e)

        report(100)
        ticket.status = TicketStatus.SUCCESS
        return Fulfilled(index=ticket.index, version=version)

    @staticmethod
    def _notify(
        job: BatchUploadJob,
        ticket: FileUploadTicket,
        on_progress: Optional[BatchProgressCallback],
    ) -> None:
        if job.discarded or on_progress is None:
            return
        try:
            on_progress(ticket.index, ticket.progress)
        except Exception as e:
            logger.warning(
                "progress_callback_failed",
                job_id=job.job_id,
                file_index=ticket.index,
                error=str(e),
            )
