"""
In-process tracking for import jobs.

The tracker registers submissions atomically by idempotency key, runs each
job's pipeline on a worker pool, keeps the progress snapshot current and
pushes snapshots to subscribers. Job state lives in memory only and is lost
when the process restarts.
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from backoffice.domain.imports.orchestrator import (
    PHASE_DONE,
    PHASE_FAILED,
    run_import,
)
from backoffice.domain.imports.target_schemas import get_target_schema
from backoffice.domain.imports.validators import RowError
from backoffice.domain.imports.writer import IMPORT_MODES
from backoffice.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

PROGRESS_COUNTERS = (
    "rows_total",
    "rows_parsed",
    "rows_valid",
    "rows_written",
    "rows_failed",
    "duplicates_skipped",
    "write_failed",
)


class DuplicateJobIdError(ValueError):
    """Raised when a caller-supplied job id is already registered under another idempotency key."""


class UnknownJobError(KeyError):
    """Raised when a job id is not registered."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ImportRequest:
    file_reference: str
    file_name: str
    target_schema: str
    idempotency_key: str
    import_mode: str = "amend"
    job_id: Optional[str] = None
    content_type: Optional[str] = None
    to_number: Optional[str] = None


@dataclass
class ProgressSnapshot:
    phase: str = "parsing"
    rows_total: int = 0
    rows_parsed: int = 0
    rows_valid: int = 0
    rows_written: int = 0
    rows_failed: int = 0
    duplicates_skipped: int = 0
    write_failed: int = 0
    throughput_rps: float = 0.0
    eta_seconds: float = 0.0
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(asdict(self))


def compute_rates(rows_total: int, rows_parsed: int, elapsed_seconds: float) -> Tuple[float, float]:
    """
    Throughput is rows parsed per elapsed second; the ETA divides the rows
    still to parse by it. Both are zero until there is something to measure.
    """
    if elapsed_seconds <= 0 or rows_parsed <= 0:
        return 0.0, 0.0
    throughput = rows_parsed / elapsed_seconds
    eta = max(rows_total - rows_parsed, 0) / throughput if throughput > 0 else 0.0
    return round(throughput, 2), round(eta, 2)


@dataclass
class ImportJob:
    job_id: str
    request: ImportRequest
    status: str = STATUS_QUEUED
    progress: ProgressSnapshot = field(default_factory=ProgressSnapshot)
    errors: List[RowError] = field(default_factory=list)
    duplicates: Dict[str, List[int]] = field(default_factory=dict)
    rows_new: int = 0
    rows_updated: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    finished: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_errors: bool = True) -> Dict[str, Any]:
        payload = {
            "job_id": self.job_id,
            "status": self.status,
            "target_schema": self.request.target_schema,
            "import_mode": self.request.import_mode,
            "file_name": self.request.file_name,
            "idempotency_key": self.request.idempotency_key,
            "progress": self.progress.to_dict(),
            "error_count": len(self.errors),
            "rows_new": self.rows_new,
            "rows_updated": self.rows_updated,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }
        if include_errors:
            payload["errors"] = [error.to_dict() for error in list(self.errors)]
            payload["duplicates"] = {key: list(rows) for key, rows in self.duplicates.items()}
        return make_json_safe(payload)


class ProgressSubscription:
    """
    Bounded buffer of progress payloads for one subscriber.

    When the buffer is full the oldest payload is discarded. After the job's
    terminal snapshot is delivered the subscription is closed.
    """

    def __init__(self, job_id: str, maxsize: int):
        self.job_id = job_id
        self.subscription_id = uuid.uuid4().hex
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=max(maxsize, 1))
        self._condition = threading.Condition()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, payload: Dict[str, Any], final: bool = False) -> None:
        with self._condition:
            if self._closed:
                return
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append(payload)
            if final:
                self._closed = True
            self._condition.notify_all()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Next payload, or None when the timeout expires or the subscription is
        closed and drained.
        """
        with self._condition:
            if not self._buffer and not self._closed:
                self._condition.wait(timeout)
            if self._buffer:
                return self._buffer.popleft()
            return None

    def drain(self) -> List[Dict[str, Any]]:
        with self._condition:
            items = list(self._buffer)
            self._buffer.clear()
            return items


class ImportJobTracker:
    """Registers, runs and reports on import jobs."""

    def __init__(
        self,
        store,
        file_source,
        *,
        max_workers: int = 4,
        progress_every: int = 1000,
        queue_size: int = 100,
        header_scan_rows: int = 25,
        chunk_size: Optional[int] = None,
    ):
        self.store = store
        self.file_source = file_source
        self.progress_every = progress_every
        self.queue_size = queue_size
        self.header_scan_rows = header_scan_rows
        self.chunk_size = chunk_size
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-worker")
        self._lock = threading.RLock()
        self._jobs: Dict[str, ImportJob] = {}
        self._by_idempotency_key: Dict[str, str] = {}
        self._subscriptions: Dict[str, Dict[str, ProgressSubscription]] = {}

    # Registration

    def submit(self, request: ImportRequest) -> Tuple[ImportJob, bool]:
        """
        Register and dispatch an import.

        Returns ``(job, created)``. Resubmitting an idempotency key returns
        the existing job unchanged, whatever its state.

        Raises:
            UnknownTargetSchemaError: the target schema is not registered.
            DuplicateJobIdError: the supplied job id belongs to another submission.
            ValueError: unknown import mode or missing idempotency key.
        """
        get_target_schema(request.target_schema)
        if request.import_mode not in IMPORT_MODES:
            raise ValueError(f"Unknown import mode '{request.import_mode}'. Expected one of: {', '.join(IMPORT_MODES)}")
        if not request.idempotency_key:
            raise ValueError("idempotency_key is required")

        with self._lock:
            existing_id = self._by_idempotency_key.get(request.idempotency_key)
            if existing_id is not None:
                logger.info("Idempotent resubmission of %s returned job %s", request.idempotency_key, existing_id)
                return self._jobs[existing_id], False

            job_id = request.job_id or str(uuid.uuid4())
            if job_id in self._jobs:
                raise DuplicateJobIdError(f"Job id '{job_id}' is already registered")

            job = ImportJob(job_id=job_id, request=replace(request, job_id=job_id))
            job.updated_at = job.created_at
            self._jobs[job_id] = job
            self._by_idempotency_key[request.idempotency_key] = job_id

        logger.info(
            "Queued import job %s: %s -> %s (%s)",
            job_id,
            request.file_name,
            request.target_schema,
            request.import_mode,
        )
        try:
            self._executor.submit(self._run, job)
        except RuntimeError as exc:
            logger.error("Could not dispatch import job %s: %s", job_id, exc)
            self._finish(job, STATUS_FAILED, PHASE_FAILED, error_message=f"Import workers unavailable: {exc}")
        return job, True

    def get(self, job_id: str) -> Optional[ImportJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[ImportJob]:
        with self._lock:
            job_id = self._by_idempotency_key.get(idempotency_key)
            return self._jobs.get(job_id) if job_id is not None else None

    def list_jobs(self) -> List[ImportJob]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> ImportJob:
        """Block until the job is terminal or the timeout expires."""
        job = self.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        job.finished.wait(timeout)
        return job

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Publication

    def subscribe(self, job_id: str) -> ProgressSubscription:
        """
        Subscribe to progress pushes for ``job_id``.

        Only snapshots published after subscribing are delivered. Subscribing
        to a finished job yields its terminal snapshot and a closed
        subscription.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise UnknownJobError(job_id)
            subscription = ProgressSubscription(job_id, self.queue_size)
            if job.is_terminal:
                subscription.publish(job.to_dict(include_errors=False), final=True)
                return subscription
            self._subscriptions.setdefault(job_id, {})[subscription.subscription_id] = subscription
            return subscription

    def unsubscribe(self, subscription: ProgressSubscription) -> None:
        """Detach a subscription; safe to call repeatedly or for unknown jobs."""
        with self._lock:
            subscribers = self._subscriptions.get(subscription.job_id)
            if subscribers:
                subscribers.pop(subscription.subscription_id, None)
                if not subscribers:
                    self._subscriptions.pop(subscription.job_id, None)
        subscription.close()

    def _publish(self, job: ImportJob, final: bool = False) -> None:
        payload = job.to_dict(include_errors=False)
        with self._lock:
            subscribers = list(self._subscriptions.get(job.job_id, {}).values())
            if final:
                self._subscriptions.pop(job.job_id, None)
        for subscription in subscribers:
            subscription.publish(payload, final=final)

    # Progress

    def _update_progress(self, job: ImportJob, phase: Optional[str] = None, **counters: int) -> None:
        now = _utcnow()
        with self._lock:
            progress = job.progress
            if phase is not None:
                progress.phase = phase
            for name, value in counters.items():
                if name not in PROGRESS_COUNTERS:
                    raise ValueError(f"Unknown progress counter '{name}'")
                setattr(progress, name, value)
            if progress.rows_parsed > progress.rows_total:
                progress.rows_total = progress.rows_parsed
            started = progress.started_at or now
            elapsed = (now - started).total_seconds()
            progress.throughput_rps, progress.eta_seconds = compute_rates(
                progress.rows_total,
                progress.rows_parsed,
                elapsed,
            )
            progress.updated_at = now
            job.updated_at = now
        self._publish(job)

    # Execution

    def _run(self, job: ImportJob) -> None:
        request = job.request
        now = _utcnow()
        with self._lock:
            job.status = STATUS_PROCESSING
            job.started_at = now
            job.progress.started_at = now
            job.updated_at = now
        self._publish(job)

        try:
            with self.file_source.open_file(request.file_reference) as stream:
                outcome = run_import(
                    stream=stream,
                    file_name=request.file_name,
                    target_schema=request.target_schema,
                    import_mode=request.import_mode,
                    store=self.store,
                    content_type=request.content_type,
                    scope=request.to_number,
                    ledger=job.errors,
                    on_progress=lambda **changes: self._update_progress(job, **changes),
                    header_scan_rows=self.header_scan_rows,
                    progress_every=self.progress_every,
                    chunk_size=self.chunk_size,
                )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Import job %s failed", job.job_id)
            self._finish(job, STATUS_FAILED, PHASE_FAILED, error_message=str(exc))
            return

        with self._lock:
            job.rows_new = outcome.write.rows_new
            job.rows_updated = outcome.write.rows_updated
            job.duplicates = outcome.write.duplicates
        self._finish(job, STATUS_COMPLETED, PHASE_DONE)
        logger.info(
            "Import job %s completed: written=%d failed=%d duplicates=%d new=%d updated=%d",
            job.job_id,
            job.progress.rows_written,
            job.progress.rows_failed,
            job.progress.duplicates_skipped,
            job.rows_new,
            job.rows_updated,
        )

    def _finish(self, job: ImportJob, status: str, phase: str, error_message: Optional[str] = None) -> None:
        now = _utcnow()
        with self._lock:
            job.status = status
            job.progress.phase = phase
            job.error_message = error_message
            if status == STATUS_COMPLETED:
                job.progress.eta_seconds = 0.0
            job.progress.updated_at = now
            job.updated_at = now
            job.completed_at = now
        self._publish(job, final=True)
        job.finished.set()
