"""In-process job queue with a bounded worker pool and per-job retries.

Jobs run on a :class:`~concurrent.futures.ThreadPoolExecutor` sized by
``queue.concurrency``. A failed attempt is retried with exponential backoff
(``backoff_seconds * 2 ** (attempt - 1)``) until ``queue.max_attempts`` is
reached; each attempt calls the handler afresh, so the runner forks, clones
and edits from scratch.

Finished jobs stay queryable for ``queue.retention_seconds``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from ..config import QueueSettings
from .runner import JobResult
from .schema import JobEvent, JobEventKind, JobSubmission, SubmissionReceipt

LOGGER = logging.getLogger(__name__)

JobHandler = Callable[[JobSubmission], JobResult]


@dataclass(slots=True)
class JobRecord:
    """Book-keeping for one submitted job."""

    job_id: str
    submission: JobSubmission
    status: JobEventKind = JobEventKind.PENDING
    attempts: int = 0
    result: Optional[JobResult] = None
    reason: Optional[str] = None
    finished_at: Optional[float] = None
    done: threading.Event = field(default_factory=threading.Event)
    future: Optional[Future] = None

    def event(self) -> JobEvent:
        return JobEvent(
            kind=self.status,
            job_id=self.job_id,
            attempt=self.attempts,
            pr_url=self.result.pr_url if self.result else None,
            reason=self.reason,
        )


class JobQueue:
    """Accept submissions and run them on a bounded worker pool."""

    def __init__(
        self,
        handler: JobHandler,
        *,
        settings: QueueSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handler = handler
        self._settings = settings or QueueSettings()
        self._sleep = sleep
        self._clock = clock
        self._records: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.concurrency,
            thread_name_prefix="redit-job",
        )

    def __enter__(self) -> "JobQueue":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def submit(self, payload: JobSubmission | Mapping[str, Any]) -> SubmissionReceipt:
        """Validate and enqueue a submission.

        Raises :class:`ValidationInputError` when the payload is invalid.
        """
        submission = payload if isinstance(payload, JobSubmission) else JobSubmission.parse(dict(payload))
        record = JobRecord(job_id=uuid.uuid4().hex, submission=submission)
        with self._lock:
            self._evict_finished()
            self._records[record.job_id] = record
        record.future = self._executor.submit(self._execute, record)
        LOGGER.info("Queued job %s for %s", record.job_id, submission.repository_url)
        return SubmissionReceipt(job_id=record.job_id)

    def status(self, job_id: str) -> JobEvent:
        """Return the current state of ``job_id``."""
        record = self._get(job_id)
        if record is None:
            return JobEvent(kind=JobEventKind.NOT_FOUND, job_id=job_id)
        return self._snapshot(record)

    def events(self, job_id: str, *, keepalive: float | None = None) -> Iterator[JobEvent]:
        """Yield progress events until the job reaches a terminal state.

        While the job is pending a ``ping`` event is emitted every
        ``keepalive`` seconds so long-lived consumers can keep their
        connection open.
        """
        record = self._get(job_id)
        if record is None:
            yield JobEvent(kind=JobEventKind.NOT_FOUND, job_id=job_id)
            return

        interval = keepalive if keepalive is not None else self._settings.keepalive_seconds
        yield self._snapshot(record)
        while not record.done.wait(timeout=interval):
            yield JobEvent(kind=JobEventKind.PING, job_id=job_id, attempt=record.attempts)
        yield self._snapshot(record)

    def wait(self, job_id: str, timeout: float | None = None) -> JobEvent:
        """Block until ``job_id`` finishes (or ``timeout`` elapses)."""
        record = self._get(job_id)
        if record is None:
            return JobEvent(kind=JobEventKind.NOT_FOUND, job_id=job_id)
        record.done.wait(timeout=timeout)
        return self._snapshot(record)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt``."""
        return self._settings.backoff_seconds * (2 ** (attempt - 1))

    def _get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            self._evict_finished()
            return self._records.get(job_id)

    def _snapshot(self, record: JobRecord) -> JobEvent:
        with self._lock:
            return record.event()

    def _evict_finished(self) -> None:
        """Forget jobs that finished more than ``retention_seconds`` ago; caller holds the lock."""
        cutoff = self._clock() - self._settings.retention_seconds
        expired = [
            job_id
            for job_id, record in self._records.items()
            if record.finished_at is not None and record.finished_at <= cutoff
        ]
        for job_id in expired:
            del self._records[job_id]
        if expired:
            LOGGER.debug("Evicted %d finished job(s)", len(expired))

    def _execute(self, record: JobRecord) -> None:
        max_attempts = self._settings.max_attempts
        try:
            for attempt in range(1, max_attempts + 1):
                with self._lock:
                    record.attempts = attempt
                LOGGER.info("Processing job %s (attempt %d/%d)", record.job_id, attempt, max_attempts)
                try:
                    result = self._handler(record.submission)
                except Exception as error:
                    reason = str(error) or type(error).__name__
                    LOGGER.warning("Job %s attempt %d failed: %s", record.job_id, attempt, reason)
                    with self._lock:
                        record.reason = reason
                    if attempt < max_attempts:
                        self._sleep(self.backoff_delay(attempt))
                    continue

                with self._lock:
                    record.result = result
                    record.reason = result.reason or None
                    record.status = JobEventKind.COMPLETED
                LOGGER.info("Job %s completed: %s", record.job_id, result.pr_url or "no pull request")
                return

            with self._lock:
                record.status = JobEventKind.FAILED
            LOGGER.error("Job %s failed after %d attempt(s): %s", record.job_id, max_attempts, record.reason)
        finally:
            with self._lock:
                record.finished_at = self._clock()
            record.done.set()


__all__ = ["JobHandler", "JobQueue", "JobRecord"]
