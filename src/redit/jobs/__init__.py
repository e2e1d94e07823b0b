"""Job submission, queueing and execution against hosted repositories."""

from .queue import JobHandler, JobQueue, JobRecord
from .runner import EditJobRunner, JobResult
from .schema import JobEvent, JobEventKind, JobSubmission, SubmissionReceipt, ValidationInputError

__all__ = [
    "EditJobRunner",
    "JobEvent",
    "JobEventKind",
    "JobHandler",
    "JobQueue",
    "JobRecord",
    "JobResult",
    "JobSubmission",
    "SubmissionReceipt",
    "ValidationInputError",
]
