from .core import Queue, Worker, StopWorker
from .lock import AdvisoryLock, LockTimeout
from .models import Job, JobPayload, FailedJob, QueueStats
from .registry import HandlerRegistry, UnknownJobError
from .storage import Storage, StorageOperationFailed


__all__ = [
    "Queue",
    "Worker",
    "StopWorker",
    "AdvisoryLock",
    "LockTimeout",
    "Job",
    "JobPayload",
    "FailedJob",
    "QueueStats",
    "HandlerRegistry",
    "UnknownJobError",
    "Storage",
    "StorageOperationFailed",
]
