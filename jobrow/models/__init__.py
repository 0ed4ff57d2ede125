from .base_sql import BaseSQL
from .raw_job import RawJob
from .raw_failed_job import RawFailedJob
from .job import Job, JobPayload
from .failed_job import FailedJob
from .queue_stats import QueueStats


__all__ = [
    "BaseSQL",
    "RawJob",
    "RawFailedJob",
    "Job",
    "JobPayload",
    "FailedJob",
    "QueueStats",
]
