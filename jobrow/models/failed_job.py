from dataclasses import dataclass
from datetime import datetime

from .job import JobPayload
from .raw_failed_job import RawFailedJob


@dataclass
class FailedJob:
    id: int
    queue: str
    payload: JobPayload
    exception: str
    failed_at: datetime

    @staticmethod
    def from_raw_failed_job(raw: RawFailedJob) -> "FailedJob":
        return FailedJob(
            id=raw.id,
            queue=raw.queue,
            payload=JobPayload.deserialize(raw.payload),
            exception=raw.exception,
            failed_at=raw.failed_at,
        )
