import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .raw_job import RawJob


logger = logging.getLogger(__name__)


@dataclass
class JobPayload:
    job: str
    """Identifier of the handler registered for this job."""
    data: dict[str, Any] = field(default_factory=dict)
    """Arbitrary key-value map passed to the handler."""

    def serialize(self) -> str:
        return json.dumps({"job": self.job, "data": self.data})

    @staticmethod
    def deserialize(serialized_payload: str | None) -> "JobPayload":
        if not serialized_payload:
            return JobPayload(job="")

        try:
            decoded = json.loads(serialized_payload)
        except json.JSONDecodeError:
            logger.debug(
                f"Failed to deserialize payload using JSON: {serialized_payload}"
            )
            return JobPayload(job="")

        if not isinstance(decoded, dict):
            logger.debug(f"Payload is not a JSON object: {serialized_payload}")
            return JobPayload(job="")

        job = decoded.get("job")
        data = decoded.get("data")
        return JobPayload(
            job=job if isinstance(job, str) else "",
            data=data if isinstance(data, dict) else {},
        )


@dataclass
class Job:
    id: int
    """The identifier assigned by the database on insert.

    Identifiers grow monotonically, so ordering by ``id`` approximates
    insertion order within a queue."""
    queue: str = field(default="default")
    """The name of the queue that the job belongs to."""
    payload: JobPayload = field(default_factory=lambda: JobPayload(job=""))
    """The handler identifier and its data."""
    attempts: int = field(default=0)
    """The number of times the job has been reserved.

    Incremented atomically together with the reservation, so a job popped
    for the first time has ``attempts == 1``."""
    available_at: datetime | None = field(default=None)
    """The job will not be popped before this time (naive UTC)."""
    reserved_at: datetime | None = field(default=None)
    """When the job was reserved by a worker.

    ``None`` means the job is waiting in the queue. Any other value means
    the job is currently being processed by someone."""
    created_at: datetime | None = field(default=None)
    """When the job was pushed (naive UTC). Never changes."""

    @property
    def job_type(self) -> str:
        return self.payload.job

    @property
    def data(self) -> dict[str, Any]:
        return self.payload.data

    @property
    def reserved(self) -> bool:
        return self.reserved_at is not None

    @staticmethod
    def from_raw_job(raw_job: RawJob) -> "Job":
        return Job(
            id=raw_job.id,
            queue=raw_job.queue,
            payload=JobPayload.deserialize(raw_job.payload),
            attempts=raw_job.attempts,
            available_at=raw_job.available_at,
            reserved_at=raw_job.reserved_at,
            created_at=raw_job.created_at,
        )
