from collections.abc import Mapping
from datetime import datetime, timezone, timedelta
from typing import Any, Callable

from jobrow.core.base import BaseQueue
from jobrow.models.job import JobPayload
from jobrow.models.params import PushParams, PopParams


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, truncated to whole seconds.

    This is the representation stored in the datetime columns.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def validate_queue_name(queue: str) -> None:
    if not queue or not isinstance(queue, str):
        raise ValueError("Queue name must be a non-empty string")


def validate_job_id(job_id: int) -> None:
    if isinstance(job_id, bool) or not isinstance(job_id, int):
        raise ValueError("Job ID must be an integer")


def validate_job_type(job_type: str) -> None:
    if not job_type or not isinstance(job_type, str):
        raise ValueError("Job type must be a non-empty string")


def parse_delay(delay: int | timedelta | None) -> timedelta:
    if delay is None:
        return timedelta(0)
    if isinstance(delay, timedelta):
        parsed = delay
    elif isinstance(delay, int) and not isinstance(delay, bool):
        parsed = timedelta(seconds=delay)
    else:
        raise ValueError("Delay must be an integer number of seconds or a timedelta")

    if parsed < timedelta(0):
        raise ValueError("Delay cannot be negative")
    return parsed


def parse_push_params(
    job_type: str,
    data: Mapping[str, Any] | None,
    queue: str | None,
    delay: int | timedelta | None,
    now: datetime,
) -> PushParams:
    validate_job_type(job_type)
    queue = queue or BaseQueue.DEFAULT
    validate_queue_name(queue)

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError("Job data must be a mapping")

    payload = JobPayload(job=job_type, data=dict(data))

    return PushParams(
        queue=queue,
        serialized_payload=payload.serialize(),
        available_at=now + parse_delay(delay),
        created_at=now,
    )


def parse_pop_params(queue: str | None, now: datetime) -> PopParams:
    queue = queue or BaseQueue.DEFAULT
    validate_queue_name(queue)
    return PopParams(queue=queue, now=now)
