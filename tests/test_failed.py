from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from jobrow import JobPayload, Queue
from jobrow.models import RawFailedJob
from .fixtures import FakeClock, clock, db_url, queue


def test_mark_failed_moves_job(queue: Queue, clock: FakeClock):
    job_id = queue.push("SendEmail", {"to": "a@b.com"}, "emails")
    job = queue.pop("emails")
    clock.advance(3)

    assert queue.mark_failed(job.id, "boom") is True

    assert queue.get(job_id) is None
    assert queue.jobs() == []

    [failed] = queue.failed()
    assert failed.queue == "emails"
    assert failed.payload == JobPayload(job="SendEmail", data={"to": "a@b.com"})
    assert failed.exception == "boom"
    assert failed.failed_at == clock.now


def test_mark_failed_missing_job(queue: Queue):
    assert queue.mark_failed(999, "boom") is False
    assert queue.failed() == []


def test_mark_failed_without_exception_text(queue: Queue):
    queue.push("A")
    job = queue.pop()

    assert queue.mark_failed(job.id) is True
    assert queue.failed()[0].exception == ""


def test_mark_failed_keeps_job_when_copy_fails(queue: Queue):
    job_id = queue.push("A")
    job = queue.pop()

    def broken_copy(raw_job, exception, failed_at):
        # NOT NULL violation on failed_jobs.payload
        return RawFailedJob(
            queue=raw_job.queue, payload=None, exception=exception, failed_at=failed_at
        )

    with patch.object(RawFailedJob, "from_raw_job", side_effect=broken_copy):
        with pytest.raises(IntegrityError):
            queue.mark_failed(job.id, "boom")

    assert queue.get(job_id) is not None
    assert queue.failed() == []


def test_failed_listing_and_clearing(queue: Queue):
    for name in ("one", "two", "one"):
        queue.push("A", queue=name)
        queue.mark_failed(queue.pop(name).id, f"failed in {name}")

    assert [f.queue for f in queue.failed()] == ["one", "two", "one"]
    assert len(queue.failed("one")) == 2

    assert queue.clear_failed("one") == 2
    assert [f.queue for f in queue.failed()] == ["two"]
    assert queue.clear_failed() == 1
    assert queue.failed() == []
