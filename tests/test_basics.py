from datetime import datetime, timezone

import pytest

from jobrow import JobPayload, Queue
from jobrow.models import RawJob
from .fixtures import FakeClock, clock, db_url, queue


def test_job_pushed(queue: Queue, clock: FakeClock):
    job_id = queue.push("SendEmail", {"to": "a@b.com"})

    job = queue.get(job_id)
    assert job.id == job_id
    assert job.queue == "default"
    assert job.payload == JobPayload(job="SendEmail", data={"to": "a@b.com"})
    assert job.job_type == "SendEmail"
    assert job.data == {"to": "a@b.com"}
    assert job.attempts == 0
    assert job.available_at == clock.now
    assert job.created_at == clock.now
    assert job.reserved_at is None
    assert not job.reserved


def test_push_pop_delete_lifecycle(queue: Queue):
    job_id = queue.push("SendEmail", {"to": "a@b.com"})
    assert queue.size("default") == 1

    job = queue.pop("default")
    assert job.id == job_id
    assert job.attempts == 1
    assert job.data == {"to": "a@b.com"}
    assert queue.size("default") == 0

    assert queue.delete_job(job.id) is True
    assert queue.size("default") == 0
    assert queue.get(job_id) is None


def test_get_nonexistent_job(queue: Queue):
    assert queue.get(12345) is None


def test_ids_increase(queue: Queue):
    ids = [queue.push("Noop") for _ in range(5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_payload_stored_as_json(queue: Queue):
    job_id = queue.push("SendEmail", {"to": "a@b.com", "tags": [1, 2]})

    def raw_payload(session):
        return session.get(RawJob, job_id).payload

    assert queue.storage.run(raw_payload) == (
        '{"job": "SendEmail", "data": {"to": "a@b.com", "tags": [1, 2]}}'
    )


def test_malformed_payload_is_tolerated():
    assert JobPayload.deserialize("not json") == JobPayload(job="")
    assert JobPayload.deserialize("[1, 2]") == JobPayload(job="")
    assert JobPayload.deserialize(None) == JobPayload(job="")
    assert JobPayload.deserialize('{"job": "A"}') == JobPayload(job="A", data={})


def test_size_and_clear_are_per_queue(queue: Queue):
    queue.push("A", queue="default")
    queue.push("B", queue="default")
    queue.push("C", queue="other")

    assert queue.size() == 2
    assert queue.size("other") == 1

    assert queue.clear("default") == 2
    assert queue.size() == 0
    assert queue.size("other") == 1


def test_clear_removes_reserved_jobs(queue: Queue):
    queue.push("A")
    queue.push("B")
    assert queue.pop() is not None

    assert queue.clear() == 2
    assert queue.jobs() == []


def test_jobs_and_queues(queue: Queue):
    queue.push("A", queue="emails")
    queue.push("B", queue="reports")
    queue.push("C", queue="emails")

    assert queue.queues() == ["emails", "reports"]
    assert [j.job_type for j in queue.jobs()] == ["A", "B", "C"]
    assert [j.job_type for j in queue.jobs("emails")] == ["A", "C"]
    assert [j.job_type for j in queue.jobs("emails", "reports")] == ["A", "B", "C"]


def test_stats(queue: Queue, clock: FakeClock):
    queue.push("A")
    queue.push("B")
    queue.push("C", delay=60)
    queue.push("D", queue="other")
    queue.pop()

    stats = queue.stats()
    assert stats["default"].total == 3
    assert stats["default"].ready == 1
    assert stats["default"].delayed == 1
    assert stats["default"].reserved == 1
    assert stats["other"].total == 1


def test_stats_rejects_invalid_queue_name(queue: Queue):
    with pytest.raises(ValueError):
        queue.stats("default", "")
    assert stats["other"].ready == 1

    assert list(queue.stats("other")) == ["other"]


def test_default_clock_truncates_to_seconds(db_url):
    queue = Queue(db_url)
    queue.create_all()

    job_id = queue.push("A")
    job = queue.get(job_id)
    assert job.created_at.microsecond == 0
    assert job.created_at.tzinfo is None
    assert job.created_at <= datetime.now(timezone.utc).replace(tzinfo=None)
    queue.storage.close()
