from datetime import timedelta

import pytest

from jobrow import Queue
from .fixtures import FakeClock, clock, db_url, queue


def test_push_to_named_queue(queue: Queue):
    job_id = queue.push("BuildReport", {"day": "monday"}, "reports")

    job = queue.get(job_id)
    assert job.queue == "reports"
    assert queue.size("reports") == 1
    assert queue.size("default") == 0


def test_push_without_data(queue: Queue):
    job = queue.get(queue.push("Noop"))
    assert job.data == {}


def test_push_with_delay(queue: Queue, clock: FakeClock):
    job = queue.get(queue.push("SendEmail", {"to": "a@b.com"}, delay=60))

    assert job.available_at == clock.now + timedelta(seconds=60)
    assert job.created_at == clock.now


def test_push_with_timedelta_delay(queue: Queue, clock: FakeClock):
    job = queue.get(queue.push("SendEmail", delay=timedelta(minutes=2)))
    assert job.available_at == clock.now + timedelta(minutes=2)


def test_later(queue: Queue, clock: FakeClock):
    job_id = queue.later(30, "SendEmail", {"to": "a@b.com"}, "emails")

    job = queue.get(job_id)
    assert job.queue == "emails"
    assert job.job_type == "SendEmail"
    assert job.available_at == clock.now + timedelta(seconds=30)
    assert queue.size("emails") == 0


@pytest.mark.parametrize(
    "job_type, data, queue_name, delay",
    [
        ("", None, None, None),
        (None, None, None, None),
        ("A", ["not", "a", "mapping"], None, None),
        ("A", None, 42, None),
        ("A", None, None, -1),
        ("A", None, None, "10"),
        ("A", None, None, 1.5),
    ],
)
def test_push_validation(queue: Queue, job_type, data, queue_name, delay):
    with pytest.raises(ValueError):
        queue.push(job_type, data, queue_name, delay)

    assert queue.jobs() == []


def test_push_unserializable_data(queue: Queue):
    with pytest.raises(TypeError):
        queue.push("A", {"blob": object()})

    assert queue.jobs() == []
