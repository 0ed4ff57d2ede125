from datetime import datetime, timedelta

import pytest

from jobrow import AdvisoryLock, HandlerRegistry, Queue, Storage


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'jobs.sqlite'}"


@pytest.fixture
def queue(db_url, clock):
    instance = Queue(Storage(db_url, retry_delay=0.001), clock=clock)
    instance.create_all()
    try:
        yield instance
    finally:
        instance.storage.close()


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def locks(tmp_path):
    return AdvisoryLock(tmp_path / "locks", poll_interval=0.01)
