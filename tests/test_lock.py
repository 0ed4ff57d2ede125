import os
import threading
import time

import pytest

from jobrow import AdvisoryLock, LockTimeout
from .fixtures import locks


def test_acquire_and_release(locks: AdvisoryLock):
    assert locks.acquire("x", timeout=1) is True
    assert locks.is_locked("x") is True
    assert locks.held() == ["x"]
    assert locks.path("x").read_text() == str(os.getpid())

    locks.release("x")
    assert locks.is_locked("x") is False
    assert locks.held() == []
    assert not locks.path("x").exists()


def test_lock_file_name_is_hashed(locks: AdvisoryLock):
    path = locks.path("reports/nightly")
    assert path.parent == locks.directory
    assert path.suffix == ".lock"
    assert len(path.stem) == 32


def test_second_acquire_times_out(locks: AdvisoryLock, tmp_path):
    other = AdvisoryLock(tmp_path / "locks", poll_interval=0.01)
    assert locks.acquire("x", timeout=1) is True

    started = time.monotonic()
    assert other.acquire("x", timeout=0.2) is False
    assert time.monotonic() - started >= 0.2

    locks.release("x")
    assert other.acquire("x", timeout=0.2) is True
    other.release("x")


def test_mutual_exclusion_between_threads(locks: AdvisoryLock, tmp_path):
    contenders = [AdvisoryLock(tmp_path / "locks", poll_interval=0.01) for _ in range(2)]
    barrier = threading.Barrier(2)
    results = {}

    def contend(index):
        barrier.wait()
        results[index] = contenders[index].acquire("x", timeout=0.3)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results.values()) == [False, True]
    for contender in contenders:
        contender.release("x")


def test_waiter_gets_lock_after_release(locks: AdvisoryLock, tmp_path):
    other = AdvisoryLock(tmp_path / "locks", poll_interval=0.01)
    assert locks.acquire("x", timeout=1)

    acquired = []
    waiter = threading.Thread(target=lambda: acquired.append(other.acquire("x", timeout=2)))
    waiter.start()
    time.sleep(0.1)
    assert acquired == []

    locks.release("x")
    waiter.join()
    assert acquired == [True]
    other.release("x")


def test_run_returns_result_and_releases(locks: AdvisoryLock):
    assert locks.run("x", lambda: locks.is_locked("x")) is True
    assert locks.is_locked("x") is False


def test_run_releases_on_exception(locks: AdvisoryLock):
    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        locks.run("x", boom)

    assert locks.is_locked("x") is False
    assert locks.held() == []


def test_run_raises_lock_timeout(locks: AdvisoryLock, tmp_path):
    other = AdvisoryLock(tmp_path / "locks", poll_interval=0.01)
    assert other.acquire("x", timeout=1)

    called = []
    with pytest.raises(LockTimeout) as exc_info:
        locks.run("x", lambda: called.append(True), timeout=0.1)

    assert called == []
    assert exc_info.value.name == "x"
    assert exc_info.value.timeout == 0.1
    other.release("x")


def test_hold_context_manager(locks: AdvisoryLock):
    with locks.hold("x", timeout=1):
        assert locks.is_locked("x") is True
    assert locks.is_locked("x") is False


def test_release_without_holding(locks: AdvisoryLock):
    locks.release("never-acquired")
    locks.release("never-acquired")
    assert locks.held() == []


def test_is_locked_without_file(locks: AdvisoryLock):
    assert locks.is_locked("nothing") is False


def test_default_directory():
    assert AdvisoryLock().directory.name == "locks"
