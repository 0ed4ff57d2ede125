import fcntl
import hashlib
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Callable, Generator, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockTimeout(Exception):
    """Raised when a named lock could not be acquired in time."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"Could not acquire lock {name!r} within {timeout} seconds")


class AdvisoryLock:
    """Named locks shared by processes on the same host.

    Each name maps to a file in ``directory`` locked with ``flock()``. The
    lock is advisory: it only excludes other callers that use the same
    directory through this class.

    Releasing deletes the lock file. A process that opened the file before
    the deletion may still lock the old inode while a newcomer creates and
    locks a new one, so two holders can briefly coexist under heavy churn.

    Examples:

        Run a function while holding a lock
        >>> locks = AdvisoryLock("/var/run/myapp/locks")
        >>> locks.run("nightly-report", build_report, timeout=30)

        Hold a lock for a block of code
        >>> with locks.hold("nightly-report"):
        ...     build_report()

    Args:
        directory (str | Path | None): Where the lock files live. Defaults
            to ``locks`` in the system temporary directory. Created if it
            does not exist.
        poll_interval (float): Seconds between attempts while waiting for
            a lock. Defaults to 0.05.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        poll_interval: float = 0.05,
    ) -> None:
        if directory is None:
            directory = Path(tempfile.gettempdir()) / "locks"
        self.directory = Path(directory)
        self.directory.mkdir(mode=0o755, parents=True, exist_ok=True)
        self.poll_interval = poll_interval
        self._handles: dict[str, IO[Any]] = {}
        self._handles_lock = threading.Lock()

    def path(self, name: str) -> Path:
        """Location of the lock file backing ``name``."""
        digest = hashlib.md5(name.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.lock"

    def acquire(self, name: str, timeout: float = 10) -> bool:
        """Try to take the lock until ``timeout`` seconds have passed.

        On success the holder's process id is written into the lock file.

        Returns:
            bool: True if the lock was acquired, False on timeout.
        """
        path = self.path(name)
        deadline = time.monotonic() + timeout

        while True:
            fp = open(path, "a+")
            try:
                fcntl.flock(fp, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                fp.close()
            except OSError:
                fp.close()
                raise
            else:
                fp.seek(0)
                fp.truncate()
                fp.write(str(os.getpid()))
                fp.flush()
                with self._handles_lock:
                    self._handles[name] = fp
                logger.debug(f"Acquired lock {name}")
                return True

            if time.monotonic() >= deadline:
                logger.debug(f"Timed out waiting for lock {name}")
                return False

            time.sleep(self.poll_interval)

    def release(self, name: str) -> None:
        """Release the lock and delete its file.

        Safe to call when the lock is not held by this instance.
        """
        with self._handles_lock:
            fp = self._handles.pop(name, None)

        if fp is not None:
            fcntl.flock(fp, fcntl.LOCK_UN)
            fp.close()
            logger.debug(f"Released lock {name}")

        try:
            self.path(name).unlink()
        except FileNotFoundError:
            pass

    def run(self, name: str, fn: Callable[[], T], timeout: float = 10) -> T:
        """Run ``fn`` while holding the lock and return its result.

        The lock is released even if ``fn`` raises.

        Raises:
            LockTimeout: The lock could not be acquired within ``timeout``.
        """
        with self.hold(name, timeout):
            return fn()

    @contextmanager
    def hold(self, name: str, timeout: float = 10) -> Generator[None, None, None]:
        """Context manager version of ``run()``."""
        if not self.acquire(name, timeout):
            raise LockTimeout(name, timeout)
        try:
            yield
        finally:
            self.release(name)

    def is_locked(self, name: str) -> bool:
        """Probe whether someone currently holds the lock.

        The answer may be stale by the time it is returned.
        """
        path = self.path(name)
        try:
            fp = open(path, "r")
        except FileNotFoundError:
            return False

        with fp:
            try:
                fcntl.flock(fp, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(fp, fcntl.LOCK_UN)
            return False

    def held(self) -> list[str]:
        """Names of the locks held by this instance."""
        with self._handles_lock:
            return sorted(self._handles)
