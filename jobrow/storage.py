import logging
import random
import time
from contextlib import contextmanager
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from jobrow.models.base_sql import BaseSQL


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGES = (
    "database is locked",
    "database table is locked",
    "busy",
)

SQLITE_PRAGMAS = {
    "busy_timeout": 30000,
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
}


class StorageOperationFailed(Exception):
    """Raised when a storage operation kept hitting a busy database."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation failed after {attempts} attempts: {last_error}"
        )


def is_retryable_error(error: BaseException) -> bool:
    if not isinstance(error, OperationalError):
        return False
    message = str(error.orig if error.orig is not None else error).lower()
    return any(retryable in message for retryable in RETRYABLE_MESSAGES)


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    for name, value in SQLITE_PRAGMAS.items():
        cursor.execute(f"PRAGMA {name} = {value}")
    cursor.close()


class Storage:
    """Synchronous access to the database holding the job tables.

    Every write the queue performs goes through ``run()``, which wraps the
    work in a single transaction and retries the whole transaction when the
    database reports it is locked or busy.

    Examples:

        SQLite database file
        >>> storage = Storage("sqlite:///jobs.sqlite")
        >>> storage.create_all()

        Existing SQLAlchemy engine
        >>> storage = Storage(engine, max_retries=10)

    Args:
        engine_or_url (Engine | str | URL): SQLAlchemy engine or database
            connection string.
        max_retries (int): Total number of attempts for an operation that
            keeps failing with a busy database. Defaults to 5.
        retry_delay (float): Delay in seconds before the first retry. Each
            subsequent retry doubles it. Defaults to 0.05.
        **kwargs: Additional keyword arguments to pass to SQLAlchemy's
            ``create_engine()`` function.
    """

    def __init__(
        self,
        engine_or_url: Engine | str | URL,
        max_retries: int = 5,
        retry_delay: float = 0.05,
        **kwargs: Any,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")

        if isinstance(engine_or_url, Engine):
            self.engine = engine_or_url
        else:
            self.engine = create_engine(engine_or_url, **kwargs)
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        if self.is_sqlite and not event.contains(
            self.engine, "connect", _set_sqlite_pragmas
        ):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def execute_with_retry(self, operation: Callable[[], T]) -> T:
        """Call ``operation`` and retry it while the database is busy.

        Delays grow exponentially from ``retry_delay`` with up to 10% of
        random jitter. Errors that are not caused by lock contention are
        raised immediately.

        Raises:
            StorageOperationFailed: The database remained busy for
                ``max_retries`` attempts.
        """
        attempts = 0
        last_error: BaseException | None = None

        while attempts < self.max_retries:
            try:
                return operation()
            except OperationalError as e:
                if not is_retryable_error(e):
                    raise
                last_error = e
                attempts += 1
                if attempts >= self.max_retries:
                    break
                delay = self.retry_delay * 2 ** (attempts - 1)
                jitter = random.uniform(0, delay * 0.1)
                logger.warning(
                    f"Database is busy (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {delay + jitter:.3f}s: {e.orig}"
                )
                time.sleep(delay + jitter)

        raise StorageOperationFailed(attempts, last_error)

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Open a session inside a transaction.

        The transaction is committed when the block exits normally and
        rolled back if it raises.
        """
        with Session(self.engine, expire_on_commit=False) as session:
            with session.begin():
                yield session

    def run(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn(session)`` in one transaction, retrying on busy errors."""

        def operation() -> T:
            with self.transaction() as session:
                return fn(session)

        return self.execute_with_retry(operation)

    def create_all(self) -> None:
        """Create the jobs and failed_jobs tables and their indexes.

        Only creates the objects if they do not exist.
        """
        self.execute_with_retry(
            lambda: BaseSQL.metadata.create_all(self.engine, checkfirst=True)
        )

    def drop_all(self) -> None:
        """Drop the jobs and failed_jobs tables.

        Only drops the objects if they exist.
        """
        self.execute_with_retry(
            lambda: BaseSQL.metadata.drop_all(self.engine, checkfirst=True)
        )

    def checkpoint(self) -> None:
        """Fold the SQLite write-ahead log back into the database file."""
        if not self.is_sqlite:
            return
        with self.engine.connect() as connection:
            connection.exec_driver_sql("PRAGMA wal_checkpoint(TRUNCATE)")

    def optimize(self) -> None:
        """Run SQLite maintenance: optimize, checkpoint, vacuum and analyze."""
        if not self.is_sqlite:
            return
        with self.engine.connect() as connection:
            connection = connection.execution_options(
                isolation_level="AUTOCOMMIT"
            )
            connection.execute(text("PRAGMA optimize"))
            connection.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
            connection.execute(text("VACUUM"))
            connection.execute(text("ANALYZE"))

    def close(self) -> None:
        """Checkpoint the database and release all pooled connections."""
        try:
            self.checkpoint()
        except OperationalError as e:
            logger.debug(f"Checkpoint on close failed: {e}")
        self.engine.dispose()
