import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Engine, case, delete, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import func
from sqlalchemy.engine.url import URL

from jobrow.core.base import BaseQueue
from jobrow.core import common
from jobrow.models.failed_job import FailedJob
from jobrow.models.job import Job
from jobrow.models.queue_stats import QueueStats
from jobrow.models.raw_failed_job import RawFailedJob
from jobrow.models.raw_job import RawJob
from jobrow.storage import Storage


logger = logging.getLogger(__name__)


class Queue(BaseQueue):
    """Durable job queue stored in a relational table.

    Jobs are claimed in ascending ``id`` order among those whose
    ``available_at`` has passed. A claimed (reserved) job stays in the table
    until it is deleted, released back to the queue, or moved to the
    failed jobs table. The queue keeps no state in memory: every operation
    is a short transaction against the database.

    Examples:

        Initialize with a SQLite database file
        >>> queue = Queue("sqlite:///jobs.sqlite")

        Create the tables or make sure they exist
        >>> queue.create_all()

        Push a job for immediate processing and another one in a minute
        >>> queue.push("SendEmail", {"to": "a@b.com"})
        >>> queue.later(60, "SendEmail", {"to": "c@d.com"})

        Claim and acknowledge jobs manually
        >>> job = queue.pop()
        >>> if job:
        ...     send_email(**job.data)
        ...     queue.delete_job(job.id)

        Or let a ``Worker`` do it
        >>> Worker(queue, registry).run()

    Args:
        storage_or_url (Storage | Engine | str | URL): Storage backend,
            SQLAlchemy engine or database connection string.
        clock (Callable[[], datetime] | None): Source of the current time
            as a naive UTC datetime. Defaults to the wall clock truncated
            to whole seconds.
    """

    def __init__(
        self,
        storage_or_url: Storage | Engine | str | URL,
        clock: common.Clock | None = None,
    ) -> None:
        if isinstance(storage_or_url, Storage):
            self.storage = storage_or_url
        else:
            self.storage = Storage(storage_or_url)
        self.clock = clock or common.utcnow

    def push(
        self,
        job_type: str,
        data: Mapping[str, Any] | None = None,
        queue: str | None = None,
        delay: int | timedelta | None = None,
    ) -> int:
        """Push a job to the queue.

        Examples:

            Push a job to the "default" queue for immediate processing
            >>> queue.push("SendEmail", {"to": "a@b.com"})

            Push a job to the "reports" queue, runnable in 5 minutes
            >>> queue.push("BuildReport", {"day": "monday"}, "reports", 300)

        Args:
            job_type (str): Identifier of the handler that processes the job.
            data (Mapping | None): JSON-serializable data passed to the
                handler. Defaults to an empty dict.
            queue (str | None): Name of the queue. Defaults to "default".
            delay (int | timedelta | None): Do not hand the job out before
                this many seconds have passed. Defaults to 0.

        Returns:
            int: Identifier of the inserted job.
        """
        p = common.parse_push_params(job_type, data, queue, delay, self.clock())

        def insert(session: Session) -> int:
            raw_job = RawJob.from_push_params(p)
            session.add(raw_job)
            session.flush()
            return raw_job.id

        job_id = self.storage.run(insert)
        logger.debug(f"Pushed job {job_id} ({job_type}) to queue {p.queue}")
        return job_id

    def later(
        self,
        delay: int | timedelta,
        job_type: str,
        data: Mapping[str, Any] | None = None,
        queue: str | None = None,
    ) -> int:
        """Push a job that becomes available after ``delay`` seconds."""
        return self.push(job_type, data, queue, delay)

    def pop(self, queue: str | None = None) -> Job | None:
        """Reserve the oldest available job in the queue.

        The claim is a single ``UPDATE ... RETURNING`` statement, so two
        workers popping at the same time never receive the same job. The
        returned job already reflects the reservation: ``reserved_at`` is
        set and ``attempts`` is incremented.

        This is a low level API. The caller becomes responsible for calling
        ``delete_job()``, ``release()`` or ``mark_failed()`` afterwards.

        Args:
            queue (str | None): Name of the queue. Defaults to "default".

        Returns:
            (Job | None): The reserved job or None if no job is available.
        """
        p = common.parse_pop_params(queue, self.clock())

        def claim(session: Session) -> Job | None:
            stmt = self._claim_statement(p.queue, p.now)
            raw_job = session.execute(stmt).scalars().first()
            if not raw_job:
                return None
            return Job.from_raw_job(raw_job)

        job = self.storage.run(claim)
        if job is None:
            logger.debug(f"No job available in queue {p.queue}")
        else:
            logger.debug(
                f"Reserved job {job.id} from queue {p.queue} (attempt {job.attempts})"
            )
        return job

    def delete_job(self, job_id: int) -> bool:
        """Delete a job, typically after it was processed successfully.

        Args:
            job_id (int): Job ID.

        Returns:
            bool: True if the job existed.
        """
        common.validate_job_id(job_id)
        rowcount = self.storage.run(
            lambda session: session.execute(self._delete_statement(job_id)).rowcount
        )
        return rowcount == 1

    def release(self, job_id: int, delay: int | timedelta | None = None) -> bool:
        """Put a reserved job back in the queue.

        Clears the reservation and makes the job available again after
        ``delay`` seconds. The ``attempts`` counter is left untouched.

        Args:
            job_id (int): Job ID.
            delay (int | timedelta | None): Seconds to wait before the job
                can be popped again. Defaults to 0.

        Returns:
            bool: True if the job existed.
        """
        common.validate_job_id(job_id)
        available_at = self.clock() + common.parse_delay(delay)
        rowcount = self.storage.run(
            lambda session: session.execute(
                self._release_statement(job_id, available_at)
            ).rowcount
        )
        if rowcount == 1:
            logger.debug(f"Released job {job_id} until {available_at}")
        return rowcount == 1

    def mark_failed(self, job_id: int, exception: str = "") -> bool:
        """Move a job to the failed jobs table.

        The copy into ``failed_jobs`` and the removal from ``jobs`` happen in
        the same transaction, with the copy first. If the copy fails, the
        job stays where it was.

        Args:
            job_id (int): Job ID.
            exception (str): Error text to store with the failed job.

        Returns:
            bool: True if the job existed and was moved.
        """
        common.validate_job_id(job_id)
        failed_at = self.clock()

        def move(session: Session) -> bool:
            raw_job = session.get(RawJob, job_id)
            if raw_job is None:
                return False
            session.add(
                RawFailedJob.from_raw_job(raw_job, exception or "", failed_at)
            )
            session.flush()
            session.execute(self._delete_statement(job_id))
            return True

        moved = self.storage.run(move)
        if moved:
            logger.debug(f"Moved job {job_id} to failed jobs")
        return moved

    def size(self, queue: str | None = None) -> int:
        """Count jobs that could be popped right now.

        Reserved jobs and jobs whose ``available_at`` is still in the
        future are not counted.

        Args:
            queue (str | None): Name of the queue. Defaults to "default".
        """
        p = common.parse_pop_params(queue, self.clock())
        stmt = select(func.count(RawJob.id)).where(
            RawJob.queue == p.queue,
            RawJob.reserved_at.is_(None),
            RawJob.available_at <= p.now,
        )
        return self.storage.run(lambda session: session.execute(stmt).scalar())

    def clear(self, queue: str | None = None) -> int:
        """Delete every job in the queue, reserved or not.

        Args:
            queue (str | None): Name of the queue. Defaults to "default".

        Returns:
            int: Number of jobs deleted.
        """
        queue = queue or self.DEFAULT
        common.validate_queue_name(queue)
        stmt = delete(RawJob).where(RawJob.queue == queue)
        rowcount = self.storage.run(
            lambda session: session.execute(stmt).rowcount
        )
        logger.debug(f"Cleared {rowcount} jobs from queue {queue}")
        return rowcount

    def reclaim(self, older_than: int | timedelta, queue: str | None = None) -> int:
        """Return stale reservations to the queue.

        A job stays reserved forever if the worker processing it dies. This
        clears ``reserved_at`` on jobs reserved longer than ``older_than``
        seconds ago so they can be popped again. Their ``attempts`` counter
        is kept, so a job that keeps crashing its worker still ends up in
        the failed jobs table.

        Args:
            older_than (int | timedelta): Reservation age in seconds.
            queue (str | None): Name of the queue. Defaults to all queues.

        Returns:
            int: Number of jobs returned to the queue.
        """
        if queue is not None:
            common.validate_queue_name(queue)
        now = self.clock()
        cutoff = now - common.parse_delay(older_than)

        where_clause = (
            RawJob.reserved_at.is_not(None),
            RawJob.reserved_at <= cutoff,
        )
        if queue:
            where_clause = (RawJob.queue == queue,) + where_clause

        stmt = (
            update(RawJob)
            .where(*where_clause)
            .values(reserved_at=None, available_at=now)
            .execution_options(synchronize_session=False)
        )
        rowcount = self.storage.run(
            lambda session: session.execute(stmt).rowcount
        )
        if rowcount:
            logger.info(f"Reclaimed {rowcount} stale reservations")
        return rowcount

    def get(self, job_id: int) -> Job | None:
        """Get a job by ID.

        Args:
            job_id (int): Job ID.

        Returns:
            Job | None: The job or None if not found.
        """
        common.validate_job_id(job_id)

        def fetch(session: Session) -> Job | None:
            raw_job = session.get(RawJob, job_id)
            if not raw_job:
                return None
            return Job.from_raw_job(raw_job)

        return self.storage.run(fetch)

    def jobs(self, *queues: str) -> list[Job]:
        """List jobs from oldest to newest.

        Args:
            queues (str): One or more queue names. Defaults to all queues.
        """
        for queue in queues:
            common.validate_queue_name(queue)

        stmt = select(RawJob)
        if queues:
            if len(queues) == 1:
                stmt = stmt.where(RawJob.queue == queues[0])
            else:
                stmt = stmt.where(RawJob.queue.in_(queues))
        stmt = stmt.order_by(RawJob.id)

        return self.storage.run(
            lambda session: [
                Job.from_raw_job(raw_job) for raw_job in session.scalars(stmt)
            ]
        )

    def queues(self) -> list[str]:
        """List the names of all queues that have jobs."""
        stmt = select(RawJob.queue).group_by(RawJob.queue).order_by(RawJob.queue)
        return self.storage.run(lambda session: list(session.scalars(stmt)))

    def stats(self, *queues: str) -> dict[str, QueueStats]:
        """Compute stats for queues.

        Args:
            queues (str): One or more queue names. Defaults to all queues.

        Returns:
            dict[str, QueueStats]: All queues and their statistics.
        """
        for queue in queues:
            common.validate_queue_name(queue)

        now = self.clock()
        waiting = RawJob.reserved_at.is_(None)
        stmt = select(
            RawJob.queue,
            func.count(1),
            func.sum(case((waiting & (RawJob.available_at <= now), 1), else_=0)),
            func.sum(case((waiting & (RawJob.available_at > now), 1), else_=0)),
            func.sum(case((RawJob.reserved_at.is_not(None), 1), else_=0)),
        )
        if queues:
            stmt = stmt.where(RawJob.queue.in_(queues))
        stmt = stmt.group_by(RawJob.queue)

        def compute(session: Session) -> dict[str, QueueStats]:
            stats: dict[str, QueueStats] = {}
            for row in session.execute(stmt):
                queue_stats = QueueStats.from_row(tuple(row))
                stats[queue_stats.name] = queue_stats
            return stats

        return self.storage.run(compute)

    def failed(self, queue: str | None = None) -> list[FailedJob]:
        """List failed jobs from newest to oldest.

        Args:
            queue (str | None): Name of the queue. Defaults to all queues.
        """
        stmt = select(RawFailedJob)
        if queue is not None:
            common.validate_queue_name(queue)
            stmt = stmt.where(RawFailedJob.queue == queue)
        stmt = stmt.order_by(RawFailedJob.id.desc())

        return self.storage.run(
            lambda session: [
                FailedJob.from_raw_failed_job(raw)
                for raw in session.scalars(stmt)
            ]
        )

    def clear_failed(self, queue: str | None = None) -> int:
        """Delete failed jobs.

        Args:
            queue (str | None): Name of the queue. Defaults to all queues.

        Returns:
            int: Number of failed jobs deleted.
        """
        stmt = delete(RawFailedJob)
        if queue is not None:
            common.validate_queue_name(queue)
            stmt = stmt.where(RawFailedJob.queue == queue)
        rowcount = self.storage.run(
            lambda session: session.execute(stmt).rowcount
        )
        return rowcount

    def create_all(self) -> None:
        """Create the jobs and failed_jobs tables if they do not exist."""
        self.storage.create_all()

    def drop_all(self) -> None:
        """Drop the jobs and failed_jobs tables if they exist."""
        self.storage.drop_all()
