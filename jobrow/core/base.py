from datetime import datetime
from typing import Any, Callable, TypeVar

from sqlalchemy import Delete, Select, Update, delete, select, update
from sqlalchemy.orm import aliased

from jobrow.models.raw_job import RawJob


DecoratedCallable = TypeVar("DecoratedCallable", bound=Callable[..., Any])


class StopWorker(BaseException):
    """Raise from a handler to make the worker stop after the current job.

    The job that raised it is treated as processed successfully.
    """

    pass


class BaseQueue:
    """This class exists for proper type hinting and dependency inversion."""

    DEFAULT = "default"

    @staticmethod
    def _eligible_statement(queue: str, now: datetime) -> Select:
        # Aliased so that, used inside an UPDATE of the jobs table, the
        # subquery is not correlated to the row being updated.
        eligible = aliased(RawJob, name="eligible")
        stmt = (
            select(eligible.id)
            .where(
                eligible.queue == queue,
                eligible.reserved_at.is_(None),
                eligible.available_at <= now,
            )
            .order_by(eligible.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return stmt

    @staticmethod
    def _claim_statement(queue: str, now: datetime) -> Update:
        # A single UPDATE claims the row. The reserved_at guard makes a
        # concurrent claimer that picked the same id update nothing.
        oldest_id = BaseQueue._eligible_statement(queue, now).scalar_subquery()
        stmt = (
            update(RawJob)
            .where(RawJob.id == oldest_id, RawJob.reserved_at.is_(None))
            .values(reserved_at=now, attempts=RawJob.attempts + 1)
            .returning(RawJob)
            .execution_options(synchronize_session=False)
        )
        return stmt

    @staticmethod
    def _release_statement(job_id: int, available_at: datetime) -> Update:
        stmt = (
            update(RawJob)
            .where(RawJob.id == job_id)
            .values(reserved_at=None, available_at=available_at)
            .execution_options(synchronize_session=False)
        )
        return stmt

    @staticmethod
    def _delete_statement(job_id: int) -> Delete:
        stmt = (
            delete(RawJob)
            .where(RawJob.id == job_id)
            .execution_options(synchronize_session=False)
        )
        return stmt
