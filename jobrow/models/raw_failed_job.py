from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import mapped_column, Mapped

from .base_sql import BaseSQL
from .raw_job import RawJob


class RawFailedJob(BaseSQL):
    __tablename__ = "failed_jobs"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    queue: Mapped[str] = mapped_column(String, nullable=False, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    exception: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=""
    )
    failed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    @staticmethod
    def from_raw_job(
        raw_job: RawJob, exception: str, failed_at: datetime
    ) -> "RawFailedJob":
        return RawFailedJob(
            queue=raw_job.queue,
            payload=raw_job.payload,
            exception=exception,
            failed_at=failed_at,
        )
