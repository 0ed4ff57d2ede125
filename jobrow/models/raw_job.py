from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import mapped_column, Mapped

from .params import PushParams
from .base_sql import BaseSQL


class RawJob(BaseSQL):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_queue_available_at", "queue", "available_at"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    queue: Mapped[str] = mapped_column(
        String, nullable=False, default="default", server_default="default"
    )
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reserved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    @staticmethod
    def from_push_params(push_params: PushParams) -> "RawJob":
        return RawJob(
            queue=push_params.queue,
            payload=push_params.serialized_payload,
            attempts=0,
            available_at=push_params.available_at,
            reserved_at=None,
            created_at=push_params.created_at,
        )
