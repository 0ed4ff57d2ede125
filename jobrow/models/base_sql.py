from sqlalchemy.orm import DeclarativeBase


class BaseSQL(DeclarativeBase):
    """Metadata shared by the jobs and failed_jobs tables."""

    pass
