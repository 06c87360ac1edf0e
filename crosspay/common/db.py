"""Database bootstrap helpers shared by the payment service."""

from datetime import timezone

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from crosspay.common.config import settings


def build_engine(dsn: str, **kwargs):
    """Create an engine, relaxing SQLite's same-thread check for the threadpool."""

    if dsn.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(dsn, pool_pre_ping=True, **kwargs)


def build_session_factory(engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after the repository closes its session.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


# Single SQLAlchemy engine per process.
engine = build_engine(settings.database_dsn)
SessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always reads back as UTC.

    SQLite drops the offset on storage; values are normalized to UTC on write
    and naive values read back are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
