from collections.abc import Generator
from datetime import UTC, datetime

from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import Dialect, Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from .config import settings


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``; SQLite gets a single shared connection."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Rows are handed across threads and layers after the session closes
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=bind
    )


engine = build_engine(settings.database_url)

SessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base with proper typing."""

    pass


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Existing tables are left as they are."""
    from ledger_history import models  # noqa: F401  (registers the tables)

    Base.metadata.create_all(bind=engine)
