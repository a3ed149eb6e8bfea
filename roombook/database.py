import logging
from datetime import datetime, timezone

from sqlalchemy import create_engine, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from .config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    # Hosted PostgreSQL often hands out postgres://, SQLAlchemy needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(database_url: str, echo: bool = False):
    """Create an engine with the SQLite thread check disabled where needed"""
    database_url = normalize_database_url(database_url)

    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """
    Stores instants as naive UTC and hands them back timezone-aware.

    SQLite drops tzinfo on the floor, so the conversion happens here rather
    than at every call site.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTCDateTime column")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create all tables in the database"""
    from . import models  # noqa: F401 - registers mappers on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ensured")
