"""
Relational storage plumbing: the user_entity table, engine construction,
transactional sessions and the startup schema bootstrap.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    inspect,
    text,
)
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger("user_service")

metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

USER_ENTITY_TABLE = "user_entity"

# User-entity associations. Rows are never deleted; removed/removed_time are
# reserved for soft deletion and every query filters on removed = false.
user_entity = Table(
    USER_ENTITY_TABLE,
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(255), nullable=False),
    Column('entity_id', String(255), nullable=False),
    Column('removed', Boolean, nullable=False, default=False, server_default=text('false')),
    Column('modified_date', Integer, nullable=False),
    Column('modified_time', DateTime(timezone=True), nullable=False),
    Column('added_time', DateTime(timezone=True), nullable=False),
    Column('removed_time', DateTime(timezone=True), nullable=True),
    # a pair is unique only among rows that are not removed
    Index(
        'uq_user_entity_active', 'user_id', 'entity_id', unique=True,
        postgresql_where=text('NOT removed'), sqlite_where=text('removed = 0'),
    ),
    Index('idx_user_entity_user_id', 'user_id'),
    Index('idx_user_entity_entity_id', 'entity_id'),
)


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    Postgres URLs get the pooled defaults above; other URLs (SQLite in tests)
    are passed through with whatever kwargs the caller provides.
    """
    if not database_url:
        raise ValueError("database_url is required")

    if database_url.startswith("postgresql"):
        kwargs.setdefault("pool_size", POOL_SIZE)
        kwargs.setdefault("max_overflow", MAX_OVERFLOW)
        kwargs.setdefault("pool_timeout", POOL_TIMEOUT)
        kwargs.setdefault("pool_recycle", POOL_RECYCLE)
        kwargs.setdefault("pool_pre_ping", True)

    return create_engine(database_url, echo=False, **kwargs)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Session committed on success and rolled back on any exception."""
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    """Create user_entity and its indexes if missing (run once at startup)."""
    metadata.create_all(bind=engine)


def drop_all_tables(engine: Engine) -> None:
    """Drop every table on `metadata`. Tests only."""
    metadata.drop_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """Return True if a trivial query succeeds against the engine."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def has_user_entity_table(engine: Engine) -> bool:
    return inspect(engine).has_table(USER_ENTITY_TABLE)
