"""
user_service/features/user_entities/postgres.py

Relational storer over the user_entity table (SQLAlchemy Core).

Maintains the same contract as MemoryStorer:
- existence check + insert in one transaction
- unique index on (user_id, entity_id) over non-removed rows as the final
  arbiter for racing adds
- insertion-ordered reads
- per-operation statement timeouts on PostgreSQL
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import Engine, and_, func, insert, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from user_service.core.database import create_db_engine, session_scope, user_entity
from user_service.core.errors import AssociationExistsError, ConfigurationError, StorageTimeoutError
from user_service.features.user_entities.storer import (
    StorageParameters,
    StorageType,
    new_user_entity,
    require_entity_id,
    require_user_id,
)

logger = logging.getLogger("user_service.storage.postgres")

# SQLSTATE raised by Postgres when statement_timeout cancels a query
QUERY_CANCELED = "57014"


def _is_statement_timeout(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == QUERY_CANCELED


class PostgresStorer:
    """Storer backed by a relational database table."""

    def __init__(self, engine: Engine, params: StorageParameters):
        self.engine = engine
        self.params = params
        self._closed = False

    @classmethod
    def from_url(cls, db_url: Optional[str], params: StorageParameters, **engine_kwargs) -> "PostgresStorer":
        """
        Create a storer for the database at db_url.

        Raises:
            ConfigurationError: empty URL or params not configured for postgres
        """
        if not db_url:
            raise ConfigurationError("empty DB URL")
        if params.type != StorageType.POSTGRES:
            raise ConfigurationError("unexpected storage type")
        return cls(create_db_engine(db_url, **engine_kwargs), params)

    def add_entity(self, user_id: str, entity_id: str) -> None:
        require_user_id(user_id)
        require_entity_id(entity_id)

        ue = new_user_entity(user_id, entity_id)
        logger.debug("adding entity", extra={"user_id": user_id, "entity_id": entity_id})
        try:
            with self._session(self.params.add_query_timeout) as session:
                existing = session.execute(
                    select(func.count()).select_from(user_entity).where(
                        and_(
                            user_entity.c.user_id == user_id,
                            user_entity.c.entity_id == entity_id,
                            user_entity.c.removed.is_(False),
                        )
                    )
                ).scalar_one()
                if existing > 0:
                    raise AssociationExistsError()

                session.execute(insert(user_entity).values(**ue.model_dump()))
        except IntegrityError:
            # A concurrent add of the same pair won the race
            raise AssociationExistsError()

        logger.debug("added entity", extra={"user_id": user_id, "entity_id": entity_id})

    def get_entities(self, user_id: str) -> List[str]:
        require_user_id(user_id)

        q = (
            select(user_entity.c.entity_id)
            .where(
                and_(
                    user_entity.c.user_id == user_id,
                    user_entity.c.removed.is_(False),
                )
            )
            .order_by(user_entity.c.id)
        )
        logger.debug("getting entities", extra={"user_id": user_id})
        with self._session(self.params.get_query_timeout) as session:
            entity_ids = [row.entity_id for row in session.execute(q)]

        logger.debug("got entities", extra={"user_id": user_id, "n_entities": len(entity_ids)})
        return entity_ids

    def count_entities(self, user_id: str) -> int:
        require_user_id(user_id)
        n = self._count(user_entity.c.user_id == user_id)
        logger.debug("counted entities", extra={"user_id": user_id, "n_entities": n})
        return n

    def count_users(self, entity_id: str) -> int:
        require_entity_id(entity_id)
        n = self._count(user_entity.c.entity_id == entity_id)
        logger.debug("counted users", extra={"entity_id": entity_id, "n_users": n})
        return n

    def close(self) -> None:
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True

    def _count(self, pred) -> int:
        q = select(func.count()).select_from(user_entity).where(
            and_(pred, user_entity.c.removed.is_(False))
        )
        with self._session(self.params.count_query_timeout) as session:
            return session.execute(q).scalar_one()

    @contextmanager
    def _session(self, timeout: float) -> Iterator[Session]:
        """Session whose statements are cancelled after `timeout` seconds (Postgres only)."""
        try:
            with session_scope(self.engine) as session:
                if self.engine.dialect.name == "postgresql":
                    session.execute(
                        text("SELECT set_config('statement_timeout', :ms, true)"),
                        {"ms": str(int(timeout * 1000))},
                    )
                yield session
        except OperationalError as e:
            if _is_statement_timeout(e):
                raise StorageTimeoutError() from e
            raise
