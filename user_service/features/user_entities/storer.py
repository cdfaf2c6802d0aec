"""
user_service/features/user_entities/storer.py

Storage contract for user-entity associations.

Every backend (memory, postgres, datastore) implements the Storer protocol
with identical observable semantics:
- empty user/entity IDs are rejected before any I/O
- a (user_id, entity_id) pair exists at most once among non-removed records
- reads and counts only see non-removed records
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from user_service.core.errors import ConfigurationError, EmptyEntityIDError, EmptyUserIDError

SECS_PER_DAY = 60 * 60 * 24

DEFAULT_QUERY_TIMEOUT = 1.0  # seconds


class StorageType(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"
    DATASTORE = "datastore"


@dataclass
class StorageParameters:
    """Storage type and per-operation timeouts (seconds)."""
    type: StorageType = StorageType.MEMORY
    add_query_timeout: float = DEFAULT_QUERY_TIMEOUT
    get_query_timeout: float = DEFAULT_QUERY_TIMEOUT
    count_query_timeout: float = DEFAULT_QUERY_TIMEOUT

    def log_fields(self) -> dict:
        return {
            "storage_type": self.type.value,
            "add_query_timeout": self.add_query_timeout,
            "get_query_timeout": self.get_query_timeout,
            "count_query_timeout": self.count_query_timeout,
        }


class UserEntity(BaseModel):
    """A stored (user ID, entity ID) association."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    entity_id: str
    removed: bool = False
    modified_date: int
    modified_time: datetime
    added_time: datetime
    removed_time: Optional[datetime] = None


def new_user_entity(user_id: str, entity_id: str, now: Optional[datetime] = None) -> UserEntity:
    """
    Create a new association stamped with the current (or given) UTC time.

    modified_date is the day number since the Unix epoch.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return UserEntity(
        user_id=user_id,
        entity_id=entity_id,
        removed=False,
        modified_date=int(now.timestamp()) // SECS_PER_DAY,
        modified_time=now,
        added_time=now,
    )


def require_user_id(user_id: str) -> None:
    if not user_id:
        raise EmptyUserIDError()


def require_entity_id(entity_id: str) -> None:
    if not entity_id:
        raise EmptyEntityIDError()


class Storer(Protocol):
    """
    Protocol for user-entity storage backends.

    Implementations must be safe to call concurrently from many request
    threads and must bound every backend call by the matching timeout in
    their StorageParameters.
    """

    def add_entity(self, user_id: str, entity_id: str) -> None:
        """
        Associate entity_id with user_id.

        Raises:
            EmptyUserIDError / EmptyEntityIDError: on empty input
            AssociationExistsError: if the pair already exists
            StorageTimeoutError: if the backend call exceeds add_query_timeout
        """
        ...

    def get_entities(self, user_id: str) -> List[str]:
        """Return the entity IDs associated with user_id ([] when none)."""
        ...

    def count_entities(self, user_id: str) -> int:
        """Count the entities associated with user_id."""
        ...

    def count_users(self, entity_id: str) -> int:
        """Count the users associated with entity_id."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


def parameters_from_settings(cfg) -> StorageParameters:
    try:
        storage_type = StorageType(str(cfg.STORAGE_TYPE).lower())
    except ValueError:
        raise ConfigurationError(f"invalid storage type: {cfg.STORAGE_TYPE!r}")
    return StorageParameters(
        type=storage_type,
        add_query_timeout=cfg.ADD_QUERY_TIMEOUT,
        get_query_timeout=cfg.GET_QUERY_TIMEOUT,
        count_query_timeout=cfg.COUNT_QUERY_TIMEOUT,
    )


def get_storer(cfg) -> Storer:
    """
    Build the storer selected by configuration.

    Args:
        cfg: Settings-like object (STORAGE_TYPE, DATABASE_URL, GCP_PROJECT_ID, timeouts)

    Returns:
        A MemoryStorer, PostgresStorer or DatastoreStorer instance

    Raises:
        ConfigurationError: unsupported storage type or missing connection parameters
    """
    params = parameters_from_settings(cfg)

    if params.type == StorageType.MEMORY:
        from user_service.features.user_entities.memory import MemoryStorer
        return MemoryStorer(params)

    if params.type == StorageType.POSTGRES:
        from user_service.features.user_entities.postgres import PostgresStorer
        return PostgresStorer.from_url(cfg.database_url_with_password(), params)

    from user_service.features.user_entities.datastore import DatastoreStorer
    return DatastoreStorer.from_project(cfg.GCP_PROJECT_ID, params)
