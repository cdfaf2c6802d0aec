"""
user_service/features/user_entities/memory.py

In-memory storer: an append-only list of associations behind one lock.
"""

import logging
import threading
from typing import Callable, List, Optional

from user_service.core.errors import AssociationExistsError
from user_service.features.user_entities.storer import (
    StorageParameters,
    UserEntity,
    new_user_entity,
    require_entity_id,
    require_user_id,
)

logger = logging.getLogger("user_service.storage.memory")


class MemoryStorer:
    """
    Storer backed by a Python list.

    Every operation holds the lock for its whole duration, so all access is
    serialized; scans are linear, which is fine for the bounded per-key sizes.
    """

    def __init__(self, params: Optional[StorageParameters] = None):
        self.params = params or StorageParameters()
        self._user_entities: List[UserEntity] = []
        self._lock = threading.Lock()

    def add_entity(self, user_id: str, entity_id: str) -> None:
        require_user_id(user_id)
        require_entity_id(entity_id)

        with self._lock:
            existing = self._count(lambda ue: ue.user_id == user_id and ue.entity_id == entity_id)
            if existing > 0:
                raise AssociationExistsError()
            self._user_entities.append(new_user_entity(user_id, entity_id))

        logger.debug("storer added entity to user", extra={"user_id": user_id, "entity_id": entity_id})

    def get_entities(self, user_id: str) -> List[str]:
        require_user_id(user_id)

        with self._lock:
            entity_ids = [
                ue.entity_id for ue in self._user_entities
                if ue.user_id == user_id and not ue.removed
            ]

        logger.debug(
            "storer got entities for user",
            extra={"user_id": user_id, "n_entities": len(entity_ids)},
        )
        return entity_ids

    def count_entities(self, user_id: str) -> int:
        require_user_id(user_id)

        with self._lock:
            n = self._count(lambda ue: ue.user_id == user_id)

        logger.debug("storer counted entities for user", extra={"user_id": user_id, "n_entities": n})
        return n

    def count_users(self, entity_id: str) -> int:
        require_entity_id(entity_id)

        with self._lock:
            n = self._count(lambda ue: ue.entity_id == entity_id)

        logger.debug("storer counted users for entity", extra={"entity_id": entity_id, "n_users": n})
        return n

    def close(self) -> None:
        return None

    def _count(self, predicate: Callable[[UserEntity], bool]) -> int:
        # caller must hold self._lock
        return sum(1 for ue in self._user_entities if not ue.removed and predicate(ue))
