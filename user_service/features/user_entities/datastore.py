"""
user_service/features/user_entities/datastore.py

Cloud Datastore storer: one `user_entity` kind, filtered queries and
aggregation counts, every call bounded by its configured timeout.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from google.api_core.exceptions import DeadlineExceeded
from google.cloud import datastore
from google.cloud.datastore.query import PropertyFilter

from user_service.core.errors import AssociationExistsError, ConfigurationError, StorageTimeoutError
from user_service.features.user_entities.storer import (
    StorageParameters,
    new_user_entity,
    require_entity_id,
    require_user_id,
)

logger = logging.getLogger("user_service.storage.datastore")

USER_ENTITY_KIND = "user_entity"

COUNT_ALIAS = "n"

# Timestamps are written but never filtered on
UNINDEXED_PROPERTIES = ("modified_time", "added_time", "removed_time")


@contextmanager
def _deadline() -> Iterator[None]:
    try:
        yield
    except DeadlineExceeded as e:
        raise StorageTimeoutError() from e


class DatastoreStorer:
    """Storer backed by a Google Cloud Datastore client."""

    def __init__(self, client: datastore.Client, params: StorageParameters):
        self.client = client
        self.params = params
        self._closed = False

    @classmethod
    def from_project(cls, gcp_project_id: Optional[str], params: StorageParameters) -> "DatastoreStorer":
        """
        Create a storer for the given GCP project.

        Raises:
            ConfigurationError: empty project ID
        """
        if not gcp_project_id:
            raise ConfigurationError("empty GCP project ID")
        return cls(datastore.Client(project=gcp_project_id), params)

    def add_entity(self, user_id: str, entity_id: str) -> None:
        require_user_id(user_id)
        require_entity_id(entity_id)

        if self._count_user_entity(user_id, entity_id) > 0:
            raise AssociationExistsError()

        ue = new_user_entity(user_id, entity_id)
        entity = datastore.Entity(
            key=self.client.key(USER_ENTITY_KIND),
            exclude_from_indexes=UNINDEXED_PROPERTIES,
        )
        entity.update(ue.model_dump())
        with _deadline():
            self.client.put(entity, timeout=self.params.add_query_timeout)

        logger.debug("storer added entity to user", extra={"user_id": user_id, "entity_id": entity_id})

    def get_entities(self, user_id: str) -> List[str]:
        require_user_id(user_id)

        q = self._entities_query(user_id)
        entity_ids = []
        with _deadline():
            for result in q.fetch(timeout=self.params.get_query_timeout):
                entity_ids.append(result["entity_id"])

        logger.debug(
            "storer got entities for user",
            extra={"user_id": user_id, "n_entities": len(entity_ids)},
        )
        return entity_ids

    def count_entities(self, user_id: str) -> int:
        require_user_id(user_id)
        n = self._count(self._entities_query(user_id))
        logger.debug("storer counted entities for user", extra={"user_id": user_id, "n_entities": n})
        return n

    def count_users(self, entity_id: str) -> int:
        require_entity_id(entity_id)
        n = self._count(self._users_query(entity_id))
        logger.debug("storer counted users for entity", extra={"entity_id": entity_id, "n_users": n})
        return n

    def close(self) -> None:
        if self._closed:
            return
        self.client.close()
        self._closed = True

    def _count_user_entity(self, user_id: str, entity_id: str) -> int:
        q = self._entities_query(user_id)
        q.add_filter(filter=PropertyFilter("entity_id", "=", entity_id))
        n = self._count(q)
        logger.debug(
            "storer counted user entities",
            extra={"user_id": user_id, "entity_id": entity_id, "n_entities": n},
        )
        return n

    def _count(self, q) -> int:
        agg = self.client.aggregation_query(q).count(alias=COUNT_ALIAS)
        with _deadline():
            for batch in agg.fetch(timeout=self.params.count_query_timeout):
                for result in batch:
                    if result.alias == COUNT_ALIAS:
                        return int(result.value)
        return 0

    def _entities_query(self, user_id: str):
        q = self.client.query(kind=USER_ENTITY_KIND)
        q.add_filter(filter=PropertyFilter("user_id", "=", user_id))
        q.add_filter(filter=PropertyFilter("removed", "=", False))
        return q

    def _users_query(self, entity_id: str):
        q = self.client.query(kind=USER_ENTITY_KIND)
        q.add_filter(filter=PropertyFilter("entity_id", "=", entity_id))
        q.add_filter(filter=PropertyFilter("removed", "=", False))
        return q
