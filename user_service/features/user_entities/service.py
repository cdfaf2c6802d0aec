"""
user_service/features/user_entities/service.py

Request handling for user-entity associations: validation, cap
enforcement, and delegation to the configured Storer.

Caps are checked with two count queries before the mutation and are not
wrapped in a transaction with it, so concurrent adds can overshoot a cap.
Storer errors are never reclassified here; application errors are counted
in user_entity_ops_total by code and re-raised as is.
"""

import logging

from user_service.core.errors import AppError, TooManyEntityUsersError, TooManyUserEntitiesError
from user_service.core.metrics import record_op
from user_service.features.user_entities.storer import Storer, require_entity_id, require_user_id
from user_service.models.user import (
    AddEntityRequest,
    AddEntityResponse,
    GetEntitiesRequest,
    GetEntitiesResponse,
)

logger = logging.getLogger("user_service")

# Maximum number of entities a user can be associated with
MAX_USER_ENTITIES = 16

# Maximum number of users that can be associated with a single entity
MAX_ENTITY_USERS = 256


class UserEntityService:
    def __init__(
        self,
        storer: Storer,
        max_user_entities: int = MAX_USER_ENTITIES,
        max_entity_users: int = MAX_ENTITY_USERS,
    ):
        self.storer = storer
        self.max_user_entities = max_user_entities
        self.max_entity_users = max_entity_users

    def add_entity(self, rq: AddEntityRequest) -> AddEntityResponse:
        """
        Associate rq.entity_id with rq.user_id.

        Raises:
            EmptyUserIDError / EmptyEntityIDError: malformed request
            TooManyEntityUsersError: entity already has max_entity_users users
            TooManyUserEntitiesError: user already has max_user_entities entities
            AssociationExistsError, StorageTimeoutError, ...: from the storer, unchanged
        """
        logger.debug(
            "received add entity request",
            extra={"user_id": rq.user_id, "entity_id": rq.entity_id},
        )
        try:
            require_user_id(rq.user_id)
            require_entity_id(rq.entity_id)

            n_users = self.storer.count_users(rq.entity_id)
            if n_users + 1 > self.max_entity_users:
                raise TooManyEntityUsersError()

            n_entities = self.storer.count_entities(rq.user_id)
            if n_entities + 1 > self.max_user_entities:
                raise TooManyUserEntitiesError()

            self.storer.add_entity(rq.user_id, rq.entity_id)
        except AppError as e:
            # outcome is the error code; the error itself propagates unchanged
            record_op("add_entity", e.code)
            raise

        record_op("add_entity", "ok")
        logger.info(
            "added entity to user",
            extra={"user_id": rq.user_id, "entity_id": rq.entity_id},
        )
        return AddEntityResponse()

    def get_entities(self, rq: GetEntitiesRequest) -> GetEntitiesResponse:
        """Return the entity IDs associated with rq.user_id."""
        logger.debug("received get entities request", extra={"user_id": rq.user_id})
        try:
            require_user_id(rq.user_id)
            entity_ids = self.storer.get_entities(rq.user_id)
        except AppError as e:
            record_op("get_entities", e.code)
            raise

        rp = GetEntitiesResponse(entity_ids=entity_ids)
        record_op("get_entities", "ok")
        logger.info(
            "got entities for user",
            extra={"user_id": rq.user_id, "n_entities": len(rp.entity_ids)},
        )
        return rp
