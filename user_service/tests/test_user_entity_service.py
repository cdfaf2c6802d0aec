"""
user_service/tests/test_user_entity_service.py

Service-level behaviour: request validation, association caps and
pass-through of storer errors.
"""

import pytest

from user_service.core.errors import (
    AssociationExistsError,
    EmptyEntityIDError,
    EmptyUserIDError,
    StorageTimeoutError,
    TooManyEntityUsersError,
    TooManyUserEntitiesError,
)
from user_service.core.metrics import user_entity_ops_total
from user_service.features.user_entities.service import (
    MAX_ENTITY_USERS,
    MAX_USER_ENTITIES,
    UserEntityService,
)
from user_service.models.user import (
    AddEntityRequest,
    AddEntityResponse,
    GetEntitiesRequest,
    GetEntitiesResponse,
)
from user_service.tests.mocks import RecordingStorer


def test_default_caps():
    service = UserEntityService(RecordingStorer())
    assert service.max_user_entities == MAX_USER_ENTITIES == 16
    assert service.max_entity_users == MAX_ENTITY_USERS == 256


class TestAddEntity:
    def test_ok(self):
        storer = RecordingStorer()
        service = UserEntityService(storer)

        rp = service.add_entity(AddEntityRequest(user_id="User-0", entity_id="Entity-0"))

        assert rp == AddEntityResponse()
        assert storer.calls == [
            ("count_users", "Entity-0"),
            ("count_entities", "User-0"),
            ("add_entity", "User-0", "Entity-0"),
        ]
        assert user_entity_ops_total.value({"op": "add_entity", "outcome": "ok"}) == 1

    @pytest.mark.parametrize("rq, error", [
        (AddEntityRequest(user_id="", entity_id="Entity-0"), EmptyUserIDError),
        (AddEntityRequest(user_id="User-0", entity_id=""), EmptyEntityIDError),
        (AddEntityRequest(), EmptyUserIDError),
    ])
    def test_validation_before_storage(self, rq, error):
        storer = RecordingStorer()
        with pytest.raises(error):
            UserEntityService(storer).add_entity(rq)
        assert storer.calls == []

    def test_entity_at_user_cap(self):
        storer = RecordingStorer(n_users=MAX_ENTITY_USERS)
        with pytest.raises(TooManyEntityUsersError) as exc_info:
            UserEntityService(storer).add_entity(AddEntityRequest(user_id="u", entity_id="e"))

        assert str(exc_info.value) == "too many associated users for entity ID"
        assert ("add_entity", "u", "e") not in storer.calls
        assert user_entity_ops_total.value(
            {"op": "add_entity", "outcome": "too_many_entity_users"}
        ) == 1

    def test_user_at_entity_cap(self):
        storer = RecordingStorer(n_entities=MAX_USER_ENTITIES)
        with pytest.raises(TooManyUserEntitiesError) as exc_info:
            UserEntityService(storer).add_entity(AddEntityRequest(user_id="u", entity_id="e"))

        assert str(exc_info.value) == "too many associated entities for user ID"
        assert ("add_entity", "u", "e") not in storer.calls

    def test_below_caps_allowed(self):
        storer = RecordingStorer(n_entities=MAX_USER_ENTITIES - 1, n_users=MAX_ENTITY_USERS - 1)
        UserEntityService(storer).add_entity(AddEntityRequest(user_id="u", entity_id="e"))
        assert storer.calls[-1] == ("add_entity", "u", "e")

    def test_custom_caps(self):
        service = UserEntityService(RecordingStorer(n_entities=2), max_user_entities=2)
        with pytest.raises(TooManyUserEntitiesError):
            service.add_entity(AddEntityRequest(user_id="u", entity_id="e"))

    @pytest.mark.parametrize("op", ["count_users", "count_entities", "add_entity"])
    def test_storer_errors_propagate_unchanged(self, op):
        error = StorageTimeoutError()
        storer = RecordingStorer(error=error, error_on=op)
        with pytest.raises(StorageTimeoutError) as exc_info:
            UserEntityService(storer).add_entity(AddEntityRequest(user_id="u", entity_id="e"))
        assert exc_info.value is error

    def test_storer_errors_counted_by_code(self, memory_storer):
        service = UserEntityService(memory_storer)
        rq = AddEntityRequest(user_id="User-0", entity_id="Entity-0")
        service.add_entity(rq)
        with pytest.raises(AssociationExistsError):
            service.add_entity(rq)

        assert user_entity_ops_total.value({"op": "add_entity", "outcome": "ok"}) == 1
        assert user_entity_ops_total.value({"op": "add_entity", "outcome": "association_exists"}) == 1

    def test_storage_timeout_counted(self):
        storer = RecordingStorer(error=StorageTimeoutError(), error_on="add_entity")
        with pytest.raises(StorageTimeoutError):
            UserEntityService(storer).add_entity(AddEntityRequest(user_id="u", entity_id="e"))
        assert user_entity_ops_total.value({"op": "add_entity", "outcome": "storage_timeout"}) == 1

    def test_seventeenth_entity_rejected(self, memory_storer):
        service = UserEntityService(memory_storer)
        for j in range(MAX_USER_ENTITIES):
            service.add_entity(AddEntityRequest(user_id="User-0", entity_id=f"Entity-{j}"))

        with pytest.raises(TooManyUserEntitiesError):
            service.add_entity(AddEntityRequest(user_id="User-0", entity_id="Entity-16"))
        assert memory_storer.count_entities("User-0") == MAX_USER_ENTITIES

    def test_entity_user_cap_with_storage(self, memory_storer):
        service = UserEntityService(memory_storer, max_entity_users=3)
        for i in range(3):
            service.add_entity(AddEntityRequest(user_id=f"User-{i}", entity_id="Entity-0"))

        with pytest.raises(TooManyEntityUsersError):
            service.add_entity(AddEntityRequest(user_id="User-3", entity_id="Entity-0"))
        assert memory_storer.count_users("Entity-0") == 3

    def test_duplicate_reported_by_storer(self, memory_storer):
        service = UserEntityService(memory_storer)
        rq = AddEntityRequest(user_id="User-0", entity_id="Entity-0")
        service.add_entity(rq)
        with pytest.raises(AssociationExistsError):
            service.add_entity(rq)


class TestGetEntities:
    def test_ok(self):
        storer = RecordingStorer()
        storer.entity_ids = ["Entity-0", "Entity-1"]

        rp = UserEntityService(storer).get_entities(GetEntitiesRequest(user_id="User-0"))

        assert rp == GetEntitiesResponse(entity_ids=["Entity-0", "Entity-1"])
        assert storer.calls == [("get_entities", "User-0")]

    def test_empty_for_unknown_user(self, memory_storer):
        rp = UserEntityService(memory_storer).get_entities(GetEntitiesRequest(user_id="nobody"))
        assert rp.entity_ids == []

    def test_empty_user_id(self):
        storer = RecordingStorer()
        with pytest.raises(EmptyUserIDError):
            UserEntityService(storer).get_entities(GetEntitiesRequest(user_id=""))
        assert storer.calls == []

    def test_empty_user_id_counted(self):
        with pytest.raises(EmptyUserIDError):
            UserEntityService(RecordingStorer()).get_entities(GetEntitiesRequest(user_id=""))
        assert user_entity_ops_total.value({"op": "get_entities", "outcome": "empty_user_id"}) == 1

    def test_storer_error_propagates(self):
        error = RuntimeError("connection reset")
        storer = RecordingStorer(error=error, error_on="get_entities")
        with pytest.raises(RuntimeError) as exc_info:
            UserEntityService(storer).get_entities(GetEntitiesRequest(user_id="u"))
        assert exc_info.value is error
