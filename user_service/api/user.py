"""
user_service/api/user.py
User API: associate entities with users and list a user's entities.
"""

from fastapi import APIRouter, Depends, Request

from user_service.features.user_entities.service import UserEntityService
from user_service.models.user import (
    AddEntityRequest,
    AddEntityResponse,
    GetEntitiesRequest,
    GetEntitiesResponse,
)

router = APIRouter(prefix="/v1/user", tags=["user"])


def get_user_entity_service(request: Request) -> UserEntityService:
    return request.app.state.user_entity_service


@router.post("/entities/add", response_model=AddEntityResponse)
def add_entity_endpoint(
    rq: AddEntityRequest,
    service: UserEntityService = Depends(get_user_entity_service),
):
    """Associate an entity ID with the given user ID."""
    return service.add_entity(rq)


@router.post("/entities/get", response_model=GetEntitiesResponse)
def get_entities_endpoint(
    rq: GetEntitiesRequest,
    service: UserEntityService = Depends(get_user_entity_service),
):
    """Get the associated entity IDs for the given user ID."""
    return service.get_entities(rq)
