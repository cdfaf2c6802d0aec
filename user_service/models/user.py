"""
user_service/models/user.py
Request/response models for the user-entity RPC surface.
"""

from typing import List

from pydantic import BaseModel, Field


class AddEntityRequest(BaseModel):
    """Associate an entity with a user."""

    user_id: str = Field(default="", description="User ID")
    entity_id: str = Field(default="", description="Entity ID")


class AddEntityResponse(BaseModel):
    """Empty acknowledgment."""


class GetEntitiesRequest(BaseModel):
    """List a user's associated entities."""

    user_id: str = Field(default="", description="User ID")


class GetEntitiesResponse(BaseModel):
    entity_ids: List[str] = Field(default_factory=list)
