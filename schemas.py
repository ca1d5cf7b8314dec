"""
schemas.py
Request/response shapes for the HTTP API. Record bodies stay plain dicts:
the attribute set is open-ended and whitelisted in utils.map_fields.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class DeleteRequest(BaseModel):
    deletedBy: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("deletedBy", "deleted_by"),
    )


class MessageResponse(BaseModel):
    message: str


class ExistsResponse(BaseModel):
    exists: bool


class RecordListResponse(BaseModel):
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    totalPages: int
