"""Pydantic schemas for moderation submissions.

Request bodies are what callers send; the ``*Payload`` models are the typed
shapes stored in ``moderation_submissions.payload`` and re-validated on apply.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class PhotoPresignRequest(BaseModel):
    content_type: str = ""
    size_bytes: int = 0


class CafeCreateRequest(BaseModel):
    name: str = ""
    address: str = ""
    description: str = ""
    latitude: float
    longitude: float
    amenities: list[str] = Field(default_factory=list)
    photo_object_keys: list[str] = Field(default_factory=list)
    menu_photo_object_keys: list[str] = Field(default_factory=list)


class DescriptionRequest(BaseModel):
    description: str = ""


class PhotosRequest(BaseModel):
    object_keys: list[str] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    comment: str = ""


# ---------------------------------------------------------------------------
# Stored payloads
# ---------------------------------------------------------------------------

class CafeCreatePayload(BaseModel):
    name: str
    address: str
    description: Optional[str] = None
    latitude: float
    longitude: float
    amenities: list[str] = Field(default_factory=list)
    photo_object_keys: list[str] = Field(default_factory=list)
    menu_photo_object_keys: list[str] = Field(default_factory=list)


class DescriptionPayload(BaseModel):
    description: str


class PhotosPayload(BaseModel):
    object_keys: list[str]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class PhotoPresignOut(BaseModel):
    upload_url: str
    method: str = "PUT"
    headers: dict[str, str]
    object_key: str
    file_url: str
    expires_at: datetime


class SubmissionOut(BaseModel):
    id: str
    author_user_id: str
    author_label: Optional[str] = None
    entity_type: str
    action_type: str
    target_id: Optional[str] = None
    target_cafe_name: Optional[str] = None
    target_cafe_address: Optional[str] = None
    payload: dict[str, Any]
    status: str
    moderator_id: Optional[str] = None
    moderator_comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    decided_at: Optional[datetime] = None


class SubmissionList(BaseModel):
    items: list[SubmissionOut]


class StatusOut(BaseModel):
    status: str = "ok"
