"""Pydantic schemas for cafes and cafe photos."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CafeOut(BaseModel):
    id: str
    name: str
    address: str
    description: Optional[str] = None
    latitude: float
    longitude: float
    amenities: list[str] = Field(default_factory=list)
    cover_photo_url: Optional[str] = None
    created_at: Optional[datetime] = None


class CafePhotoOut(BaseModel):
    id: str
    url: str
    kind: str
    is_cover: bool
    position: int


class CafePhotoList(BaseModel):
    photos: list[CafePhotoOut]


class CafePhotoPresignRequest(BaseModel):
    content_type: str = ""
    size_bytes: int = 0
    kind: str = ""


class CafePhotoConfirmRequest(BaseModel):
    object_key: str = ""
    kind: str = ""
    is_cover: bool = False
    position: Optional[int] = None


class CafePhotoConfirmOut(BaseModel):
    photo: CafePhotoOut
    rewritten: bool = False
    generated_variants: int = 0


class CafePhotoReorderRequest(BaseModel):
    photo_ids: list[str] = Field(default_factory=list)
