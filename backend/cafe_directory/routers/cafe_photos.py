"""Direct cafe photo routes: public listing plus moderator upload and curation."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import get_db
from cafe_directory.dependencies import get_photo_optimizer, parse_uuid, require_moderator
from cafe_directory.models.user import User
from cafe_directory.schemas.cafe import (
    CafePhotoConfirmOut,
    CafePhotoConfirmRequest,
    CafePhotoList,
    CafePhotoOut,
    CafePhotoPresignRequest,
    CafePhotoReorderRequest,
)
from cafe_directory.schemas.submission import PhotoPresignOut, StatusOut
from cafe_directory.services import cafe_photo_service
from cafe_directory.services.photo_optimizer import PhotoOptimizer
from cafe_directory.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{cafe_id}/photos", response_model=CafePhotoList)
def list_photos(
    cafe_id: str,
    kind: str = "cafe",
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Cover first, then by position."""
    photos = cafe_photo_service.list_photos(db, store, parse_uuid(cafe_id, "cafe id"), kind)
    return {"photos": photos}


@router.post("/{cafe_id}/photos/presign", response_model=PhotoPresignOut)
def presign_photo(
    cafe_id: str,
    payload: CafePhotoPresignRequest,
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return cafe_photo_service.presign(
        db,
        store,
        parse_uuid(cafe_id, "cafe id"),
        payload.kind,
        payload.content_type,
        payload.size_bytes,
        settings.S3_MAX_UPLOAD_BYTES,
    )


@router.post("/{cafe_id}/photos/confirm", response_model=CafePhotoConfirmOut)
def confirm_photo(
    cafe_id: str,
    payload: CafePhotoConfirmRequest,
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
    optimizer: PhotoOptimizer = Depends(get_photo_optimizer),
):
    """Validate the uploaded object, optimize it and attach it to the cafe."""
    return cafe_photo_service.confirm(
        db,
        store,
        optimizer,
        parse_uuid(cafe_id, "cafe id"),
        moderator.id,
        payload.object_key,
        payload.kind,
        payload.is_cover,
        payload.position,
        settings.S3_MAX_UPLOAD_BYTES,
    )


@router.post("/{cafe_id}/photos/{photo_id}/cover", response_model=CafePhotoOut)
def set_cover(
    cafe_id: str,
    photo_id: str,
    kind: str = "cafe",
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return cafe_photo_service.set_cover(
        db, store, parse_uuid(cafe_id, "cafe id"), kind, parse_uuid(photo_id, "photo id")
    )


@router.put("/{cafe_id}/photos/order", response_model=CafePhotoList)
def reorder_photos(
    cafe_id: str,
    payload: CafePhotoReorderRequest,
    kind: str = "cafe",
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    photo_ids = [parse_uuid(p, "photo id") for p in payload.photo_ids]
    photos = cafe_photo_service.reorder(db, store, parse_uuid(cafe_id, "cafe id"), kind, photo_ids)
    return {"photos": photos}


@router.delete("/{cafe_id}/photos/{photo_id}", response_model=StatusOut)
def delete_photo(
    cafe_id: str,
    photo_id: str,
    kind: str = "cafe",
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    cafe_photo_service.delete(db, store, parse_uuid(cafe_id, "cafe id"), kind, parse_uuid(photo_id, "photo id"))
    return {"status": "ok"}
