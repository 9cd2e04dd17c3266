"""Cafe routes: read a cafe and propose changes to it."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import get_db
from cafe_directory.dependencies import get_current_user, parse_uuid
from cafe_directory.models.submission import EntityType
from cafe_directory.models.user import User
from cafe_directory.schemas.cafe import CafeOut
from cafe_directory.schemas.submission import DescriptionRequest, PhotosRequest, SubmissionOut
from cafe_directory.services import cafe_photo_service, moderation_service
from cafe_directory.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{cafe_id}", response_model=CafeOut)
def get_cafe(
    cafe_id: str,
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return cafe_photo_service.cafe_out(db, store, parse_uuid(cafe_id, "cafe id"))


@router.post("/{cafe_id}/submissions/description", response_model=SubmissionOut)
def submit_description(
    cafe_id: str,
    payload: DescriptionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    cafe_id = parse_uuid(cafe_id, "cafe id")
    submission = moderation_service.submit_description(db, user.id, cafe_id, payload.description)
    return moderation_service.serialize_submission(submission, store)


def _submit_photos(db, store, user: User, cafe_id: str, entity_type: EntityType, payload: PhotosRequest):
    submission = moderation_service.submit_photos(
        db,
        store,
        user.id,
        parse_uuid(cafe_id, "cafe id"),
        entity_type,
        payload.object_keys,
        settings.S3_MAX_UPLOAD_BYTES,
    )
    return moderation_service.serialize_submission(submission, store)


@router.post("/{cafe_id}/submissions/photos", response_model=SubmissionOut)
def submit_cafe_photos(
    cafe_id: str,
    payload: PhotosRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return _submit_photos(db, store, user, cafe_id, EntityType.cafe_photo, payload)


@router.post("/{cafe_id}/submissions/menu-photos", response_model=SubmissionOut)
def submit_menu_photos(
    cafe_id: str,
    payload: PhotosRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return _submit_photos(db, store, user, cafe_id, EntityType.menu_photo, payload)
