"""Submission API routes: staged uploads and user proposals."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import get_db
from cafe_directory.dependencies import get_current_user
from cafe_directory.models.user import User
from cafe_directory.schemas.submission import (
    CafeCreateRequest,
    PhotoPresignOut,
    PhotoPresignRequest,
    SubmissionList,
    SubmissionOut,
)
from cafe_directory.services import moderation_service
from cafe_directory.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/photos/presign", response_model=PhotoPresignOut)
def presign_submission_photo(
    payload: PhotoPresignRequest,
    user: User = Depends(get_current_user),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Presigned PUT under the caller's ``pending/submissions/<user>/`` prefix."""
    return moderation_service.presign_photo_upload(
        store, user.id, payload.content_type, payload.size_bytes, settings.S3_MAX_UPLOAD_BYTES
    )


@router.post("/cafes", response_model=SubmissionOut)
def submit_cafe(
    payload: CafeCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Propose a new cafe, optionally with staged cafe and menu photos."""
    submission = moderation_service.submit_cafe_create(db, store, user.id, payload, settings.S3_MAX_UPLOAD_BYTES)
    return moderation_service.serialize_submission(submission, store)


@router.get("/mine", response_model=SubmissionList)
def list_my_submissions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return {"items": moderation_service.list_mine(db, store, user.id)}
