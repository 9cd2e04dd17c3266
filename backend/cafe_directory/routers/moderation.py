"""Moderation queue routes (moderator or admin only)."""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import get_db
from cafe_directory.dependencies import parse_uuid, require_moderator
from cafe_directory.models.submission import SubmissionStatus
from cafe_directory.models.user import User
from cafe_directory.schemas.submission import DecisionRequest, StatusOut, SubmissionList, SubmissionOut
from cafe_directory.services import moderation_service
from cafe_directory.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/submissions", response_model=SubmissionList)
def list_submissions(
    status: Optional[str] = None,
    entity_type: Optional[str] = None,
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Oldest first. ``status`` defaults to pending; ``status=`` lists every status."""
    status_filter = moderation_service.parse_status_filter(status)
    return {"items": moderation_service.list_for_moderation(db, store, status_filter, entity_type)}


@router.get("/submissions/{submission_id}", response_model=SubmissionOut)
def get_submission(
    submission_id: str,
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    return moderation_service.get_submission(db, store, parse_uuid(submission_id, "submission id"))


def _decide(db, store, submission_id: str, moderator: User, decision: SubmissionStatus, body):
    moderation_service.decide(
        db,
        store,
        parse_uuid(submission_id, "submission id"),
        moderator.id,
        decision,
        body.comment if body else None,
        timeout_seconds=settings.APPROVAL_TIMEOUT_SECONDS,
    )
    return {"status": "ok"}


@router.post("/submissions/{submission_id}/approve", response_model=StatusOut)
def approve_submission(
    submission_id: str,
    body: Optional[DecisionRequest] = Body(default=None),
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Apply the proposal to the catalog and mark it approved, atomically."""
    return _decide(db, store, submission_id, moderator, SubmissionStatus.approved, body)


@router.post("/submissions/{submission_id}/reject", response_model=StatusOut)
def reject_submission(
    submission_id: str,
    body: Optional[DecisionRequest] = Body(default=None),
    moderator: User = Depends(require_moderator),
    db: Session = Depends(get_db),
    store: Optional[ObjectStore] = Depends(get_object_store),
):
    """Reject with a mandatory comment."""
    return _decide(db, store, submission_id, moderator, SubmissionStatus.rejected, body)
