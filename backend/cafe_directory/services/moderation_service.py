"""Moderation engine: submissions, decisions and apply-on-approve.

Responsibilities:
- Validate and stage user proposals (new cafe, description, cafe/menu photos)
- Check staged photo keys against the author's pending prefix and the object store
- Serialize decisions per submission with ``SELECT ... FOR UPDATE``
- Apply approved proposals to the catalog in the same transaction as the
  status change and the audit event; any failure rolls everything back
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session

from cafe_directory.errors import (
    AlreadyExists,
    Conflict,
    InvalidArgument,
    NotFound,
    ObjectNotFoundError,
    ServiceUnavailable,
    Unsupported,
)
from cafe_directory.media import (
    is_allowed_mime,
    normalize_content_type,
    normalize_object_key,
    pending_prefix,
    staged_object_key,
)
from cafe_directory.models.cafe import Cafe, PhotoKind
from cafe_directory.models.submission import (
    ActionType,
    EntityType,
    ModerationEvent,
    ModerationSubmission,
    SubmissionStatus,
)
from cafe_directory.models.user import User
from cafe_directory.schemas.submission import (
    CafeCreatePayload,
    CafeCreateRequest,
    DescriptionPayload,
    PhotoPresignOut,
    PhotosPayload,
    SubmissionOut,
)
from cafe_directory.services import catalog_repository as catalog
from cafe_directory.storage import ObjectStore

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 2000
MAX_AMENITY_CHARS = 50
LIST_MINE_LIMIT = 200
MODERATION_LIST_LIMIT = 300

DECISIONS = (SubmissionStatus.approved, SubmissionStatus.rejected)

PAYLOAD_SCHEMAS: dict[tuple[EntityType, ActionType], type[BaseModel]] = {
    (EntityType.cafe, ActionType.create): CafeCreatePayload,
    (EntityType.cafe_description, ActionType.update): DescriptionPayload,
    (EntityType.cafe_photo, ActionType.create): PhotosPayload,
    (EntityType.menu_photo, ActionType.create): PhotosPayload,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def normalize_description(raw: Optional[str], required: bool = True) -> str:
    description = (raw or "").strip()
    if required and not description:
        raise InvalidArgument("description must not be empty")
    if len(description) > MAX_DESCRIPTION_CHARS:
        raise InvalidArgument("description is too long", {"max_chars": MAX_DESCRIPTION_CHARS})
    return description


def normalize_amenities(raw: list[str]) -> list[str]:
    """Trim, lowercase and dedupe, keeping first-seen order."""
    out: list[str] = []
    for item in raw or []:
        value = (item or "").strip().lower()
        if not value or value in out:
            continue
        if len(value) > MAX_AMENITY_CHARS:
            raise InvalidArgument("amenity is too long", {"max_chars": MAX_AMENITY_CHARS})
        out.append(value)
    return out


def _check_coordinates(latitude: float, longitude: float) -> None:
    if not math.isfinite(latitude) or not -90 <= latitude <= 90:
        raise InvalidArgument("latitude must be between -90 and 90")
    if not math.isfinite(longitude) or not -180 <= longitude <= 180:
        raise InvalidArgument("longitude must be between -180 and 180")


def _check_name_address(name: str, address: str) -> tuple[str, str]:
    name, address = (name or "").strip(), (address or "").strip()
    if not name or not address:
        raise InvalidArgument("name and address are required")
    return name, address


def validate_pending_object_keys(
    store: Optional[ObjectStore],
    author_id: str,
    keys: list[str],
    max_upload_bytes: int,
) -> list[str]:
    """Return the normalized, de-duplicated keys after prefix and HEAD checks."""
    if not keys:
        return []
    if store is None:
        raise ServiceUnavailable("photo upload is unavailable")
    prefix = pending_prefix(author_id)
    normalized: list[str] = []
    for raw in keys:
        key = normalize_object_key(raw)
        if not key:
            continue
        if not key.startswith(prefix):
            raise InvalidArgument("invalid object_key")
        if key in normalized:
            continue
        try:
            size, mime = store.head(key)
        except ObjectNotFoundError:
            raise InvalidArgument(f"file {key} not found in storage")
        if size <= 0 or size > max_upload_bytes:
            raise InvalidArgument(f"file {key} has invalid size", {"max_upload_bytes": max_upload_bytes})
        if not is_allowed_mime(mime):
            raise InvalidArgument(f"file {key} has unsupported format")
        normalized.append(key)
    return normalized


def parse_payload(entity_type: EntityType, action_type: ActionType, payload: Any) -> BaseModel:
    schema = PAYLOAD_SCHEMAS.get((entity_type, action_type))
    if schema is None:
        raise Unsupported(
            f"{entity_type.value}/{action_type.value} submissions are not supported",
            {"reason": "unsupported"},
        )
    try:
        return schema.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError as exc:
        raise InvalidArgument("invalid submission payload") from exc


# ---------------------------------------------------------------------------
# Submission creation
# ---------------------------------------------------------------------------

def presign_photo_upload(
    store: Optional[ObjectStore],
    author_id: str,
    content_type: str,
    size_bytes: int,
    max_upload_bytes: int,
) -> PhotoPresignOut:
    if store is None:
        raise ServiceUnavailable("photo upload is unavailable")
    mime = normalize_content_type(content_type)
    if not is_allowed_mime(mime):
        raise InvalidArgument("unsupported image format")
    if size_bytes <= 0:
        raise InvalidArgument("size_bytes must be greater than 0")
    if size_bytes > max_upload_bytes:
        raise InvalidArgument("file is too large", {"max_upload_bytes": max_upload_bytes})

    key = staged_object_key(pending_prefix(author_id), mime)
    presigned = store.presign_put(key, mime)
    return PhotoPresignOut(
        upload_url=presigned.url,
        method="PUT",
        headers=presigned.headers,
        object_key=key,
        file_url=store.public_url(key),
        expires_at=presigned.expires_at,
    )


def create_submission(
    db: Session,
    author_id: str,
    entity_type: EntityType,
    action_type: ActionType,
    target_id: Optional[str],
    payload: dict[str, Any],
) -> ModerationSubmission:
    """Stage a proposal. Payloads with a known schema are validated before storage."""
    if (entity_type, action_type) in PAYLOAD_SCHEMAS:
        payload = parse_payload(entity_type, action_type, payload).model_dump(exclude_none=True)
    now = _utcnow()
    submission = ModerationSubmission(
        author_user_id=author_id,
        entity_type=entity_type,
        action_type=action_type,
        target_id=target_id,
        payload=payload,
        status=SubmissionStatus.pending,
        created_at=now,
        updated_at=now,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    logger.info(
        "Submission %s created: %s/%s by user %s",
        submission.id, entity_type.value, action_type.value, author_id,
    )
    return submission


def submit_cafe_create(
    db: Session,
    store: Optional[ObjectStore],
    author_id: str,
    req: CafeCreateRequest,
    max_upload_bytes: int,
) -> ModerationSubmission:
    name, address = _check_name_address(req.name, req.address)
    _check_coordinates(req.latitude, req.longitude)
    description = normalize_description(req.description, required=False)
    amenities = normalize_amenities(req.amenities)
    photo_keys = validate_pending_object_keys(store, author_id, req.photo_object_keys, max_upload_bytes)
    menu_keys = validate_pending_object_keys(store, author_id, req.menu_photo_object_keys, max_upload_bytes)

    payload = CafeCreatePayload(
        name=name,
        address=address,
        description=description or None,
        latitude=req.latitude,
        longitude=req.longitude,
        amenities=amenities,
        photo_object_keys=photo_keys,
        menu_photo_object_keys=menu_keys,
    )
    return create_submission(db, author_id, EntityType.cafe, ActionType.create, None, payload.model_dump(exclude_none=True))


def submit_description(db: Session, author_id: str, cafe_id: str, description: str) -> ModerationSubmission:
    description = normalize_description(description)
    catalog.ensure_cafe_exists(db, cafe_id)
    return create_submission(
        db, author_id, EntityType.cafe_description, ActionType.update, cafe_id,
        {"description": description},
    )


def submit_photos(
    db: Session,
    store: Optional[ObjectStore],
    author_id: str,
    cafe_id: str,
    entity_type: EntityType,
    object_keys: list[str],
    max_upload_bytes: int,
) -> ModerationSubmission:
    keys = validate_pending_object_keys(store, author_id, object_keys, max_upload_bytes)
    if not keys:
        raise InvalidArgument("at least one photo is required")
    catalog.ensure_cafe_exists(db, cafe_id)
    return create_submission(db, author_id, entity_type, ActionType.create, cafe_id, {"object_keys": keys})


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _author_label(user: Optional[User], fallback: str) -> str:
    if user is None:
        return fallback
    for value in (user.display_name, user.email, user.id):
        if value and value.strip():
            return value.strip()
    return fallback


def _target_cafes(db: Session, submissions: list[ModerationSubmission]) -> dict[str, Cafe]:
    ids = {s.target_id for s in submissions if s.target_id}
    if not ids:
        return {}
    return {c.id: c for c in db.query(Cafe).filter(Cafe.id.in_(ids)).all()}


def serialize_submission(
    submission: ModerationSubmission,
    store: Optional[ObjectStore],
    author_label: Optional[str] = None,
    cafe: Optional[Cafe] = None,
) -> SubmissionOut:
    """Build the API shape; photo keys are echoed as public URLs for reviewers."""
    payload = dict(submission.payload) if isinstance(submission.payload, dict) else {}

    def urls(keys: Any) -> list[str]:
        if not isinstance(keys, list):
            return []
        out = []
        for raw in keys:
            key = normalize_object_key(raw) if isinstance(raw, str) else ""
            if key:
                out.append(store.public_url(key) if store is not None else key)
        return out

    if submission.entity_type in (EntityType.cafe_photo, EntityType.menu_photo):
        if photo_urls := urls(payload.get("object_keys")):
            payload["photo_urls"] = photo_urls
    elif submission.entity_type == EntityType.cafe:
        if photo_urls := urls(payload.get("photo_object_keys")):
            payload["photo_urls"] = photo_urls
        if menu_urls := urls(payload.get("menu_photo_object_keys")):
            payload["menu_photo_urls"] = menu_urls

    return SubmissionOut(
        id=submission.id,
        author_user_id=submission.author_user_id,
        author_label=author_label,
        entity_type=submission.entity_type.value,
        action_type=submission.action_type.value,
        target_id=submission.target_id,
        target_cafe_name=cafe.name if cafe else None,
        target_cafe_address=cafe.address if cafe else None,
        payload=payload,
        status=submission.status.value,
        moderator_id=submission.moderator_id,
        moderator_comment=submission.moderator_comment,
        created_at=submission.created_at,
        updated_at=submission.updated_at,
        decided_at=submission.decided_at,
    )


def list_mine(db: Session, store: Optional[ObjectStore], author_id: str) -> list[SubmissionOut]:
    rows = (
        db.query(ModerationSubmission)
        .filter(ModerationSubmission.author_user_id == author_id)
        .order_by(ModerationSubmission.created_at.desc())
        .limit(LIST_MINE_LIMIT)
        .all()
    )
    cafes = _target_cafes(db, rows)
    return [serialize_submission(s, store, cafe=cafes.get(s.target_id)) for s in rows]


def parse_status_filter(raw: Optional[str]) -> Optional[SubmissionStatus]:
    """``None`` means pending; an empty string means every status."""
    if raw is None:
        return SubmissionStatus.pending
    value = raw.strip().lower()
    if not value:
        return None
    try:
        return SubmissionStatus(value)
    except ValueError:
        raise InvalidArgument("invalid status")


def list_for_moderation(
    db: Session,
    store: Optional[ObjectStore],
    status: Optional[SubmissionStatus],
    entity_type: Optional[str] = None,
) -> list[SubmissionOut]:
    query = db.query(ModerationSubmission, User).outerjoin(User, User.id == ModerationSubmission.author_user_id)
    if status is not None:
        query = query.filter(ModerationSubmission.status == status)
    entity = (entity_type or "").strip().lower()
    if entity:
        try:
            query = query.filter(ModerationSubmission.entity_type == EntityType(entity))
        except ValueError:
            return []
    rows = query.order_by(ModerationSubmission.created_at.asc()).limit(MODERATION_LIST_LIMIT).all()
    cafes = _target_cafes(db, [s for s, _ in rows])
    return [
        serialize_submission(s, store, _author_label(u, s.author_user_id), cafes.get(s.target_id))
        for s, u in rows
    ]


def get_submission(db: Session, store: Optional[ObjectStore], submission_id: str) -> SubmissionOut:
    row = (
        db.query(ModerationSubmission, User)
        .outerjoin(User, User.id == ModerationSubmission.author_user_id)
        .filter(ModerationSubmission.id == submission_id)
        .first()
    )
    if not row:
        raise NotFound("submission not found")
    submission, author = row
    cafes = _target_cafes(db, [submission])
    return serialize_submission(
        submission, store, _author_label(author, submission.author_user_id), cafes.get(submission.target_id)
    )


# ---------------------------------------------------------------------------
# Decision and apply
# ---------------------------------------------------------------------------

def _set_statement_timeout(db: Session, seconds: int) -> None:
    if seconds > 0 and db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(seconds * 1000)}"))


def decide(
    db: Session,
    store: Optional[ObjectStore],
    submission_id: str,
    moderator_id: str,
    decision: SubmissionStatus,
    comment: Optional[str] = None,
    timeout_seconds: int = 15,
) -> None:
    """Approve or reject a pending submission in one transaction.

    Raises ``Conflict`` when the submission was already decided and
    ``NotFound`` when it does not exist; apply errors propagate unchanged.
    """
    if decision not in DECISIONS:
        raise InvalidArgument("decision must be approved or rejected")
    comment = (comment or "").strip()
    if decision == SubmissionStatus.rejected and not comment:
        raise InvalidArgument("a comment is required to reject a submission")

    try:
        _set_statement_timeout(db, timeout_seconds)
        submission = (
            db.query(ModerationSubmission)
            .filter(ModerationSubmission.id == submission_id)
            .with_for_update()
            .first()
        )
        if not submission:
            raise NotFound("submission not found")
        if submission.status != SubmissionStatus.pending:
            raise Conflict("submission has already been decided")

        if decision == SubmissionStatus.approved:
            apply_submission(db, store, submission)

        now = _utcnow()
        submission.status = decision
        submission.moderator_id = moderator_id
        submission.moderator_comment = comment or None
        submission.decided_at = now
        submission.updated_at = now
        db.add(ModerationEvent(
            submission_id=submission.id,
            actor_user_id=moderator_id,
            event_type=decision,
            comment=comment or None,
            created_at=now,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Submission %s %s by moderator %s", submission_id, decision.value, moderator_id)


def apply_submission(db: Session, store: Optional[ObjectStore], submission: ModerationSubmission) -> None:
    """Dispatch an approved submission to its catalog mutation."""
    payload = parse_payload(submission.entity_type, submission.action_type, submission.payload)
    if isinstance(payload, CafeCreatePayload):
        _apply_cafe_create(db, store, submission, payload)
    elif isinstance(payload, DescriptionPayload):
        _apply_description(db, submission, payload)
    elif isinstance(payload, PhotosPayload):
        kind = PhotoKind.cafe if submission.entity_type == EntityType.cafe_photo else PhotoKind.menu
        _apply_photos(db, store, submission, payload, kind)


def _require_target(submission: ModerationSubmission) -> str:
    target = (submission.target_id or "").strip()
    if not target:
        raise InvalidArgument("submission has no target_id")
    return target


def _apply_cafe_create(
    db: Session, store: Optional[ObjectStore], submission: ModerationSubmission, payload: CafeCreatePayload
) -> None:
    name, address = _check_name_address(payload.name, payload.address)
    _check_coordinates(payload.latitude, payload.longitude)
    description = normalize_description(payload.description, required=False)
    cafe_id = catalog.insert_cafe(
        db, name, address, description or None, payload.latitude, payload.longitude,
        normalize_amenities(payload.amenities),
    )
    insert_photos(db, store, cafe_id, submission.author_user_id, payload.photo_object_keys, PhotoKind.cafe)
    insert_photos(db, store, cafe_id, submission.author_user_id, payload.menu_photo_object_keys, PhotoKind.menu)


def _apply_description(db: Session, submission: ModerationSubmission, payload: DescriptionPayload) -> None:
    catalog.update_cafe_description(db, _require_target(submission), normalize_description(payload.description))


def _apply_photos(
    db: Session,
    store: Optional[ObjectStore],
    submission: ModerationSubmission,
    payload: PhotosPayload,
    kind: PhotoKind,
) -> None:
    if not payload.object_keys:
        raise InvalidArgument("photo list is empty")
    insert_photos(db, store, _require_target(submission), submission.author_user_id, payload.object_keys, kind)


def insert_photos(
    db: Session,
    store: Optional[ObjectStore],
    cafe_id: str,
    uploaded_by: Optional[str],
    object_keys: list[str],
    kind: PhotoKind,
) -> int:
    """Attach staged objects to a cafe; returns how many rows were inserted.

    Every key is HEAD-checked before the first insert. Keys already attached
    to the cafe are skipped so re-applying the same keys is a no-op.
    """
    keys = [k for k in (normalize_object_key(raw) for raw in object_keys or []) if k]
    if not keys:
        return 0
    if store is None:
        raise ServiceUnavailable("photo storage is unavailable")
    catalog.ensure_cafe_exists(db, cafe_id)

    heads = []
    for key in keys:
        try:
            size, mime = store.head(key)
        except ObjectNotFoundError:
            raise InvalidArgument(f"file {key} not found in storage")
        mime = normalize_content_type(mime)
        if not is_allowed_mime(mime):
            raise InvalidArgument(f"file {key} has unsupported format")
        if size <= 0:
            raise InvalidArgument(f"file {key} is empty")
        heads.append((key, size, mime))

    count = catalog.count_cafe_photos(db, cafe_id, kind.value)
    inserted = 0
    for key, size, mime in heads:
        try:
            catalog.insert_cafe_photo(
                db,
                cafe_id=cafe_id,
                object_key=key,
                mime_type=mime,
                size_bytes=size,
                kind=kind.value,
                position=count + 1 + inserted,
                is_cover=kind == PhotoKind.cafe and count == 0 and inserted == 0,
                uploaded_by=uploaded_by,
            )
        except AlreadyExists:
            logger.info("Photo %s already attached to cafe %s, skipped", key, cafe_id)
            continue
        inserted += 1
    return inserted
