"""Direct (moderator) cafe photo management.

Uploads go straight to ``cafes/<id>/<kind>/`` with a presigned PUT. Confirm
optimizes the object first and only then opens a short transaction for the
row, so no database transaction is held across image encoding.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from cafe_directory.errors import AlreadyExists, InvalidArgument, ObjectNotFoundError, ServiceUnavailable
from cafe_directory.media import (
    cafe_photo_prefix,
    is_allowed_mime,
    normalize_content_type,
    normalize_object_key,
    normalize_photo_kind,
    staged_object_key,
)
from cafe_directory.models.cafe import CafePhoto, PhotoKind
from cafe_directory.schemas.cafe import CafeOut, CafePhotoConfirmOut, CafePhotoOut
from cafe_directory.schemas.submission import PhotoPresignOut
from cafe_directory.services import catalog_repository as catalog
from cafe_directory.services.photo_optimizer import PhotoOptimizer
from cafe_directory.storage import ObjectStore

logger = logging.getLogger(__name__)


def require_kind(raw: Optional[str]) -> str:
    kind = normalize_photo_kind(raw)
    if not kind:
        raise InvalidArgument("kind must be cafe or menu")
    return kind


def _require_store(store: Optional[ObjectStore]) -> ObjectStore:
    if store is None:
        raise ServiceUnavailable("photo upload is unavailable")
    return store


def photo_url(store: Optional[ObjectStore], object_key: str) -> str:
    if object_key.startswith("http://") or object_key.startswith("https://"):
        return object_key
    return store.public_url(object_key) if store is not None else object_key


def photo_out(store: Optional[ObjectStore], photo: CafePhoto) -> CafePhotoOut:
    return CafePhotoOut(
        id=photo.id,
        url=photo_url(store, photo.object_key),
        kind=photo.kind.value,
        is_cover=photo.is_cover,
        position=photo.position,
    )


def cafe_out(db: Session, store: Optional[ObjectStore], cafe_id: str) -> CafeOut:
    cafe = catalog.get_cafe(db, cafe_id)
    cover = catalog.cover_photo_key(db, cafe_id)
    return CafeOut(
        id=cafe.id,
        name=cafe.name,
        address=cafe.address,
        description=cafe.description,
        latitude=cafe.lat,
        longitude=cafe.lng,
        amenities=list(cafe.amenities or []),
        cover_photo_url=photo_url(store, cover) if cover else None,
        created_at=cafe.created_at,
    )


def presign(
    db: Session,
    store: Optional[ObjectStore],
    cafe_id: str,
    kind: str,
    content_type: str,
    size_bytes: int,
    max_upload_bytes: int,
) -> PhotoPresignOut:
    store = _require_store(store)
    kind = require_kind(kind)
    mime = normalize_content_type(content_type)
    if not is_allowed_mime(mime):
        raise InvalidArgument("unsupported image format")
    if size_bytes <= 0:
        raise InvalidArgument("size_bytes must be greater than 0")
    if size_bytes > max_upload_bytes:
        raise InvalidArgument("file is too large", {"max_upload_bytes": max_upload_bytes})
    catalog.ensure_cafe_exists(db, cafe_id)

    key = staged_object_key(cafe_photo_prefix(cafe_id, kind), mime)
    presigned = store.presign_put(key, mime)
    return PhotoPresignOut(
        upload_url=presigned.url,
        method="PUT",
        headers=presigned.headers,
        object_key=key,
        file_url=store.public_url(key),
        expires_at=presigned.expires_at,
    )


def confirm(
    db: Session,
    store: Optional[ObjectStore],
    optimizer: PhotoOptimizer,
    cafe_id: str,
    uploader_id: Optional[str],
    object_key: str,
    kind: str,
    is_cover: bool,
    position: Optional[int],
    max_upload_bytes: int,
) -> CafePhotoConfirmOut:
    store = _require_store(store)
    kind = require_kind(kind)
    object_key = normalize_object_key(object_key)
    if not object_key:
        raise InvalidArgument("object_key is required")
    if not object_key.startswith(cafe_photo_prefix(cafe_id, kind)):
        raise InvalidArgument("object_key does not belong to this cafe")
    if position is not None and position < 0:
        raise InvalidArgument("position must be >= 0")
    catalog.ensure_cafe_exists(db, cafe_id)
    if catalog.photo_exists(db, cafe_id, object_key):
        raise AlreadyExists("photo is already attached to this cafe")

    try:
        size, mime = store.head(object_key)
    except ObjectNotFoundError:
        raise InvalidArgument("file not found in storage or upload link expired")
    if size > max_upload_bytes:
        raise InvalidArgument(
            "file is too large", {"max_upload_bytes": max_upload_bytes, "size_bytes": size}
        )
    if not is_allowed_mime(mime):
        raise InvalidArgument("unsupported image format")
    # end the read transaction before the slow part
    db.rollback()

    result = optimizer.optimize_and_persist(cafe_id, kind, object_key, mime, size)

    try:
        count = catalog.count_cafe_photos(db, cafe_id, kind)
        cover = kind == PhotoKind.cafe.value and (is_cover or count == 0)
        photo = catalog.insert_cafe_photo(
            db,
            cafe_id=cafe_id,
            object_key=result.object_key,
            mime_type=result.mime_type,
            size_bytes=result.size_bytes,
            kind=kind,
            position=position if position is not None else count + 1,
            is_cover=cover,
            uploaded_by=uploader_id,
        )
        db.commit()
        db.refresh(photo)
    except Exception:
        db.rollback()
        if result.rewritten:
            _delete_quietly(store, result.object_key)
        raise
    logger.info("Photo %s attached to cafe %s (%s, cover=%s)", photo.id, cafe_id, kind, photo.is_cover)
    return CafePhotoConfirmOut(
        photo=photo_out(store, photo),
        rewritten=result.rewritten,
        generated_variants=result.generated_variants,
    )


def list_photos(db: Session, store: Optional[ObjectStore], cafe_id: str, kind: str) -> list[CafePhotoOut]:
    kind = require_kind(kind)
    catalog.ensure_cafe_exists(db, cafe_id)
    return [photo_out(store, p) for p in catalog.list_cafe_photos(db, cafe_id, kind)]


def set_cover(db: Session, store: Optional[ObjectStore], cafe_id: str, kind: str, photo_id: str) -> CafePhotoOut:
    kind = require_kind(kind)
    catalog.ensure_cafe_exists(db, cafe_id)
    try:
        photo = catalog.set_cover(db, cafe_id, kind, photo_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(photo)
    return photo_out(store, photo)


def reorder(
    db: Session, store: Optional[ObjectStore], cafe_id: str, kind: str, photo_ids: list[str]
) -> list[CafePhotoOut]:
    kind = require_kind(kind)
    catalog.ensure_cafe_exists(db, cafe_id)
    try:
        catalog.reorder_photos(db, cafe_id, kind, [p.strip() for p in photo_ids])
        db.commit()
    except Exception:
        db.rollback()
        raise
    return [photo_out(store, p) for p in catalog.list_cafe_photos(db, cafe_id, kind)]


def delete(db: Session, store: Optional[ObjectStore], cafe_id: str, kind: str, photo_id: str) -> None:
    kind = require_kind(kind)
    catalog.ensure_cafe_exists(db, cafe_id)
    try:
        object_key = catalog.delete_photo(db, cafe_id, kind, photo_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Photo %s removed from cafe %s", photo_id, cafe_id)
    if store is not None and not object_key.startswith(("http://", "https://")):
        _delete_quietly(store, object_key)


def _delete_quietly(store: ObjectStore, key: str) -> None:
    try:
        store.delete(key)
    except Exception:
        logger.warning("Failed to delete object %s", key, exc_info=True)
