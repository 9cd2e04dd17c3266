"""Catalog persistence for cafes and cafe photos.

Every function works on the caller's session and only flushes; the caller owns
the transaction (the moderation engine commits approval as one unit).
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafe_directory.errors import AlreadyExists, InvalidArgument, NotFound
from cafe_directory.models.cafe import Cafe, CafePhoto, PhotoKind

logger = logging.getLogger(__name__)

# geography point takes (lng, lat)
_GEOG_UPDATE = text(
    "UPDATE cafes SET geog = ST_SetSRID(ST_MakePoint(:lng, :lat), 4326) WHERE id = :id"
)


def _get_cafe_or_404(db: Session, cafe_id: str) -> Cafe:
    cafe = db.query(Cafe).filter(Cafe.id == cafe_id).first()
    if not cafe:
        raise NotFound("cafe not found")
    return cafe


def ensure_cafe_exists(db: Session, cafe_id: str) -> None:
    exists = db.query(Cafe.id).filter(Cafe.id == cafe_id).first()
    if not exists:
        raise NotFound("cafe not found")


def get_cafe(db: Session, cafe_id: str) -> Cafe:
    return _get_cafe_or_404(db, cafe_id)


def insert_cafe(
    db: Session,
    name: str,
    address: str,
    description: Optional[str],
    lat: float,
    lng: float,
    amenities: list[str],
) -> str:
    """Insert a cafe and return its id. On PostgreSQL also sets ``geog`` from (lng, lat)."""
    cafe = Cafe(
        id=str(uuid.uuid4()),
        name=name,
        address=address,
        description=description or None,
        lat=lat,
        lng=lng,
        amenities=list(amenities),
    )
    db.add(cafe)
    db.flush()
    if db.get_bind().dialect.name == "postgresql":
        db.execute(_GEOG_UPDATE, {"lng": lng, "lat": lat, "id": cafe.id})
    return cafe.id


def update_cafe_description(db: Session, cafe_id: str, description: str) -> str:
    updated = (
        db.query(Cafe)
        .filter(Cafe.id == cafe_id)
        .update({Cafe.description: description, Cafe.updated_at: func.now()}, synchronize_session="fetch")
    )
    if updated == 0:
        raise NotFound("cafe not found")
    return description


def count_cafe_photos(db: Session, cafe_id: str, kind: str) -> int:
    return (
        db.query(func.count(CafePhoto.id))
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.kind == PhotoKind(kind))
        .scalar()
        or 0
    )


def clear_cafe_covers(db: Session, cafe_id: str) -> None:
    """Only cafe-kind photos can be covers."""
    db.query(CafePhoto).filter(
        CafePhoto.cafe_id == cafe_id,
        CafePhoto.kind == PhotoKind.cafe,
        CafePhoto.is_cover.is_(True),
    ).update({CafePhoto.is_cover: False}, synchronize_session="fetch")
    db.flush()


def photo_exists(db: Session, cafe_id: str, object_key: str) -> bool:
    return (
        db.query(CafePhoto.id)
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.object_key == object_key)
        .first()
        is not None
    )


def insert_cafe_photo(
    db: Session,
    cafe_id: str,
    object_key: str,
    mime_type: str,
    size_bytes: int,
    kind: str,
    position: int,
    is_cover: bool,
    uploaded_by: Optional[str] = None,
) -> CafePhoto:
    """Insert inside a savepoint so a duplicate leaves the outer transaction usable.

    Raises ``AlreadyExists`` when (cafe_id, object_key) is taken; covers cleared
    for the new photo are restored along with the savepoint.
    """
    if photo_exists(db, cafe_id, object_key):
        raise AlreadyExists("photo is already attached to this cafe")
    photo = CafePhoto(
        id=str(uuid.uuid4()),
        cafe_id=cafe_id,
        object_key=object_key,
        mime_type=mime_type,
        size_bytes=size_bytes,
        kind=PhotoKind(kind),
        position=position,
        is_cover=is_cover,
        uploaded_by=uploaded_by,
    )
    savepoint = db.begin_nested()
    try:
        if is_cover:
            clear_cafe_covers(db, cafe_id)
        db.add(photo)
        db.flush()
    except IntegrityError as exc:
        savepoint.rollback()
        raise AlreadyExists("photo is already attached to this cafe") from exc
    savepoint.commit()
    return photo


def list_cafe_photos(db: Session, cafe_id: str, kind: str) -> list[CafePhoto]:
    return (
        db.query(CafePhoto)
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.kind == PhotoKind(kind))
        .order_by(CafePhoto.is_cover.desc(), CafePhoto.position.asc(), CafePhoto.created_at.asc())
        .all()
    )


def cover_photo_key(db: Session, cafe_id: str) -> Optional[str]:
    row = (
        db.query(CafePhoto.object_key)
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.kind == PhotoKind.cafe)
        .order_by(CafePhoto.is_cover.desc(), CafePhoto.position.asc(), CafePhoto.created_at.asc())
        .first()
    )
    return row[0] if row else None


def _get_photo_or_404(db: Session, cafe_id: str, kind: str, photo_id: str) -> CafePhoto:
    photo = (
        db.query(CafePhoto)
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.kind == PhotoKind(kind), CafePhoto.id == photo_id)
        .first()
    )
    if not photo:
        raise NotFound("photo not found")
    return photo


def set_cover(db: Session, cafe_id: str, kind: str, photo_id: str) -> CafePhoto:
    if kind != PhotoKind.cafe.value:
        raise InvalidArgument("only cafe photos can be a cover")
    photo = _get_photo_or_404(db, cafe_id, kind, photo_id)
    clear_cafe_covers(db, cafe_id)
    photo.is_cover = True
    db.flush()
    return photo


def reorder_photos(db: Session, cafe_id: str, kind: str, photo_ids: list[str]) -> list[CafePhoto]:
    """Positions become 1..n in the given order; ids must be exactly the cafe's photos of ``kind``."""
    photos = {p.id: p for p in list_cafe_photos(db, cafe_id, kind)}
    if len(photo_ids) != len(set(photo_ids)) or set(photo_ids) != set(photos):
        raise InvalidArgument("photo_ids must list every photo of the cafe exactly once")
    for index, photo_id in enumerate(photo_ids, start=1):
        photos[photo_id].position = index
    if kind == PhotoKind.cafe.value and photos and not any(p.is_cover for p in photos.values()):
        photos[photo_ids[0]].is_cover = True
    db.flush()
    return list_cafe_photos(db, cafe_id, kind)


def delete_photo(db: Session, cafe_id: str, kind: str, photo_id: str) -> str:
    """Delete a photo row, promote a new cover if needed, renumber positions. Returns its object key."""
    photo = _get_photo_or_404(db, cafe_id, kind, photo_id)
    object_key = photo.object_key
    was_cover = photo.is_cover
    db.delete(photo)
    db.flush()

    remaining = (
        db.query(CafePhoto)
        .filter(CafePhoto.cafe_id == cafe_id, CafePhoto.kind == PhotoKind(kind))
        .order_by(CafePhoto.position.asc(), CafePhoto.created_at.asc())
        .all()
    )
    for index, other in enumerate(remaining, start=1):
        other.position = index
    if was_cover and remaining and kind == PhotoKind.cafe.value:
        remaining[0].is_cover = True
    db.flush()
    return object_key


def update_photo_object(db: Session, photo_id: str, object_key: str, mime_type: str, size_bytes: int) -> None:
    updated = (
        db.query(CafePhoto)
        .filter(CafePhoto.id == photo_id)
        .update(
            {CafePhoto.object_key: object_key, CafePhoto.mime_type: mime_type, CafePhoto.size_bytes: size_bytes},
            synchronize_session="fetch",
        )
    )
    if updated == 0:
        raise NotFound("photo not found")


def list_photos_for_backfill(
    db: Session,
    kind: Optional[str] = None,
    cafe_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[CafePhoto]:
    query = db.query(CafePhoto)
    if kind:
        query = query.filter(CafePhoto.kind == PhotoKind(kind))
    if cafe_id:
        query = query.filter(CafePhoto.cafe_id == cafe_id)
    query = query.order_by(CafePhoto.created_at.asc(), CafePhoto.id.asc())
    if limit and limit > 0:
        query = query.limit(limit)
    return query.all()
