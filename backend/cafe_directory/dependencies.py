"""FastAPI dependencies: caller identity, roles, and media collaborators."""
import uuid
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import get_db
from cafe_directory.errors import Forbidden, InvalidArgument, Unauthorized
from cafe_directory.models.user import User
from cafe_directory.services.format_encoder import FormatEncoderClient, get_format_encoder
from cafe_directory.services.photo_optimizer import PhotoOptimizer
from cafe_directory.storage import ObjectStore, get_object_store


def parse_uuid(value: str, what: str = "id") -> str:
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        raise InvalidArgument(f"invalid {what}")


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller from the ``X-User-ID`` header."""
    raw = (x_user_id or "").strip()
    if not raw:
        raise Unauthorized("sign in required")
    try:
        user_id = str(uuid.UUID(raw))
    except ValueError:
        raise Unauthorized("sign in required")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Unauthorized("sign in required")
    return user


def require_moderator(user: User = Depends(get_current_user)) -> User:
    if not user.is_moderator:
        raise Forbidden("moderator role required")
    return user


def get_photo_optimizer(
    store: Optional[ObjectStore] = Depends(get_object_store),
    encoder: Optional[FormatEncoderClient] = Depends(get_format_encoder),
) -> PhotoOptimizer:
    return PhotoOptimizer(
        store,
        encoder,
        max_upload_bytes=settings.S3_MAX_UPLOAD_BYTES,
        encoder_formats=settings.encoder_formats(),
    )
