"""Shared media helpers: allowed mime types, extensions, photo kinds."""
import secrets
import time

ALLOWED_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/avif": ".avif",
}
ALLOWED_MIME_TYPES = frozenset(ALLOWED_MIME_EXTENSIONS)

PHOTO_KINDS = ("cafe", "menu")

CACHE_CONTROL = "public, max-age=31536000, immutable"


def normalize_content_type(value: str | None) -> str:
    """Lowercase and drop parameters after ``;``."""
    if not value:
        return ""
    return value.split(";", 1)[0].strip().lower()


def is_allowed_mime(value: str | None) -> bool:
    return normalize_content_type(value) in ALLOWED_MIME_TYPES


def extension_for_mime(mime: str, default: str = ".jpg") -> str:
    return ALLOWED_MIME_EXTENSIONS.get(normalize_content_type(mime), default)


def normalize_photo_kind(value: str | None) -> str:
    """Return ``cafe`` or ``menu``; empty means ``cafe``, anything else is ``""``."""
    kind = (value or "").strip().lower()
    if kind == "":
        return "cafe"
    if kind in PHOTO_KINDS:
        return kind
    return ""


def normalize_object_key(key: str | None) -> str:
    return (key or "").strip().lstrip("/")


def upload_token() -> str:
    return secrets.token_hex(8)


def staged_object_key(prefix: str, mime: str) -> str:
    """``<prefix><unix_sec>_<token><ext>`` for presigned uploads."""
    return f"{prefix}{int(time.time())}_{upload_token()}{extension_for_mime(mime)}"


def pending_prefix(user_id: str) -> str:
    return f"pending/submissions/{user_id}/"


def cafe_photo_prefix(cafe_id: str, kind: str) -> str:
    return f"cafes/{cafe_id}/{kind}/"
