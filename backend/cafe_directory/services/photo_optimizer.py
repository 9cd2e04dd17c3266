"""Cafe photo optimizer.

Responsibilities:
- Fetch a source object and normalize its mime type (observed beats declared)
- Inspect dimensions lazily, reject oversized or broken images
- Fit the long side within 2048 px (bicubic, Catmull-Rom) and re-encode as
  JPEG q82, or PNG when the image carries transparency
- Keep the original bytes when recompression would not shrink an unresized image
- Move the result to ``cafes/<id>/<kind>/optimized/<ns>_<hash16><ext>``
- Generate best-effort raster and webp/avif variants for responsive delivery

AVIF sources are passed through untouched (Pillow does not decode them here).
"""
import hashlib
import io
import logging
import posixpath
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from PIL import Image, UnidentifiedImageError

from cafe_directory.config import settings
from cafe_directory.errors import (
    DeadlineExceeded,
    PhotoInvalidError,
    PhotoTooLargeError,
    ServiceUnavailable,
)
from cafe_directory.media import (
    cafe_photo_prefix,
    extension_for_mime,
    normalize_content_type,
    normalize_object_key,
    normalize_photo_kind,
)
from cafe_directory.services.format_encoder import (
    FormatEncoderClient,
    content_type_for_format,
    normalize_variant_format,
)
from cafe_directory.storage import ObjectStore

logger = logging.getLogger(__name__)

MAX_PIXELS = 36_000_000
MAX_SIDE = 2048
JPEG_QUALITY = 82
VARIANT_WIDTHS = (320, 640, 1024, 1536)
DEFAULT_MAX_BYTES = 8 * 1024 * 1024
ALPHA_GRID = 16

_PIL_FORMAT_MIME = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}

_optimizer_slots = threading.BoundedSemaphore(max(1, settings.PHOTO_OPTIMIZER_MAX_CONCURRENCY))


@dataclass
class OptimizedImage:
    content: bytes
    content_type: str
    width: int = 0
    height: int = 0
    changed: bool = False


@dataclass
class OptimizedPhoto:
    object_key: str
    mime_type: str
    size_bytes: int
    rewritten: bool
    generated_variants: int
    generated_format_variants: int
    variant_source_width: int


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def fit_within(width: int, height: int, max_side: int = MAX_SIDE) -> tuple[int, int]:
    if width <= 0 or height <= 0 or max_side <= 0:
        return width, height
    if width <= max_side and height <= max_side:
        return width, height
    if width >= height:
        return max_side, max(1, int(height * (max_side / width)))
    return max(1, int(width * (max_side / height))), max_side


def variant_widths_for_source(source_width: int) -> list[int]:
    if source_width <= 0:
        return []
    return [w for w in VARIANT_WIDTHS if w < source_width]


def variant_height(source_width: int, source_height: int, width: int) -> int:
    return max(1, round(source_height * width / source_width))


def variant_object_key(base_key: str, width: int) -> str:
    key = normalize_object_key(base_key)
    stem, ext = posixpath.splitext(key)
    if not ext:
        return f"{key}_w{width}"
    return f"{stem}_w{width}{ext}"


def format_variant_object_key(base_key: str, width: int, fmt: str) -> str:
    key = normalize_object_key(base_key)
    stem, _ = posixpath.splitext(key)
    return f"{stem}_w{width}.{normalize_variant_format(fmt) or 'webp'}"


def content_digest(content: bytes) -> str:
    return hashlib.sha256(content).digest()[:8].hex()


def canonical_object_key(cafe_id: str, kind: str, content: bytes, content_type: str) -> str:
    return (
        f"{cafe_photo_prefix(cafe_id.strip(), kind.strip())}optimized/"
        f"{time.time_ns()}_{content_digest(content)}{extension_for_mime(content_type)}"
    )


def is_canonical_output(key: str, cafe_id: str, kind: str, content: bytes) -> bool:
    """True when ``key`` is an optimizer output whose embedded hash matches ``content``."""
    prefix = cafe_photo_prefix(cafe_id, kind) + "optimized/"
    if not key.startswith(prefix):
        return False
    stem, _ = posixpath.splitext(posixpath.basename(key))
    return stem.endswith("_" + content_digest(content))


def has_alpha(img: Image.Image) -> bool:
    """Sample a 16x16 grid plus the bottom-right pixel for any non-opaque alpha."""
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")
    if "A" not in img.getbands():
        return False
    alpha = img.getchannel("A")
    width, height = alpha.size
    step_x = max(1, width // ALPHA_GRID)
    step_y = max(1, height // ALPHA_GRID)
    for y in range(0, height, step_y):
        for x in range(0, width, step_x):
            if alpha.getpixel((x, y)) < 255:
                return True
    return alpha.getpixel((width - 1, height - 1)) < 255


def encode_image(img: Image.Image, content_type: str) -> bytes:
    buf = io.BytesIO()
    if normalize_content_type(content_type) == "image/png":
        img.save(buf, format="PNG")
    else:
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    return buf.getvalue()


def _resample(img: Image.Image, width: int, height: int) -> Image.Image:
    if img.mode not in ("RGB", "RGBA", "L", "LA"):
        img = img.convert("RGBA" if has_alpha(img) else "RGB")
    return img.resize((width, height), Image.Resampling.BICUBIC)


def _open(data: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(data))
    except Image.DecompressionBombError as exc:
        raise PhotoTooLargeError("image dimensions are too large") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise PhotoInvalidError(f"cannot read image: {exc}") from exc


def optimize_image(content_type: str, original: bytes) -> OptimizedImage:
    """Resize and re-encode ``original``; never raises for AVIF."""
    normalized = normalize_content_type(content_type)
    result = OptimizedImage(content=original, content_type=normalized)
    if not original:
        raise PhotoInvalidError("photo payload is empty")
    if normalized == "image/avif":
        return result

    img = _open(original)
    width, height = img.size
    if width <= 0 or height <= 0:
        raise PhotoInvalidError("invalid image dimensions")
    if width * height > MAX_PIXELS:
        raise PhotoTooLargeError("image dimensions are too large", {"max_pixels": MAX_PIXELS})
    source_format = img.format
    try:
        img.load()
    except (OSError, ValueError) as exc:
        raise PhotoInvalidError(f"cannot decode image: {exc}") from exc

    target_w, target_h = fit_within(width, height)
    resized = img
    if (target_w, target_h) != (width, height):
        resized = _resample(img, target_w, target_h)
        result.changed = True

    output_type = "image/png" if has_alpha(resized) else "image/jpeg"
    encoded = encode_image(resized, output_type)

    if not result.changed and len(encoded) >= len(original):
        result.width, result.height = width, height
        result.content_type = normalized or _PIL_FORMAT_MIME.get(source_format or "", "")
        return result

    return OptimizedImage(
        content=encoded,
        content_type=output_type,
        width=target_w,
        height=target_h,
        changed=True,
    )


def _image_width(data: bytes) -> int:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size[0]
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        return 0


def estimate_format_variant_count(source_width: int, formats: Sequence[str]) -> int:
    widths = variant_widths_for_source(source_width)
    valid = [f for f in formats if normalize_variant_format(f)]
    return len(widths) * len(valid)


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class PhotoOptimizer:
    def __init__(
        self,
        store: Optional[ObjectStore],
        encoder: Optional[FormatEncoderClient] = None,
        max_upload_bytes: int = DEFAULT_MAX_BYTES,
        encoder_formats: Sequence[str] = ("webp", "avif"),
    ):
        self.store = store
        self.encoder = encoder
        self.max_upload_bytes = max_upload_bytes if max_upload_bytes > 0 else DEFAULT_MAX_BYTES
        self.encoder_formats = list(encoder_formats) or ["webp", "avif"]

    def optimize_and_persist(
        self,
        cafe_id: str,
        kind: str,
        source_key: str,
        declared_mime: str,
        declared_size: int,
        deadline: Optional[float] = None,
    ) -> OptimizedPhoto:
        return self._run(cafe_id, kind, source_key, declared_mime, declared_size, deadline, persist=True)

    def preview(
        self,
        cafe_id: str,
        kind: str,
        source_key: str,
        declared_mime: str,
        declared_size: int,
        deadline: Optional[float] = None,
    ) -> OptimizedPhoto:
        """Dry run: same decision, no writes, variant counts estimated."""
        return self._run(cafe_id, kind, source_key, declared_mime, declared_size, deadline, persist=False)

    def _run(self, cafe_id, kind, source_key, declared_mime, declared_size, deadline, persist) -> OptimizedPhoto:
        if self.store is None:
            raise ServiceUnavailable("photo storage is unavailable")
        cafe_id = (cafe_id or "").strip()
        if not cafe_id:
            raise PhotoInvalidError("cafe id is required")
        kind = normalize_photo_kind(kind)
        if not kind:
            raise PhotoInvalidError("kind must be cafe or menu")
        source_key = normalize_object_key(source_key)
        if not source_key:
            raise PhotoInvalidError("object key is required")

        _check_deadline(deadline)
        content, observed_mime = self.store.get(source_key)
        if not content:
            raise PhotoInvalidError("uploaded photo is empty")
        source_type = normalize_content_type(observed_mime) or normalize_content_type(declared_mime)

        _check_deadline(deadline)
        if is_canonical_output(source_key, cafe_id, kind, content):
            optimized = OptimizedImage(content=content, content_type=source_type)
        else:
            with _optimizer_slots:
                optimized = optimize_image(source_type, content)
        _check_deadline(deadline)

        if not optimized.content:
            raise PhotoInvalidError("optimized photo is empty")
        if len(optimized.content) > self.max_upload_bytes:
            raise PhotoTooLargeError(
                f"optimized photo exceeds max size {self.max_upload_bytes}",
                {"max_upload_bytes": self.max_upload_bytes},
            )
        output_type = normalize_content_type(optimized.content_type) or source_type
        if not output_type:
            raise PhotoInvalidError("unable to determine output mime type")

        should_rewrite = (
            optimized.changed
            or normalize_content_type(declared_mime) != output_type
            or not source_key.startswith(cafe_photo_prefix(cafe_id, kind))
        )

        final_key = source_key
        final_size = declared_size if declared_size and declared_size > 0 else len(content)
        rewritten = False
        if should_rewrite:
            next_key = canonical_object_key(cafe_id, kind, optimized.content, output_type)
            if persist:
                self.store.put(next_key, output_type, optimized.content)
                if next_key != source_key:
                    self.delete_quietly(source_key)
            final_key = next_key
            final_size = len(optimized.content)
            rewritten = True

        variant_source = optimized.content if rewritten else content
        source_width = optimized.width or _image_width(variant_source)

        if persist:
            raster = self._ensure_raster_variants(final_key, output_type, variant_source, deadline)
            formats = self._ensure_format_variants(final_key, source_width, deadline)
        else:
            raster = len(variant_widths_for_source(source_width))
            formats = (
                estimate_format_variant_count(source_width, self.encoder_formats)
                if self.encoder is not None
                else 0
            )

        logger.info(
            "photo optimized source=%s final=%s rewritten=%s variants=%d format_variants=%d persist=%s",
            source_key, final_key, rewritten, raster + formats, formats, persist,
        )
        return OptimizedPhoto(
            object_key=final_key,
            mime_type=output_type,
            size_bytes=final_size,
            rewritten=rewritten,
            generated_variants=raster + formats,
            generated_format_variants=formats,
            variant_source_width=source_width,
        )

    def _ensure_raster_variants(self, base_key: str, content_type: str, content: bytes, deadline) -> int:
        """Best effort; returns how many variants were written."""
        if content_type not in ("image/jpeg", "image/png") or "/optimized/" not in base_key:
            return 0
        generated = 0
        try:
            with _optimizer_slots:
                img = _open(content)
                src_w, src_h = img.size
                widths = variant_widths_for_source(src_w)
                if not widths:
                    return 0
                img.load()
                for width in widths:
                    _check_deadline(deadline)
                    scaled = _resample(img, width, variant_height(src_w, src_h, width))
                    payload = encode_image(scaled, content_type)
                    self.store.put(variant_object_key(base_key, width), content_type, payload)
                    generated += 1
        except Exception as exc:
            logger.warning("raster variants for %s stopped after %d: %s", base_key, generated, exc)
        return generated

    def _ensure_format_variants(self, base_key: str, source_width: int, deadline) -> int:
        if self.encoder is None or "/optimized/" not in base_key:
            return 0
        widths = variant_widths_for_source(source_width)
        if not widths:
            return 0
        source_url = self.store.public_url(base_key).strip()
        if not source_url:
            return 0

        generated = 0
        for fmt in self.encoder_formats:
            fmt = normalize_variant_format(fmt)
            if not fmt:
                continue
            for width in widths:
                try:
                    _check_deadline(deadline)
                    payload, content_type = self.encoder.encode(source_url, width, fmt)
                    self.store.put(
                        format_variant_object_key(base_key, width, fmt),
                        content_type.strip() or content_type_for_format(fmt),
                        payload,
                    )
                    generated += 1
                except Exception as exc:
                    logger.warning("%s variant w%d for %s failed: %s", fmt, width, base_key, exc)
        return generated

    def delete_quietly(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception:
            logger.warning("failed to delete replaced photo object %s", key, exc_info=True)


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise DeadlineExceeded("photo optimization deadline exceeded")
