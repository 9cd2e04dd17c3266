"""Client for the external webp/avif encoder.

Two provider shapes are supported:
- ``imgproxy``: GET ``<base>/insecure/rs:fit:<W>:0/q:<Q>/<base64url(source)>.<fmt>``
- ``libvips``: POST ``<base>/v1/encode`` with ``{source_url, width, format, quality}``
"""
import base64
import logging
from functools import lru_cache
from typing import Optional

import httpx

from cafe_directory.config import Settings, settings
from cafe_directory.errors import InvalidArgument, UpstreamError

logger = logging.getLogger(__name__)

PROVIDER_IMGPROXY = "imgproxy"
PROVIDER_LIBVIPS = "libvips"
DEFAULT_QUALITY = 78
DEFAULT_TIMEOUT_SECONDS = 8.0
MAX_RESPONSE_BYTES = 16 * 1024 * 1024

VARIANT_FORMAT_CONTENT_TYPES = {"webp": "image/webp", "avif": "image/avif"}


def normalize_variant_format(value: str | None) -> str:
    fmt = (value or "").strip().lower()
    return fmt if fmt in VARIANT_FORMAT_CONTENT_TYPES else ""


def content_type_for_format(fmt: str) -> str:
    return VARIANT_FORMAT_CONTENT_TYPES.get(normalize_variant_format(fmt), "application/octet-stream")


class FormatEncoderClient:
    def __init__(
        self,
        base_url: str,
        provider: str = PROVIDER_IMGPROXY,
        quality: int = DEFAULT_QUALITY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.provider = (provider or "").strip().lower() or PROVIDER_IMGPROXY
        self.quality = quality if 1 <= quality <= 100 else DEFAULT_QUALITY
        self._client = httpx.Client(
            timeout=timeout if timeout > 0 else DEFAULT_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def encode(self, source_url: str, width: int, fmt: str) -> tuple[bytes, str]:
        """Return ``(bytes, content_type)`` for ``source_url`` resized to ``width`` in ``fmt``."""
        if width <= 0:
            raise InvalidArgument("width must be > 0")
        source = (source_url or "").strip()
        if not source:
            raise InvalidArgument("source url is required")
        fmt = normalize_variant_format(fmt)
        if not fmt:
            raise InvalidArgument("format is required")

        if self.provider == PROVIDER_IMGPROXY:
            encoded = base64.urlsafe_b64encode(source.encode()).decode().rstrip("=")
            url = f"{self.base_url}/insecure/rs:fit:{width}:0/q:{self.quality}/{encoded}.{fmt}"
            request = self._client.build_request("GET", url)
        elif self.provider == PROVIDER_LIBVIPS:
            request = self._client.build_request(
                "POST",
                f"{self.base_url}/v1/encode",
                json={"source_url": source, "width": width, "format": fmt, "quality": self.quality},
                headers={"Accept": "image/*"},
            )
        else:
            raise InvalidArgument(f"unsupported photo format encoder provider: {self.provider}")
        return self._send(request, fmt)

    def _send(self, request: httpx.Request, fmt: str) -> tuple[bytes, str]:
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{self.provider} request failed: {exc}") from exc
        try:
            if not response.is_success:
                snippet = response.read()[:4096].decode("utf-8", "replace").strip()
                raise UpstreamError(f"{self.provider} status={response.status_code}: {snippet}")
            payload = bytearray()
            for chunk in response.iter_bytes():
                remaining = MAX_RESPONSE_BYTES - len(payload)
                payload.extend(chunk[:remaining])
                if len(payload) >= MAX_RESPONSE_BYTES:
                    break
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{self.provider} response failed: {exc}") from exc
        finally:
            response.close()
        if not payload:
            raise UpstreamError(f"{self.provider} returned empty payload")
        content_type = response.headers.get("content-type", "").strip() or content_type_for_format(fmt)
        return bytes(payload), content_type


def build_format_encoder(config: Settings) -> Optional[FormatEncoderClient]:
    """None when the encoder is disabled or has no base URL."""
    if not config.PHOTO_FORMAT_ENCODER_ENABLED:
        return None
    if not config.PHOTO_FORMAT_ENCODER_BASE_URL.strip():
        logger.warning("photo format encoder enabled without PHOTO_FORMAT_ENCODER_BASE_URL; disabled")
        return None
    return FormatEncoderClient(
        base_url=config.PHOTO_FORMAT_ENCODER_BASE_URL,
        provider=config.PHOTO_FORMAT_ENCODER_PROVIDER,
        quality=config.PHOTO_FORMAT_ENCODER_QUALITY,
        timeout=config.PHOTO_FORMAT_ENCODER_TIMEOUT_SECONDS,
    )


@lru_cache
def get_format_encoder() -> Optional[FormatEncoderClient]:
    return build_format_encoder(settings)
