"""Object store selection.

``get_object_store`` is a FastAPI dependency; it returns ``None`` when photo
storage is disabled so callers can answer ``service_unavailable``.
"""
from functools import lru_cache
from typing import Optional

from cafe_directory.config import Settings, settings
from cafe_directory.storage.object_store import (
    InMemoryObjectStore,
    ObjectStore,
    PresignedPut,
    S3ObjectStore,
)

__all__ = [
    "InMemoryObjectStore",
    "ObjectStore",
    "PresignedPut",
    "S3ObjectStore",
    "build_object_store",
    "get_object_store",
]


def build_object_store(config: Settings) -> Optional[ObjectStore]:
    backend = config.STORAGE_BACKEND.strip().lower()
    if backend == "memory":
        return InMemoryObjectStore(
            public_base_url=config.S3_PUBLIC_BASE_URL or "http://storage.local",
            presign_ttl_seconds=config.S3_PRESIGN_TTL_SECONDS,
        )
    if backend != "s3":
        raise RuntimeError(f"unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
    if not config.S3_ENABLED:
        return None
    return S3ObjectStore(
        bucket=config.S3_BUCKET,
        access_key=config.S3_ACCESS_KEY_ID,
        secret_key=config.S3_SECRET_ACCESS_KEY,
        region=config.S3_REGION,
        endpoint=config.S3_ENDPOINT,
        public_base_url=config.S3_PUBLIC_BASE_URL,
        use_path_style=config.S3_USE_PATH_STYLE,
        presign_ttl_seconds=config.S3_PRESIGN_TTL_SECONDS,
        connect_timeout=config.S3_CONNECT_TIMEOUT_SECONDS,
        read_timeout=config.S3_READ_TIMEOUT_SECONDS,
        max_attempts=config.S3_MAX_ATTEMPTS,
    )


@lru_cache
def get_object_store() -> Optional[ObjectStore]:
    return build_object_store(settings)
