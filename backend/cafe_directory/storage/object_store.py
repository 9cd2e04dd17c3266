"""Object store adapters: S3-compatible (boto3) and an in-process store.

Keys are normalized by trimming whitespace and leading ``/``; an empty key is
an ``invalid_argument``. ``head``/``get`` raise ``ObjectNotFoundError`` for
missing keys; ``delete`` is idempotent.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from cafe_directory.errors import InvalidArgument, ObjectNotFoundError, PhotoTooLargeError
from cafe_directory.media import CACHE_CONTROL, normalize_content_type, normalize_object_key

logger = logging.getLogger(__name__)

_UNSIGNED_HEADERS = {"host", "content-length", "user-agent", "accept-encoding", "connection"}
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
DEFAULT_MAX_READ_BYTES = 64 * 1024 * 1024


@dataclass
class PresignedPut:
    url: str
    headers: dict[str, str]
    expires_at: datetime


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    cache_control: str = CACHE_CONTROL
    metadata: dict = field(default_factory=dict)


def _require_key(key: str) -> str:
    normalized = normalize_object_key(key)
    if not normalized:
        raise InvalidArgument("object key is required")
    return normalized


def normalize_endpoint(endpoint: str | None) -> str:
    """Accept host-only endpoints and default them to HTTPS."""
    raw = (endpoint or "").strip()
    if not raw:
        return ""
    if raw.startswith("http://") or raw.startswith("https://"):
        return raw.rstrip("/")
    return "https://" + raw.rstrip("/")


def signed_headers(headers: dict[str, str]) -> dict[str, str]:
    """Headers the uploader must send with a presigned PUT (host and transport headers dropped)."""
    out = {}
    for name, value in headers.items():
        lower = name.strip().lower()
        if not lower or lower in _UNSIGNED_HEADERS or value is None:
            continue
        out[name] = value
    return out


class ObjectStore(ABC):
    """Interface shared by the S3 adapter and the in-memory store."""

    presign_ttl_seconds: int = 900

    @abstractmethod
    def presign_put(self, key: str, content_type: str) -> PresignedPut: ...

    @abstractmethod
    def head(self, key: str) -> tuple[int, str]: ...

    @abstractmethod
    def get(self, key: str) -> tuple[bytes, str]: ...

    @abstractmethod
    def put(self, key: str, content_type: str, data: bytes) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def public_url(self, key: str) -> str: ...

    def _expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.presign_ttl_seconds)


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        *,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        endpoint: str | None = None,
        public_base_url: str | None = None,
        use_path_style: bool = True,
        presign_ttl_seconds: int = 900,
        connect_timeout: float = 3.0,
        read_timeout: float = 5.0,
        max_attempts: int = 3,
        max_read_bytes: int = DEFAULT_MAX_READ_BYTES,
        client=None,
    ) -> None:
        if not bucket:
            raise RuntimeError("S3_BUCKET must be set when S3 storage is enabled")
        self.bucket = bucket
        self.endpoint = normalize_endpoint(endpoint)
        self.public_base_url = (public_base_url or "").strip().rstrip("/")
        self.use_path_style = use_path_style
        self.presign_ttl_seconds = presign_ttl_seconds
        self.max_read_bytes = max_read_bytes if max_read_bytes > 0 else DEFAULT_MAX_READ_BYTES
        if client is not None:
            self.client = client
        else:
            session = boto3.session.Session()
            self.client = session.client(
                "s3",
                endpoint_url=self.endpoint or None,
                region_name=region or None,
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"mode": "standard", "max_attempts": max(1, max_attempts)},
                    s3={"addressing_style": "path" if use_path_style else "virtual"},
                ),
            )

    def presign_put(self, key: str, content_type: str) -> PresignedPut:
        key = _require_key(key)
        content_type = normalize_content_type(content_type)
        url = self.client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": content_type,
                "CacheControl": CACHE_CONTROL,
            },
            ExpiresIn=self.presign_ttl_seconds,
            HttpMethod="PUT",
        )
        headers = signed_headers({
            "Host": urlparse(url).netloc,
            "Content-Type": content_type,
            "Cache-Control": CACHE_CONTROL,
        })
        return PresignedPut(url=url, headers=headers, expires_at=self._expires_at())

    def head(self, key: str) -> tuple[int, str]:
        key = _require_key(key)
        try:
            out = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            self._raise_missing(exc, key)
            raise
        return int(out.get("ContentLength") or 0), (out.get("ContentType") or "").strip()

    def get(self, key: str) -> tuple[bytes, str]:
        key = _require_key(key)
        try:
            out = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            self._raise_missing(exc, key)
            raise
        body = out["Body"]
        try:
            data = body.read(self.max_read_bytes + 1)
        finally:
            body.close()
        if len(data) > self.max_read_bytes:
            raise PhotoTooLargeError(
                f"object {key} exceeds {self.max_read_bytes} bytes",
                {"max_bytes": self.max_read_bytes},
            )
        return data, (out.get("ContentType") or "").strip()

    def put(self, key: str, content_type: str, data: bytes) -> None:
        key = _require_key(key)
        if not data:
            raise InvalidArgument("payload must not be empty")
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=(content_type or "").strip(),
            CacheControl=CACHE_CONTROL,
        )

    def delete(self, key: str) -> None:
        key = _require_key(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return
            raise

    def public_url(self, key: str) -> str:
        key = normalize_object_key(key)
        if not key:
            return ""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        base = urlparse(self.endpoint)
        if not base.netloc:
            return key
        if self.use_path_style:
            return f"{base.scheme}://{base.netloc}/{self.bucket}/{key}"
        return f"{base.scheme}://{self.bucket}.{base.netloc}/{key}"

    @staticmethod
    def _raise_missing(exc: ClientError, key: str) -> None:
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if error.get("Code") in _MISSING_CODES or status == 404:
            raise ObjectNotFoundError(key) from exc


class InMemoryObjectStore(ObjectStore):
    """Process-local store for development and tests."""

    def __init__(self, public_base_url: str = "http://storage.local", presign_ttl_seconds: int = 900):
        self.public_base_url = public_base_url.rstrip("/")
        self.presign_ttl_seconds = presign_ttl_seconds
        self._objects: dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def presign_put(self, key: str, content_type: str) -> PresignedPut:
        key = _require_key(key)
        return PresignedPut(
            url=f"{self.public_base_url}/{key}?x-upload=1",
            headers={"Content-Type": normalize_content_type(content_type), "Cache-Control": CACHE_CONTROL},
            expires_at=self._expires_at(),
        )

    def head(self, key: str) -> tuple[int, str]:
        obj = self._lookup(key)
        return len(obj.data), obj.content_type

    def get(self, key: str) -> tuple[bytes, str]:
        obj = self._lookup(key)
        return obj.data, obj.content_type

    def put(self, key: str, content_type: str, data: bytes) -> None:
        key = _require_key(key)
        if not data:
            raise InvalidArgument("payload must not be empty")
        with self._lock:
            self._objects[key] = StoredObject(data=bytes(data), content_type=(content_type or "").strip())

    def delete(self, key: str) -> None:
        key = _require_key(key)
        with self._lock:
            self._objects.pop(key, None)

    def public_url(self, key: str) -> str:
        key = normalize_object_key(key)
        if not key:
            return ""
        return f"{self.public_base_url}/{key}"

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def _lookup(self, key: str) -> StoredObject:
        key = _require_key(key)
        with self._lock:
            obj = self._objects.get(key)
        if obj is None:
            raise ObjectNotFoundError(key)
        return obj
