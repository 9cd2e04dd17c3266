"""Tests for the webp/avif encoder client (httpx.MockTransport)."""
import base64
import json

import httpx
import pytest

from cafe_directory.config import Settings
from cafe_directory.errors import InvalidArgument, UpstreamError
from cafe_directory.services.format_encoder import (
    MAX_RESPONSE_BYTES,
    FormatEncoderClient,
    build_format_encoder,
)

SOURCE = "https://cdn.example.com/cafes/1/cafe/optimized/1_abc.jpg"


def _client(handler, provider="imgproxy", quality=78) -> FormatEncoderClient:
    return FormatEncoderClient(
        "https://encoder.example.com/",
        provider=provider,
        quality=quality,
        transport=httpx.MockTransport(handler),
    )


class TestImgproxyProvider:
    def test_url_template(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            return httpx.Response(200, content=b"webp-bytes", headers={"content-type": "image/webp"})

        payload, content_type = _client(handler).encode(SOURCE, 640, "webp")

        encoded = base64.urlsafe_b64encode(SOURCE.encode()).decode().rstrip("=")
        assert seen["method"] == "GET"
        assert seen["url"] == f"https://encoder.example.com/insecure/rs:fit:640:0/q:78/{encoded}.webp"
        assert payload == b"webp-bytes"
        assert content_type == "image/webp"

    def test_missing_content_type_falls_back_to_format(self):
        client = _client(lambda request: httpx.Response(200, content=b"avif"))
        assert client.encode(SOURCE, 320, "AVIF") == (b"avif", "image/avif")


class TestLibvipsProvider:
    def test_structured_post(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"avif-bytes", headers={"content-type": "image/avif"})

        payload, _ = _client(handler, provider="libvips", quality=60).encode(SOURCE, 1024, "avif")

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/encode"
        assert seen["body"] == {"source_url": SOURCE, "width": 1024, "format": "avif", "quality": 60}
        assert payload == b"avif-bytes"


class TestFailures:
    def test_non_2xx_is_upstream_error(self):
        client = _client(lambda request: httpx.Response(500, content=b"boom"))
        with pytest.raises(UpstreamError) as exc:
            client.encode(SOURCE, 320, "webp")
        assert exc.value.code == "upstream_error"
        assert "500" in exc.value.message

    def test_empty_body_is_upstream_error(self):
        client = _client(lambda request: httpx.Response(200, content=b""))
        with pytest.raises(UpstreamError):
            client.encode(SOURCE, 320, "webp")

    def test_transport_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError):
            _client(handler).encode(SOURCE, 320, "webp")

    def test_body_capped(self):
        big = b"x" * (MAX_RESPONSE_BYTES + 1024)
        client = _client(lambda request: httpx.Response(200, content=big))
        payload, _ = client.encode(SOURCE, 320, "webp")
        assert len(payload) == MAX_RESPONSE_BYTES

    def test_rejects_bad_arguments(self):
        client = _client(lambda request: httpx.Response(200, content=b"x"))
        with pytest.raises(InvalidArgument):
            client.encode(SOURCE, 0, "webp")
        with pytest.raises(InvalidArgument):
            client.encode(SOURCE, 320, "gif")
        with pytest.raises(InvalidArgument):
            client.encode("", 320, "webp")


class TestConfiguration:
    def test_quality_out_of_range_falls_back(self):
        assert _client(lambda r: httpx.Response(200), quality=0).quality == 78
        assert _client(lambda r: httpx.Response(200), quality=101).quality == 78

    def test_disabled_or_unconfigured_returns_none(self):
        assert build_format_encoder(Settings(PHOTO_FORMAT_ENCODER_ENABLED=False)) is None
        assert build_format_encoder(
            Settings(PHOTO_FORMAT_ENCODER_ENABLED=True, PHOTO_FORMAT_ENCODER_BASE_URL="  ")
        ) is None

    def test_enabled_builds_client(self):
        client = build_format_encoder(
            Settings(
                PHOTO_FORMAT_ENCODER_ENABLED=True,
                PHOTO_FORMAT_ENCODER_BASE_URL="http://imgproxy:8080",
                PHOTO_FORMAT_ENCODER_PROVIDER="libvips",
            )
        )
        assert client is not None
        assert client.provider == "libvips"
        client.close()

    def test_formats_setting_ignores_unknown(self):
        settings = Settings(PHOTO_FORMAT_ENCODER_FORMATS="avif, gif, WEBP, avif")
        assert settings.encoder_formats() == ["avif", "webp"]
