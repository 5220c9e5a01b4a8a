import base64
import json

import httpx
import numpy as np
import pytest

from tile_upscaler.core.exceptions import (
    CircuitBreakerOpenError,
    EnhancementFailedError,
    EnhancementTimeoutError,
    get_circuit_breaker,
)
from tile_upscaler.engines.enhancement.remote import SERVICE_NAME, RemoteEnhancer
from tile_upscaler.pipeline.codec import decode_image, encode_png
from tile_upscaler.pipeline.models import TileContext

API_URL = "http://nano-banana.test/v1/enhance"


def _enhancer(handler):
    return RemoteEnhancer(
        api_url=API_URL,
        api_key="secret",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _image_response(width, height, value=120, key="image"):
    pixels = np.full((height, width, 4), value, dtype=np.uint8)
    return httpx.Response(200, json={key: base64.b64encode(encode_png(pixels)).decode("utf-8")})


def test_successful_call_returns_scaled_tile(make_image):
    captured = {}

    def handler(request):
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = json.loads(request.content)
        return _image_response(32, 24)

    context = TileContext(position="center", image_description="a dog", textures=["fur"], subjects=["animal"])
    result = _enhancer(handler).enhance(make_image(16, 12), "crisp", 2, context)

    assert result.shape == (24, 32, 4)
    assert captured["auth"] == "Bearer secret"
    assert captured["body"]["upscale_factor"] == 2
    assert captured["body"]["target_width"] == 32
    assert "a dog" in captured["body"]["prompt"]
    assert "Additional: crisp" in captured["body"]["prompt"]
    sent = decode_image(base64.b64decode(captured["body"]["image"]))
    assert sent.shape == (12, 16, 4)


def test_wrong_size_response_is_resized(make_image):
    result = _enhancer(lambda request: _image_response(50, 50, key="result")).enhance(
        make_image(16, 12), "", 2
    )

    assert result.shape == (24, 32, 4)


def test_http_error_raises_enhancement_failed(make_image):
    enhancer = _enhancer(lambda request: httpx.Response(500, text="model crashed"))

    with pytest.raises(EnhancementFailedError) as exc_info:
        enhancer.enhance(make_image(8, 8), "", 2)

    assert exc_info.value.details["http_status"] == 500
    assert exc_info.value.details["service"] == SERVICE_NAME


def test_timeout_raises_timed_out(make_image):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(EnhancementTimeoutError) as exc_info:
        _enhancer(handler).enhance(make_image(8, 8), "", 2)

    assert exc_info.value.kind == "TimedOut"
    assert exc_info.value.code == 504


def test_response_without_image_is_a_failure(make_image):
    enhancer = _enhancer(lambda request: httpx.Response(200, json={"status": "ok"}))

    with pytest.raises(EnhancementFailedError):
        enhancer.enhance(make_image(8, 8), "", 2)


def test_undecodable_image_is_a_failure(make_image):
    garbage = base64.b64encode(b"not an image").decode("utf-8")
    enhancer = _enhancer(lambda request: httpx.Response(200, json={"image": garbage}))

    with pytest.raises(EnhancementFailedError):
        enhancer.enhance(make_image(8, 8), "", 2)


def test_open_circuit_fails_fast(make_image):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    enhancer = _enhancer(handler)
    breaker = get_circuit_breaker(SERVICE_NAME)

    for _ in range(breaker.failure_threshold):
        with pytest.raises(EnhancementFailedError):
            enhancer.enhance(make_image(8, 8), "", 2)

    with pytest.raises(CircuitBreakerOpenError) as exc_info:
        enhancer.enhance(make_image(8, 8), "", 2)

    assert exc_info.value.code == 503
    assert len(calls) == breaker.failure_threshold


def test_requires_api_url(monkeypatch):
    from tile_upscaler.core import config

    monkeypatch.setattr(config.settings, "NANO_BANANA_API_URL", None)

    with pytest.raises(ValueError):
        RemoteEnhancer(api_url=None)


def test_remote_enhancer_reports_ai_enhanced():
    assert RemoteEnhancer.is_remote is True
