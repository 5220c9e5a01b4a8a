import base64
import json

import httpx
import numpy as np
import pytest

from tile_upscaler.engines.analysis.analyzer import ImageAnalyzer, fit_inside, parse_analysis
from tile_upscaler.pipeline.models import ImageAnalysis

API_URL = "http://gemini.test/v1beta/models/flash:generateContent"


def _reply(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _analyzer(handler):
    return ImageAnalyzer(api_url=API_URL, api_key="gkey", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_unconfigured_analyzer_returns_default(make_image, monkeypatch):
    from tile_upscaler.core import config

    monkeypatch.setattr(config.settings, "GEMINI_API_URL", None)
    monkeypatch.setattr(config.settings, "GEMINI_API_KEY", None)

    analysis = await ImageAnalyzer().analyze(make_image(16, 16))

    assert analysis == ImageAnalysis()


@pytest.mark.asyncio
async def test_analysis_is_parsed_from_model_reply(make_image):
    captured = {}

    def handler(request):
        captured["key"] = request.headers.get("x-goog-api-key")
        captured["body"] = json.loads(request.content)
        return _reply(
            'Sure! ```json\n{"description": "portrait of a man", '
            '"textures": ["skin", "hair"], "subjects": ["person", "face"]}\n```'
        )

    analysis = await _analyzer(handler).analyze(make_image(1024, 600))

    assert analysis.description == "portrait of a man"
    assert analysis.textures == ["skin", "hair"]
    assert analysis.subjects == ["person", "face"]
    assert analysis.has_faces()
    assert captured["key"] == "gkey"

    inline = captured["body"]["contents"][0]["parts"][0]["inline_data"]
    assert inline["mime_type"] == "image/jpeg"
    assert base64.b64decode(inline["data"])[:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_api_error_degrades_to_default(make_image):
    analysis = await _analyzer(lambda request: httpx.Response(500)).analyze(make_image(16, 16))

    assert analysis == ImageAnalysis()


@pytest.mark.asyncio
async def test_reply_without_json_degrades_to_default(make_image):
    analysis = await _analyzer(lambda request: _reply("I cannot help with that")).analyze(make_image(16, 16))

    assert analysis == ImageAnalysis()


@pytest.mark.asyncio
async def test_empty_candidates_degrade_to_default(make_image):
    handler = lambda request: httpx.Response(200, json={"candidates": []})

    assert await _analyzer(handler).analyze(make_image(16, 16)) == ImageAnalysis()


def test_parse_analysis_fills_missing_fields():
    analysis = parse_analysis('{"description": "", "textures": "wood"}')

    assert analysis.description == "Image content"
    assert analysis.textures == ["general"]
    assert analysis.subjects == ["unknown"]


def test_has_faces_from_textures_or_subjects():
    assert ImageAnalysis(textures=["Skin"], subjects=["object"]).has_faces()
    assert ImageAnalysis(textures=["wood"], subjects=["Portrait"]).has_faces()
    assert not ImageAnalysis(textures=["grass"], subjects=["landscape"]).has_faces()


def test_fit_inside_keeps_aspect_ratio():
    pixels = np.zeros((512, 1024, 4), dtype=np.uint8)

    assert fit_inside(pixels).shape == (256, 512, 4)
    assert fit_inside(np.zeros((512, 512, 4), dtype=np.uint8)).shape == (512, 512, 4)


@pytest.mark.asyncio
async def test_analysis_runs_under_its_own_stage(make_image):
    from tile_upscaler.core.logging import stage_var

    seen = {}

    def handler(request):
        seen["stage"] = stage_var.get()
        return _reply('{"description": "a lake", "textures": ["water"], "subjects": ["landscape"]}')

    analysis = await _analyzer(handler).analyze(make_image(16, 16))

    assert analysis.description == "a lake"
    assert seen["stage"] == "analyze"
    assert stage_var.get() is None
