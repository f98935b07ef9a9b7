import json
import types

import pytest

import homework_validator.providers.google as google_mod
from homework_validator.providers.google import GoogleAnalyzeClient, GoogleQuestionClient, GoogleSummaryClient


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text

    def json(self):
        return self._json


def _gemini(text: str) -> FakeResponse:
    return FakeResponse(json_data={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _install_fake(monkeypatch, response, captured):
    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, json=None, params=None):
            captured["url"] = url
            captured["headers"] = headers or {}
            captured["json"] = json
            captured["params"] = params
            return response

    monkeypatch.setattr(google_mod, "httpx", types.SimpleNamespace(AsyncClient=FakeAsyncClient))


@pytest.fixture(autouse=True)
def _key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")


def test_missing_key_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        GoogleAnalyzeClient()


@pytest.mark.asyncio
async def test_question_uses_generate_content(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    _install_fake(monkeypatch, _gemini("What does Rubisco do?"), captured)

    out = await GoogleQuestionClient(model="gemini-test").generate_question(
        {"title": "Calvin"}, "doc", [], request_id="rid-1"
    )

    assert out == "What does Rubisco do?"
    assert captured["url"].endswith("/models/gemini-test:generateContent")
    assert captured["params"] == {"key": "g-key"}
    assert captured["headers"]["X-Request-Id"] == "rid-1"
    assert "systemInstruction" in captured["json"]
    assert "responseMimeType" not in captured["json"]["generationConfig"]


@pytest.mark.asyncio
async def test_analyze_requests_json(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    _install_fake(monkeypatch, _gemini(json.dumps({"topics": [{"title": "Light"}]})), captured)

    out = await GoogleAnalyzeClient().analyze("essay")

    assert out == {"topics": [{"id": "t1", "title": "Light", "description": ""}]}
    assert captured["json"]["generationConfig"]["responseMimeType"] == "application/json"


@pytest.mark.asyncio
async def test_summary_http_error(monkeypatch: pytest.MonkeyPatch):
    _install_fake(monkeypatch, FakeResponse(status_code=500, text="internal"), {})
    with pytest.raises(RuntimeError):
        await GoogleSummaryClient().summarize("AI: Q", [], "doc")


@pytest.mark.asyncio
async def test_no_candidates_yields_fallback_question(monkeypatch: pytest.MonkeyPatch):
    _install_fake(monkeypatch, FakeResponse(json_data={"candidates": []}), {})
    out = await GoogleQuestionClient().generate_question({"title": "T"}, "", [])
    assert out
