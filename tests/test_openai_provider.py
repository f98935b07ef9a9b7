import json
import types

import pytest

import homework_validator.providers.openai as openai_mod
from homework_validator.providers.openai import (
    OpenAIAnalyzeClient,
    OpenAIQuestionClient,
    OpenAISpeechClient,
    OpenAISummaryClient,
    OpenAITranscribeClient,
)
from homework_validator.providers.prompts import FALLBACK_QUESTION, SPOKEN_QUESTION_HINT


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", content=b""):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text
        self.content = content

    def json(self):
        return self._json


def _install_fake(monkeypatch, response, captured):
    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            captured["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, json=None, data=None, files=None):
            captured["url"] = url
            captured["headers"] = headers or {}
            captured["json"] = json
            captured["data"] = data
            captured["files"] = files
            return response

    monkeypatch.setattr(openai_mod, "httpx", types.SimpleNamespace(AsyncClient=FakeAsyncClient))


def _chat_response(content: str) -> FakeResponse:
    return FakeResponse(json_data={"choices": [{"message": {"content": content}}]})


@pytest.fixture(autouse=True)
def _key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)


def test_missing_key_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        OpenAIQuestionClient()


@pytest.mark.asyncio
async def test_question_request_shape_and_request_id(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    _install_fake(monkeypatch, _chat_response("  Why did you pick that example?  "), captured)

    cli = OpenAIQuestionClient(model="gpt-test")
    out = await cli.generate_question(
        {"title": "Examples", "description": "Case studies"},
        "Essay text",
        [{"speaker": "system", "text": "What example?"}],
        latest_answer="The Amazon one",
        modality="spoken",
        request_id="req-123",
    )

    assert out == "Why did you pick that example?"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test"
    assert captured["headers"]["X-Request-Id"] == "req-123"
    body = captured["json"]
    assert body["model"] == "gpt-test"
    assert SPOKEN_QUESTION_HINT in body["messages"][0]["content"]
    assert "The Amazon one" in body["messages"][1]["content"]
    assert "response_format" not in body


@pytest.mark.asyncio
async def test_empty_question_uses_fallback(monkeypatch: pytest.MonkeyPatch):
    _install_fake(monkeypatch, _chat_response(""), {})
    cli = OpenAIQuestionClient()
    assert await cli.generate_question({"title": "T"}, "", []) == FALLBACK_QUESTION


@pytest.mark.asyncio
async def test_analyze_parses_fenced_json(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    content = '```json\n{"topics": [{"id": "a", "title": "Intro", "description": "Opening"}]}\n```'
    _install_fake(monkeypatch, _chat_response(content), captured)

    out = await OpenAIAnalyzeClient().analyze("Some essay")

    assert out == {"topics": [{"id": "a", "title": "Intro", "description": "Opening"}]}
    assert captured["json"]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_unparseable_summary_raises(monkeypatch: pytest.MonkeyPatch):
    _install_fake(monkeypatch, _chat_response("I cannot comply"), {})
    with pytest.raises(RuntimeError):
        await OpenAISummaryClient().summarize("AI: Q\nStudent: A", [], "doc")


@pytest.mark.asyncio
async def test_summary_returns_payload(monkeypatch: pytest.MonkeyPatch):
    payload = {"strengths": ["s"], "weaknesses": ["w"], "overallComment": "ok"}
    _install_fake(monkeypatch, _chat_response(json.dumps(payload)), {})
    assert await OpenAISummaryClient().summarize("AI: Q", [], "doc") == payload


@pytest.mark.asyncio
async def test_http_error_raises(monkeypatch: pytest.MonkeyPatch):
    _install_fake(monkeypatch, FakeResponse(status_code=429, text="rate limited"), {})
    with pytest.raises(RuntimeError, match="429"):
        await OpenAIQuestionClient().generate_question({"title": "T"}, "", [])


@pytest.mark.asyncio
async def test_transcribe_sends_multipart_with_prompt(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    _install_fake(monkeypatch, FakeResponse(json_data={"text": " It makes ATP "}), captured)

    out = await OpenAITranscribeClient().transcribe(b"audio", context_hint="photosynthesis", mime_type="audio/webm")

    assert out == "It makes ATP"
    assert captured["url"].endswith("/audio/transcriptions")
    assert captured["data"] == {"model": "whisper-1", "response_format": "json", "prompt": "photosynthesis"}
    assert captured["files"]["file"][0] == "recording.webm"
    assert "Content-Type" not in captured["headers"]


@pytest.mark.asyncio
async def test_speech_truncates_input(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    _install_fake(monkeypatch, FakeResponse(content=b"ID3mp3"), captured)
    monkeypatch.setenv("AI_TTS_VOICE", "alloy")

    clip = await OpenAISpeechClient().synthesize("x" * 5000)

    assert clip.audio == b"ID3mp3"
    assert clip.media_type == "audio/mpeg"
    assert captured["json"]["voice"] == "alloy"
    assert len(captured["json"]["input"]) == 4096
