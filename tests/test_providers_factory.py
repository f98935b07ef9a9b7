import pytest

from homework_validator.providers.factory import (
    get_analyze_client,
    get_question_client,
    get_speech_client,
    get_summary_client,
    get_transcribe_client,
)
from homework_validator.providers.google import GoogleQuestionClient, GoogleSummaryClient
from homework_validator.providers.mock import (
    MockAnalyzeClient,
    MockQuestionClient,
    MockSpeechClient,
    MockSummaryClient,
    MockTranscribeClient,
)
from homework_validator.providers.openai import (
    OpenAIAnalyzeClient,
    OpenAIQuestionClient,
    OpenAISpeechClient,
    OpenAITranscribeClient,
)


@pytest.mark.parametrize("prov_env, expect_type", [
    ("mock", MockQuestionClient),
    ("test", MockQuestionClient),
    ("unknown", MockQuestionClient),
])
def test_get_question_client_basic(prov_env, expect_type, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER_QUESTION", prov_env)
    # Ensure no accidental provider keys interfere
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    cli = get_question_client()
    assert isinstance(cli, expect_type)


def test_missing_keys_fall_back_to_mock(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert isinstance(get_analyze_client(), MockAnalyzeClient)
    assert isinstance(get_question_client(), MockQuestionClient)
    assert isinstance(get_summary_client(), MockSummaryClient)
    assert isinstance(get_transcribe_client(), MockTranscribeClient)
    assert isinstance(get_speech_client(), MockSpeechClient)

    monkeypatch.setenv("AI_PROVIDER", "google")
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    assert isinstance(get_summary_client(), MockSummaryClient)


def test_per_concern_override_beats_default(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER", "mock")
    monkeypatch.setenv("AI_PROVIDER_QUESTION", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert isinstance(get_question_client(), OpenAIQuestionClient)
    assert isinstance(get_analyze_client(), MockAnalyzeClient)


def test_google_clients_with_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER", "gemini")
    monkeypatch.setenv("GOOGLE_API_KEY", "g-test")

    assert isinstance(get_question_client(), GoogleQuestionClient)
    assert isinstance(get_summary_client(), GoogleSummaryClient)
    # Google has no speech endpoints here
    assert isinstance(get_transcribe_client(), MockTranscribeClient)
    assert isinstance(get_speech_client(), MockSpeechClient)


def test_openai_audio_clients_and_models(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("AI_STT_MODEL", "whisper-large")

    stt = get_transcribe_client()
    assert isinstance(stt, OpenAITranscribeClient)
    assert stt.model == "whisper-large"
    tts = get_speech_client()
    assert isinstance(tts, OpenAISpeechClient)
    assert tts.model == "tts-1"
    assert isinstance(get_analyze_client(model="gpt-x"), OpenAIAnalyzeClient)
    assert get_analyze_client(model="gpt-x").model == "gpt-x"


def test_explicit_provider_argument_wins(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert isinstance(get_question_client(provider="mock"), MockQuestionClient)
