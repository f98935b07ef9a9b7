import json
from typing import Optional

from homework_validator import config
from homework_validator.config import _env_str
from .base import AnalyzeClient, QuestionClient, SpeechClient, SummaryClient, TranscribeClient
from .mock import (
    MockAnalyzeClient,
    MockQuestionClient,
    MockSpeechClient,
    MockSummaryClient,
    MockTranscribeClient,
)

logger = config.get_logger("homework_validator.providers")


def _provider_for(concern: str, explicit: Optional[str]) -> str:
    """Env precedence: explicit arg, AI_PROVIDER_<CONCERN>, AI_PROVIDER, then 'mock'."""
    return (explicit or _env_str(f"AI_PROVIDER_{concern}") or _env_str("AI_PROVIDER") or "mock").lower()


def _log_fallback(concern: str, provider: str, exc: Exception) -> None:
    logger.warning(json.dumps({
        "event": "provider_fallback_to_mock",
        "concern": concern.lower(),
        "provider": provider,
        "error": type(exc).__name__,
        "message": str(exc)[:256],
    }))


def get_analyze_client(provider: Optional[str] = None, model: Optional[str] = None) -> AnalyzeClient:
    prov = _provider_for("ANALYZE", provider)
    mdl = model or _env_str("AI_ANALYZE_MODEL") or None

    if prov in ("openai", "gpt"):
        try:
            from .openai import OpenAIAnalyzeClient
            return OpenAIAnalyzeClient(model=mdl)
        except RuntimeError as e:
            # Fallback to mock if keys are not available
            _log_fallback("ANALYZE", prov, e)
    elif prov in ("google", "gemini"):
        try:
            from .google import GoogleAnalyzeClient
            return GoogleAnalyzeClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("ANALYZE", prov, e)

    # mock, test, unknown -> mock
    return MockAnalyzeClient(model=mdl)


def get_question_client(provider: Optional[str] = None, model: Optional[str] = None) -> QuestionClient:
    prov = _provider_for("QUESTION", provider)
    mdl = model or _env_str("AI_QUESTION_MODEL") or None

    if prov in ("openai", "gpt"):
        try:
            from .openai import OpenAIQuestionClient
            return OpenAIQuestionClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("QUESTION", prov, e)
    elif prov in ("google", "gemini"):
        try:
            from .google import GoogleQuestionClient
            return GoogleQuestionClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("QUESTION", prov, e)

    return MockQuestionClient(model=mdl)


def get_summary_client(provider: Optional[str] = None, model: Optional[str] = None) -> SummaryClient:
    prov = _provider_for("SUMMARY", provider)
    mdl = model or _env_str("AI_SUMMARY_MODEL") or None

    if prov in ("openai", "gpt"):
        try:
            from .openai import OpenAISummaryClient
            return OpenAISummaryClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("SUMMARY", prov, e)
    elif prov in ("google", "gemini"):
        try:
            from .google import GoogleSummaryClient
            return GoogleSummaryClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("SUMMARY", prov, e)

    return MockSummaryClient(model=mdl)


def get_transcribe_client(provider: Optional[str] = None, model: Optional[str] = None) -> TranscribeClient:
    # Only OpenAI offers speech-to-text here; other providers fall back to mock
    prov = _provider_for("STT", provider)
    mdl = model or _env_str("AI_STT_MODEL") or None

    if prov in ("openai", "gpt", "whisper"):
        try:
            from .openai import OpenAITranscribeClient
            return OpenAITranscribeClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("STT", prov, e)

    return MockTranscribeClient(model=mdl)


def get_speech_client(provider: Optional[str] = None, model: Optional[str] = None) -> SpeechClient:
    prov = _provider_for("TTS", provider)
    mdl = model or _env_str("AI_TTS_MODEL") or None

    if prov in ("openai", "gpt"):
        try:
            from .openai import OpenAISpeechClient
            return OpenAISpeechClient(model=mdl)
        except RuntimeError as e:
            _log_fallback("TTS", prov, e)

    return MockSpeechClient(model=mdl)
