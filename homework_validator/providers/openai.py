import json
import os
from typing import Any, Dict, List, Optional

import httpx

from homework_validator import config
from .base import AnalyzeClient, QuestionClient, SpeechClient, SpeechClip, SummaryClient, TranscribeClient
from .prompts import (
    ANALYZE_SYSTEM_PROMPT,
    FALLBACK_QUESTION,
    QUESTION_SYSTEM_PROMPT,
    SPOKEN_QUESTION_HINT,
    SUMMARY_SYSTEM_PROMPT,
    build_question_input,
    build_summary_input,
    normalize_topics,
    parse_json_relaxed,
)

API_BASE = "https://api.openai.com/v1"
logger = config.get_logger("homework_validator.providers.openai")


class _OpenAIHTTP:
    """Key, timeout and request plumbing shared by the OpenAI clients."""

    def _init_http(self) -> None:
        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is required for OpenAI provider")
        self._api_key = api_key
        # Default 30s; can override via OPENAI_TIMEOUT_SECONDS or AI_HTTP_TIMEOUT_SECONDS
        try:
            self._timeout = float(os.getenv("OPENAI_TIMEOUT_SECONDS") or config.AI_HTTP_TIMEOUT_SECONDS)
        except ValueError:
            self._timeout = 30.0
        self._base_url = (os.getenv("OPENAI_BASE_URL") or API_BASE).rstrip("/")

    def _headers(self, request_id: Optional[str], content_type: Optional[str] = "application/json") -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "User-Agent": "homework-validator/0.1.0",
        }
        if content_type:
            headers["Content-Type"] = content_type
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    def _raise_for_status(self, resp: Any, event: str, model: Optional[str]) -> None:
        if resp.status_code < 400:
            return
        body = (resp.text or "")[:1024]
        logger.error(json.dumps({
            "event": event,
            "status": resp.status_code,
            "body": body,
            "model": model,
        }))
        raise RuntimeError(f"OpenAI error {resp.status_code}: {body!r}")

    async def _chat(
        self,
        model: str,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        max_tokens: int = 800,
        request_id: Optional[str] = None,
        event: str = "openai_chat_http_error",
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(f"{self._base_url}/chat/completions", headers=self._headers(request_id), json=payload)
            self._raise_for_status(resp, event, model)
            data = resp.json()
        choices = (data or {}).get("choices") or []
        if not choices:
            return ""
        content = (choices[0].get("message") or {}).get("content") or ""
        if config.AI_DEBUG_LOGS:
            logger.info(json.dumps({"event": "openai_chat_raw", "model": model, "preview": content[:800]}))
        return content.strip()


class OpenAIAnalyzeClient(_OpenAIHTTP, AnalyzeClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_ANALYZE_MODEL") or "gpt-4o-mini")
        self._init_http()

    async def analyze(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        content = await self._chat(
            self.model,
            ANALYZE_SYSTEM_PROMPT,
            (text or "")[: config.DOCUMENT_CHAR_LIMIT],
            json_mode=True,
            max_tokens=2000,
            request_id=request_id,
            event="openai_analyze_http_error",
        )
        parsed = parse_json_relaxed(content)
        if parsed is None:
            logger.warning(json.dumps({
                "event": "openai_analyze_parse_failed",
                "textLength": len(content),
                "snippet": content[:400],
            }))
            raise RuntimeError("analysis response was not valid JSON")
        return {"topics": normalize_topics(parsed)}


class OpenAIQuestionClient(_OpenAIHTTP, QuestionClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_QUESTION_MODEL") or "gpt-4o-mini")
        self._init_http()

    async def generate_question(
        self,
        topic: Dict[str, Any],
        document_text: str,
        prior_turns: List[Dict[str, str]],
        latest_answer: str = "",
        modality: str = "typed",
        request_id: Optional[str] = None,
    ) -> str:
        system = QUESTION_SYSTEM_PROMPT
        if modality == "spoken":
            system = f"{system}\n{SPOKEN_QUESTION_HINT}"
        content = await self._chat(
            self.model,
            system,
            build_question_input(topic, document_text, prior_turns, latest_answer),
            max_tokens=300,
            request_id=request_id,
            event="openai_question_http_error",
        )
        return content or FALLBACK_QUESTION


class OpenAISummaryClient(_OpenAIHTTP, SummaryClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_SUMMARY_MODEL") or "gpt-4o-mini")
        self._init_http()

    async def summarize(
        self,
        transcript: str,
        topics: List[Dict[str, Any]],
        document_text: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        content = await self._chat(
            self.model,
            SUMMARY_SYSTEM_PROMPT,
            build_summary_input(transcript, topics, document_text),
            json_mode=True,
            max_tokens=600,
            request_id=request_id,
            event="openai_summary_http_error",
        )
        parsed = parse_json_relaxed(content)
        if parsed is None:
            raise RuntimeError("summary response was not valid JSON")
        return parsed


class OpenAITranscribeClient(_OpenAIHTTP, TranscribeClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_STT_MODEL") or "whisper-1")
        self._init_http()

    async def transcribe(
        self,
        audio: bytes,
        context_hint: str = "",
        mime_type: str = "audio/webm",
        request_id: Optional[str] = None,
    ) -> str:
        ext = (mime_type.split("/")[-1].split(";")[0] or "webm").strip()
        files = {"file": (f"recording.{ext}", audio, mime_type)}
        data = {"model": self.model, "response_format": "json"}
        if context_hint:
            data["prompt"] = context_hint
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                f"{self._base_url}/audio/transcriptions",
                headers=self._headers(request_id, content_type=None),
                data=data,
                files=files,
            )
            self._raise_for_status(resp, "openai_stt_http_error", self.model)
            body = resp.json()
        return str((body or {}).get("text") or "").strip()


class OpenAISpeechClient(_OpenAIHTTP, SpeechClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_TTS_MODEL") or "tts-1")
        self._voice = os.getenv("AI_TTS_VOICE", "nova").strip() or "nova"
        self._init_http()

    async def synthesize(self, text: str, request_id: Optional[str] = None) -> SpeechClip:
        payload = {"model": self.model, "voice": self._voice, "input": (text or "")[:4096]}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(f"{self._base_url}/audio/speech", headers=self._headers(request_id), json=payload)
            self._raise_for_status(resp, "openai_tts_http_error", self.model)
            audio = resp.content
        return SpeechClip(audio=audio, media_type="audio/mpeg")
