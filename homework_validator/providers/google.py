import json
import os
from typing import Any, Dict, List, Optional

import httpx

from homework_validator import config
from .base import AnalyzeClient, QuestionClient, SummaryClient
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

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
logger = config.get_logger("homework_validator.providers.google")


class _GeminiHTTP:
    """generateContent plumbing shared by the Gemini clients.

    Endpoint: POST {BASE_URL}/models/{model}:generateContent?key=API_KEY
    Docs: https://ai.google.dev/api/rest/v1beta/models/generateContent
    """

    def _init_http(self) -> None:
        api_key = os.getenv("GOOGLE_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY is required for Google provider")
        self._api_key = api_key
        try:
            self._timeout = float(os.getenv("GOOGLE_TIMEOUT_SECONDS") or config.AI_HTTP_TIMEOUT_SECONDS)
        except ValueError:
            self._timeout = 30.0

    async def _generate(
        self,
        model: str,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        max_tokens: int = 800,
        temperature: float = 0.4,
        request_id: Optional[str] = None,
        event: str = "google_generate_http_error",
    ) -> str:
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "candidateCount": 1,
            "maxOutputTokens": max_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": generation_config,
            # v1beta supports systemInstruction as a Content object
            "systemInstruction": {"parts": [{"text": system}]},
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "homework-validator/0.1.0",
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        url = f"{BASE_URL}/models/{model}:generateContent"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, headers=headers, json=payload, params={"key": self._api_key})
            if resp.status_code >= 400:
                logger.error(json.dumps({
                    "event": event,
                    "status": resp.status_code,
                    "body": (resp.text or "")[:1024],
                    "model": model,
                }))
                raise RuntimeError(f"Google generateContent error {resp.status_code}: {resp.text}")
            data = resp.json()
        # Response shape: { candidates: [ { content: { parts: [ { text } ] } } ] }
        candidates = (data or {}).get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text") or "" for p in parts).strip()
        if config.AI_DEBUG_LOGS:
            logger.info(json.dumps({"event": "google_generate_raw", "model": model, "preview": text[:800]}))
        return text


class GoogleAnalyzeClient(_GeminiHTTP, AnalyzeClient):
    provider_name: str = "google"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_ANALYZE_MODEL") or "gemini-1.5-flash")
        self._init_http()

    async def analyze(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        content = await self._generate(
            self.model,
            ANALYZE_SYSTEM_PROMPT,
            (text or "")[: config.DOCUMENT_CHAR_LIMIT],
            json_mode=True,
            max_tokens=2000,
            temperature=0.2,
            request_id=request_id,
            event="google_analyze_http_error",
        )
        parsed = parse_json_relaxed(content)
        if parsed is None:
            raise RuntimeError("analysis response was not valid JSON")
        return {"topics": normalize_topics(parsed)}


class GoogleQuestionClient(_GeminiHTTP, QuestionClient):
    provider_name: str = "google"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_QUESTION_MODEL") or "gemini-1.5-flash")
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
        content = await self._generate(
            self.model,
            system,
            build_question_input(topic, document_text, prior_turns, latest_answer),
            max_tokens=300,
            temperature=0.7,
            request_id=request_id,
            event="google_question_http_error",
        )
        return content or FALLBACK_QUESTION


class GoogleSummaryClient(_GeminiHTTP, SummaryClient):
    provider_name: str = "google"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_SUMMARY_MODEL") or "gemini-1.5-pro")
        self._init_http()

    async def summarize(
        self,
        transcript: str,
        topics: List[Dict[str, Any]],
        document_text: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        content = await self._generate(
            self.model,
            SUMMARY_SYSTEM_PROMPT,
            build_summary_input(transcript, topics, document_text),
            json_mode=True,
            max_tokens=1024,
            temperature=0.1,
            request_id=request_id,
            event="google_summary_http_error",
        )
        parsed = parse_json_relaxed(content)
        if parsed is None:
            raise RuntimeError("summary response was not valid JSON")
        return parsed
