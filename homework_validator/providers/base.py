from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class SpeechClip:
    audio: bytes
    media_type: str = "audio/mpeg"


class AnalyzeClient(abc.ABC):
    """Splits a document into at most five discussion topics.

    Implementations return {"topics": [{"id", "title", "description"}]}.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def analyze(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        ...


class QuestionClient(abc.ABC):
    """Produces the next interviewer question for a topic as plain text."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def generate_question(
        self,
        topic: Dict[str, Any],
        document_text: str,
        prior_turns: List[Dict[str, str]],
        latest_answer: str = "",
        modality: str = "typed",
        request_id: Optional[str] = None,
    ) -> str:
        ...


class SummaryClient(abc.ABC):
    """Final assessment: {"strengths": [...], "weaknesses": [...], "overallComment": str}."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def summarize(
        self,
        transcript: str,
        topics: List[Dict[str, Any]],
        document_text: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


class TranscribeClient(abc.ABC):
    """Speech-to-text. Returns an empty string on silence."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        context_hint: str = "",
        mime_type: str = "audio/webm",
        request_id: Optional[str] = None,
    ) -> str:
        ...


class SpeechClient(abc.ABC):
    """Text-to-speech."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def synthesize(self, text: str, request_id: Optional[str] = None) -> SpeechClip:
        ...
