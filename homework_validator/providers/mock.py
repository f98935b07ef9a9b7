import asyncio
import io
import re
import wave
from typing import Any, Dict, List, Optional

from homework_validator import config
from .base import AnalyzeClient, QuestionClient, SpeechClient, SpeechClip, SummaryClient, TranscribeClient


def _title_from(paragraph: str, words: int = 6) -> str:
    tokens = paragraph.split()
    title = " ".join(tokens[:words])
    return title + ("..." if len(tokens) > words else "")


class MockAnalyzeClient(AnalyzeClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-analyze-1")

    async def analyze(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        # One topic per non-empty paragraph, deterministic
        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text or "") if p.strip()]
        topics = [
            {"id": f"t{idx + 1}", "title": _title_from(p), "description": p[:240]}
            for idx, p in enumerate(paragraphs[: config.MAX_TOPICS])
        ]
        await asyncio.sleep(0)
        return {"topics": topics}


class MockQuestionClient(QuestionClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-question-1")

    async def generate_question(
        self,
        topic: Dict[str, Any],
        document_text: str,
        prior_turns: List[Dict[str, str]],
        latest_answer: str = "",
        modality: str = "typed",
        request_id: Optional[str] = None,
    ) -> str:
        await asyncio.sleep(0)
        title = topic.get("title") or "this topic"
        if not latest_answer:
            return f"In your own words, what is the main point of '{title}'?"
        asked = sum(1 for t in prior_turns if t.get("speaker") == "system")
        return f"Follow-up {asked} on '{title}': what evidence in your assignment supports that?"


class MockSummaryClient(SummaryClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-summary-1")

    async def summarize(
        self,
        transcript: str,
        topics: List[Dict[str, Any]],
        document_text: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        await asyncio.sleep(0)
        answers = [line for line in (transcript or "").splitlines() if line.startswith("Student:")]
        if not answers:
            return {
                "strengths": [],
                "weaknesses": ["The student gave no answers."],
                "overallComment": "Understanding could not be assessed because the student did not answer.",
            }
        return {
            "strengths": [f"Answered {len(answers)} question(s) across {len(topics or [])} topic(s)."],
            "weaknesses": ["Answer depth is not graded by the mock provider."],
            "overallComment": "Mock assessment.",
        }


class MockTranscribeClient(TranscribeClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-stt-1")

    async def transcribe(
        self,
        audio: bytes,
        context_hint: str = "",
        mime_type: str = "audio/webm",
        request_id: Optional[str] = None,
    ) -> str:
        # Treat the payload as UTF-8 text so tests can "speak" by uploading bytes
        await asyncio.sleep(0)
        return (audio or b"").decode("utf-8", errors="ignore").strip()


class MockSpeechClient(SpeechClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-tts-1")

    async def synthesize(self, text: str, request_id: Optional[str] = None) -> SpeechClip:
        # Silent mono 16-bit PCM WAV, 10ms per character, bounded to [0.5s, 3s]
        duration_s = max(0.5, min(3.0, 0.6 + min(2.4, len(text or "") * 0.01)))
        fr = 16000
        buf = io.BytesIO()
        with wave.open(buf, "wb") as w:
            w.setnchannels(1)
            w.setsampwidth(2)
            w.setframerate(fr)
            w.writeframes(b"\x00\x00" * int(duration_s * fr))
        await asyncio.sleep(0)
        return SpeechClip(audio=buf.getvalue(), media_type="audio/wav")
