import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure project root is on sys.path for `import homework_validator.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Deterministic providers unless a test opts in
os.environ["AI_PROVIDER"] = "mock"
for _concern in ("ANALYZE", "QUESTION", "SUMMARY", "STT", "TTS"):
    os.environ.pop(f"AI_PROVIDER_{_concern}", None)

from homework_validator.interview.controller import SessionController  # noqa: E402
from homework_validator.interview.models import InterviewSettings, Modality  # noqa: E402
from homework_validator.providers.base import QuestionClient, SummaryClient  # noqa: E402
from homework_validator.providers.mock import (  # noqa: E402
    MockAnalyzeClient,
    MockSpeechClient,
    MockSummaryClient,
    MockTranscribeClient,
)

DOCUMENT = (
    b"Photosynthesis turns light into chemical energy inside the chloroplast.\n\n"
    b"The Calvin cycle fixes carbon dioxide into sugars using ATP and NADPH.\n\n"
    b"Limiting factors such as light intensity and temperature control the rate."
)


class FakeClock:
    """Injectable monotonic clock; tests move time explicitly."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedQuestionClient(QuestionClient):
    """Numbered questions; can be held on a gate or told to fail."""

    provider_name = "scripted"

    def __init__(self):
        super().__init__(model="scripted")
        self.calls: List[Dict[str, Any]] = []
        self.fail_next = 0
        self.gate: Optional[asyncio.Event] = None

    async def generate_question(
        self,
        topic: Dict[str, Any],
        document_text: str,
        prior_turns: List[Dict[str, str]],
        latest_answer: str = "",
        modality: str = "typed",
        request_id: Optional[str] = None,
    ) -> str:
        self.calls.append({
            "topic": topic["title"],
            "prior": list(prior_turns),
            "latest": latest_answer,
            "modality": modality,
        })
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("upstream unavailable")
        return f"Q{len(self.calls)} about {topic['title']}"


class RecordingSummaryClient(SummaryClient):
    provider_name = "recording"

    def __init__(self, payload: Any = None, error: Optional[Exception] = None):
        super().__init__(model="recording")
        self.payload = payload if payload is not None else {
            "strengths": ["Explains the Calvin cycle in their own words"],
            "weaknesses": ["Vague on limiting factors"],
            "overallComment": "Likely wrote the assignment.",
        }
        self.error = error
        self.transcripts: List[str] = []

    async def summarize(
        self,
        transcript: str,
        topics: List[Dict[str, Any]],
        document_text: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.transcripts.append(transcript)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def questions() -> ScriptedQuestionClient:
    return ScriptedQuestionClient()


@pytest.fixture
def make_controller(clock, questions):
    def _make(**overrides) -> SessionController:
        kwargs: Dict[str, Any] = dict(
            analyze_client=MockAnalyzeClient(),
            question_client=questions,
            summary_client=MockSummaryClient(),
            transcribe_client=MockTranscribeClient(),
            speech_client=MockSpeechClient(),
            clock=clock,
            grace_seconds=5.0,
            min_audio_bytes=0,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)

    return _make


async def start_interview(
    controller: SessionController,
    topic_count: int = 3,
    topic_seconds: int = 180,
    modality: Modality = Modality.TYPED,
):
    settings = InterviewSettings(modality=modality, topic_count=topic_count, topic_seconds=topic_seconds)
    return await controller.submit_document(DOCUMENT, filename="essay.txt", content_type="text/plain", settings=settings)
