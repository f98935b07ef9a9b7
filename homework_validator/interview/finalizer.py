from __future__ import annotations

import json
from typing import Iterable

from homework_validator import config
from homework_validator.interview.calls import bounded
from homework_validator.interview.errors import InterviewError, InvariantViolation
from homework_validator.interview.models import Assessment, Session, Speaker, Topic
from homework_validator.metrics import SUMMARY_TOTAL
from homework_validator.providers.base import SummaryClient

logger = config.get_logger("homework_validator.interview")

NO_ANSWERS_COMMENT = "Understanding could not be assessed because the student did not answer."


def build_transcript(topics: Iterable[Topic]) -> str:
    """All turns, topic order then turn order, as 'AI: ...' / 'Student: ...' lines."""
    lines = []
    for topic in topics:
        for turn in topic.turns:
            label = "AI" if turn.speaker is Speaker.SYSTEM else "Student"
            lines.append(f"{label}: {turn.text}")
    return "\n".join(lines)


class SummaryFinalizer:
    """Requests the closing assessment. A session that already has one is not summarized again."""

    def __init__(self, client: SummaryClient, timeout: float = config.GENERATION_TIMEOUT_SECONDS):
        self._client = client
        self._timeout = timeout

    async def finalize(self, session: Session) -> Assessment:
        """Summarize the session and store the assessment on it. Never raises for collaborator failures."""
        if session.assessment is not None:
            raise InvariantViolation("session already finalized")

        transcript = build_transcript(session.topics)
        topics = [{"title": t.title, "description": t.description} for t in session.topics]
        try:
            payload = await bounded(
                "summary",
                self._client.summarize(transcript, topics, session.document_text),
                self._timeout,
            )
            assessment = Assessment.from_payload(payload)
        except (InterviewError, ValueError) as e:
            reason = e.message if isinstance(e, InterviewError) else str(e)
            logger.warning(json.dumps({
                "event": "summary_failed",
                "error": type(e).__name__,
                "message": reason[:256],
            }))
            SUMMARY_TOTAL.labels(outcome="placeholder").inc()
            session.assessment = Assessment.placeholder("assessment service unavailable")
            return session.assessment

        if not (assessment.strengths or assessment.weaknesses or assessment.overall_comment):
            assessment.overall_comment = NO_ANSWERS_COMMENT
        SUMMARY_TOTAL.labels(outcome="ok").inc()
        logger.info(json.dumps({
            "event": "summary_ready",
            "strengths": len(assessment.strengths),
            "weaknesses": len(assessment.weaknesses),
        }))
        session.assessment = assessment
        return assessment
