"""
Question/answer rounds for the active topic.

At most one generation request is in flight per topic. A student answer is
appended before the request goes out and is never removed; the system turn is
appended only when the response arrives while its topic is still the active one.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from homework_validator import config
from homework_validator.interview.calls import bounded
from homework_validator.interview.errors import GenerationError
from homework_validator.interview.models import ModalKind, Phase, Session, Speaker, Topic
from homework_validator.metrics import QUESTION_ROUNDS_TOTAL
from homework_validator.providers.base import QuestionClient

logger = config.get_logger("homework_validator.interview")

NEXT_QUESTION_FAILED = "Generating the next question failed. Please try again."


class AnswerOutcome(str, Enum):
    ACCEPTED = "accepted"
    FAILED = "failed"
    DISCARDED = "discarded"
    REJECTED_EMPTY = "rejected_empty"
    REJECTED_BUSY = "rejected_busy"
    REJECTED_COUNTDOWN = "rejected_countdown"
    REJECTED_INACTIVE = "rejected_inactive"
    NOTHING_TO_RETRY = "nothing_to_retry"

    @property
    def appended_student_turn(self) -> bool:
        return self in (AnswerOutcome.ACCEPTED, AnswerOutcome.FAILED, AnswerOutcome.DISCARDED)


def _topic_payload(topic: Topic) -> Dict[str, str]:
    return {"id": topic.id, "title": topic.title, "description": topic.description}


class TurnExchange:
    def __init__(
        self,
        get_session: Callable[[], Session],
        client: QuestionClient,
        timeout: float = config.GENERATION_TIMEOUT_SECONDS,
    ):
        self._get_session = get_session
        self._client = client
        self._timeout = timeout
        # (session uid, topic index) with an outstanding request
        self._in_flight: Set[Tuple[str, int]] = set()

    def is_generating(self, session: Session) -> bool:
        return (session.uid, session.current_topic_index) in self._in_flight

    def _is_current(self, session: Session, index: int, phase: Phase) -> bool:
        return (
            self._get_session() is session
            and session.phase is phase
            and session.current_topic_index == index
        )

    async def _generate(self, session: Session, index: int, prior: List[Dict[str, str]], latest: str) -> str:
        topic = session.topics[index]
        key = (session.uid, index)
        self._in_flight.add(key)
        try:
            return await bounded(
                "question",
                self._client.generate_question(
                    _topic_payload(topic),
                    session.document_text,
                    prior,
                    latest_answer=latest,
                    modality=session.modality.value,
                ),
                self._timeout,
            )
        finally:
            self._in_flight.discard(key)

    async def ask_opening_question(self, session: Session, index: int) -> Optional[str]:
        """Generate and append the first system turn of a topic being prepared.

        Returns None when the session was reset while waiting. GenerationError
        propagates: a topic cannot start without its opening question.
        """
        question = await self._generate(session, index, [], "")
        if not self._is_current(session, index, Phase.PREPARING):
            logger.info(json.dumps({"event": "opening_question_discarded", "topicIndex": index}))
            return None
        session.topics[index].append_question(question)
        return question

    def _precheck(self, session: Session) -> Optional[AnswerOutcome]:
        if session.phase is not Phase.INTERVIEW or session.current_topic is None:
            return AnswerOutcome.REJECTED_INACTIVE
        if session.modal is not None and session.modal.kind is ModalKind.AUTO_COUNTDOWN:
            return AnswerOutcome.REJECTED_COUNTDOWN
        if self.is_generating(session):
            return AnswerOutcome.REJECTED_BUSY
        return None

    async def submit_answer(self, text: str) -> AnswerOutcome:
        message = (text or "").strip()
        if not message:
            return AnswerOutcome.REJECTED_EMPTY
        session = self._get_session()
        rejected = self._precheck(session)
        if rejected is not None:
            QUESTION_ROUNDS_TOTAL.labels(outcome=rejected.value).inc()
            return rejected
        index = session.current_topic_index
        topic = session.topics[index]
        prior = [t.to_dict() for t in topic.turns]
        topic.append_answer(message)
        return await self._round(session, index, prior, message)

    async def retry_answer(self) -> AnswerOutcome:
        """Re-request the system turn for an answer whose round failed."""
        session = self._get_session()
        rejected = self._precheck(session)
        if rejected is not None:
            return rejected
        index = session.current_topic_index
        topic = session.topics[index]
        last = topic.last_turn
        if last is None or last.speaker is not Speaker.STUDENT:
            return AnswerOutcome.NOTHING_TO_RETRY
        prior = [t.to_dict() for t in topic.turns[:-1]]
        return await self._round(session, index, prior, last.text)

    async def _round(self, session: Session, index: int, prior: List[Dict[str, str]], answer: str) -> AnswerOutcome:
        try:
            question = await self._generate(session, index, prior, answer)
        except GenerationError as e:
            outcome = AnswerOutcome.FAILED
            if self._is_current(session, index, Phase.INTERVIEW):
                session.error = NEXT_QUESTION_FAILED
            logger.warning(json.dumps({
                "event": "question_round_failed",
                "topicIndex": index,
                "error": type(e).__name__,
                "message": e.message[:256],
            }))
        else:
            if self._is_current(session, index, Phase.INTERVIEW):
                session.topics[index].append_question(question)
                session.error = None
                outcome = AnswerOutcome.ACCEPTED
            else:
                outcome = AnswerOutcome.DISCARDED
                logger.info(json.dumps({"event": "question_discarded_stale", "topicIndex": index}))
        QUESTION_ROUNDS_TOTAL.labels(outcome=outcome.value).inc()
        return outcome
