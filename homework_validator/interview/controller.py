"""
Top-level interview state machine.

    upload -> analyzing -> preparing(i) -> interview(i) -> preparing(i+1) ... -> finalizing -> result

The controller owns the single Session. Timers, network callbacks and HTTP
handlers go through the actions below; none of them write Session fields
directly. `upload` is re-entered only by reset or by the failure paths of
analysis and topic preparation.
"""
from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Optional

from homework_validator import config
from homework_validator.documents import extract_text
from homework_validator.interview.advance import AdvanceCoordinator
from homework_validator.interview.calls import bounded
from homework_validator.interview.errors import (
    GenerationError,
    InterviewError,
    InvalidTopicsError,
    InvariantViolation,
    ValidationError,
)
from homework_validator.interview.exchange import AnswerOutcome, TurnExchange
from homework_validator.interview.finalizer import SummaryFinalizer
from homework_validator.interview.models import (
    AdvanceReason,
    InterviewSettings,
    ModalKind,
    Modality,
    Phase,
    Session,
    TransitionModal,
)
from homework_validator.interview.timer import InteractionState, TopicTimer, interaction_state
from homework_validator.interview.voice import VoiceChannel
from homework_validator.metrics import PHASE_TRANSITIONS_TOTAL, QUESTION_ROUNDS_TOTAL
from homework_validator.providers.base import (
    AnalyzeClient,
    QuestionClient,
    SpeechClient,
    SummaryClient,
    TranscribeClient,
)
from homework_validator.providers.prompts import normalize_topics

logger = config.get_logger("homework_validator.interview")

ALLOWED_TRANSITIONS = {
    Phase.UPLOAD: {Phase.ANALYZING},
    Phase.ANALYZING: {Phase.PREPARING, Phase.UPLOAD},
    Phase.PREPARING: {Phase.INTERVIEW, Phase.UPLOAD},
    Phase.INTERVIEW: {Phase.PREPARING, Phase.FINALIZING},
    Phase.FINALIZING: {Phase.RESULT},
    Phase.RESULT: set(),
}

PREPARE_FAILED = "Could not prepare the next question. Please upload the document again."
TRANSCRIBE_FAILED = "Speech recognition failed. Please answer again."
SUMMARY_FAILED = "Summarizing the result failed. Please try again."


class SessionController:
    def __init__(
        self,
        analyze_client: AnalyzeClient,
        question_client: QuestionClient,
        summary_client: SummaryClient,
        transcribe_client: TranscribeClient,
        speech_client: SpeechClient,
        clock: Callable[[], float] = time.monotonic,
        grace_seconds: float = config.AUTO_ADVANCE_SECONDS,
        generation_timeout: float = config.GENERATION_TIMEOUT_SECONDS,
        analyze_timeout: float = config.ANALYZE_TIMEOUT_SECONDS,
        synthesis_timeout: float = config.SYNTHESIS_TIMEOUT_SECONDS,
        transcribe_timeout: float = config.TRANSCRIBE_TIMEOUT_SECONDS,
        min_audio_bytes: int = config.MIN_AUDIO_BYTES,
    ):
        self._analyze = analyze_client
        self._clock = clock
        self._grace_seconds = grace_seconds
        self._analyze_timeout = analyze_timeout
        self.session = Session()
        self.settings = InterviewSettings()
        self.exchange = TurnExchange(lambda: self.session, question_client, generation_timeout)
        self.voice = VoiceChannel(
            speech_client,
            transcribe_client,
            synthesis_timeout=synthesis_timeout,
            transcribe_timeout=transcribe_timeout,
            min_audio_bytes=min_audio_bytes,
        )
        self.timer = TopicTimer(clock)
        self.finalizer = SummaryFinalizer(summary_client, generation_timeout)
        self.advancer = self._new_advancer()

    def _new_advancer(self) -> AdvanceCoordinator:
        return AdvanceCoordinator(
            get_session=lambda: self.session,
            prepare_topic=self._prepare_topic,
            finalize=self._finalize,
            leave_topic=self._leave_topic,
            clock=self._clock,
        )

    @property
    def phase(self) -> Phase:
        return self.session.phase

    def _is_live(self, session: Session) -> bool:
        return session is self.session

    def _enter(self, session: Session, phase: Phase) -> None:
        current = session.phase
        if phase not in ALLOWED_TRANSITIONS[current]:
            raise InvariantViolation(f"illegal transition {current.value} -> {phase.value}")
        session.phase = phase
        PHASE_TRANSITIONS_TOTAL.labels(from_phase=current.value, to_phase=phase.value).inc()
        logger.info(json.dumps({
            "event": "phase_transition",
            "session": session.uid,
            "from": current.value,
            "to": phase.value,
            "topicIndex": session.current_topic_index,
        }))

    # ---- document intake ----

    async def submit_document(
        self,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        settings: Optional[InterviewSettings] = None,
    ) -> Session:
        session = self.session
        if session.phase is not Phase.UPLOAD:
            raise InvariantViolation(f"cannot submit a document while {session.phase.value}")
        settings = (settings or self.settings).validate()
        self.settings = settings
        session.modality = settings.modality
        session.error = None
        self._enter(session, Phase.ANALYZING)
        try:
            text = extract_text(data, filename, content_type)
            payload = await bounded(
                "analyze",
                self._analyze.analyze(text[: config.DOCUMENT_CHAR_LIMIT]),
                self._analyze_timeout,
            )
            try:
                topics = normalize_topics(payload)
            except ValueError as e:
                raise GenerationError(str(e)) from e
            if not topics:
                raise InvalidTopicsError("The document could not be split into topics.")
        except InterviewError as e:
            if self._is_live(session) and session.phase is Phase.ANALYZING:
                self._enter(session, Phase.UPLOAD)
                session.error = e.message
            logger.warning(json.dumps({
                "event": "analysis_failed",
                "error": type(e).__name__,
                "message": e.message[:256],
            }))
            raise

        if not self._is_live(session):
            logger.info(json.dumps({"event": "analysis_discarded_after_reset"}))
            return self.session

        # Carry the settings as they are now; modality may have changed during analysis
        fresh = Session.from_analysis(topics, text, self.settings)
        self.session = fresh
        logger.info(json.dumps({
            "event": "analysis_ready",
            "session": fresh.uid,
            "topics": len(fresh.topics),
            "modality": fresh.modality.value,
            "topicSeconds": self.settings.topic_seconds,
        }))
        await self._prepare_topic(fresh, 0)
        return self.session

    # ---- topic lifecycle (also driven by AdvanceCoordinator) ----

    async def _prepare_topic(self, session: Session, index: int) -> None:
        if not self._is_live(session):
            return
        if index < session.current_topic_index:
            raise InvariantViolation(f"topic index cannot move back ({session.current_topic_index} -> {index})")
        self._enter(session, Phase.PREPARING)
        session.current_topic_index = index
        session.modal = None
        try:
            question = await self.exchange.ask_opening_question(session, index)
        except GenerationError as e:
            if self._is_live(session):
                self._fall_back_to_upload(session, e)
            return
        if question is None:
            return
        topic = session.topics[index]
        topic.activate()
        self._enter(session, Phase.INTERVIEW)
        self.timer.bind(topic)
        if session.modality is Modality.SPOKEN:
            self.voice.speak(session, index, question)

    def _fall_back_to_upload(self, session: Session, exc: GenerationError) -> None:
        self._enter(session, Phase.UPLOAD)
        self.timer.unbind()
        self.voice.cancel()
        logger.warning(json.dumps({
            "event": "prepare_failed",
            "session": session.uid,
            "topicIndex": session.current_topic_index,
            "error": type(exc).__name__,
            "message": exc.message[:256],
        }))
        self.session = Session(modality=self.settings.modality, error=PREPARE_FAILED)

    def _leave_topic(self, session: Session, index: int) -> None:
        self.voice.cancel()
        self.timer.unbind()

    async def _finalize(self, session: Session) -> None:
        if not self._is_live(session):
            return
        self._enter(session, Phase.FINALIZING)
        assessment = await self.finalizer.finalize(session)
        if not self._is_live(session):
            return
        if assessment.failed:
            session.error = SUMMARY_FAILED
        self._enter(session, Phase.RESULT)

    # ---- interview actions ----

    def note_typing(self) -> bool:
        """The student typed into the answer box; starts the clock for this topic."""
        session = self.session
        topic = session.current_topic
        if session.phase is not Phase.INTERVIEW or topic is None:
            return False
        if session.modal is not None and session.modal.kind is ModalKind.AUTO_COUNTDOWN:
            return False
        topic.engaged = True
        return True

    async def submit_answer(self, text: str) -> AnswerOutcome:
        session = self.session
        index = session.current_topic_index
        if (text or "").strip() and self.voice.is_transcribing(session):
            # A spoken answer for this question is still being transcribed
            QUESTION_ROUNDS_TOTAL.labels(outcome=AnswerOutcome.REJECTED_BUSY.value).inc()
            return AnswerOutcome.REJECTED_BUSY
        outcome = await self.exchange.submit_answer(text)
        if outcome.appended_student_turn:
            self.voice.close_capture(session, index)
        self._after_round(session, index, outcome)
        return outcome

    async def retry_answer(self) -> AnswerOutcome:
        session = self.session
        index = session.current_topic_index
        outcome = await self.exchange.retry_answer()
        self._after_round(session, index, outcome)
        return outcome

    def _after_round(self, session: Session, index: int, outcome: AnswerOutcome) -> None:
        if outcome is not AnswerOutcome.ACCEPTED or session.modality is not Modality.SPOKEN:
            return
        if not self._is_live(session) or session.phase is not Phase.INTERVIEW or session.current_topic_index != index:
            return
        last = session.topics[index].last_turn
        if last is not None:
            self.voice.speak(session, index, last.text)

    def request_manual_advance(self) -> bool:
        """Open the manual-confirm modal. Returns False when a countdown or advance already runs."""
        session = self.session
        if session.phase is not Phase.INTERVIEW or session.current_topic is None:
            raise InvariantViolation(f"nothing to advance while {session.phase.value}")
        if self.advancer.in_progress:
            return False
        if session.modal is not None and session.modal.kind is ModalKind.AUTO_COUNTDOWN:
            return False
        session.modal = TransitionModal(kind=ModalKind.MANUAL_CONFIRM, opened_at=self._clock())
        return True

    async def confirm_advance(self) -> bool:
        if self.advancer.in_progress:
            return False
        return await self.advancer.advance(AdvanceReason.MANUAL)

    def cancel_manual_confirm(self) -> bool:
        session = self.session
        if session.modal is None or session.modal.kind is not ModalKind.MANUAL_CONFIRM:
            return False
        session.modal = None
        return True

    def reset_session(self) -> Session:
        old = self.session
        self.voice.cancel()
        self.timer.unbind()
        # A fresh coordinator so an advance still awaiting the old session cannot block the new one
        self.advancer = self._new_advancer()
        self.settings = InterviewSettings()
        self.session = Session()
        PHASE_TRANSITIONS_TOTAL.labels(from_phase=old.phase.value, to_phase=Phase.UPLOAD.value).inc()
        logger.info(json.dumps({"event": "session_reset", "from": old.phase.value, "session": old.uid}))
        return self.session

    def set_modality(self, modality: Modality) -> None:
        session = self.session
        if session.phase not in (Phase.UPLOAD, Phase.ANALYZING):
            raise ValidationError("The interview mode cannot change once the interview is being prepared.")
        self.settings.modality = modality
        session.modality = modality

    # ---- timer ----

    def interaction_state(self, session: Optional[Session] = None) -> InteractionState:
        session = session or self.session
        topic = session.current_topic
        generating = self.exchange.is_generating(session) or self.voice.is_transcribing(session)
        engaged = topic is not None and (
            topic.engaged or topic.has_student_turn or self.voice.is_capturing(session)
        )
        return interaction_state(generating, self.voice.is_speaking(session), engaged)

    async def tick(self) -> bool:
        """Charge elapsed time and run the auto countdown. Returns True if this tick advanced."""
        session = self.session
        if session.phase is not Phase.INTERVIEW:
            return False
        now = self._clock()
        modal_kind = session.modal.kind if session.modal is not None else None
        exhausted = self.timer.tick(session.phase, self.interaction_state(session), modal_kind)
        if exhausted:
            # Replaces a manual-confirm modal if one was open
            session.modal = TransitionModal(
                kind=ModalKind.AUTO_COUNTDOWN,
                opened_at=now,
                countdown_seconds=self._grace_seconds,
            )
            self.voice.close_capture(session, session.current_topic_index)
            logger.info(json.dumps({
                "event": "topic_time_exhausted",
                "session": session.uid,
                "topicIndex": session.current_topic_index,
                "graceSeconds": self._grace_seconds,
            }))
            return False
        modal = session.modal
        if modal is None or modal.kind is not ModalKind.AUTO_COUNTDOWN:
            return False
        if modal.countdown_remaining(now) > 0 or self.advancer.in_progress:
            return False
        return await self.advancer.advance(AdvanceReason.AUTO)

    # ---- voice ----

    def playback_finished(self, clip_id: str) -> bool:
        key = self.voice.playback_finished(clip_id)
        if key is None:
            return False
        session = self.session
        topic = session.current_topic
        if key == (session.uid, session.current_topic_index) and topic is not None:
            # Capture starts when the question has been heard
            topic.engaged = True
        return True

    async def submit_audio(self, audio: bytes, mime_type: str = "audio/webm") -> AnswerOutcome:
        session = self.session
        index = session.current_topic_index
        if session.phase is not Phase.INTERVIEW or session.modality is not Modality.SPOKEN:
            return AnswerOutcome.REJECTED_INACTIVE
        if session.modal is not None and session.modal.kind is ModalKind.AUTO_COUNTDOWN:
            return AnswerOutcome.REJECTED_COUNTDOWN
        if not self.voice.is_capturing(session):
            return AnswerOutcome.REJECTED_INACTIVE
        if self.exchange.is_generating(session) or self.voice.is_transcribing(session):
            return AnswerOutcome.REJECTED_BUSY
        try:
            text = await self.voice.transcribe(session, index, audio, mime_type)
        except GenerationError as e:
            # Capture stays open so the student can answer again
            if self._is_live(session):
                session.error = TRANSCRIBE_FAILED
            logger.warning(json.dumps({
                "event": "transcription_failed",
                "topicIndex": index,
                "error": type(e).__name__,
                "message": e.message[:256],
            }))
            return AnswerOutcome.FAILED
        if not self._is_live(session) or session.phase is not Phase.INTERVIEW or session.current_topic_index != index:
            return AnswerOutcome.DISCARDED
        if not self.voice.is_capturing(session):
            return AnswerOutcome.DISCARDED
        return await self.submit_answer(text)

    # ---- read model ----

    def snapshot(self) -> Dict[str, Any]:
        session = self.session
        now = self._clock()
        topic = session.current_topic
        return {
            "sessionId": session.uid,
            "phase": session.phase.value,
            "modality": session.modality.value,
            "settings": {
                "topicCount": self.settings.topic_count,
                "topicDuration": self.settings.topic_seconds,
            },
            "topicIndex": session.current_topic_index,
            "progress": session.progress_text(),
            "topics": [
                {
                    "id": t.id,
                    "title": t.title,
                    "status": t.status.value,
                    "remainingSeconds": round(t.remaining_seconds, 3),
                }
                for t in session.topics
            ],
            "currentTopic": topic.to_dict() if topic is not None and session.phase is not Phase.RESULT else None,
            "interactionState": self.interaction_state(session).value,
            "modal": session.modal.to_dict(now) if session.modal is not None else None,
            "advancing": self.advancer.in_progress,
            "voice": self.voice.snapshot(session),
            "error": session.error,
            "assessment": session.assessment.to_dict() if session.assessment is not None else None,
        }
