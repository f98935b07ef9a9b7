"""
Session state for a document-authorship interview.

A Session is the single state container owned by the SessionController.
Topics, turns and the transition modal live inside it; the other interview
components read it and change it only through the methods below.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from homework_validator import config
from homework_validator.interview.errors import InvariantViolation, ValidationError


class Phase(str, Enum):
    UPLOAD = "upload"
    ANALYZING = "analyzing"
    PREPARING = "preparing"
    INTERVIEW = "interview"
    FINALIZING = "finalizing"
    RESULT = "result"


class Modality(str, Enum):
    TYPED = "typed"
    SPOKEN = "spoken"


class TopicStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"


class Speaker(str, Enum):
    SYSTEM = "system"
    STUDENT = "student"


class AdvanceReason(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class ModalKind(str, Enum):
    MANUAL_CONFIRM = "manual-confirm"
    AUTO_COUNTDOWN = "auto-countdown"


_NEXT_STATUS = {
    TopicStatus.PENDING: TopicStatus.ACTIVE,
    TopicStatus.ACTIVE: TopicStatus.DONE,
}


@dataclass(frozen=True)
class Turn:
    speaker: Speaker
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"speaker": self.speaker.value, "text": self.text}


@dataclass
class Topic:
    id: str
    title: str
    description: str = ""
    remaining_seconds: float = 0.0
    status: TopicStatus = TopicStatus.PENDING
    turns: List[Turn] = field(default_factory=list)
    has_been_asked: bool = False
    # Student typed, answered or started speaking on this topic
    engaged: bool = False

    def _move_to(self, status: TopicStatus) -> None:
        if _NEXT_STATUS.get(self.status) != status:
            raise InvariantViolation(f"topic {self.id}: cannot move {self.status.value} -> {status.value}")
        self.status = status

    def activate(self) -> None:
        self._move_to(TopicStatus.ACTIVE)

    def finish(self) -> None:
        self._move_to(TopicStatus.DONE)
        self.remaining_seconds = max(0.0, self.remaining_seconds)

    def append_question(self, text: str) -> Turn:
        turn = Turn(Speaker.SYSTEM, text)
        self.turns.append(turn)
        self.has_been_asked = True
        return turn

    def append_answer(self, text: str) -> Turn:
        if not self.has_been_asked:
            raise InvariantViolation(f"topic {self.id}: answer before the opening question")
        turn = Turn(Speaker.STUDENT, text)
        self.turns.append(turn)
        self.engaged = True
        return turn

    def consume(self, seconds: float) -> None:
        if seconds < 0:
            raise InvariantViolation("elapsed time cannot be negative")
        self.remaining_seconds = max(0.0, self.remaining_seconds - seconds)

    @property
    def has_student_turn(self) -> bool:
        return any(t.speaker is Speaker.STUDENT for t in self.turns)

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "remainingSeconds": round(self.remaining_seconds, 3),
            "status": self.status.value,
            "turns": [t.to_dict() for t in self.turns],
            "hasBeenAsked": self.has_been_asked,
        }


@dataclass
class AdvanceRequest:
    reason: AdvanceReason
    requested_at: float


@dataclass
class TransitionModal:
    kind: ModalKind
    opened_at: float
    countdown_seconds: Optional[float] = None

    def countdown_remaining(self, now: float) -> Optional[float]:
        if self.kind is not ModalKind.AUTO_COUNTDOWN or self.countdown_seconds is None:
            return None
        return max(0.0, self.countdown_seconds - (now - self.opened_at))

    def to_dict(self, now: float) -> Dict[str, Any]:
        remaining = self.countdown_remaining(now)
        return {
            "kind": self.kind.value,
            # Whole seconds for display, rounded up so "5" shows right after opening
            "countdownRemaining": None if remaining is None else int(-(-remaining // 1)),
        }


@dataclass
class Assessment:
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    overall_comment: str = ""
    # Set on the substitute produced when the summary request failed
    failed: bool = False

    @classmethod
    def placeholder(cls, reason: str) -> "Assessment":
        return cls(
            strengths=[],
            weaknesses=[f"The final assessment could not be generated ({reason}). Please try again."],
            overall_comment="The interview finished, but the assessment service did not respond.",
            failed=True,
        )

    @classmethod
    def from_payload(cls, payload: Any) -> "Assessment":
        """Normalize a provider payload ({strengths, weaknesses, overallComment})."""
        if not isinstance(payload, dict):
            raise ValueError("assessment payload must be an object")

        def _as_str_list(val: Any) -> List[str]:
            if isinstance(val, str):
                val = [val]
            if not isinstance(val, list):
                return []
            return [str(v).strip() for v in val if str(v).strip()]

        comment = payload.get("overallComment", payload.get("overall_comment", ""))
        return cls(
            strengths=_as_str_list(payload.get("strengths")),
            weaknesses=_as_str_list(payload.get("weaknesses")),
            overall_comment=str(comment or "").strip(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "overallComment": self.overall_comment,
        }


@dataclass
class InterviewSettings:
    modality: Modality = Modality.TYPED
    topic_count: int = config.DEFAULT_TOPIC_COUNT
    topic_seconds: int = config.DEFAULT_TOPIC_SECONDS

    def validate(self) -> "InterviewSettings":
        if not 1 <= self.topic_count <= config.MAX_TOPICS:
            raise ValidationError(f"topic count must be between 1 and {config.MAX_TOPICS}")
        if self.topic_seconds <= 0:
            raise ValidationError("topic duration must be positive")
        return self


@dataclass
class Session:
    phase: Phase = Phase.UPLOAD
    topics: Tuple[Topic, ...] = ()
    current_topic_index: int = 0
    modality: Modality = Modality.TYPED
    document_text: str = ""
    modal: Optional[TransitionModal] = None
    assessment: Optional[Assessment] = None
    # Last recoverable error, human readable
    error: Optional[str] = None
    # Identity used to recognize responses that outlived a reset
    uid: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_analysis(cls, topics: List[Dict[str, Any]], document_text: str, settings: InterviewSettings) -> "Session":
        built = tuple(
            Topic(
                id=str(t.get("id") or f"t{idx + 1}"),
                title=str(t.get("title") or f"Topic {idx + 1}"),
                description=str(t.get("description") or ""),
                remaining_seconds=float(settings.topic_seconds),
            )
            for idx, t in enumerate(topics[: settings.topic_count])
        )
        return cls(
            phase=Phase.ANALYZING,
            topics=built,
            current_topic_index=0,
            modality=settings.modality,
            document_text=document_text,
        )

    @property
    def current_topic(self) -> Optional[Topic]:
        if 0 <= self.current_topic_index < len(self.topics):
            return self.topics[self.current_topic_index]
        return None

    @property
    def active_topics(self) -> List[Topic]:
        return [t for t in self.topics if t.status is TopicStatus.ACTIVE]

    @property
    def is_last_topic(self) -> bool:
        return self.current_topic_index + 1 >= len(self.topics)

    def progress_text(self) -> str:
        if not self.topics:
            return ""
        return f"{self.current_topic_index + 1}/{len(self.topics)}"
