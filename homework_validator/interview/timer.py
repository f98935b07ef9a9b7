"""
Per-topic countdown.

The timer is charged with real elapsed time between ticks (timestamp deltas),
so callback jitter or a slow event loop never compounds into drift. Time spent
while paused is discarded rather than charged later.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional

from homework_validator.interview.models import ModalKind, Phase, Topic, TopicStatus


class InteractionState(str, Enum):
    """What the interview is waiting on right now, highest priority first."""

    GENERATING = "generating"
    SPEAKING = "speaking"
    AWAITING_STUDENT = "awaiting_student"
    ENGAGED = "engaged"


def interaction_state(generating: bool, speaking: bool, engaged: bool) -> InteractionState:
    if generating:
        return InteractionState.GENERATING
    if speaking:
        return InteractionState.SPEAKING
    if not engaged:
        return InteractionState.AWAITING_STUDENT
    return InteractionState.ENGAGED


def should_tick(phase: Phase, state: InteractionState, modal_kind: Optional[ModalKind]) -> bool:
    """Pause predicate. A manual-confirm modal keeps the clock running."""
    if phase is not Phase.INTERVIEW:
        return False
    if modal_kind is ModalKind.AUTO_COUNTDOWN:
        return False
    return state is InteractionState.ENGAGED


class TopicTimer:
    """Countdown for whichever topic is currently active.

    `bind()` attaches the timer to a freshly activated topic. Each `tick()`
    charges the time since the previous tick when the pause predicate allows it
    and returns True exactly once per topic, on the tick where the remaining time
    first reaches zero.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._topic: Optional[Topic] = None
        self._last_tick: Optional[float] = None
        self._exhausted_reported = False

    @property
    def topic(self) -> Optional[Topic]:
        return self._topic

    def bind(self, topic: Topic) -> None:
        self._topic = topic
        self._last_tick = self._clock()
        self._exhausted_reported = False

    def unbind(self) -> None:
        self._topic = None
        self._last_tick = None
        self._exhausted_reported = False

    def tick(self, phase: Phase, state: InteractionState, modal_kind: Optional[ModalKind]) -> bool:
        now = self._clock()
        last, self._last_tick = self._last_tick, now
        topic = self._topic
        if topic is None or last is None or topic.status is not TopicStatus.ACTIVE:
            return False
        if should_tick(phase, state, modal_kind) and topic.remaining_seconds > 0:
            topic.consume(max(0.0, now - last))
        if topic.remaining_seconds > 0 or self._exhausted_reported:
            return False
        if modal_kind is ModalKind.AUTO_COUNTDOWN:
            return False
        self._exhausted_reported = True
        return True
