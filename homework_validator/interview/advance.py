"""
Topic-to-topic movement.

Manual confirmation and the automatic countdown both end up in `advance()`.
The lock is claimed before the first await, so whichever caller runs first
wins and the other sees `in_progress` and backs off.
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Awaitable, Callable, Optional

from homework_validator import config
from homework_validator.interview.errors import InvariantViolation
from homework_validator.interview.models import AdvanceReason, AdvanceRequest, Phase, Session, TopicStatus
from homework_validator.metrics import ADVANCES_TOTAL

logger = config.get_logger("homework_validator.interview")


class AdvanceCoordinator:
    def __init__(
        self,
        get_session: Callable[[], Session],
        prepare_topic: Callable[[Session, int], Awaitable[None]],
        finalize: Callable[[Session], Awaitable[None]],
        leave_topic: Callable[[Session, int], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._get_session = get_session
        self._prepare_topic = prepare_topic
        self._finalize = finalize
        self._leave_topic = leave_topic
        self._clock = clock
        self._lock = asyncio.Lock()
        self.request: Optional[AdvanceRequest] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def advance(self, reason: AdvanceReason) -> bool:
        """Move past the active topic. Returns False if another advance already holds the claim."""
        if self._lock.locked():
            ADVANCES_TOTAL.labels(reason=reason.value, outcome="ignored").inc()
            logger.info(json.dumps({"event": "advance_ignored", "reason": reason.value}))
            return False
        session = self._get_session()
        topic = session.current_topic
        if session.phase is not Phase.INTERVIEW or topic is None or topic.status is not TopicStatus.ACTIVE:
            raise InvariantViolation(f"no active topic to advance from (phase={session.phase.value})")

        # Acquiring a free asyncio.Lock completes without suspending
        await self._lock.acquire()
        self.request = AdvanceRequest(reason=reason, requested_at=self._clock())
        index = session.current_topic_index
        outcome = "error"
        try:
            topic.finish()
            session.modal = None
            self._leave_topic(session, index)
            # Read the topic sequence as it is now, not as the caller saw it
            if index + 1 < len(session.topics):
                await self._prepare_topic(session, index + 1)
                outcome = "next_topic"
            else:
                await self._finalize(session)
                outcome = "finalized"
            return True
        finally:
            self.request = None
            self._lock.release()
            ADVANCES_TOTAL.labels(reason=reason.value, outcome=outcome).inc()
            logger.info(json.dumps({
                "event": "advance",
                "reason": reason.value,
                "fromTopic": index,
                "outcome": outcome,
            }))
