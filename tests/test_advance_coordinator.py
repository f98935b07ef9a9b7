import asyncio

import pytest
from prometheus_client import REGISTRY

from homework_validator.interview.advance import AdvanceCoordinator
from homework_validator.interview.errors import InvariantViolation
from homework_validator.interview.models import (
    AdvanceReason,
    InterviewSettings,
    ModalKind,
    Phase,
    Session,
    TopicStatus,
    TransitionModal,
)

from conftest import FakeClock


def _session(topic_count: int = 3) -> Session:
    raw = [{"id": f"t{i}", "title": f"Topic {i}"} for i in range(1, topic_count + 1)]
    session = Session.from_analysis(raw, "doc", InterviewSettings(topic_count=topic_count))
    session.phase = Phase.INTERVIEW
    session.topics[0].activate()
    session.topics[0].append_question("Opening")
    return session


class _Recorder:
    """Stands in for the controller's prepare/finalize/leave hooks."""

    def __init__(self, session: Session):
        self.session = session
        self.prepared = []
        self.finalized = 0
        self.left = []
        self.prepare_error = None

    def get_session(self) -> Session:
        return self.session

    async def prepare(self, session: Session, index: int) -> None:
        self.prepared.append(index)
        await asyncio.sleep(0)
        if self.prepare_error is not None:
            raise self.prepare_error
        session.current_topic_index = index
        session.topics[index].activate()

    async def finalize(self, session: Session) -> None:
        self.finalized += 1
        await asyncio.sleep(0)
        session.phase = Phase.RESULT

    def leave(self, session: Session, index: int) -> None:
        self.left.append(index)

    def coordinator(self) -> AdvanceCoordinator:
        return AdvanceCoordinator(self.get_session, self.prepare, self.finalize, self.leave, clock=FakeClock())


def _advances(reason: str, outcome: str) -> float:
    val = REGISTRY.get_sample_value("homework_validator_advances_total", {"reason": reason, "outcome": outcome})
    return float(val) if val is not None else 0.0


@pytest.mark.asyncio
async def test_advance_finishes_topic_and_prepares_next():
    session = _session()
    session.modal = TransitionModal(kind=ModalKind.MANUAL_CONFIRM, opened_at=0.0)
    rec = _Recorder(session)
    coord = rec.coordinator()

    assert await coord.advance(AdvanceReason.MANUAL) is True

    assert session.topics[0].status is TopicStatus.DONE
    assert session.modal is None
    assert rec.left == [0]
    assert rec.prepared == [1]
    assert session.current_topic_index == 1
    assert not coord.in_progress
    assert coord.request is None


@pytest.mark.asyncio
async def test_advance_from_last_topic_finalizes():
    session = _session(topic_count=1)
    rec = _Recorder(session)
    coord = rec.coordinator()

    assert await coord.advance(AdvanceReason.AUTO) is True
    assert rec.prepared == []
    assert rec.finalized == 1
    assert session.phase is Phase.RESULT


@pytest.mark.asyncio
async def test_concurrent_advances_move_exactly_one_topic():
    session = _session()
    rec = _Recorder(session)
    coord = rec.coordinator()
    before = _advances("auto", "ignored")

    results = await asyncio.gather(
        coord.advance(AdvanceReason.MANUAL),
        coord.advance(AdvanceReason.AUTO),
    )

    assert sorted(results) == [False, True]
    assert rec.prepared == [1]
    assert session.current_topic_index == 1
    assert [t.status for t in session.topics] == [TopicStatus.DONE, TopicStatus.ACTIVE, TopicStatus.PENDING]
    assert _advances("auto", "ignored") == before + 1


@pytest.mark.asyncio
async def test_claim_is_visible_before_first_suspension():
    session = _session()
    rec = _Recorder(session)
    coord = rec.coordinator()

    task = asyncio.create_task(coord.advance(AdvanceReason.MANUAL))
    await asyncio.sleep(0)
    assert coord.in_progress
    assert coord.request is not None and coord.request.reason is AdvanceReason.MANUAL
    assert await coord.advance(AdvanceReason.AUTO) is False
    assert await task is True


@pytest.mark.asyncio
async def test_advance_without_active_topic_raises():
    session = _session()
    session.phase = Phase.PREPARING
    coord = _Recorder(session).coordinator()

    with pytest.raises(InvariantViolation):
        await coord.advance(AdvanceReason.MANUAL)

    blank = Session()
    coord = _Recorder(blank).coordinator()
    with pytest.raises(InvariantViolation):
        await coord.advance(AdvanceReason.AUTO)


@pytest.mark.asyncio
async def test_lock_released_when_preparation_raises():
    session = _session()
    rec = _Recorder(session)
    rec.prepare_error = RuntimeError("boom")
    coord = rec.coordinator()

    with pytest.raises(RuntimeError):
        await coord.advance(AdvanceReason.MANUAL)
    assert not coord.in_progress
    assert coord.request is None
