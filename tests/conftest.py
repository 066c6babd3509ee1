"""Shared fixtures: a throwaway SQLite store and in-memory stand-ins for the remote services."""
from typing import Dict, List, Optional, Set, Tuple

import pytest

from tutorlab.db import create_engine, create_session_factory, init_models
from tutorlab.errors import GenerationError, TutoringAPIError
from tutorlab.models import (
    InteractionResult,
    InteractionStartResult,
    Role,
    StudentInfo,
    TopicInfo,
    TranscriptTurn,
    TutoringResult,
)
from tutorlab.store import RecordStore
from tutorlab.tasks import BackgroundTasks


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def store(tmp_path, anyio_backend):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'lab.db'}")
    await init_models(engine)
    yield RecordStore(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def tasks():
    return BackgroundTasks()


def make_topic(topic_id: str, name: str, subject: str = "Math") -> TopicInfo:
    return TopicInfo(id=topic_id, subject_id=subject.lower(), subject_name=subject, name=name, grade_level=9)


class FakeKnowunityClient:
    """
    Scripted stand-in for ``KnowunityClient``.

    Args:
        students: Students returned for every set
        topics: Topics per student id
        max_turns: Turn budget handed out by start_conversation
        complete_after: Turn after which the student side reports completion
        fail_start: (student_id, topic_id) pairs whose start call fails
        fail_interact_on: Turn number (1-based, per conversation) that fails
    """

    def __init__(
        self,
        students: Optional[List[StudentInfo]] = None,
        topics: Optional[Dict[str, List[TopicInfo]]] = None,
        max_turns: int = 5,
        complete_after: Optional[int] = None,
        fail_start: Optional[Set[Tuple[str, str]]] = None,
        fail_interact_on: Optional[int] = None,
    ):
        self.students = students if students is not None else [StudentInfo(id="s1", name="Alex", grade_level=9)]
        self.topics = topics if topics is not None else {"s1": [make_topic("t1", "Linear Functions")]}
        self.max_turns = max_turns
        self.complete_after = complete_after
        self.fail_start = fail_start or set()
        self.fail_interact_on = fail_interact_on
        self.started: List[Tuple[str, str]] = []
        self.interactions: List[Tuple[str, str]] = []
        self.turns: Dict[str, int] = {}
        self.evaluation_result: Optional[TutoringResult] = None
        self.evaluation_error: Optional[Exception] = None
        self.evaluate_calls = 0

    async def get_students(self, set_type=None):
        return list(self.students)

    async def get_students_topics(self, student_id):
        return list(self.topics.get(student_id, []))

    async def start_conversation(self, student_id, topic_id):
        if (student_id, topic_id) in self.fail_start:
            raise TutoringAPIError(500, "start failed")
        self.started.append((student_id, topic_id))
        external_id = f"ext-{student_id}-{topic_id}-{len(self.started)}"
        return InteractionStartResult(
            conversation_id=external_id,
            student_id=student_id,
            topic_id=topic_id,
            max_turns=self.max_turns,
        )

    async def interact(self, conversation_id, tutor_message):
        turn = self.turns.get(conversation_id, 0) + 1
        if self.fail_interact_on is not None and turn == self.fail_interact_on:
            raise TutoringAPIError(503, "student simulator unavailable")
        self.turns[conversation_id] = turn
        self.interactions.append((conversation_id, tutor_message))
        return InteractionResult(
            tutor_message=tutor_message,
            conversation_id=conversation_id,
            interaction_id=f"{conversation_id}-{turn}",
            student_response=f"student reply {turn}",
            turn_number=turn,
            is_complete=self.complete_after is not None and turn >= self.complete_after,
        )

    async def evaluate_tutoring(self, set_type):
        self.evaluate_calls += 1
        if self.evaluation_error is not None:
            raise self.evaluation_error
        return self.evaluation_result


class FakeTutorAgent:
    """Deterministic generation agent that records what it was asked."""

    def __init__(self, fail_on_call: Optional[int] = None):
        self.fail_on_call = fail_on_call
        self.calls: List[Tuple[str, List[TranscriptTurn]]] = []

    async def run(self, system_prompt, transcript):
        self.calls.append((system_prompt, list(transcript)))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise GenerationError("model unavailable")
        assert transcript[-1].role == Role.STUDENT
        return f"tutor question {len(transcript) // 2 + 1}"


@pytest.fixture
def client():
    return FakeKnowunityClient()


@pytest.fixture
def agent():
    return FakeTutorAgent()


async def make_conversation(store: RecordStore, **overrides):
    fields = dict(
        external_conversation_id="ext-1",
        student_id="s1",
        student_name="Alex",
        topic_id="t1",
        topic_name="Linear Functions",
        subject_name="Math",
        set_type="mini_dev",
        status="open",
        messages_remaining=5,
        is_auto=True,
        is_running=True,
        system_prompt="Be Socratic.",
        initial_message="What is a slope?",
    )
    fields.update(overrides)
    return await store.create_conversation(**fields)
