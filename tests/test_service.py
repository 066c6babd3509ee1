import pytest

from conftest import FakeKnowunityClient, make_conversation
from tutorlab.errors import (
    ConversationBusyError,
    ConversationClosedError,
    ErrorCode,
    InvalidRequestError,
    NotFoundError,
    PersistenceError,
)
from tutorlab.models import ConversationStatus, Role
from tutorlab.orchestrator import ConversationDriver
from tutorlab.service import ConversationService

pytestmark = pytest.mark.anyio


def _service(client, store, agent, tasks) -> ConversationService:
    return ConversationService(client, store, ConversationDriver(client, store, agent), tasks)


async def test_manual_conversation_scenario(store, agent, tasks):
    client = FakeKnowunityClient(max_turns=5, complete_after=2)
    service = _service(client, store, agent, tasks)

    conversation = await service.start_manual("s1", "t1", "mini_dev")
    assert conversation.student_name == "Alex"
    assert conversation.topic_name == "Linear Functions"
    assert conversation.messages_remaining == 5
    assert conversation.is_auto is False
    assert conversation.is_running is False

    first = await service.append_manual_turn(conversation.id, "What is a slope?")
    assert first.messages_remaining == 4
    assert first.conversation_ended is False
    assert first.tutor_message.role == Role.TUTOR
    assert first.student_message.content == "student reply 1"
    assert (await service.get_conversation(conversation.id)).status == ConversationStatus.OPEN

    second = await service.append_manual_turn(conversation.id, "Can you give an example?")
    assert second.conversation_ended is True
    assert (await service.get_conversation(conversation.id)).status == ConversationStatus.CLOSED

    with pytest.raises(ConversationClosedError):
        await service.append_manual_turn(conversation.id, "One more?")

    messages = await service.get_messages(conversation.id)
    assert [m.content for m in messages] == [
        "What is a slope?", "student reply 1", "Can you give an example?", "student reply 2",
    ]


async def test_unknown_student_or_topic_starts_nothing(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)

    with pytest.raises(NotFoundError):
        await service.start_manual("nobody", "t1", "mini_dev")
    with pytest.raises(NotFoundError):
        await service.start_manual("s1", "t404", "mini_dev")
    assert client.started == []


async def test_validation_errors(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)

    with pytest.raises(InvalidRequestError) as excinfo:
        await service.start_manual("", "t1", "mini_dev")
    assert excinfo.value.code == ErrorCode.VALIDATION_ERROR
    assert excinfo.value.to_dict() == {"error": "student_id is required", "errorCode": "VALIDATION_ERROR"}

    with pytest.raises(InvalidRequestError):
        await service.start_manual("s1", "t1", "holdout")
    with pytest.raises(InvalidRequestError):
        await service.start_auto("s1", "t1", "mini_dev", "Be Socratic.", "  ")


async def test_unknown_conversation(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)

    with pytest.raises(NotFoundError):
        await service.append_manual_turn("missing", "hello")
    with pytest.raises(NotFoundError):
        await service.get_messages("missing")


async def test_auto_conversation_runs_in_background(store, agent, tasks):
    client = FakeKnowunityClient(max_turns=3)
    service = _service(client, store, agent, tasks)

    conversation = await service.start_auto("s1", "t1", "mini_dev", "Be Socratic.", "What is a slope?")
    assert conversation.is_auto is True
    assert conversation.is_running is True

    await tasks.drain()

    finished = await service.get_conversation(conversation.id)
    assert finished.is_running is False
    assert finished.messages_remaining == 0
    assert len(await service.get_messages(conversation.id)) == 6


async def test_manual_turn_rejected_while_driver_runs(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)
    conversation = await make_conversation(store, is_running=True)

    with pytest.raises(ConversationBusyError):
        await service.append_manual_turn(conversation.id, "hello")
    assert client.interactions == []


async def test_resume_continues_from_stored_history(store, agent, tasks):
    client = FakeKnowunityClient(max_turns=5)
    service = _service(client, store, agent, tasks)
    conversation = await make_conversation(store, is_running=False, messages_remaining=2)
    await store.create_messages(conversation.id, [(Role.TUTOR, "What is a slope?"), (Role.STUDENT, "no idea")])

    resumed = await service.resume_auto(conversation.id)
    assert resumed.is_running is True

    await tasks.drain()

    assert agent.calls[0][1][-1].content == "no idea"
    finished = await service.get_conversation(conversation.id)
    assert finished.is_running is False
    assert finished.messages_remaining == 0
    assert len(await service.get_messages(conversation.id)) == 6


async def test_resume_refuses_a_held_lease(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)
    conversation = await make_conversation(store, is_running=True)

    with pytest.raises(ConversationBusyError):
        await service.resume_auto(conversation.id)


async def test_resume_refuses_manual_and_closed(store, client, agent, tasks):
    service = _service(client, store, agent, tasks)
    manual = await make_conversation(store, is_auto=False, is_running=False, system_prompt=None)
    closed = await make_conversation(store, is_running=False, status="closed")

    with pytest.raises(InvalidRequestError):
        await service.resume_auto(manual.id)
    with pytest.raises(ConversationClosedError):
        await service.resume_auto(closed.id)


async def test_resume_after_crash_once_stale_lease_is_cleared(store, agent, tasks):
    client = FakeKnowunityClient(max_turns=5)
    service = _service(client, store, agent, tasks)
    # the previous process died mid-run and never released its lease
    conversation = await make_conversation(store, is_running=True, messages_remaining=3)
    await store.create_messages(conversation.id, [(Role.TUTOR, "What is a slope?"), (Role.STUDENT, "no idea")])

    with pytest.raises(ConversationBusyError):
        await service.resume_auto(conversation.id)

    assert await store.release_stale_conversations() == 1
    await service.resume_auto(conversation.id)
    await tasks.drain()

    finished = await service.get_conversation(conversation.id)
    assert finished.is_running is False
    assert finished.messages_remaining == 0
    assert len(await service.get_messages(conversation.id)) == 8


async def test_resume_gives_the_lease_back_when_it_cannot_start(store, client, agent, tasks, monkeypatch):
    service = _service(client, store, agent, tasks)
    conversation = await make_conversation(store, is_running=False)

    async def _broken_read(conversation_id):
        raise PersistenceError("database went away")

    monkeypatch.setattr(store, "get_messages", _broken_read)

    with pytest.raises(PersistenceError):
        await service.resume_auto(conversation.id)
    assert (await store.get_conversation(conversation.id)).is_running is False
    assert tasks.pending == 0
