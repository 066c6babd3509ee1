import pytest

from tutorlab.errors import (
    BatchNotCompletedError,
    ErrorCode,
    EvaluationNotSavedError,
    NoBatchError,
    PersistenceError,
    TutoringAPIError,
)
from tutorlab.evaluation import EvaluationService
from tutorlab.models import BatchStatus, TutoringResult

pytestmark = pytest.mark.anyio


async def _batch(store, status=BatchStatus.COMPLETED, set_type="mini_dev"):
    return await store.create_batch(
        name="socratic",
        set_type=set_type,
        system_prompt="Be Socratic.",
        initial_message="What do you know?",
        status=status,
        total_conversations=2,
        completed_conversations=2 if status == BatchStatus.COMPLETED else 1,
    )


@pytest.fixture
def scored_client(client):
    client.evaluation_result = TutoringResult(
        score=0.82, num_conversations=2, submission_number=1, submissions_remaining=4
    )
    return client


async def test_no_batch(store, scored_client):
    service = EvaluationService(scored_client, store)

    with pytest.raises(NoBatchError):
        await service.submit_evaluation("mini_dev")
    assert scored_client.evaluate_calls == 0


async def test_running_batch_is_not_submitted(store, scored_client):
    await _batch(store, status=BatchStatus.RUNNING)
    service = EvaluationService(scored_client, store)

    with pytest.raises(BatchNotCompletedError):
        await service.submit_evaluation("mini_dev")
    assert scored_client.evaluate_calls == 0
    assert await store.list_evaluations() == []


async def test_success_pins_score_to_batch(store, scored_client):
    batch = await _batch(store)
    service = EvaluationService(scored_client, store)

    record = await service.submit_evaluation("mini_dev")

    assert record.score == 0.82
    assert record.batch_id == batch.id
    assert record.system_prompt == "Be Socratic."
    assert record.submissions_remaining == 4
    assert [e.id for e in await service.list_evaluations()] == [record.id]


async def test_rate_limit_is_classified(store, client):
    await _batch(store)
    client.evaluation_error = TutoringAPIError(429, "Too many submissions")
    service = EvaluationService(client, store)

    with pytest.raises(TutoringAPIError) as excinfo:
        await service.submit_evaluation("mini_dev")
    assert excinfo.value.code == ErrorCode.RATE_LIMIT
    assert excinfo.value.status_code == 429
    assert await store.list_evaluations() == []


async def test_unsaved_evaluation_keeps_upstream_result(store, scored_client, monkeypatch):
    await _batch(store)
    service = EvaluationService(scored_client, store)

    async def _broken(**fields):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "create_evaluation", _broken)

    with pytest.raises(EvaluationNotSavedError) as excinfo:
        await service.submit_evaluation("mini_dev")
    assert excinfo.value.code == ErrorCode.DATABASE_ERROR
    assert excinfo.value.result.score == 0.82
