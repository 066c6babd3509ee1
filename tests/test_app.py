import pytest

from conftest import make_conversation
from tutorlab.app import open_lab
from tutorlab.config import Settings
from tutorlab.db import create_engine, create_session_factory, init_models
from tutorlab.store import RecordStore

pytestmark = pytest.mark.anyio


async def _seed_crashed_run(url):
    engine = create_engine(url)
    await init_models(engine)
    conversation = await make_conversation(RecordStore(create_session_factory(engine)), is_running=True)
    await engine.dispose()
    return conversation


async def test_open_lab_clears_leases_left_by_a_dead_process(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'lab.db'}"
    conversation = await _seed_crashed_run(url)

    async with open_lab(Settings(DATABASE_URL=url, _env_file=None)) as lab:
        restored = await lab.conversations.get_conversation(conversation.id)

    assert restored.is_running is False


async def test_open_lab_can_leave_leases_alone(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'lab.db'}"
    conversation = await _seed_crashed_run(url)

    async with open_lab(Settings(DATABASE_URL=url, RELEASE_STALE_ON_START=False, _env_file=None)) as lab:
        restored = await lab.conversations.get_conversation(conversation.id)

    assert restored.is_running is True
