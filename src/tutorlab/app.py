"""
Wires the API client, record store, generation agent and background runner
into one object for scripts and route handlers.

Usage:
    import asyncio
    from tutorlab.app import open_lab

    async def main():
        async with open_lab() as lab:
            conversation = await lab.conversations.start_manual("s1", "t1", "mini_dev")
            turn = await lab.conversations.append_manual_turn(conversation.id, "Hi!")

    asyncio.run(main())
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .agents import TutorAgent
from .api import KnowunityClient, create_session
from .batch import BatchOrchestrator
from .config import Settings, settings as default_settings
from .db import create_engine, create_session_factory, init_models
from .evaluation import EvaluationService
from .orchestrator import ConversationDriver
from .service import ConversationService
from .store import RecordStore
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


@dataclass
class TutorLab:
    client: KnowunityClient
    store: RecordStore
    tasks: BackgroundTasks
    conversations: ConversationService
    batches: BatchOrchestrator
    evaluations: EvaluationService

    # the operations exposed to route handlers

    async def start_manual(self, student_id, topic_id, set_type):
        return await self.conversations.start_manual(student_id, topic_id, set_type)

    async def start_auto(self, student_id, topic_id, set_type, system_prompt, initial_message):
        return await self.conversations.start_auto(
            student_id, topic_id, set_type, system_prompt, initial_message
        )

    async def create_batch(self, name, set_type, system_prompt, initial_message):
        return await self.batches.create_batch(name, set_type, system_prompt, initial_message)

    async def append_manual_turn(self, conversation_id, message):
        return await self.conversations.append_manual_turn(conversation_id, message)

    async def submit_evaluation(self, set_type):
        return await self.evaluations.submit_evaluation(set_type)


def build_lab(
    client: KnowunityClient,
    store: RecordStore,
    agent: TutorAgent,
    tasks: BackgroundTasks,
    max_concurrent: int = 1,
    show_progress: bool = False,
) -> TutorLab:
    driver = ConversationDriver(client, store, agent)
    return TutorLab(
        client=client,
        store=store,
        tasks=tasks,
        conversations=ConversationService(client, store, driver, tasks),
        batches=BatchOrchestrator(
            client, store, driver, tasks,
            max_concurrent=max_concurrent,
            show_progress=show_progress,
        ),
        evaluations=EvaluationService(client, store),
    )


@asynccontextmanager
async def open_lab(
    config: Optional[Settings] = None,
    show_progress: bool = False,
) -> AsyncIterator[TutorLab]:
    """Open every resource; on exit wait for background runs, then close them."""
    config = config or default_settings
    engine = create_engine(config.database_url, echo=config.DATABASE_ECHO)
    await init_models(engine)
    try:
        store = RecordStore(create_session_factory(engine))
        if config.RELEASE_STALE_ON_START:
            # this process holds no leases yet, so any still set were orphaned
            released = await store.release_stale_conversations()
            if released:
                logger.warning("Released %d conversation(s) left running by a previous process", released)

        async with create_session(config.HTTP_TIMEOUT) as session:
            client = KnowunityClient(
                session, base_url=config.KNOWUNITY_API_URL, api_key=config.KNOWUNITY_API_KEY
            )
            tasks = BackgroundTasks(timeout=config.BACKGROUND_TASK_TIMEOUT)
            lab = build_lab(
                client,
                store,
                TutorAgent(),
                tasks,
                max_concurrent=config.BATCH_MAX_CONCURRENT,
                show_progress=show_progress,
            )
            try:
                yield lab
            finally:
                if tasks.pending:
                    logger.info("Waiting for %d background run(s) to finish", tasks.pending)
                await tasks.drain()
    finally:
        await engine.dispose()
