"""
Batch runs: one prompt pair fanned out across every student/topic of a set.

Usage:
    orchestrator = BatchOrchestrator(client, store, driver, tasks)
    batch = await orchestrator.create_batch(
        name="socratic-v2",
        set_type="mini_dev",
        system_prompt="You are a patient tutor...",
        initial_message="Hi! What do you already know about this topic?",
    )
    # conversations keep running in the background; poll the batch record
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from tqdm.asyncio import tqdm

from .catalog import Catalog
from .api import KnowunityClient
from .models import BatchRecord, BatchStatus, ConversationStatus
from .orchestrator import ConversationDriver, DriverResult, StopReason
from .store import RecordStore
from .tasks import BackgroundTasks
from .validation import parse_set_type, require

logger = logging.getLogger(__name__)


@dataclass
class ProvisionedConversation:
    """A conversation that was started upstream and recorded locally."""
    conversation_id: str
    external_conversation_id: str
    max_turns: int


class BatchOrchestrator:
    """
    Creates and runs batches of auto conversations.

    Args:
        client: Tutoring/Catalog API client
        store: Record store
        driver: Turn driver used for every conversation
        tasks: Background runner that owns the execution phase
        max_concurrent: Conversations driven at once (1 = strictly sequential)
        show_progress: Draw a tqdm bar while a batch runs
    """

    def __init__(
        self,
        client: KnowunityClient,
        store: RecordStore,
        driver: ConversationDriver,
        tasks: BackgroundTasks,
        max_concurrent: int = 1,
        show_progress: bool = False,
    ):
        self.client = client
        self.store = store
        self.driver = driver
        self.tasks = tasks
        self.catalog = Catalog(client)
        self.max_concurrent = max(1, max_concurrent)
        self.show_progress = show_progress

    async def create_batch(
        self,
        name: str,
        set_type: str,
        system_prompt: str,
        initial_message: str,
    ) -> BatchRecord:
        """
        Register a batch, provision its conversations and start running them.

        Returns the batch as soon as provisioning is done; execution continues
        in the background and is observed through the batch record.
        """
        require(name=name, system_prompt=system_prompt, initial_message=initial_message)
        set_type = parse_set_type(set_type)

        # 1. Work list
        pairs = await self.catalog.enumerate_pairs(set_type)

        # 2. Register with the estimated size
        batch = await self.store.create_batch(
            name=name,
            set_type=set_type,
            system_prompt=system_prompt,
            initial_message=initial_message,
            status=BatchStatus.RUNNING,
            total_conversations=len(pairs),
            completed_conversations=0,
        )
        logger.info("Batch %s (%s) created with %d student-topic pairs", batch.id, name, len(pairs))

        # 3. Provision; a failing pair is dropped, not fatal
        provisioned: List[ProvisionedConversation] = []
        for student, topic in pairs:
            try:
                started = await self.client.start_conversation(student.id, topic.id)
                conversation = await self.store.create_conversation(
                    external_conversation_id=started.conversation_id,
                    student_id=student.id,
                    student_name=student.name,
                    topic_id=topic.id,
                    topic_name=topic.name,
                    subject_name=topic.subject_name,
                    set_type=set_type,
                    status=ConversationStatus.OPEN,
                    messages_remaining=started.max_turns,
                    is_auto=True,
                    is_running=True,
                    system_prompt=system_prompt,
                    initial_message=initial_message,
                    batch_id=batch.id,
                )
            except Exception as e:
                logger.warning(
                    "Failed to create conversation for %s - %s: %s", student.name, topic.name, e
                )
                continue
            provisioned.append(
                ProvisionedConversation(
                    conversation_id=conversation.id,
                    external_conversation_id=started.conversation_id,
                    max_turns=started.max_turns,
                )
            )

        batch = await self.store.update_batch(batch.id, total_conversations=len(provisioned))
        logger.info("Batch %s provisioned %d of %d conversations", batch.id, len(provisioned), len(pairs))

        # 4. Execute detached from the caller
        self.tasks.submit(
            self.run_batch(batch.id, provisioned, system_prompt, initial_message),
            name=f"batch-{batch.id}",
            on_error=self._failure_sink(batch.id),
        )
        return batch

    async def _run_one(
        self,
        batch_id: str,
        conversation: ProvisionedConversation,
        system_prompt: str,
        initial_message: str,
        semaphore: asyncio.Semaphore,
    ) -> DriverResult:
        async with semaphore:
            try:
                result = await self.driver.run_conversation(
                    conversation.conversation_id,
                    conversation.external_conversation_id,
                    system_prompt,
                    initial_message,
                    conversation.max_turns,
                )
                if result.success:
                    await self.store.increment_batch_completed(batch_id)
            except Exception as e:
                # a single pair never takes the batch down with it
                result = DriverResult(
                    success=False,
                    turns_taken=0,
                    is_complete=False,
                    stop_reason=StopReason.ERROR,
                    error=e,
                )
            if not result.success:
                logger.warning(
                    "Batch %s: conversation %s failed: %s",
                    batch_id, conversation.conversation_id, result.error,
                )
            return result

    async def run_batch(
        self,
        batch_id: str,
        conversations: List[ProvisionedConversation],
        system_prompt: str,
        initial_message: str,
    ) -> BatchRecord:
        """
        Drive every provisioned conversation, then close the batch.

        Individual conversation failures only leave the counter where it is;
        anything raised from here is an orchestration fault.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)
        tasks = [
            asyncio.ensure_future(
                self._run_one(batch_id, conversation, system_prompt, initial_message, semaphore)
            )
            for conversation in conversations
        ]

        completed = 0
        try:
            for coro in tqdm(
                asyncio.as_completed(tasks),
                total=len(tasks),
                desc=f"Batch {batch_id[:8]}",
                disable=not self.show_progress,
            ):
                result = await coro
                if result.success:
                    completed += 1
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        batch = await self.store.update_batch(
            batch_id,
            status=BatchStatus.COMPLETED,
            completed_conversations=completed,
        )
        logger.info("Batch %s completed: %d/%d conversations", batch_id, completed, len(conversations))
        return batch

    def _failure_sink(self, batch_id: str):
        async def _mark_failed(error: BaseException):
            await self.store.update_batch(batch_id, status=BatchStatus.FAILED)
            released = await self.store.release_batch_conversations(batch_id)
            logger.error("Batch %s marked failed (%s); released %d conversation(s)", batch_id, error, released)
        return _mark_failed

    async def get_batch(self, batch_id: str) -> Optional[BatchRecord]:
        return await self.store.get_batch(batch_id)

    async def list_batches(self) -> List[BatchRecord]:
        return await self.store.list_batches()
