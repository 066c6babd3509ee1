"""
Run-state snapshots for polling clients.

There is no push channel: ``is_running`` on conversations and ``status`` on
batches are the authoritative state, and these helpers only read them.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from .errors import NotFoundError
from .models import BatchStatus, ConversationStatus
from .store import RecordStore


class BatchProgress(BaseModel):
    batch_id: str
    status: BatchStatus
    total_conversations: int
    completed_conversations: int
    running_conversations: int

    @property
    def percent(self) -> float:
        if self.total_conversations == 0:
            return 100.0 if self.is_terminal else 0.0
        return min(round(self.completed_conversations / self.total_conversations * 100, 2), 100.0)

    @property
    def is_terminal(self) -> bool:
        return self.status != BatchStatus.RUNNING


class ConversationProgress(BaseModel):
    conversation_id: str
    status: ConversationStatus
    is_running: bool
    messages_remaining: int
    message_count: int


async def get_batch_progress(store: RecordStore, batch_id: str) -> BatchProgress:
    batch = await store.get_batch(batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found")
    running = await store.count_conversations(batch_id, is_running=True)
    return BatchProgress(
        batch_id=batch.id,
        status=batch.status,
        total_conversations=batch.total_conversations,
        completed_conversations=batch.completed_conversations,
        running_conversations=running,
    )


async def get_conversation_progress(store: RecordStore, conversation_id: str) -> ConversationProgress:
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    messages = await store.get_messages(conversation_id)
    return ConversationProgress(
        conversation_id=conversation.id,
        status=conversation.status,
        is_running=conversation.is_running,
        messages_remaining=conversation.messages_remaining,
        message_count=len(messages),
    )


async def wait_for_batch(
    store: RecordStore,
    batch_id: str,
    poll_interval: float = 2.0,
    timeout: Optional[float] = None,
    on_update: Optional[Callable[[BatchProgress], Awaitable[None]]] = None,
) -> BatchProgress:
    """
    Poll a batch until it reaches a terminal status.

    Raises:
        TimeoutError: the batch is still running after ``timeout`` seconds
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        progress = await get_batch_progress(store, batch_id)
        if on_update is not None:
            await on_update(progress)
        if progress.is_terminal:
            return progress
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"Batch {batch_id} still running after {timeout}s")
        await asyncio.sleep(poll_interval)
