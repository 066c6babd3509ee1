import logging
from typing import List, Optional

from .api import KnowunityClient
from .catalog import Catalog
from .errors import (
    ConversationBusyError,
    ConversationClosedError,
    InvalidRequestError,
    NotFoundError,
)
from .models import (
    ConversationRecord,
    ConversationStatus,
    MessageRecord,
    Role,
    TranscriptTurn,
    TurnResult,
)
from .orchestrator import ConversationDriver
from .store import RecordStore
from .tasks import BackgroundTasks
from .validation import parse_set_type, require

logger = logging.getLogger(__name__)


class ConversationService:
    """Manual and auto conversations for single student/topic pairs."""

    def __init__(
        self,
        client: KnowunityClient,
        store: RecordStore,
        driver: ConversationDriver,
        tasks: BackgroundTasks,
    ):
        self.client = client
        self.store = store
        self.driver = driver
        self.tasks = tasks
        self.catalog = Catalog(client)

    async def _start(
        self,
        student_id: str,
        topic_id: str,
        set_type: str,
        *,
        is_auto: bool,
        system_prompt: Optional[str] = None,
        initial_message: Optional[str] = None,
    ) -> ConversationRecord:
        student, topic = await self.catalog.resolve(student_id, topic_id, set_type=set_type)
        started = await self.client.start_conversation(student_id, topic_id)
        return await self.store.create_conversation(
            external_conversation_id=started.conversation_id,
            student_id=student.id,
            student_name=student.name,
            topic_id=topic.id,
            topic_name=topic.name,
            subject_name=topic.subject_name,
            set_type=set_type,
            status=ConversationStatus.OPEN,
            messages_remaining=started.max_turns,
            is_auto=is_auto,
            is_running=is_auto,
            system_prompt=system_prompt,
            initial_message=initial_message,
        )

    async def start_manual(self, student_id: str, topic_id: str, set_type: str) -> ConversationRecord:
        """Open a conversation that a human will drive turn by turn."""
        require(student_id=student_id, topic_id=topic_id)
        set_type = parse_set_type(set_type)
        conversation = await self._start(student_id, topic_id, set_type, is_auto=False)
        logger.info("Manual conversation %s started (%s / %s)",
                    conversation.id, conversation.student_name, conversation.topic_name)
        return conversation

    async def start_auto(
        self,
        student_id: str,
        topic_id: str,
        set_type: str,
        system_prompt: str,
        initial_message: str,
    ) -> ConversationRecord:
        """
        Open a conversation and let the turn driver run it in the background.

        The record comes back with ``is_running=True``; completion is observed
        by polling it.
        """
        require(
            student_id=student_id,
            topic_id=topic_id,
            system_prompt=system_prompt,
            initial_message=initial_message,
        )
        set_type = parse_set_type(set_type)
        conversation = await self._start(
            student_id,
            topic_id,
            set_type,
            is_auto=True,
            system_prompt=system_prompt,
            initial_message=initial_message,
        )
        self._launch(conversation, first_message=initial_message)
        logger.info("Auto conversation %s started (%s / %s)",
                    conversation.id, conversation.student_name, conversation.topic_name)
        return conversation

    async def resume_auto(self, conversation_id: str) -> ConversationRecord:
        """
        Restart the driver for an auto conversation whose previous run died.

        Takes the lease with a conditional update, so two concurrent resumes
        cannot both drive the same conversation. Leases orphaned by a crashed
        process are cleared when the lab opens (see ``open_lab``).
        """
        conversation = await self._get_or_raise(conversation_id)
        if not conversation.is_auto or not conversation.system_prompt:
            raise InvalidRequestError("Only auto conversations can be resumed")
        if conversation.status == ConversationStatus.CLOSED:
            raise ConversationClosedError("Conversation is closed")
        if not await self.store.claim_conversation(conversation_id):
            raise ConversationBusyError("Conversation is already running")

        try:
            messages = await self.store.get_messages(conversation_id)
            transcript = [TranscriptTurn(role=m.role, content=m.content) for m in messages]
            # with history on record the next tutor message is generated from it
            first_message = None if transcript else conversation.initial_message
            conversation = await self.store.get_conversation(conversation_id)
            self._launch(conversation, first_message=first_message, transcript=transcript)
        except Exception:
            await self.store.release_conversation(conversation_id)
            raise
        logger.info("Auto conversation %s resumed with %d turn(s) left",
                    conversation_id, conversation.messages_remaining)
        return conversation

    def _launch(
        self,
        conversation: ConversationRecord,
        first_message: Optional[str],
        transcript: Optional[List[TranscriptTurn]] = None,
    ):
        async def _release(error: BaseException):
            await self.store.update_conversation(conversation.id, is_running=False)

        self.tasks.submit(
            self.driver.run_conversation(
                conversation.id,
                conversation.external_conversation_id,
                conversation.system_prompt,
                first_message,
                conversation.messages_remaining,
                transcript=transcript,
            ),
            name=f"conversation-{conversation.id}",
            on_error=_release,
        )

    async def append_manual_turn(self, conversation_id: str, message: str) -> TurnResult:
        """Forward one human-written tutor message and record the student's reply."""
        require(message=message)
        conversation = await self._get_or_raise(conversation_id)
        if conversation.status == ConversationStatus.CLOSED:
            raise ConversationClosedError("Conversation is closed")
        if conversation.is_running:
            raise ConversationBusyError("Conversation is being driven automatically")

        result = await self.client.interact(conversation.external_conversation_id, message)
        tutor_message, student_message = await self.store.create_messages(
            conversation_id,
            [(Role.TUTOR, message), (Role.STUDENT, result.student_response)],
        )

        messages_remaining = conversation.messages_remaining - 1
        await self.store.update_conversation(
            conversation_id,
            messages_remaining=messages_remaining,
            status=ConversationStatus.CLOSED if result.is_complete else ConversationStatus.OPEN,
        )
        return TurnResult(
            tutor_message=tutor_message,
            student_message=student_message,
            messages_remaining=messages_remaining,
            conversation_ended=result.is_complete,
        )

    async def _get_or_raise(self, conversation_id: str) -> ConversationRecord:
        require(conversation_id=conversation_id)
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        return await self._get_or_raise(conversation_id)

    async def list_conversations(self, batch_id: Optional[str] = None) -> List[ConversationRecord]:
        return await self.store.list_conversations(batch_id=batch_id)

    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        await self._get_or_raise(conversation_id)
        return await self.store.get_messages(conversation_id)
