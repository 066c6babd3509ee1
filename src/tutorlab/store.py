"""
Record store for conversations, messages, batches and evaluations.

Updates are partial and field-level: callers pass only the columns they
change, so a driver that dies mid-run leaves every earlier write intact.
The store performs no locking beyond ``claim_conversation``'s conditional
update and ``increment_batch_completed``'s in-database increment.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import Batch, Conversation, Evaluation, Message
from .errors import NotFoundError, PersistenceError
from .models import (
    BatchRecord,
    ConversationRecord,
    EvaluationRecord,
    MessageRecord,
    Role,
)

logger = logging.getLogger(__name__)


def _plain(fields: dict) -> dict:
    """Unwrap enum members so they are stored as their values."""
    return {key: getattr(value, "value", value) for key, value in fields.items()}


class RecordStore:
    """Persist and fetch tutoring records through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Record store failure: %s", e)
            raise PersistenceError(f"Record store failure: {e}") from e

    # --- conversations ---

    async def create_conversation(self, **fields) -> ConversationRecord:
        async with self._session() as session:
            row = Conversation(**_plain(fields))
            session.add(row)
            await session.commit()
            return ConversationRecord.model_validate(row)

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        async with self._session() as session:
            row = await session.get(Conversation, conversation_id)
            return ConversationRecord.model_validate(row) if row is not None else None

    async def list_conversations(self, batch_id: Optional[str] = None) -> List[ConversationRecord]:
        """Most recently updated first."""
        stmt = select(Conversation).order_by(Conversation.updated_at.desc())
        if batch_id is not None:
            stmt = stmt.where(Conversation.batch_id == batch_id)
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [ConversationRecord.model_validate(row) for row in rows]

    async def update_conversation(self, conversation_id: str, **fields) -> ConversationRecord:
        async with self._session() as session:
            row = await session.get(Conversation, conversation_id)
            if row is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            for key, value in _plain(fields).items():
                setattr(row, key, value)
            await session.commit()
            return ConversationRecord.model_validate(row)

    async def count_conversations(self, batch_id: str, is_running: Optional[bool] = None) -> int:
        stmt = select(func.count()).select_from(Conversation).where(Conversation.batch_id == batch_id)
        if is_running is not None:
            stmt = stmt.where(Conversation.is_running == is_running)
        async with self._session() as session:
            return (await session.scalar(stmt)) or 0

    async def claim_conversation(self, conversation_id: str) -> bool:
        """
        Take the driver lease on a conversation.

        Flips ``is_running`` from false to true in a single conditional
        update. Returns False when another driver already holds it.
        """
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.is_running.is_(False))
            .values(is_running=True)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def release_conversation(self, conversation_id: str) -> bool:
        """Give up the driver lease; returns False when it was not held."""
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.is_running.is_(True))
            .values(is_running=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def release_stale_conversations(self, updated_before: Optional[datetime] = None) -> int:
        """
        Clear leases left behind by drivers that died with their process.

        Args:
            updated_before: Only release conversations untouched since this
                moment; None releases every running conversation

        Returns:
            Number of conversations released
        """
        stmt = update(Conversation).where(Conversation.is_running.is_(True))
        if updated_before is not None:
            stmt = stmt.where(Conversation.updated_at < updated_before)
        async with self._session() as session:
            result = await session.execute(stmt.values(is_running=False))
            await session.commit()
            return result.rowcount

    async def release_batch_conversations(self, batch_id: str) -> int:
        """Mark every still-running child of a batch as idle."""
        stmt = (
            update(Conversation)
            .where(Conversation.batch_id == batch_id, Conversation.is_running.is_(True))
            .values(is_running=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    # --- messages ---

    async def create_messages(
        self,
        conversation_id: str,
        messages: Sequence[Tuple[Role, str]],
    ) -> List[MessageRecord]:
        """Insert ``(role, content)`` pairs in one transaction, keeping their order."""
        async with self._session() as session:
            rows = [
                Message(conversation_id=conversation_id, role=str(role), content=content)
                for role, content in messages
            ]
            session.add_all(rows)
            await session.commit()
            return [MessageRecord.model_validate(row) for row in rows]

    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [MessageRecord.model_validate(row) for row in rows]

    # --- batches ---

    async def create_batch(self, **fields) -> BatchRecord:
        async with self._session() as session:
            row = Batch(**_plain(fields))
            session.add(row)
            await session.commit()
            return BatchRecord.model_validate(row)

    async def get_batch(self, batch_id: str) -> Optional[BatchRecord]:
        async with self._session() as session:
            row = await session.get(Batch, batch_id)
            return BatchRecord.model_validate(row) if row is not None else None

    async def list_batches(self) -> List[BatchRecord]:
        async with self._session() as session:
            rows = (await session.scalars(select(Batch).order_by(Batch.created_at.desc()))).all()
            return [BatchRecord.model_validate(row) for row in rows]

    async def update_batch(self, batch_id: str, **fields) -> BatchRecord:
        async with self._session() as session:
            row = await session.get(Batch, batch_id)
            if row is None:
                raise NotFoundError(f"Batch {batch_id} not found")
            for key, value in _plain(fields).items():
                setattr(row, key, value)
            await session.commit()
            return BatchRecord.model_validate(row)

    async def increment_batch_completed(self, batch_id: str) -> BatchRecord:
        """Add one finished conversation to the batch counter inside the database."""
        stmt = (
            update(Batch)
            .where(Batch.id == batch_id)
            .values(completed_conversations=Batch.completed_conversations + 1)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount != 1:
                raise NotFoundError(f"Batch {batch_id} not found")
            row = await session.get(Batch, batch_id, populate_existing=True)
            return BatchRecord.model_validate(row)

    async def latest_batch(self, set_type: str) -> Optional[BatchRecord]:
        stmt = (
            select(Batch)
            .where(Batch.set_type == str(set_type))
            .order_by(Batch.created_at.desc())
            .limit(1)
        )
        async with self._session() as session:
            row = await session.scalar(stmt)
            return BatchRecord.model_validate(row) if row is not None else None

    # --- evaluations ---

    async def create_evaluation(self, **fields) -> EvaluationRecord:
        async with self._session() as session:
            row = Evaluation(**_plain(fields))
            session.add(row)
            await session.commit()
            return EvaluationRecord.model_validate(row)

    async def list_evaluations(self) -> List[EvaluationRecord]:
        async with self._session() as session:
            rows = (await session.scalars(select(Evaluation).order_by(Evaluation.created_at.desc()))).all()
            return [EvaluationRecord.model_validate(row) for row in rows]
