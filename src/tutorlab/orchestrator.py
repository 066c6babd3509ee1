import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import List, Optional, Sequence

from .agents import TutorAgent
from .api import KnowunityClient
from .errors import InvalidRequestError
from .models import ConversationStatus, Role, TranscriptTurn
from .store import RecordStore

logger = logging.getLogger(__name__)


class StopReason(StrEnum):
    """Why a driven conversation stopped."""
    COMPLETED = "completed"
    TURNS_EXHAUSTED = "turns_exhausted"
    ERROR = "error"


@dataclass
class DriverResult:
    """Outcome of one ``run_conversation`` call."""
    success: bool
    turns_taken: int
    is_complete: bool
    stop_reason: StopReason
    error: Optional[BaseException] = None


class ConversationDriver:
    """
    Drives one conversation until the student side signals completion or the
    turn budget runs out, persisting every turn as it happens.

    The caller must already hold the conversation's ``is_running`` lease; the
    driver only ever releases it.
    """

    def __init__(self, client: KnowunityClient, store: RecordStore, agent: TutorAgent):
        self.client = client
        self.store = store
        self.agent = agent

    async def run_conversation(
        self,
        conversation_id: str,
        external_id: str,
        system_prompt: str,
        first_message: Optional[str],
        turns_budget: int,
        transcript: Optional[Sequence[TranscriptTurn]] = None,
    ) -> DriverResult:
        """
        Run an auto conversation to completion or turn-budget exhaustion.

        Args:
            conversation_id: Record store id of the conversation
            external_id: Conversation handle from the Tutoring API's start call
            system_prompt: Instructions for the generation agent
            first_message: Tutor message for the first turn; None to generate it
                from ``transcript``
            turns_budget: Turns this run may take (>= 0)
            transcript: Earlier turns to seed the history with when resuming

        Returns:
            DriverResult. Failures are reported here, never raised; only a
            failure to release the record itself propagates.
        """
        history: List[TranscriptTurn] = list(transcript or [])
        if turns_budget < 0:
            raise InvalidRequestError("turns_budget must be >= 0")
        if not first_message and not history:
            raise InvalidRequestError("first_message is required when there is no transcript")

        turns_remaining = turns_budget
        turns_taken = 0
        is_complete = False
        current_message = first_message

        try:
            while turns_remaining > 0 and not is_complete:
                if not current_message:
                    current_message = await self.agent.run(system_prompt, history)

                # 1. Send tutor message to the simulated student
                result = await self.client.interact(external_id, current_message)

                # 2. Persist both sides of the turn together
                await self.store.create_messages(
                    conversation_id,
                    [(Role.TUTOR, current_message), (Role.STUDENT, result.student_response)],
                )

                # 3. Extend the in-memory history
                history.append(TranscriptTurn(role=Role.TUTOR, content=current_message))
                history.append(TranscriptTurn(role=Role.STUDENT, content=result.student_response))

                # 4. Book-keeping; is_running stays true until the loop ends
                turns_remaining -= 1
                turns_taken += 1
                is_complete = result.is_complete
                await self.store.update_conversation(
                    conversation_id,
                    messages_remaining=turns_remaining,
                    status=ConversationStatus.CLOSED if is_complete else ConversationStatus.OPEN,
                )
                logger.debug(
                    "Conversation %s turn %d done (%d left, complete=%s)",
                    conversation_id, turns_taken, turns_remaining, is_complete,
                )

                # 5. Next tutor message
                current_message = None
                if not is_complete and turns_remaining > 0:
                    current_message = await self.agent.run(system_prompt, history)

            await self.store.update_conversation(
                conversation_id,
                is_running=False,
                status=ConversationStatus.CLOSED if is_complete else ConversationStatus.OPEN,
            )
        except Exception as e:
            logger.warning(
                "Conversation %s stopped after %d turn(s): %s", conversation_id, turns_taken, e
            )
            # keep the last persisted status, only give up the lease
            await self.store.update_conversation(conversation_id, is_running=False)
            return DriverResult(
                success=False,
                turns_taken=turns_taken,
                is_complete=is_complete,
                stop_reason=StopReason.ERROR,
                error=e,
            )

        stop_reason = StopReason.COMPLETED if is_complete else StopReason.TURNS_EXHAUSTED
        logger.info(
            "Conversation %s finished: %s after %d turn(s)", conversation_id, stop_reason, turns_taken
        )
        return DriverResult(
            success=True,
            turns_taken=turns_taken,
            is_complete=is_complete,
            stop_reason=stop_reason,
        )
