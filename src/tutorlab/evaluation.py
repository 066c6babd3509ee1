"""
Tutoring-quality evaluation submissions.

A submission grades every conversation of a set upstream; the record kept
here pins the score to the batch whose prompts produced those conversations.
"""
import logging
from typing import List

from .api import KnowunityClient
from .errors import (
    BatchNotCompletedError,
    EvaluationNotSavedError,
    NoBatchError,
    PersistenceError,
)
from .models import BatchStatus, EvaluationRecord
from .store import RecordStore
from .validation import parse_set_type

logger = logging.getLogger(__name__)


class EvaluationService:
    def __init__(self, client: KnowunityClient, store: RecordStore):
        self.client = client
        self.store = store

    async def submit_evaluation(self, set_type: str) -> EvaluationRecord:
        """
        Submit the set for scoring and record the result.

        Raises:
            NoBatchError: no batch has been run for the set
            BatchNotCompletedError: the latest batch is still running or failed
            TutoringAPIError: upstream refusal, classified by status
                (RATE_LIMIT, MISSING_CONVERSATIONS, VALIDATION_ERROR, API_ERROR)
            APIKeyMissingError: no Tutoring API key configured
            EvaluationNotSavedError: scored upstream but the record was not saved
        """
        set_type = parse_set_type(set_type)

        latest_batch = await self.store.latest_batch(set_type)
        if latest_batch is None:
            raise NoBatchError(f"No batch found for set type: {set_type}. Please run a batch first.")
        if latest_batch.status != BatchStatus.COMPLETED:
            raise BatchNotCompletedError(
                f"Latest batch {latest_batch.name!r} is {latest_batch.status}, not completed"
            )

        result = await self.client.evaluate_tutoring(set_type)
        logger.info(
            "Evaluation for %s scored %.4f (submission %d, %s remaining)",
            set_type, result.score, result.submission_number, result.submissions_remaining,
        )

        try:
            return await self.store.create_evaluation(
                set_type=set_type,
                batch_id=latest_batch.id,
                score=result.score,
                num_conversations=result.num_conversations,
                submission_number=result.submission_number,
                submissions_remaining=result.submissions_remaining,
                system_prompt=latest_batch.system_prompt,
                initial_message=latest_batch.initial_message,
            )
        except PersistenceError as e:
            logger.error("Evaluation succeeded upstream but was not saved: %s", e)
            raise EvaluationNotSavedError(
                "Evaluation was successful but failed to save", result=result
            ) from e

    async def list_evaluations(self) -> List[EvaluationRecord]:
        return await self.store.list_evaluations()
