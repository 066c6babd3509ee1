from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SetType(StrEnum):
    MINI_DEV = "mini_dev"
    DEV = "dev"
    EVAL = "eval"


class ConversationStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class BatchStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Role(StrEnum):
    TUTOR = "tutor"
    STUDENT = "student"


# --- Tutoring / Catalog API payloads ---

class StudentInfo(BaseModel):
    id: str
    name: str
    grade_level: Optional[int] = None


class TopicInfo(BaseModel):
    id: str
    subject_id: str
    subject_name: str
    name: str
    grade_level: Optional[int] = None


class SubjectInfo(BaseModel):
    id: str
    name: str


class InteractionStartResult(BaseModel):
    conversation_id: str
    student_id: Optional[str] = None
    topic_id: Optional[str] = None
    max_turns: int
    conversations_remaining: Optional[int] = None


class InteractionResult(BaseModel):
    tutor_message: str
    conversation_id: str
    interaction_id: Optional[str] = None
    student_response: str
    turn_number: Optional[int] = None
    is_complete: bool


class TutoringResult(BaseModel):
    score: float
    num_conversations: int
    submission_number: int
    submissions_remaining: Optional[int] = None


# --- Record Store snapshots ---

class ConversationRecord(BaseModel):
    """A tutor/student dialogue as persisted by the record store."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    external_conversation_id: str
    student_id: str
    student_name: str
    topic_id: str
    topic_name: str
    subject_name: str
    set_type: SetType
    status: ConversationStatus
    messages_remaining: int
    is_auto: bool = False
    is_running: bool = False
    system_prompt: Optional[str] = None
    initial_message: Optional[str] = None
    batch_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MessageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: str
    role: Role
    content: str
    created_at: datetime


class BatchRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    set_type: SetType
    system_prompt: str
    initial_message: str
    status: BatchStatus
    total_conversations: int = Field(ge=0)
    completed_conversations: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime


class EvaluationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    set_type: SetType
    batch_id: Optional[str] = None
    score: float
    num_conversations: int
    submission_number: int
    submissions_remaining: Optional[int] = None
    system_prompt: Optional[str] = None
    initial_message: Optional[str] = None
    created_at: datetime


class TranscriptTurn(BaseModel):
    """One utterance in the in-memory history handed to the generation agent."""
    role: Role
    content: str


class TurnResult(BaseModel):
    """Outcome of a single manually-authored turn."""
    tutor_message: MessageRecord
    student_message: MessageRecord
    messages_remaining: int
    conversation_ended: bool
