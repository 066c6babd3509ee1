"""Orchestration layer for driving tutor/student conversations against the Knowunity API."""
from .app import TutorLab, build_lab, open_lab
from .errors import ErrorCode, TutorLabError
from .models import BatchStatus, ConversationStatus, SetType

__version__ = "0.1.0"
