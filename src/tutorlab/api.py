"""
Async client for the Knowunity tutoring platform.

List of Methods:
- get_students(set_type)
- get_students_topics(student_id)
- get_subjects()
- get_topics(subject_id)
- start_conversation(student_id, topic_id)
- interact(conversation_id, tutor_message)
- evaluate_tutoring(set_type)
- get_leaderboard(kind, set_type)

Catalog reads are public; interaction and evaluation calls carry the
server-held API key and never run without it.
"""
import logging
from typing import Any, List, Optional

import aiohttp

from .config import settings
from .errors import APIKeyMissingError, TutoringAPIError
from .models import (
    InteractionResult,
    InteractionStartResult,
    StudentInfo,
    SubjectInfo,
    TopicInfo,
    TutoringResult,
)

logger = logging.getLogger(__name__)

LEADERBOARD_KINDS = ("inference", "tutoring", "combined")


def _extract_list(data: Any, key: str) -> list:
    """Accept either a bare JSON list or an object wrapping it under ``key``."""
    if isinstance(data, dict):
        return data.get(key, [])
    return data or []


class KnowunityClient:
    """Thin wrapper over the platform's HTTP endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self._session = session
        self.base_url = (base_url or settings.KNOWUNITY_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.KNOWUNITY_API_KEY

    def _get_headers(self, with_api_key: bool = False) -> dict:
        """Get common headers for API requests."""
        headers = {"accept": "application/json"}
        if with_api_key:
            if not self._api_key:
                raise APIKeyMissingError("KNOWUNITY_API_KEY is not configured")
            headers["content-type"] = "application/json"
            headers["X-Api-Key"] = self._api_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        with_api_key: bool = False,
    ) -> Any:
        headers = self._get_headers(with_api_key=with_api_key)
        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(
                method, url, params=params, json=payload, headers=headers
            ) as response:
                if response.status >= 400:
                    detail = await response.text()
                    logger.warning("%s %s -> %s", method, path, response.status)
                    raise TutoringAPIError(response.status, detail)
                return await response.json()
        except aiohttp.ClientError as e:
            raise TutoringAPIError(None, str(e)) from e

    async def get_students(self, set_type: Optional[str] = None) -> List[StudentInfo]:
        """Get list of students, optionally restricted to one set."""
        params = {"set_type": str(set_type)} if set_type else None
        data = await self._request("GET", "/students", params=params)
        return [StudentInfo(**student) for student in _extract_list(data, "students")]

    async def get_students_topics(self, student_id: str) -> List[TopicInfo]:
        """Get topics assigned to a student."""
        data = await self._request("GET", f"/students/{student_id}/topics")
        return [TopicInfo(**topic) for topic in _extract_list(data, "topics")]

    async def get_subjects(self) -> List[SubjectInfo]:
        data = await self._request("GET", "/subjects")
        return [SubjectInfo(**subject) for subject in _extract_list(data, "subjects")]

    async def get_topics(self, subject_id: Optional[str] = None) -> List[TopicInfo]:
        """Get topics, optionally for a single subject."""
        params = {"subject_id": subject_id} if subject_id else None
        data = await self._request("GET", "/topics", params=params)
        return [TopicInfo(**topic) for topic in _extract_list(data, "topics")]

    async def start_conversation(self, student_id: str, topic_id: str) -> InteractionStartResult:
        """Start a new tutoring conversation."""
        payload = {
            "student_id": student_id,
            "topic_id": topic_id,
        }
        data = await self._request("POST", "/interact/start", payload=payload, with_api_key=True)
        return InteractionStartResult(**data)

    async def interact(self, conversation_id: str, tutor_message: str) -> InteractionResult:
        """Send a message in an ongoing conversation."""
        payload = {
            "conversation_id": conversation_id,
            "tutor_message": tutor_message,
        }
        data = await self._request("POST", "/interact", payload=payload, with_api_key=True)
        data.setdefault("conversation_id", conversation_id)
        return InteractionResult(tutor_message=tutor_message, **data)

    async def evaluate_tutoring(self, set_type: str) -> TutoringResult:
        """Submit the set's conversations for tutoring-quality scoring."""
        payload = {"set_type": str(set_type)}
        data = await self._request("POST", "/evaluate/tutoring", payload=payload, with_api_key=True)
        return TutoringResult(**data)

    async def get_leaderboard(self, kind: str = "combined", set_type: Optional[str] = None) -> dict:
        """Fetch a leaderboard as computed upstream."""
        if kind not in LEADERBOARD_KINDS:
            kind = "combined"
        params = {"set_type": str(set_type)} if set_type else None
        return await self._request("GET", f"/evaluate/leaderboard/{kind}", params=params)


def create_session(timeout: Optional[float] = None) -> aiohttp.ClientSession:
    """Create a new aiohttp session with connection pooling."""
    timeout = aiohttp.ClientTimeout(total=timeout or settings.HTTP_TIMEOUT)
    connector = aiohttp.TCPConnector(limit=10)
    return aiohttp.ClientSession(timeout=timeout, connector=connector)
