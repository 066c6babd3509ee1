import logging
from typing import List, Optional, Tuple

from .api import KnowunityClient
from .errors import NoPairsError, NoStudentsError, NotFoundError
from .models import StudentInfo, TopicInfo

logger = logging.getLogger(__name__)

StudentTopicPair = Tuple[StudentInfo, TopicInfo]


class Catalog:
    """Student and topic lookups on top of the public catalog endpoints."""

    def __init__(self, client: KnowunityClient):
        self.client = client

    async def get_student(self, student_id: str, set_type: Optional[str] = None) -> StudentInfo:
        for student in await self.client.get_students(set_type=set_type):
            if student.id == student_id:
                return student
        raise NotFoundError(f"Student {student_id} not found")

    async def get_topic(self, student_id: str, topic_id: str) -> TopicInfo:
        """Get a specific topic by ID for the student."""
        for topic in await self.client.get_students_topics(student_id):
            if topic.id == topic_id:
                return topic
        raise NotFoundError(f"Topic {topic_id} not found for student {student_id}")

    async def resolve(
        self,
        student_id: str,
        topic_id: str,
        set_type: Optional[str] = None,
    ) -> StudentTopicPair:
        """Look up display data for a student/topic pair, NotFoundError if either is unknown."""
        student = await self.get_student(student_id, set_type=set_type)
        topic = await self.get_topic(student_id, topic_id)
        return student, topic

    async def enumerate_pairs(self, set_type: str) -> List[StudentTopicPair]:
        """
        Flatten every (student, topic) combination of a set.

        Raises:
            NoStudentsError: the set has no students
            NoPairsError: students exist but none has a topic
        """
        students = await self.client.get_students(set_type=set_type)
        if not students:
            raise NoStudentsError(f"No students found for set type {set_type}")

        pairs: List[StudentTopicPair] = []
        for student in students:
            topics = await self.client.get_students_topics(student.id)
            if not topics:
                logger.info("Student %s has no topics, skipping", student.name)
            pairs.extend((student, topic) for topic in topics)

        if not pairs:
            raise NoPairsError(f"No student-topic combinations found for set type {set_type}")
        return pairs
