from .base import Agent
from .tutor_agent import TutorAgent, MAX_OUTPUT_TOKENS, TEMPERATURE
