from typing import List, Optional, Sequence, Union

from pydantic_ai import Agent as PydanticAgent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from ..config import settings
from ..errors import GenerationError, InvalidRequestError
from ..models import Role, TranscriptTurn
from .base import Agent

MAX_OUTPUT_TOKENS = 500
TEMPERATURE = 0.7


def _default_model() -> Union[Model, str]:
    model_name = settings.MODEL_NAME
    if not (settings.LLM_API_URL or model_name.startswith("openai")):
        return model_name
    # Strip provider prefix if present (e.g., "openai/x-ai/grok-4-fast" -> "x-ai/grok-4-fast")
    for prefix in ("openai:", "openai/"):
        if model_name.startswith(prefix):
            model_name = model_name[len(prefix):]
    provider = OpenAIProvider(base_url=settings.LLM_API_URL, api_key=settings.OPENAI_API_KEY)
    return OpenAIChatModel(model_name, provider=provider)


class TutorAgent(Agent):
    """Writes the next tutor utterance from a system prompt and the dialogue so far."""

    def __init__(self, model: Optional[Union[Model, str]] = None):
        super().__init__()
        self._model = model
        self._pydantic_agent: Optional[PydanticAgent] = None

    @property
    def pydantic_agent(self) -> PydanticAgent:
        # built on first use so catalog-only callers never need an LLM key
        if self._pydantic_agent is None:
            self._pydantic_agent = PydanticAgent(
                self._model or _default_model(),
                output_type=str,
                model_settings=ModelSettings(max_tokens=MAX_OUTPUT_TOKENS, temperature=TEMPERATURE),
            )
        return self._pydantic_agent

    def _build_messages(self, system_prompt: str, transcript: Sequence[TranscriptTurn]) -> List[ModelMessage]:
        """Map tutor turns to the assistant side and student turns to the user side."""
        history: List[ModelMessage] = [ModelRequest(parts=[SystemPromptPart(content=system_prompt)])]
        for turn in transcript:
            if turn.role == Role.TUTOR:
                history.append(ModelResponse(parts=[TextPart(content=turn.content)]))
            else:
                history.append(ModelRequest(parts=[UserPromptPart(content=turn.content)]))
        return history

    async def run(self, system_prompt: str, transcript: Sequence[TranscriptTurn]) -> str:
        """
        Generate the next tutor message.

        The transcript must end with the student's latest reply; that reply is
        sent as the user prompt and everything before it as message history.
        """
        if not transcript or transcript[-1].role != Role.STUDENT:
            raise InvalidRequestError("Transcript must end with a student turn")

        history = self._build_messages(system_prompt, transcript[:-1])
        try:
            result = await self.pydantic_agent.run(transcript[-1].content, message_history=history)
        except Exception as e:
            raise GenerationError(f"Tutor generation failed: {e}") from e

        message = (result.output or "").strip()
        if not message:
            raise GenerationError("Tutor generation returned an empty message")
        return message
