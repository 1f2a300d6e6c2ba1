"""Text-completion provider used by the AI actions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from ..core.config import CompletionConfig
from ..core.logger import get_logger

logger = get_logger("providers.completion")


class CompletionMessage(BaseModel):
    """One chat message sent to the completion provider."""

    role: Literal["system", "user", "assistant"] = Field(default="user")
    content: str


class CompletionOptions(BaseModel):
    """Per-call overrides for a completion request."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)


@runtime_checkable
class TextCompletionProvider(Protocol):
    """Anything that turns a list of messages into text. Raises on failure."""

    async def complete(
        self,
        messages: Sequence[CompletionMessage],
        options: CompletionOptions | None = None,
    ) -> str: ...


class PydanticAICompletionProvider:
    """Completion provider backed by a pydantic-ai :class:`Agent`.

    System messages become the agent's system prompt; the remaining messages
    are flattened into the user prompt. Agents are created lazily, one per
    distinct system prompt, so constructing the provider never touches the
    model backend.
    """

    def __init__(self, config: CompletionConfig | None = None, model: Any = None) -> None:
        """Initialize the provider.

        Args:
            config: Completion settings (model string, defaults)
            model: Optional pydantic-ai model instance overriding ``config.model``
        """
        self.config = config or CompletionConfig()
        self._model = model if model is not None else self.config.model
        self._agents: dict[str, Agent[None, str]] = {}

    def _agent_for(self, system_prompt: str) -> Agent[None, str]:
        agent = self._agents.get(system_prompt)
        if agent is None:
            agent = Agent(model=self._model, output_type=str, system_prompt=system_prompt)
            self._agents[system_prompt] = agent
        return agent

    async def complete(
        self,
        messages: Sequence[CompletionMessage],
        options: CompletionOptions | None = None,
    ) -> str:
        options = options or CompletionOptions()
        system_parts = [m.content for m in messages if m.role == "system"]
        prompt = "\n\n".join(m.content for m in messages if m.role != "system")
        if not prompt.strip():
            raise ValueError("Completion request has no user content")

        agent = self._agent_for("\n\n".join(system_parts) or self.config.system_prompt)
        settings = {
            "temperature": (
                options.temperature if options.temperature is not None else self.config.temperature
            ),
            "max_tokens": options.max_tokens or self.config.max_tokens,
            "timeout": self.config.timeout,
        }
        logger.debug("Requesting completion (%d chars)", len(prompt))
        result = await agent.run(prompt, model_settings=settings)
        return str(result.output)
