from __future__ import annotations

from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from app.config import get_settings
from app.infra.logging_config import get_logger
from app.schemas.session import HistoryItem

logger = get_logger("llm")


class CompletionStreamer(Protocol):
    """Anything that turns a conversation into a stream of text deltas."""

    def stream(self, history: Sequence[HistoryItem]) -> AsyncIterator[str]: ...


def _history_to_message_list(history: Sequence[HistoryItem]) -> List[Any]:
    """Convert role/content history to pydantic_ai ModelMessage list for message_history."""
    out: List[Any] = []
    for item in history:
        content = (item.content or "").strip()
        if not content:
            continue
        if item.role == "user":
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        elif item.role == "assistant":
            out.append(ModelResponse(parts=[TextPart(content=content)]))
    return out


def _split_prompt(history: Sequence[HistoryItem]) -> tuple[str, List[HistoryItem]]:
    """Last user message becomes the prompt; everything before it is history."""
    items = list(history)
    if items and items[-1].role == "user":
        return items[-1].content, items[:-1]
    return "", items


class LLMRunner:
    def __init__(
        self,
        model_name: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
        model = OpenAIChatModel(model_name, provider=provider)
        logger.info(f"Initializing LLM runner with model {model_name}")
        self._system_prompt = system_prompt or ""
        self._agent = Agent(model)

    def _message_history(self, history: Sequence[HistoryItem]) -> List[Any]:
        messages = _history_to_message_list(history)
        if self._system_prompt:
            system_message = ModelRequest(
                parts=[SystemPromptPart(content=self._system_prompt)]
            )
            messages = [system_message] + messages
        return messages

    async def stream(self, history: Sequence[HistoryItem]) -> AsyncIterator[str]:
        """Yield text deltas for the reply to the last user message in history."""
        prompt, prior = _split_prompt(history)
        async with self._agent.run_stream(
            prompt,
            message_history=self._message_history(prior) or None,
        ) as result:
            async for delta in result.stream_text(delta=True):
                if delta:
                    yield delta


def build_llm_runner_from_env() -> LLMRunner:
    settings = get_settings()
    logger.info(
        "LLM runner config: model=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; set it to a valid OpenAI or LiteLLM API key to avoid 401 errors."
        )

    return LLMRunner(
        model_name=settings.llm_model,
        api_key=settings.litellm_api_key,
        api_base=settings.litellm_api_base,
        system_prompt=settings.llm_system_prompt,
    )
