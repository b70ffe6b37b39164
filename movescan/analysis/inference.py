"""Contextual inference capability backed by an OpenAI-compatible chat model."""

from typing import Protocol, runtime_checkable

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from ..config import AnalysisConfig
from ..exceptions import InferenceError


@runtime_checkable
class InferenceClient(Protocol):
    """Anything that can answer a (system, user) prompt pair with text."""

    async def infer(self, system_prompt: str, user_prompt: str) -> str: ...


class ChatOpenAIInferenceClient:
    """``InferenceClient`` over ``langchain_openai.ChatOpenAI``."""

    def __init__(self, llm: ChatOpenAI):
        self.llm = llm

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "ChatOpenAIInferenceClient":
        kwargs = {
            "api_key": config.llm_api_key,
            "model": config.llm_model,
            "temperature": config.llm_temperature,
            "max_tokens": config.llm_max_tokens,
            "timeout": config.llm_timeout,
        }
        if config.llm_base_url:
            kwargs["base_url"] = config.llm_base_url
        return cls(ChatOpenAI(**kwargs))

    async def infer(self, system_prompt: str, user_prompt: str) -> str:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            raise InferenceError(f"Inference call failed: {e}") from e
        content = response.content
        if isinstance(content, list):
            # Some providers return content blocks
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        return content


def create_inference_client(config: AnalysisConfig) -> InferenceClient | None:
    """Build the default client, or None when no usable credential is configured."""
    if not config.llm_enabled:
        logger.info("Contextual analysis disabled: no LLM API key configured")
        return None
    try:
        client = ChatOpenAIInferenceClient.from_config(config)
    except Exception as e:
        logger.warning(f"Failed to initialize LLM client: {e}")
        return None
    logger.info(f"Contextual analysis enabled with model {config.llm_model}")
    return client
