"""
GenerationService: the one place that talks to Claude.

Every pipeline stage goes through this service so usage is counted
against the current session before each request, and upstream rate-limit
or overload answers surface as RateLimitError carrying the reset time.
"""

from typing import Any, Dict, List, Optional, Tuple

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from novelforge.config import config
from novelforge.jobs.contracts import CompletionResult, TokenUsage
from novelforge.jobs.errors import RateLimitError
from novelforge.jobs.rate_limit import RateLimitHandler
from novelforge.jobs.session_tracker import SessionTracker
from novelforge.utils.logging import generation_logger as logger


class GenerationService:
    """
    Thin async wrapper around ChatAnthropic.

    Clients are cached per (max_tokens, temperature) pair; stages use a
    handful of fixed settings.
    """

    def __init__(
        self,
        session_tracker: SessionTracker,
        model_name: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.session_tracker = session_tracker
        self.model_name = model_name or config.MODEL_NAME
        self.timeout = timeout or config.LLM_TIMEOUT_SECONDS
        self._clients: Dict[Tuple[int, float], ChatAnthropic] = {}

    def _llm(self, max_tokens: int, temperature: float) -> ChatAnthropic:
        key = (max_tokens, temperature)
        if key not in self._clients:
            self._clients[key] = ChatAnthropic(
                model=self.model_name,
                temperature=temperature,
                max_tokens=max_tokens,
                anthropic_api_key=config.ANTHROPIC_API_KEY,
                timeout=self.timeout,
            )
        return self._clients[key]

    async def create_completion(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> str:
        result = await self.create_completion_with_usage(
            system=system,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature
        )
        return result.content

    async def create_completion_with_usage(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> CompletionResult:
        """
        Run one completion and return its text with token usage.

        Raises:
            RateLimitError: upstream asked us to back off
        """
        await self.session_tracker.record_usage()

        try:
            response = await self._llm(max_tokens, temperature).ainvoke(
                _to_messages(system, messages)
            )
        except anthropic.APIStatusError as e:
            if not RateLimitHandler.is_rate_limit_error(e):
                raise
            session = await self.session_tracker.get_current_session()
            reset_time = session.session_resets_at if session else None
            logger.warning(
                "Upstream rate limit",
                status=getattr(e, "status_code", None),
                resets_at=reset_time.isoformat() if reset_time else None,
            )
            raise RateLimitError(str(e), reset_time=reset_time) from e

        usage = _usage(response)
        logger.debug(
            "Completion finished",
            model=self.model_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return CompletionResult(content=_text(response.content), usage=usage)


def _to_messages(system: str, messages: List[Dict[str, str]]) -> List[BaseMessage]:
    converted: List[BaseMessage] = [SystemMessage(content=system)] if system else []
    for message in messages:
        if message.get("role") == "assistant":
            converted.append(AIMessage(content=message["content"]))
        else:
            converted.append(HumanMessage(content=message["content"]))
    return converted


def _text(content: Any) -> str:
    """Join the text blocks of a response (plain string for simple replies)."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _usage(response: Any) -> TokenUsage:
    metadata = getattr(response, "usage_metadata", None) or {}
    return TokenUsage(
        input_tokens=metadata.get("input_tokens", 0),
        output_tokens=metadata.get("output_tokens", 0),
    )
