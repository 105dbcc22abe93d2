"""
FinChat - Completion Streamer
==============================
Streams a chat-model completion for an ``AugmentedPrompt`` token by token
and hands the finished response to an ``on_complete`` callback.

Lifecycle
---------
- Normal end of stream → chunks are aggregated into one ``AIMessage`` and
  ``on_complete([message])`` is awaited exactly once.
- Consumer disconnects (``aclose()`` / task cancellation) → the upstream
  model stream is closed and ``on_complete`` is **not** called, so no
  partial answer is ever persisted.
- Upstream error → propagated; ``on_complete`` is not called.

``sanitize_response_messages`` is kept separate from the transport: it is
a pure function applied by whoever persists the response.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage, ToolMessage, message_chunk_to_message

from finchat.config.settings import Settings
from finchat.src.core.models import AugmentedPrompt
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

OnComplete = Callable[[list[BaseMessage]], Awaitable[None]]

_MESSAGE_TYPES: dict[str, type[BaseMessage]] = {"system": SystemMessage, "user": HumanMessage, "assistant": AIMessage}


def to_langchain_messages(prompt: AugmentedPrompt) -> list[BaseMessage]:
    """Map role-tagged prompt entries onto LangChain message classes."""
    return [_MESSAGE_TYPES[m["role"]](content=m["content"]) for m in prompt]


def content_text(content: str | list) -> str:
    """Flatten message content (plain string or content-block list) into text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def sanitize_response_messages(messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    """
    Strip incomplete tool calls before persistence.

    A tool call is complete only when a ``ToolMessage`` answers its id.
    Unanswered and unparseable calls are removed from assistant messages;
    an assistant message left with neither text nor tool calls is dropped.
    Everything else, including assistant text, is kept.
    """
    answered = {m.tool_call_id for m in messages if isinstance(m, ToolMessage)}

    sanitized: list[BaseMessage] = []
    for message in messages:
        if not isinstance(message, AIMessage):
            sanitized.append(message)
            continue

        kept_calls = [call for call in message.tool_calls if call.get("id") in answered]
        if not content_text(message.content).strip() and not kept_calls:
            continue

        if len(kept_calls) != len(message.tool_calls) or message.invalid_tool_calls:
            message = message.model_copy(update={"tool_calls": kept_calls, "invalid_tool_calls": []})
        sanitized.append(message)

    return sanitized


class CompletionStreamer:
    """
    Token streamer over a LangChain chat model.

    Parameters
    ----------
    llm
        Any LangChain chat model exposing ``astream(messages)``.
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: object) -> None:
        self._llm = llm


    async def stream(self, prompt: AugmentedPrompt, on_complete: OnComplete | None = None) -> AsyncIterator[str]:
        """
        Yield text chunks of the completion for *prompt*.

        ``on_complete`` receives the final response messages once the
        model stream ends normally.
        """
        messages = to_langchain_messages(prompt)
        aggregate: AIMessageChunk | None = None
        chunk_count = 0
        t_start = time.perf_counter()

        logger.info("[STREAM] Calling chat model with %d message(s).", len(messages))
        try:
            async with aclosing(self._llm.astream(messages)) as upstream:  # type: ignore[attr-defined]
                async for chunk in upstream:
                    aggregate = chunk if aggregate is None else aggregate + chunk
                    text = content_text(chunk.content)
                    if text:
                        chunk_count += 1
                        yield text
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning("[STREAM] Consumer disconnected after %d chunk(s); completion discarded.", chunk_count)
            raise

        elapsed_ms = (time.perf_counter() - t_start) * 1000
        logger.info("[STREAM] Stream finished: %d chunk(s) in %.1fms.", chunk_count, elapsed_ms)

        if on_complete is not None:
            final = message_chunk_to_message(aggregate) if aggregate is not None else AIMessage(content="")
            await on_complete([final])


def build_chat_model(config: Settings) -> object:
    """Initialise the Gemini chat model via LangChain."""
    from langchain_google_genai import ChatGoogleGenerativeAI

    llm = ChatGoogleGenerativeAI(model=config.LLM_MODEL, temperature=config.LLM_TEMPERATURE, google_api_key=config.GOOGLE_API_KEY.get_secret_value())
    logger.info("LLM initialised: %s (temperature=%.1f)", config.LLM_MODEL, config.LLM_TEMPERATURE)
    return llm
