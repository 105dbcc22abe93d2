"""
FinChat - RAG Engine
=====================
Orchestrates one chat turn: persist → embed → select namespace → augment
→ stream → persist again.

Architecture (OOP)
------------------
``TitleGenerator``
    Asks the chat model for a short title for a new chat; falls back to
    the truncated first message when the model call fails.

``RAGManager``
    Stateless pipeline orchestrator.  Flow:
        1. Most recent user message → else ``NoUserMessageError``
        2. Load chat → create with generated title if new
        3. Ownership check → ``AuthorizationError`` before any retrieval
        4. Persist the user message
        5. Embed the question
        6. Select the best namespace (concurrent fan-out)
        7. No context anywhere → fall back to the un-augmented prompt
        8. Augment → system + history + context-wrapped question
        9. Stream the completion
        10. On completion → sanitise + persist the assistant output

All collaborators are injected, so the pipeline is tested without
network, database or web framework.

Usage:
    rag = RAGManager(embedder, selector, augmenter, streamer, chats, titles)
    prompt = await rag.prepare_turn(chat_id, user_id, messages)
    async for token in rag.stream_reply(chat_id, prompt, annotations):
        ...
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timezone

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from finchat.config.prompt_templates import TITLE_PROMPT
from finchat.config.settings import Settings
from finchat.src.core.augmenter import PromptAugmenter
from finchat.src.core.embedder import Embedder, build_embedder
from finchat.src.core.errors import AuthorizationError, NoContextFoundError, NoUserMessageError
from finchat.src.core.models import AugmentedPrompt, ChatMessage, MessageRecord, NamespaceResult
from finchat.src.core.selector import NamespaceSelector
from finchat.src.core.streamer import CompletionStreamer, build_chat_model, content_text, sanitize_response_messages
from finchat.src.database.chat_store import ChatRepository, MongoChatRepository
from finchat.src.database.vector_store import build_retriever
from finchat.src.utils.logger import get_logger
from finchat.src.utils.text_utils import preview

logger = get_logger(__name__)

_ROLE_BY_MESSAGE_TYPE = {"ai": "assistant", "human": "user", "system": "system", "tool": "tool"}


def generate_uuid() -> str:
    return str(uuid.uuid4())


def get_most_recent_user_message(messages: Sequence[ChatMessage]) -> tuple[int, ChatMessage] | None:
    """Return ``(index, message)`` of the last user message, or ``None``."""
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].get("role") == "user":
            return index, messages[index]
    return None


def to_message_record(chat_id: str, role: str, content: str | list) -> MessageRecord:
    return {"id": generate_uuid(), "chat_id": chat_id, "role": role, "content": content, "created_at": datetime.now(timezone.utc)}


# ══════════════════════════════════════════════════════════════════════
#  TITLE GENERATOR
# ══════════════════════════════════════════════════════════════════════


class TitleGenerator:
    """Short chat titles from the first user message."""

    __slots__ = ("_llm", "_max_length")

    def __init__(self, llm: object, max_length: int = 80) -> None:
        self._llm = llm
        self._max_length = max_length


    async def generate(self, message: str) -> str:
        try:
            response = await self._llm.ainvoke([SystemMessage(content=TITLE_PROMPT.format(max_length=self._max_length)), HumanMessage(content=message)])  # type: ignore[attr-defined]
            title = content_text(response.content)
        except Exception:
            logger.exception("[TITLE] Title generation failed — using truncated message.")
            title = message

        title = " ".join(title.replace('"', "").replace(":", " ").split())
        return self._truncate(title or "New chat")


    def _truncate(self, title: str) -> str:
        if len(title) <= self._max_length:
            return title
        return title[: self._max_length - 3].rstrip() + "..."


# ══════════════════════════════════════════════════════════════════════
#  RAG MANAGER
# ══════════════════════════════════════════════════════════════════════


class RAGManager:
    """
    Orchestrates the retrieval-augmented chat pipeline.

    Parameters
    ----------
    embedder
        ``Embedder`` for the user question.
    selector
        ``NamespaceSelector`` over the configured namespaces.
    augmenter
        ``PromptAugmenter`` building the model prompt.
    streamer
        ``CompletionStreamer`` over the chat model.
    chats
        ``ChatRepository`` persistence collaborator.
    titles
        ``TitleGenerator`` for newly created chats.
    """

    __slots__ = ("_embedder", "_selector", "_augmenter", "_streamer", "_chats", "_titles")

    def __init__(self, embedder: Embedder, selector: NamespaceSelector, augmenter: PromptAugmenter, streamer: CompletionStreamer, chats: ChatRepository, titles: TitleGenerator) -> None:
        self._embedder = embedder
        self._selector = selector
        self._augmenter = augmenter
        self._streamer = streamer
        self._chats = chats
        self._titles = titles


    @classmethod
    def from_settings(cls, config: Settings) -> RAGManager:
        """Wire the production collaborators from configuration."""
        llm = build_chat_model(config)
        selector = NamespaceSelector(build_retriever(config), config.NAMESPACES, top_k=config.TOP_K, timeout=config.NAMESPACE_QUERY_TIMEOUT)
        logger.info("RAGManager ready — namespaces=%s, top_k=%d, backend=%s", selector.namespaces, config.TOP_K, config.VECTOR_BACKEND)
        return cls(embedder=build_embedder(config), selector=selector, augmenter=PromptAugmenter(), streamer=CompletionStreamer(llm), chats=MongoChatRepository(), titles=TitleGenerator(llm, max_length=config.TITLE_MAX_LENGTH))


    async def prepare_turn(self, chat_id: str, user_id: str, messages: Sequence[ChatMessage]) -> AugmentedPrompt:
        """
        Run everything up to (not including) the model call.

        Raises
        ------
        NoUserMessageError
            If *messages* holds no user message.
        AuthorizationError
            If the chat exists and belongs to another user.
        EmbeddingServiceError
            If the question cannot be embedded.
        RetrievalError
            If every namespace query failed.
        """
        t_start = time.perf_counter()

        # ── 1. Most recent user message ───────────────────────────────
        found = get_most_recent_user_message(messages)
        if found is None:
            raise NoUserMessageError("No user message found")
        last_index, last_message = found
        question = last_message.get("content", "")
        logger.info("[RAG] Chat '%s': %d message(s), question: %s", chat_id, len(messages), preview(question))

        # ── 2–3. Chat lookup / creation + ownership ───────────────────
        chat = await self._chats.get_chat(chat_id)
        if chat is None:
            title = await self._titles.generate(question)
            chat = await self._chats.save_chat(chat_id, user_id, title)
        if chat.get("user_id") != user_id:
            logger.warning("[RAG] User '%s' rejected for chat '%s' (owner mismatch).", user_id, chat_id)
            raise AuthorizationError(f"Chat '{chat_id}' belongs to another user")

        # ── 4. Persist user message ───────────────────────────────────
        await self._chats.save_messages([to_message_record(chat_id, "user", question)])

        # ── 5. Embed ──────────────────────────────────────────────────
        t_embed = time.perf_counter()
        vector = await self._embedder.embed(question)
        embed_ms = (time.perf_counter() - t_embed) * 1000

        # ── 6–7. Select namespace (fallback: no context) ──────────────
        t_select = time.perf_counter()
        selected: NamespaceResult | None
        try:
            selected = await self._selector.select_best(vector)
        except NoContextFoundError as exc:
            logger.warning("[RAG] %s — answering without retrieved context.", exc)
            selected = None
        select_ms = (time.perf_counter() - t_select) * 1000

        # ── 8. Augment ────────────────────────────────────────────────
        prompt = self._augmenter.augment(list(messages[: last_index + 1]), selected)

        total_ms = (time.perf_counter() - t_start) * 1000
        logger.info("[RAG] Turn prepared in %.1fms (embed=%.1f, select=%.1f), namespace=%s", total_ms, embed_ms, select_ms, selected.namespace if selected else None)
        return prompt


    def stream_reply(self, chat_id: str, prompt: AugmentedPrompt, annotations: list[dict[str, str]] | None = None) -> AsyncIterator[str]:
        """
        Stream the completion; persist the sanitised response once it ends.

        For every persisted assistant message ``{"messageIdFromServer": id}``
        is appended to *annotations* so the transport can tell the client
        which server id its message got.
        """

        async def _persist(response_messages: list[BaseMessage]) -> None:
            try:
                records: list[MessageRecord] = []
                for message in sanitize_response_messages(response_messages):
                    role = _ROLE_BY_MESSAGE_TYPE.get(message.type, message.type)
                    record = to_message_record(chat_id, role, message.content)
                    if role == "assistant" and annotations is not None:
                        annotations.append({"messageIdFromServer": str(record["id"])})
                    records.append(record)
                await self._chats.save_messages(records)
                logger.info("[RAG] Saved %d response message(s) for chat '%s'.", len(records), chat_id)
            except Exception:
                logger.exception("[RAG] Failed to save response messages for chat '%s'.", chat_id)

        return self._streamer.stream(prompt, on_complete=_persist)


    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        """
        Delete a chat owned by *user_id*.

        Returns ``False`` when the chat does not exist; raises
        ``AuthorizationError`` when it belongs to someone else.
        """
        chat = await self._chats.get_chat(chat_id)
        if chat is None:
            return False
        if chat.get("user_id") != user_id:
            raise AuthorizationError(f"Chat '{chat_id}' belongs to another user")
        return await self._chats.delete_chat(chat_id)
