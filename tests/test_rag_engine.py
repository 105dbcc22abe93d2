"""
Tests for the chat pipeline: turn preparation, reply streaming with
persistence, chat deletion and title generation.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage

from finchat.src.core.errors import AuthorizationError, EmbeddingServiceError, NoUserMessageError, RetrievalError
from finchat.src.core.models import Match
from finchat.src.core.rag_engine import TitleGenerator, get_most_recent_user_message

QUESTION = "What is AAPL's P/E ratio?"


async def _drain(agen):
    return [chunk async for chunk in agen]


class TestGetMostRecentUserMessage:
    """Tests for locating the question to answer."""

    def test_finds_last_user_message(self):
        messages = [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}, {"role": "user", "content": "c"}, {"role": "assistant", "content": "d"}]
        assert get_most_recent_user_message(messages) == (2, {"role": "user", "content": "c"})

    def test_none_without_user_message(self):
        assert get_most_recent_user_message([{"role": "assistant", "content": "hi"}]) is None
        assert get_most_recent_user_message([]) is None


class TestPrepareTurn:
    """Tests for ``RAGManager.prepare_turn``."""

    def test_end_to_end_aapl(self, make_rag, aapl_results, chat_repo, embedder):
        """The selected namespace's chunk and the question both reach the model prompt."""
        rag, retriever = make_rag(aapl_results)

        prompt = asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert retriever.calls[0][0] == "stock-descriptions"
        assert "AAPL P/E is 25" in prompt[-1]["content"]
        assert QUESTION in prompt[-1]["content"]
        assert embedder.texts == [QUESTION]

    def test_new_chat_created_with_title(self, make_rag, aapl_results, chat_repo, chat_model):
        rag, _ = make_rag(aapl_results)
        asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert chat_repo.chats["chat-1"] == {"id": "chat-1", "user_id": "user-1", "title": "AAPL valuation"}
        chat_model.ainvoke.assert_awaited_once()

    def test_user_message_persisted(self, make_rag, aapl_results, chat_repo):
        rag, _ = make_rag(aapl_results)
        asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        [record] = chat_repo.messages
        assert record["chat_id"] == "chat-1"
        assert record["role"] == "user"
        assert record["content"] == QUESTION
        assert record["id"] and record["created_at"] is not None

    def test_existing_chat_not_recreated(self, make_rag, aapl_results, chat_repo, chat_model):
        chat_repo.chats["chat-1"] = {"id": "chat-1", "user_id": "user-1", "title": "Old title"}
        rag, _ = make_rag(aapl_results)

        asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert chat_repo.chats["chat-1"]["title"] == "Old title"
        chat_model.ainvoke.assert_not_awaited()

    def test_foreign_chat_rejected_before_retrieval(self, make_rag, aapl_results, chat_repo, embedder):
        chat_repo.chats["chat-1"] = {"id": "chat-1", "user_id": "someone-else", "title": "t"}
        rag, retriever = make_rag(aapl_results)

        with pytest.raises(AuthorizationError):
            asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert embedder.texts == []
        assert retriever.calls == []
        assert chat_repo.messages == []

    def test_chat_created_concurrently_by_other_user(self, make_rag, aapl_results, chat_repo, embedder):
        """The owner check uses the stored record, not the caller's own insert."""
        chat_repo.chats["chat-1"] = {"id": "chat-1", "user_id": "someone-else", "title": "t"}
        chat_repo.get_chat = AsyncMock(return_value=None)
        rag, _ = make_rag(aapl_results)

        with pytest.raises(AuthorizationError):
            asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert chat_repo.chats["chat-1"]["user_id"] == "someone-else"
        assert embedder.texts == []

    def test_same_user_concurrent_first_turns(self, make_rag, aapl_results, chat_repo):
        chat_repo.get_chat = AsyncMock(return_value=None)
        rag, _ = make_rag(aapl_results)
        turn = [{"role": "user", "content": QUESTION}]

        async def _both():
            return await asyncio.gather(rag.prepare_turn("chat-1", "user-1", turn), rag.prepare_turn("chat-1", "user-1", turn))

        prompts = asyncio.run(_both())

        assert len(prompts) == 2
        assert list(chat_repo.chats) == ["chat-1"]
        assert len(chat_repo.messages) == 2

    def test_no_user_message(self, make_rag, aapl_results, chat_repo):
        rag, _ = make_rag(aapl_results)
        with pytest.raises(NoUserMessageError):
            asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "assistant", "content": "Hello"}]))
        assert chat_repo.chats == {}

    def test_no_context_falls_back_to_plain_question(self, make_rag):
        rag, _ = make_rag({"stock-descriptions": [], "earnings-calls": []})
        prompt = asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))
        assert prompt[-1] == {"role": "user", "content": QUESTION}

    def test_all_namespaces_failing_propagates(self, make_rag):
        rag, _ = make_rag({"stock-descriptions": RetrievalError("down")})
        with pytest.raises(RetrievalError):
            asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

    def test_embedding_failure_propagates(self, make_rag, aapl_results, embedder):
        embedder.error = EmbeddingServiceError("503")
        rag, _ = make_rag(aapl_results)
        with pytest.raises(EmbeddingServiceError):
            asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

    def test_history_truncated_at_latest_user_message(self, make_rag, aapl_results):
        messages = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": QUESTION},
            {"role": "assistant", "content": "partial answer from a previous attempt"},
        ]
        rag, _ = make_rag(aapl_results)

        prompt = asyncio.run(rag.prepare_turn("chat-1", "user-1", messages))

        assert [m["role"] for m in prompt] == ["system", "user", "assistant", "user"]
        assert all("partial answer" not in m["content"] for m in prompt)

    def test_best_namespace_used(self, make_rag):
        rag, _ = make_rag({"stock-descriptions": [Match("AAPL sells iPhones", 0.4)], "earnings-calls": [Match("AAPL EPS beat estimates", 0.8)]})
        prompt = asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))
        assert "AAPL EPS beat estimates" in prompt[-1]["content"]
        assert "iPhones" not in prompt[-1]["content"]


class TestStreamReply:
    """Tests for ``RAGManager.stream_reply``."""

    PROMPT = [{"role": "system", "content": "s"}, {"role": "user", "content": QUESTION}]

    def test_streams_and_persists_assistant_message(self, make_rag, aapl_results, chat_repo):
        rag, _ = make_rag(aapl_results)
        annotations = []

        chunks = asyncio.run(_drain(rag.stream_reply("chat-1", self.PROMPT, annotations)))

        assert chunks == ["Hello", " world"]
        [record] = chat_repo.messages
        assert record["role"] == "assistant"
        assert record["content"] == "Hello world"
        assert annotations == [{"messageIdFromServer": record["id"]}]

    def test_disconnect_persists_nothing(self, make_rag, aapl_results, chat_repo, chat_model):
        chat_model.tokens = [f"t{i}" for i in range(10)]
        rag, _ = make_rag(aapl_results)
        annotations = []

        async def read_two():
            stream = rag.stream_reply("chat-1", self.PROMPT, annotations)
            await stream.__anext__()
            await stream.__anext__()
            await stream.aclose()

        asyncio.run(read_two())

        assert chat_repo.messages == []
        assert annotations == []

    def test_persistence_failure_does_not_break_stream(self, make_rag, aapl_results, chat_repo):
        chat_repo.fail_on_save = True
        rag, _ = make_rag(aapl_results)

        chunks = asyncio.run(_drain(rag.stream_reply("chat-1", self.PROMPT, [])))

        assert chunks == ["Hello", " world"]

    def test_annotations_optional(self, make_rag, aapl_results, chat_repo):
        rag, _ = make_rag(aapl_results)
        asyncio.run(_drain(rag.stream_reply("chat-1", self.PROMPT)))
        assert len(chat_repo.messages) == 1


class TestDeleteChat:
    """Tests for ``RAGManager.delete_chat``."""

    def test_unknown_chat(self, make_rag, aapl_results):
        rag, _ = make_rag(aapl_results)
        assert asyncio.run(rag.delete_chat("missing", "user-1")) is False

    def test_foreign_chat_rejected(self, make_rag, aapl_results, chat_repo):
        chat_repo.chats["chat-1"] = {"id": "chat-1", "user_id": "owner", "title": "t"}
        rag, _ = make_rag(aapl_results)
        with pytest.raises(AuthorizationError):
            asyncio.run(rag.delete_chat("chat-1", "intruder"))
        assert "chat-1" in chat_repo.chats

    def test_owner_deletes_chat_and_messages(self, make_rag, aapl_results, chat_repo):
        rag, _ = make_rag(aapl_results)
        asyncio.run(rag.prepare_turn("chat-1", "user-1", [{"role": "user", "content": QUESTION}]))

        assert asyncio.run(rag.delete_chat("chat-1", "user-1")) is True
        assert chat_repo.chats == {}
        assert chat_repo.messages == []


class TestTitleGenerator:
    """Tests for chat title generation."""

    def _llm(self, **kwargs):
        llm = AsyncMock()
        llm.ainvoke = AsyncMock(**kwargs)
        return llm

    def test_model_title_cleaned(self):
        llm = self._llm(return_value=AIMessage(content='"AAPL: Valuation check"'))
        assert asyncio.run(TitleGenerator(llm).generate(QUESTION)) == "AAPL Valuation check"

    def test_fallback_on_model_failure(self):
        llm = self._llm(side_effect=RuntimeError("quota"))
        assert asyncio.run(TitleGenerator(llm).generate(QUESTION)) == QUESTION

    def test_truncated_to_max_length(self):
        llm = self._llm(side_effect=RuntimeError("quota"))
        title = asyncio.run(TitleGenerator(llm, max_length=20).generate("Compare the dividend yields of every large-cap utility"))
        assert len(title) <= 20
        assert title.endswith("...")

    def test_blank_title_replaced(self):
        llm = self._llm(return_value=AIMessage(content="  "))
        assert asyncio.run(TitleGenerator(llm).generate("")) == "New chat"
