"""
Shared fixtures and in-memory fakes for the FinChat test suite.

Required settings are seeded before any ``finchat`` import, since
``finchat.config.settings`` builds its singleton at import time.
"""

import asyncio
import os

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("HUGGINGFACE_API_KEY", "hf_test_key")

from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from finchat.src.core.augmenter import PromptAugmenter
from finchat.src.core.models import Match
from finchat.src.core.rag_engine import RAGManager, TitleGenerator
from finchat.src.core.selector import NamespaceSelector
from finchat.src.core.streamer import CompletionStreamer


# ══════════════════════════════════════════════════════════════════════
#  FAKES
# ══════════════════════════════════════════════════════════════════════


class FakeRetriever:
    """Namespace → matches (or an exception to raise), with optional per-namespace delay."""

    def __init__(self, results, delays=None):
        self.results = results
        self.delays = delays or {}
        self.calls = []

    async def query(self, namespace, vector, top_k):
        self.calls.append((namespace, tuple(vector), top_k))
        delay = self.delays.get(namespace, 0)
        if delay:
            await asyncio.sleep(delay)
        result = self.results.get(namespace, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeEmbedder:
    """Returns a fixed query vector; document vectors encode the text length."""

    def __init__(self, vector=(0.1, 0.2, 0.3), error=None):
        self.vector = tuple(vector)
        self.error = error
        self.texts = []
        self.batches = []

    async def embed(self, text):
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.vector

    async def embed_documents(self, texts):
        self.batches.append(list(texts))
        if self.error is not None:
            raise self.error
        return [(float(len(t)), 1.0, 0.0) for t in texts]


class FakeChatModel:
    """Streams ``tokens`` as ``AIMessageChunk``s; ``ainvoke`` answers with ``title``."""

    def __init__(self, tokens=("Hello", " world"), title="AAPL valuation", fail_at=None):
        self.tokens = list(tokens)
        self.fail_at = fail_at
        self.calls = []
        self.closed = False
        self.ainvoke = AsyncMock(return_value=AIMessage(content=title))

    async def astream(self, messages):
        self.calls.append(list(messages))
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_at is not None and i == self.fail_at:
                    raise RuntimeError("model backend failed")
                await asyncio.sleep(0)
                yield AIMessageChunk(content=token)
        finally:
            self.closed = True


class InMemoryChatRepository:
    """Dict-backed ``ChatRepository``."""

    def __init__(self):
        self.chats = {}
        self.messages = []
        self.fail_on_save = False

    async def get_chat(self, chat_id):
        chat = self.chats.get(chat_id)
        return dict(chat) if chat is not None else None

    async def save_chat(self, chat_id, user_id, title):
        self.chats.setdefault(chat_id, {"id": chat_id, "user_id": user_id, "title": title})
        return dict(self.chats[chat_id])

    async def save_messages(self, messages):
        if self.fail_on_save:
            raise ConnectionError("database unavailable")
        self.messages.extend(messages)

    async def delete_chat(self, chat_id):
        self.messages = [m for m in self.messages if m["chat_id"] != chat_id]
        return self.chats.pop(chat_id, None) is not None


# ══════════════════════════════════════════════════════════════════════
#  FIXTURES
# ══════════════════════════════════════════════════════════════════════


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chat_repo():
    return InMemoryChatRepository()


@pytest.fixture
def chat_model():
    return FakeChatModel()


@pytest.fixture
def make_rag(embedder, chat_repo, chat_model):
    """Factory: ``make_rag({"ns": [Match, ...]})`` → ``(RAGManager, FakeRetriever)``."""

    def _make(results, namespaces=None):
        retriever = FakeRetriever(results)
        selector = NamespaceSelector(retriever, namespaces or list(results), top_k=5, timeout=1.0)
        rag = RAGManager(embedder=embedder, selector=selector, augmenter=PromptAugmenter(), streamer=CompletionStreamer(chat_model), chats=chat_repo, titles=TitleGenerator(chat_model, max_length=80))
        return rag, retriever

    return _make


@pytest.fixture
def aapl_results():
    return {"stock-descriptions": [Match(text="AAPL P/E is 25", score=0.9)]}
