"""
FinChat - Embedders
====================
Turns the user's question (and, during ingestion, document chunks) into
fixed-length vectors.

Implementations
---------------
``HuggingFaceInferenceEmbedder``
    Calls the Hugging Face feature-extraction endpoint over HTTPS with a
    bearer token.  Payload::

        {"inputs": "<text>", "options": {"wait_for_model": true}}

    The endpoint answers with a flat vector for a sentence-transformers
    model, a single-row nested vector for some pipelines, or an
    ``{"error": "..."}`` object.

``LangChainEmbedder``
    Adapts any LangChain ``Embeddings`` model (``GoogleGenerativeAIEmbeddings``
    by default) through its async API.

Both make exactly one attempt per call.  Any failure surfaces as
``EmbeddingServiceError``; retries are the caller's decision.
"""

from __future__ import annotations

import numbers
from typing import Protocol, runtime_checkable

import httpx

from finchat.config.settings import Settings
from finchat.src.core.errors import EmbeddingServiceError
from finchat.src.core.models import QueryVector
from finchat.src.utils.logger import get_logger
from finchat.src.utils.text_utils import preview

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EMBEDDER PROTOCOL
# ══════════════════════════════════════════════════════════════════════


@runtime_checkable
class Embedder(Protocol):
    """Anything that can produce embedding vectors from text."""

    async def embed(self, text: str) -> QueryVector: ...

    async def embed_documents(self, texts: list[str]) -> list[QueryVector]: ...


# ══════════════════════════════════════════════════════════════════════
#  PAYLOAD PARSING
# ══════════════════════════════════════════════════════════════════════


def _is_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def parse_vector(payload: object) -> QueryVector:
    """
    Coerce one feature-extraction response into a ``QueryVector``.

    Accepts ``[f, f, ...]`` or ``[[f, f, ...]]``.  Raises
    ``EmbeddingServiceError`` for error objects and anything else.
    """
    if isinstance(payload, dict):
        raise EmbeddingServiceError(f"Embedding service returned an error: {payload.get('error', payload)}")

    if isinstance(payload, list) and len(payload) == 1 and isinstance(payload[0], list):
        payload = payload[0]

    if not isinstance(payload, list) or not payload or not all(_is_number(v) for v in payload):
        raise EmbeddingServiceError(f"Malformed embedding payload: {preview(repr(payload), 120)}")

    return tuple(float(v) for v in payload)


def parse_vectors(payload: object, expected: int) -> list[QueryVector]:
    """Coerce a batched response (one vector per input) into ``QueryVector``s."""
    if isinstance(payload, dict):
        raise EmbeddingServiceError(f"Embedding service returned an error: {payload.get('error', payload)}")
    if not isinstance(payload, list) or len(payload) != expected:
        raise EmbeddingServiceError(f"Expected {expected} embedding(s), got {len(payload) if isinstance(payload, list) else type(payload).__name__}")
    return [parse_vector(row) for row in payload]


# ══════════════════════════════════════════════════════════════════════
#  HUGGING FACE INFERENCE API
# ══════════════════════════════════════════════════════════════════════


class HuggingFaceInferenceEmbedder:
    """
    Embedder backed by the Hugging Face feature-extraction endpoint.

    Parameters
    ----------
    api_key
        Hugging Face access token, sent as ``Authorization: Bearer``.
    model_id
        Model to embed with, e.g. ``sentence-transformers/all-MiniLM-L6-v2``.
    api_url
        URL template containing ``{model_id}``.
    timeout
        Seconds for the whole request.
    transport
        Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
    """

    __slots__ = ("_url", "_api_key", "_timeout", "_transport")

    def __init__(self, api_key: str, model_id: str, api_url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._url = api_url.format(model_id=model_id)
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport


    async def embed(self, text: str) -> QueryVector:
        logger.debug("[EMBED] Sending text to embedding service: %s", preview(text))
        body = await self._post(text)
        vector = parse_vector(body)
        logger.debug("[EMBED] Received %d-dim vector.", len(vector))
        return vector


    async def embed_documents(self, texts: list[str]) -> list[QueryVector]:
        if not texts:
            return []
        body = await self._post(texts)
        return parse_vectors(body, len(texts))


    async def _post(self, inputs: str | list[str]) -> object:
        payload = {"inputs": inputs, "options": {"wait_for_model": True}}
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(self._url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                logger.error("[EMBED] Transport error calling %s: %s", self._url, exc)
                raise EmbeddingServiceError(f"Failed to reach embedding service: {exc}") from exc

        if response.is_error:
            logger.error("[EMBED] Embedding API error: status=%d reason=%s body=%s", response.status_code, response.reason_phrase, preview(response.text, 200))
            raise EmbeddingServiceError(f"Failed to get embeddings: {response.status_code} {response.reason_phrase} - {preview(response.text, 200)}")

        try:
            return response.json()
        except ValueError as exc:
            raise EmbeddingServiceError(f"Embedding service returned non-JSON body: {preview(response.text, 120)}") from exc


    def __repr__(self) -> str:
        return f"HuggingFaceInferenceEmbedder(url='{self._url}')"


# ══════════════════════════════════════════════════════════════════════
#  LANGCHAIN ADAPTER
# ══════════════════════════════════════════════════════════════════════


class LangChainEmbedder:
    """Wrap a LangChain ``Embeddings`` model behind the ``Embedder`` protocol."""

    __slots__ = ("_embeddings",)

    def __init__(self, embeddings: object) -> None:
        self._embeddings = embeddings


    async def embed(self, text: str) -> QueryVector:
        try:
            vector = await self._embeddings.aembed_query(text)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[EMBED] LangChain embedding failed: %s", exc)
            raise EmbeddingServiceError(f"Failed to get embeddings: {exc}") from exc
        return parse_vector(list(vector))


    async def embed_documents(self, texts: list[str]) -> list[QueryVector]:
        if not texts:
            return []
        try:
            vectors = await self._embeddings.aembed_documents(texts)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[EMBED] LangChain batch embedding failed: %s", exc)
            raise EmbeddingServiceError(f"Failed to get embeddings: {exc}") from exc
        return parse_vectors([list(v) for v in vectors], len(texts))


# ══════════════════════════════════════════════════════════════════════
#  FACTORY
# ══════════════════════════════════════════════════════════════════════


def build_embedder(config: Settings) -> Embedder:
    """Create the embedder selected by ``EMBEDDING_PROVIDER``."""
    if config.EMBEDDING_PROVIDER == "google":
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        embeddings = GoogleGenerativeAIEmbeddings(model=config.GOOGLE_EMBEDDING_MODEL, google_api_key=config.GOOGLE_API_KEY.get_secret_value())
        logger.info("Embedder initialised: Google %s", config.GOOGLE_EMBEDDING_MODEL)
        return LangChainEmbedder(embeddings)

    api_key = config.HUGGINGFACE_API_KEY.get_secret_value() if config.HUGGINGFACE_API_KEY else ""
    logger.info("Embedder initialised: Hugging Face %s", config.EMBEDDING_MODEL)
    return HuggingFaceInferenceEmbedder(api_key=api_key, model_id=config.EMBEDDING_MODEL, api_url=config.EMBEDDING_API_URL, timeout=config.EMBEDDING_TIMEOUT_SECONDS)
