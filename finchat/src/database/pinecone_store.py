"""Pinecone namespace store: one hosted index, native namespaces."""

from __future__ import annotations

import asyncio

from pinecone import Pinecone

from finchat.src.core.errors import RetrievalError
from finchat.src.core.models import Match, QueryVector, validate_namespace
from finchat.src.database.vector_store import DocumentMetadata, build_records
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

# Pinecone recommends upserting 100 vectors per request
_UPSERT_BATCH_SIZE = 100


class PineconeNamespaceStore:
    """Namespaced vector index over a Pinecone index.

    Chunk text is kept in ``metadata["text"]``; a match without it
    contributes an empty string, and a match without a score counts as 0.
    """

    __slots__ = ("_index_name", "_index")

    def __init__(self, api_key: str, index_name: str, index: object | None = None) -> None:
        """Connect to *index_name*.

        Args:
            api_key: Pinecone API key.
            index_name: Existing index holding the namespaces.
            index: Pre-built index handle (tests inject a stub here).
        """
        self._index_name = index_name
        self._index = index if index is not None else Pinecone(api_key=api_key).Index(index_name)


    async def query(self, namespace: str, vector: QueryVector, top_k: int) -> list[Match]:
        try:
            validate_namespace(namespace)
            response = await asyncio.to_thread(self._index.query, vector=list(vector), top_k=top_k, include_metadata=True, namespace=namespace)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[PINECONE] Query failed for namespace '%s': %s", namespace, exc)
            raise RetrievalError(f"Pinecone query failed for namespace '{namespace}': {exc}", namespace=namespace) from exc

        matches = []
        for match in response.matches or []:
            metadata = match.metadata or {}
            matches.append(Match(text=str(metadata.get("text") or ""), score=float(match.score or 0.0)))
        logger.debug("[PINECONE] Namespace '%s' returned %d match(es).", namespace, len(matches))
        return matches


    async def add_documents(self, namespace: str, texts: list[str], vectors: list[QueryVector], metadatas: list[DocumentMetadata]) -> int:
        validate_namespace(namespace)
        records = build_records(namespace, texts, vectors, metadatas)
        payload = [{"id": r["id"], "values": r["vector"], "metadata": {"text": r["text"], "source_file": r["source_file"], "chunk_index": r["chunk_index"]}} for r in records]

        for i in range(0, len(payload), _UPSERT_BATCH_SIZE):
            batch = payload[i : i + _UPSERT_BATCH_SIZE]
            await asyncio.to_thread(self._index.upsert, vectors=batch, namespace=namespace)  # type: ignore[attr-defined]

        logger.info("[PINECONE] Upserted %d chunk(s) into namespace '%s'.", len(payload), namespace)
        return len(payload)


    def count(self, namespace: str) -> int:
        stats = self._index.describe_index_stats()  # type: ignore[attr-defined]
        summary = (stats.namespaces or {}).get(validate_namespace(namespace))
        return int(summary.vector_count) if summary is not None else 0


    def list_namespaces(self) -> list[str]:
        stats = self._index.describe_index_stats()  # type: ignore[attr-defined]
        return sorted(stats.namespaces or {})


    def drop_namespace(self, namespace: str) -> None:
        validate_namespace(namespace)
        if self.count(namespace) == 0:
            logger.warning("Namespace '%s' is empty — nothing to drop.", namespace)
            return
        self._index.delete(delete_all=True, namespace=namespace)  # type: ignore[attr-defined]
        logger.info("[PINECONE] Deleted all vectors in namespace '%s'.", namespace)


    def __repr__(self) -> str:
        return f"PineconeNamespaceStore(index='{self._index_name}')"
