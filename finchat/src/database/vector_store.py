"""
FinChat - Namespace Vector Store (LanceDB)
===========================================
LanceDB-backed vector index partitioned into topical **namespaces**.
Each namespace lives in its own table inside one on-disk database, so
``stock-descriptions`` and ``earnings-calls`` can be queried, counted and
dropped independently.

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Cosine metric** — similarity is reported as ``1 - _distance`` so
    scores are comparable with hosted indexes (higher is better).
  • **Cooperative I/O** — LanceDB calls are blocking; they run in a
    worker thread via ``asyncio.to_thread`` so concurrent namespace
    queries do not stall the event loop.
  • **Vectors in, vectors out** — the store never embeds; callers pass
    pre-computed ``QueryVector``s.

Usage:
    from finchat.src.database.vector_store import LanceNamespaceStore
    store = LanceNamespaceStore()
    await store.add_documents("stock-descriptions", texts, vectors, metadatas)
    matches = await store.query("stock-descriptions", vector, top_k=5)
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
from typing import Protocol, runtime_checkable

import lancedb
import pyarrow as pa

from finchat.config.settings import Settings, settings
from finchat.src.core.errors import RetrievalError
from finchat.src.core.models import Match, QueryVector, validate_namespace
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
DocumentMetadata = dict[str, str | int]
DocumentRecord = dict[str, str | int | list[float]]


# ── Retriever Protocols ───────────────────────────────────────────────

@runtime_checkable
class NamespaceRetriever(Protocol):
    """Top-K nearest-neighbour lookup inside one named partition."""

    async def query(self, namespace: str, vector: QueryVector, top_k: int) -> list[Match]: ...


@runtime_checkable
class NamespaceStore(NamespaceRetriever, Protocol):
    """A retriever that can also be written to (ingestion)."""

    async def add_documents(self, namespace: str, texts: list[str], vectors: list[QueryVector], metadatas: list[DocumentMetadata]) -> int: ...

    def count(self, namespace: str) -> int: ...

    def drop_namespace(self, namespace: str) -> None: ...

    def list_namespaces(self) -> list[str]: ...


def make_record_id(namespace: str, source_file: str, chunk_index: int) -> str:
    """Deterministic chunk id, so re-ingesting a file overwrites instead of duplicating."""
    return hashlib.sha1(f"{namespace}:{source_file}:{chunk_index}".encode("utf-8")).hexdigest()


def build_records(namespace: str, texts: list[str], vectors: list[QueryVector], metadatas: list[DocumentMetadata]) -> list[DocumentRecord]:
    """Zip texts, vectors and metadata into storable rows (shared by every backend)."""
    if not len(texts) == len(vectors) == len(metadatas):
        raise ValueError(f"Length mismatch: {len(texts)} texts vs {len(vectors)} vectors vs {len(metadatas)} metadatas.")
    if vectors and len({len(v) for v in vectors}) != 1:
        raise ValueError("All vectors must share one dimensionality.")

    records: list[DocumentRecord] = []
    for i, (text, vec, meta) in enumerate(zip(texts, vectors, metadatas)):
        source = str(meta.get("source_file", "unknown"))
        chunk_index = int(meta.get("chunk_index", i))
        records.append({"id": make_record_id(namespace, source, chunk_index), "vector": [float(x) for x in vec], "text": text, "source_file": source, "chunk_index": chunk_index})
    return records


# ── LanceDB Table Schema ──────────────────────────────────────────────

def _namespace_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("text", pa.utf8()),
        pa.field("source_file", pa.utf8()),
        pa.field("chunk_index", pa.int32()),
    ])


# ── Connection cache ──────────────────────────────────────────────────
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``; worker threads spawned by
    ``asyncio.to_thread`` share the same connection.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


class LanceNamespaceStore:
    """
    Namespaced vector index over a local LanceDB database.

    Parameters
    ----------
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    """

    __slots__ = ("_db_path", "db", "_write_lock")

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self.db: lancedb.DBConnection = _get_connection(self._db_path)
        self._write_lock = threading.Lock()


    def _table_names(self) -> list[str]:
        names: list[str] = []
        page_token = None
        while True:
            response = self.db.list_tables(page_token=page_token)
            names.extend(response.tables)
            page_token = response.page_token
            if not page_token:
                return names


    def _open_table(self, namespace: str) -> lancedb.table.Table | None:
        if namespace not in self._table_names():
            return None
        return self.db.open_table(namespace)


    async def query(self, namespace: str, vector: QueryVector, top_k: int) -> list[Match]:
        """
        Return up to *top_k* matches from *namespace*, most similar first.

        A namespace that has never been written to yields ``[]``.

        Raises
        ------
        RetrievalError
            If *namespace* is not a valid name or LanceDB fails while searching.
        """
        try:
            validate_namespace(namespace)
            rows = await asyncio.to_thread(self._search, namespace, vector, top_k)
        except Exception as exc:
            logger.error("[LANCEDB] Query failed for namespace '%s': %s", namespace, exc)
            raise RetrievalError(f"LanceDB query failed for namespace '{namespace}': {exc}", namespace=namespace) from exc

        matches = [Match(text=str(row.get("text") or ""), score=1.0 - float(row["_distance"])) for row in rows]
        logger.debug("[LANCEDB] Namespace '%s' returned %d match(es).", namespace, len(matches))
        return matches


    def _search(self, namespace: str, vector: QueryVector, top_k: int) -> list[dict]:
        table = self._open_table(namespace)
        if table is None:
            logger.warning("[LANCEDB] Namespace '%s' has no table yet — treating as empty.", namespace)
            return []
        return table.search(list(vector)).distance_type("cosine").limit(top_k).to_list()


    async def add_documents(self, namespace: str, texts: list[str], vectors: list[QueryVector], metadatas: list[DocumentMetadata]) -> int:
        """
        Persist pre-embedded chunks into *namespace* (table created on first write).

        Raises
        ------
        ValueError
            If the parallel lists have mismatched lengths or dimensions.
        """
        validate_namespace(namespace)
        records = build_records(namespace, texts, vectors, metadatas)
        if not records:
            return 0

        await asyncio.to_thread(self._write, namespace, records)
        logger.info("[LANCEDB] Added %d chunk(s) to namespace '%s'.", len(records), namespace)
        return len(records)


    def _write(self, namespace: str, records: list[DocumentRecord]) -> None:
        with self._write_lock:
            table = self._open_table(namespace)
            if table is None:
                dimension = len(records[0]["vector"])  # type: ignore[arg-type]
                table = self.db.create_table(namespace, schema=_namespace_schema(dimension))
                logger.info("[LANCEDB] Created table for namespace '%s' (dim=%d).", namespace, dimension)
            try:
                table.merge_insert("id").when_matched_update_all().when_not_matched_insert_all().execute(records)
            except OSError as exc:
                logger.error("Failed to write records to LanceDB: %s", exc)
                raise


    def count(self, namespace: str) -> int:
        """Return the number of chunks stored in *namespace*."""
        table = self._open_table(validate_namespace(namespace))
        return table.count_rows() if table is not None else 0


    def list_namespaces(self) -> list[str]:
        """Names of every namespace that holds a table."""
        return sorted(self._table_names())


    def drop_namespace(self, namespace: str) -> None:
        """Drop a namespace table (useful for re-ingestion)."""
        validate_namespace(namespace)
        if namespace not in self._table_names():
            logger.warning("Namespace '%s' does not exist — nothing to drop.", namespace)
            return
        try:
            self.db.drop_table(namespace)
            logger.info("[LANCEDB] Dropped namespace '%s'.", namespace)
        except OSError as exc:
            logger.error("Filesystem error dropping namespace '%s': %s", namespace, exc)
            raise


    def __repr__(self) -> str:
        return f"LanceNamespaceStore(db='{self._db_path}')"


def build_retriever(config: Settings) -> NamespaceStore:
    """Create the vector backend selected by ``VECTOR_BACKEND``."""
    if config.VECTOR_BACKEND == "pinecone":
        from finchat.src.database.pinecone_store import PineconeNamespaceStore

        api_key = config.PINECONE_API_KEY.get_secret_value() if config.PINECONE_API_KEY else ""
        return PineconeNamespaceStore(api_key=api_key, index_name=config.PINECONE_INDEX_NAME)

    return LanceNamespaceStore(db_path=str(config.LANCEDB_PATH))
