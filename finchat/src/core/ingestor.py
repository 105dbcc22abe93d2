"""
FinChat - IngestionPipeline
============================
Reads raw documents, cleans and chunks them, embeds the chunks and
stores them in the namespace they belong to.

Layout of the source directory::

    data/raw/
        stock-descriptions/   ← namespace
            AAPL.txt
            MSFT.md
        earnings-calls/       ← namespace
            ...

Key design decisions:
    • **Dependency Injection** – receives a ``NamespaceStore`` + ``Embedder``.
    • **Sliding-window chunking** – windows of ``CHUNK_SIZE`` are cut at the
      coarsest boundary in their second half (paragraph → line → sentence
      → word → hard cut); the next window re-reads ``CHUNK_OVERLAP``
      characters, snapped to a word start.
    • **Concurrency** – files are processed concurrently, bounded by an
      ``asyncio.Semaphore(MAX_WORKERS)`` (embedding calls are I/O-bound).
    • **Caching** – MD5-based file hashing skips unchanged files.

Usage:
    from finchat.src.core.ingestor import IngestionPipeline
    pipeline = IngestionPipeline(store, embedder)
    summary  = await pipeline.run()
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from pathlib import Path
from typing import Any

from finchat.config.settings import settings
from finchat.src.core.embedder import Embedder
from finchat.src.core.models import validate_namespace
from finchat.src.database.vector_store import NamespaceStore
from finchat.src.utils.logger import get_logger
from finchat.src.utils.text_utils import clean_text

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = {".txt", ".md"}

_SEPARATORS = ["\n\n", "\n", ". ", " "]

# Texts per embedding request
_EMBED_BATCH_SIZE = 32

HASH_CACHE_FILENAME = "ingestion_hashes.json"


# ══════════════════════════════════════════════════════════════════════
#  CHUNKING
# ══════════════════════════════════════════════════════════════════════


def split_text(text: str, chunk_size: int, overlap: int = 0) -> list[str]:
    """
    Split *text* into chunks of at most *chunk_size* characters.

    A window of *chunk_size* characters slides over the text.  Each window
    is cut at the coarsest boundary found in its second half (paragraph,
    line, sentence), else at the last space, else hard at the window end.
    With *overlap* > 0 the next window starts at the first word beginning
    within the last *overlap* characters of the chunk just emitted.
    """
    text = text.strip()
    chunks: list[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = start + chunk_size
        if end >= length:
            chunks.append(text[start:].strip())
            break

        cut, resume = _find_cut(text, start, end, floor=start + chunk_size // 2)
        chunks.append(text[start:cut].strip())

        next_start = _skip_whitespace(text, resume)
        if overlap > 0:
            carried = _first_word_start(text, max(cut - overlap, start + 1), cut)
            if carried is not None:
                next_start = carried
        start = next_start

    return [c for c in chunks if c]


def _find_cut(text: str, start: int, end: int, floor: int) -> tuple[int, int]:
    """
    Return ``(cut, resume)``: the chunk is ``text[start:cut]`` and the rest
    of the text continues at *resume* (after the separator).
    """
    for sep in _SEPARATORS:
        # Sentence punctuation stays with the chunk it ends
        kept = len(sep.rstrip())
        pos = text.rfind(sep, floor, end - kept + len(sep))
        if pos > start:
            return pos + kept, pos + len(sep)

    pos = text.rfind(" ", start + 1, end + 1)
    if pos > start:
        return pos, pos + 1
    return end, end


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _first_word_start(text: str, lower: int, upper: int) -> int | None:
    for pos in range(lower, upper):
        if not text[pos].isspace() and text[pos - 1].isspace():
            return pos
    return None


# ══════════════════════════════════════════════════════════════════════
#  PIPELINE
# ══════════════════════════════════════════════════════════════════════


class IngestionPipeline:
    """
    End-to-end document ingestion: read → clean → chunk → embed → store.

    Parameters
    ----------
    store
        A ``NamespaceStore`` (LanceDB or Pinecone).
    embedder
        An ``Embedder`` exposing ``embed_documents``.
    source_dir
        Override the source directory. Defaults to ``settings.DATA_RAW_DIR``.
    cache_dir
        Where the hash cache lives. Defaults to ``settings.DATA_PROCESSED_DIR``.
    max_workers
        Number of files processed concurrently.
    """

    def __init__(self, store: NamespaceStore, embedder: Embedder, source_dir: Path | None = None, cache_dir: Path | None = None, max_workers: int | None = None, chunk_size: int | None = None, chunk_overlap: int | None = None) -> None:
        self._store = store
        self._embedder = embedder
        self._source_dir = Path(source_dir or settings.DATA_RAW_DIR)
        self._max_workers = max_workers or settings.MAX_WORKERS
        self._chunk_size = chunk_size or settings.CHUNK_SIZE
        self._chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        self._hash_cache_path: Path = Path(cache_dir or settings.DATA_PROCESSED_DIR) / HASH_CACHE_FILENAME
        self._hash_cache: dict[str, str] = self._load_hash_cache()

    # ══════════════════════════════════════════════════════════════════
    #  PUBLIC ENTRY POINT
    # ══════════════════════════════════════════════════════════════════

    def discover(self, namespaces: list[str] | None = None) -> dict[str, list[Path]]:
        """Map namespace → supported files, from the sub-directories of the source dir."""
        if not self._source_dir.exists():
            logger.warning("Source directory does not exist: %s", self._source_dir)
            return {}

        found: dict[str, list[Path]] = {}
        for directory in sorted(p for p in self._source_dir.iterdir() if p.is_dir()):
            if namespaces is not None and directory.name not in namespaces:
                continue
            try:
                validate_namespace(directory.name)
            except ValueError:
                logger.warning("Skipping directory with invalid namespace name: %s", directory.name)
                continue
            files = sorted(f for f in directory.iterdir() if f.is_file() and f.suffix.lower() in _SUPPORTED_EXTENSIONS)
            if files:
                found[directory.name] = files
        return found


    async def run(self, namespaces: list[str] | None = None) -> dict[str, Any]:
        """
        Execute the full ingestion pipeline.

        Parameters
        ----------
        namespaces
            Restrict ingestion to these namespace directories.

        Returns
        -------
        dict
            Execution summary with keys:
            ``total_files``, ``files_processed``, ``files_skipped``,
            ``files_failed``, ``total_chunks``, ``chunks_per_namespace``,
            ``elapsed_seconds``.
        """
        t_start = time.perf_counter()
        discovered = self.discover(namespaces)
        jobs = [(namespace, path) for namespace, files in discovered.items() for path in files]

        if not jobs:
            logger.warning("No supported files found in %s", self._source_dir)
            return self._summary(0, 0, 0, 0, {}, time.perf_counter() - t_start)

        logger.info("Starting ingestion — %d file(s) across %d namespace(s) in %s", len(jobs), len(discovered), self._source_dir)

        semaphore = asyncio.Semaphore(self._max_workers)

        async def _bounded(namespace: str, path: Path) -> int:
            async with semaphore:
                return await self._ingest_file(namespace, path)

        results = await asyncio.gather(*(_bounded(ns, fp) for ns, fp in jobs), return_exceptions=True)

        files_processed = files_skipped = files_failed = 0
        per_namespace: dict[str, int] = {}
        for (namespace, filepath), result in zip(jobs, results):
            if isinstance(result, BaseException):
                files_failed += 1
                logger.error("Failed to ingest file %s/%s: %s", namespace, filepath.name, result, exc_info=result)
            elif result == -1:
                files_skipped += 1
            else:
                files_processed += 1
                per_namespace[namespace] = per_namespace.get(namespace, 0) + result

        self._save_hash_cache()

        elapsed = time.perf_counter() - t_start
        summary = self._summary(len(jobs), files_processed, files_skipped, files_failed, per_namespace, elapsed)
        logger.info("Ingestion complete — %d file(s) processed, %d skipped, %d failed, %d chunk(s) stored in %.2fs.", files_processed, files_skipped, files_failed, summary["total_chunks"], elapsed)
        return summary


    def forget(self, namespace: str | None = None) -> int:
        """Drop cache entries (all, or one namespace's).  Returns how many were removed."""
        if namespace is None:
            removed = len(self._hash_cache)
            self._hash_cache.clear()
        else:
            keys = [k for k in self._hash_cache if k.startswith(f"{namespace}/")]
            for key in keys:
                del self._hash_cache[key]
            removed = len(keys)
        self._save_hash_cache()
        return removed

    # ══════════════════════════════════════════════════════════════════
    #  PER-FILE PROCESSING
    # ══════════════════════════════════════════════════════════════════

    async def _ingest_file(self, namespace: str, filepath: Path) -> int:
        """
        Read, clean, chunk, embed and store a single file.

        Returns
        -------
        int
            Number of chunks added, or ``-1`` if the file was skipped
            (cache hit).
        """
        cache_key = f"{namespace}/{filepath.name}"
        file_hash = self._compute_file_hash(filepath)
        if self._hash_cache.get(cache_key) == file_hash:
            logger.info("CACHE_HIT — Skipping unchanged file: %s", cache_key)
            return -1

        t_file = time.perf_counter()
        raw_text = self._read_file(filepath)
        chunks = split_text(clean_text(raw_text), self._chunk_size, self._chunk_overlap)
        if not chunks:
            logger.warning("Skipping empty file: %s", cache_key)
            self._hash_cache[cache_key] = file_hash
            return 0

        logger.info("File '%s' → %d chunk(s).", cache_key, len(chunks))

        vectors = []
        for i in range(0, len(chunks), _EMBED_BATCH_SIZE):
            vectors.extend(await self._embedder.embed_documents(chunks[i : i + _EMBED_BATCH_SIZE]))

        metadatas = [{"source_file": filepath.name, "chunk_index": idx} for idx in range(len(chunks))]
        added = await self._store.add_documents(namespace, chunks, vectors, metadatas)

        logger.info("File '%s' complete in %.1fms.", cache_key, (time.perf_counter() - t_file) * 1000)
        self._hash_cache[cache_key] = file_hash
        return added


    @staticmethod
    def _read_file(filepath: Path) -> str:
        try:
            return filepath.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return filepath.read_text(encoding="latin-1")

    # ══════════════════════════════════════════════════════════════════
    #  MD5 CACHING
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def _compute_file_hash(filepath: Path) -> str:
        """Return the MD5 hex digest of a file's contents."""
        hasher = hashlib.md5()
        with open(filepath, "rb") as f:
            for block in iter(lambda: f.read(8192), b""):
                hasher.update(block)
        return hasher.hexdigest()


    def _load_hash_cache(self) -> dict[str, str]:
        if self._hash_cache_path.exists():
            try:
                return json.loads(self._hash_cache_path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                logger.warning("Corrupt hash cache — starting fresh.")
        return {}


    def _save_hash_cache(self) -> None:
        self._hash_cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._hash_cache_path.write_text(json.dumps(self._hash_cache, indent=2, sort_keys=True), encoding="utf-8")
        logger.debug("Hash cache saved to %s", self._hash_cache_path)


    @staticmethod
    def _summary(total: int, processed: int, skipped: int, failed: int, per_namespace: dict[str, int], elapsed: float) -> dict[str, Any]:
        return {
            "total_files": total,
            "files_processed": processed,
            "files_skipped": skipped,
            "files_failed": failed,
            "total_chunks": sum(per_namespace.values()),
            "chunks_per_namespace": per_namespace,
            "elapsed_seconds": round(elapsed, 2),
        }
