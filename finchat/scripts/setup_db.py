"""
FinChat - Vector Database Setup & Ingestion Script
===================================================
CLI entry point that orchestrates:
    1. Load and validate settings (fail-fast on a broken ``.env``).
    2. Initialise the embedder and the configured vector backend.
    3. Optionally drop namespaces (and the hash cache).
    4. Run the ``IngestionPipeline`` over ``DATA_RAW_DIR/<namespace>/``.
    5. Print a structured execution summary.

Flags:
    --namespace NAME  Only ingest this namespace (repeatable).
    --drop            Drop the selected namespaces before ingesting (cache preserved).
    --purge           Drop namespaces AND clear their hash-cache entries.

Usage:
    python -m finchat.scripts.setup_db
    python -m finchat.scripts.setup_db --namespace stock-descriptions --purge
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="FinChat — Initialise the vector index and ingest namespace documents.")
    parser.add_argument("--namespace", action="append", dest="namespaces", metavar="NAME", help="Only ingest this namespace (repeatable). Defaults to every sub-directory of DATA_RAW_DIR.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the selected namespaces before ingesting (hash cache preserved).")
    parser.add_argument("--purge", action="store_true", default=False, help="Drop the selected namespaces AND clear their hash-cache entries.")
    return parser.parse_args(argv)


# ── Main Orchestration ─────────────────────────────────────────────────

async def _run(args: argparse.Namespace, config: object) -> dict:
    from finchat.src.core.embedder import build_embedder
    from finchat.src.core.ingestor import IngestionPipeline
    from finchat.src.database.vector_store import build_retriever
    from finchat.src.utils.logger import get_logger

    logger = get_logger(__name__)

    embedder = build_embedder(config)  # type: ignore[arg-type]
    store = build_retriever(config)  # type: ignore[arg-type]
    pipeline = IngestionPipeline(store=store, embedder=embedder, source_dir=config.DATA_RAW_DIR, cache_dir=config.DATA_PROCESSED_DIR, max_workers=config.MAX_WORKERS, chunk_size=config.CHUNK_SIZE, chunk_overlap=config.CHUNK_OVERLAP)  # type: ignore[attr-defined]
    logger.info("Vector backend ready: %r", store)

    if args.drop or args.purge:
        targets = args.namespaces or list(pipeline.discover())
        for namespace in targets:
            logger.warning("Dropping namespace '%s' as requested.", namespace)
            store.drop_namespace(namespace)
            if args.purge:
                removed = pipeline.forget(namespace)
                logger.warning("Cleared %d hash-cache entr(y/ies) for '%s'.", removed, namespace)

    summary = await pipeline.run(args.namespaces)
    summary["indexed_namespaces"] = {namespace: store.count(namespace) for namespace in store.list_namespaces()}
    for namespace, count in summary["indexed_namespaces"].items():
        logger.info("Namespace '%s' now holds %d chunk(s).", namespace, count)
    return summary


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    try:
        from finchat.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        return 1

    from finchat.src.utils.logger import get_logger, quiet_third_party_loggers

    quiet_third_party_loggers()
    logger = get_logger(__name__)

    _print_header(settings)

    try:
        summary = asyncio.run(_run(args, settings))
    except Exception:
        logger.exception("Ingestion aborted.")
        return 1

    _print_footer(summary, time.perf_counter() - t_start)
    return 1 if summary["files_failed"] else 0


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    mongo_uri_val = settings.MONGO_URI.get_secret_value()  # type: ignore[attr-defined]
    mongo_masked = mongo_uri_val.split("@")[-1] if "@" in mongo_uri_val else mongo_uri_val

    print()
    print("=" * 60)
    print("  FINCHAT — Vector Index Setup & Ingestion")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                         # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_PROVIDER} / {settings.EMBEDDING_MODEL}")  # type: ignore[attr-defined]
    print(f"  Backend      : {settings.VECTOR_BACKEND}")              # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")                # type: ignore[attr-defined]
    print(f"  MongoDB      : {mongo_masked} (db: {settings.MONGO_DB_NAME})")  # type: ignore[attr-defined]
    print(f"  Source dir   : {settings.DATA_RAW_DIR}")                # type: ignore[attr-defined]
    print(f"  Chunk size   : {settings.CHUNK_SIZE} chars (overlap {settings.CHUNK_OVERLAP})")  # type: ignore[attr-defined]
    print(f"  Workers      : {settings.MAX_WORKERS}")                 # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_footer(summary: dict, elapsed: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Total files scanned  : {summary['total_files']}")
    print(f"  Files ingested       : {summary['files_processed']}")
    print(f"  Files skipped (cache): {summary['files_skipped']}")
    print(f"  Files failed         : {summary['files_failed']}")
    print(f"  Total chunks stored  : {summary['total_chunks']}")
    for namespace, chunks in sorted(summary["chunks_per_namespace"].items()):
        print(f"    {namespace:<20} : {chunks}")
    print("-" * 60)
    print("  Index contents")
    for namespace, count in summary.get("indexed_namespaces", {}).items():
        print(f"    {namespace:<20} : {count} chunk(s)")
    print("-" * 60)
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    sys.exit(main())
