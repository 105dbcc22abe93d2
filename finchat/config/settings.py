"""
FinChat - Centralized Configuration
====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` and ``MONGO_URI`` are typed as ``SecretStr`` and have
  **no default value**.  If either is missing at startup, Pydantic raises a
  ``ValidationError`` with a clear error message.
- ``HUGGINGFACE_API_KEY`` and ``PINECONE_API_KEY`` are optional, but become
  required as soon as the provider that needs them is selected.
- Raw secret values are never exposed in repr, logs, or tracebacks.

Namespaces
----------
``NAMESPACES`` is the ordered list of vector-index partitions the selector
queries.  The order matters: ties in mean score go to the namespace listed
first.  Accepts a JSON list or a comma-separated string::

    NAMESPACES=stock-descriptions,earnings-calls
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from finchat.src.core.models import validate_namespace


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini chat model).  **Required.**
    MONGO_URI : SecretStr
        MongoDB connection string for chats and messages.  **Required.**
    EMBEDDING_PROVIDER : Literal["huggingface", "google"]
        Which embedding backend turns the user question into a vector.
    VECTOR_BACKEND : Literal["lancedb", "pinecone"]
        Which vector index holds the namespaces.
    NAMESPACES : list[str]
        Ordered namespace list queried on every chat turn.
    TOP_K : int
        Nearest neighbours fetched per namespace.
    NAMESPACE_QUERY_TIMEOUT : float
        Seconds before a single namespace query counts as failed.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_RAW_DIR: Path = BASE_DIR / "data" / "raw"
    DATA_PROCESSED_DIR: Path = BASE_DIR / "data" / "processed"
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys ───────────────────────────────────────────────────────
    GOOGLE_API_KEY: SecretStr
    HUGGINGFACE_API_KEY: SecretStr | None = None
    PINECONE_API_KEY: SecretStr | None = None

    # ── MongoDB (REQUIRED — no default) ────────────────────────────────
    MONGO_URI: SecretStr
    MONGO_DB_NAME: str = "finchat"

    # ── Embeddings ─────────────────────────────────────────────────────
    EMBEDDING_PROVIDER: Literal["huggingface", "google"] = "huggingface"
    EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
    EMBEDDING_API_URL: str = "https://router.huggingface.co/hf-inference/models/{model_id}/pipeline/feature-extraction"
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0
    GOOGLE_EMBEDDING_MODEL: str = "gemini-embedding-001"

    # ── Chat Model ─────────────────────────────────────────────────────
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.3
    TITLE_MAX_LENGTH: int = 80

    # ── Vector Index ───────────────────────────────────────────────────
    VECTOR_BACKEND: Literal["lancedb", "pinecone"] = "lancedb"
    PINECONE_INDEX_NAME: str = "codebase-rag"
    NAMESPACES: Annotated[list[str], NoDecode] = ["stock-descriptions"]
    TOP_K: int = 5
    NAMESPACE_QUERY_TIMEOUT: float = 10.0

    # ── Ingestion Parameters ───────────────────────────────────────────
    CHUNK_SIZE: int = 500
    CHUNK_OVERLAP: int = 50
    MAX_WORKERS: int = 4

    # ── HTTP ───────────────────────────────────────────────────────────
    AUTH_USER_HEADER: str = "X-User-Id"

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("NAMESPACES", mode="before")
    @classmethod
    def _split_namespaces(cls, v: object) -> object:
        if isinstance(v, str):
            raw = v.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [part.strip() for part in raw.split(",") if part.strip()]
        return v


    @field_validator("NAMESPACES")
    @classmethod
    def _namespaces_valid(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("NAMESPACES must contain at least one namespace")
        return [validate_namespace(ns) for ns in v]


    @field_validator("TOP_K")
    @classmethod
    def _top_k_range(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError(f"TOP_K must be 1–100, got {v}")
        return v


    @field_validator("NAMESPACE_QUERY_TIMEOUT", "EMBEDDING_TIMEOUT_SECONDS")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeouts must be > 0, got {v}")
        return v


    @field_validator("CHUNK_SIZE")
    @classmethod
    def _chunk_size_positive(cls, v: int) -> int:
        if v < 50:
            raise ValueError(f"CHUNK_SIZE must be ≥ 50, got {v}")
        return v


    @field_validator("MAX_WORKERS")
    @classmethod
    def _workers_range(cls, v: int) -> int:
        if not 1 <= v <= 16:
            raise ValueError(f"MAX_WORKERS must be 1–16, got {v}")
        return v


    @model_validator(mode="after")
    def _provider_keys_present(self) -> Settings:
        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            raise ValueError(f"CHUNK_OVERLAP ({self.CHUNK_OVERLAP}) must be smaller than CHUNK_SIZE ({self.CHUNK_SIZE})")
        if self.EMBEDDING_PROVIDER == "huggingface" and self.HUGGINGFACE_API_KEY is None:
            raise ValueError("HUGGINGFACE_API_KEY is required when EMBEDDING_PROVIDER='huggingface'")
        if self.VECTOR_BACKEND == "pinecone" and self.PINECONE_API_KEY is None:
            raise ValueError("PINECONE_API_KEY is required when VECTOR_BACKEND='pinecone'")
        return self

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from finchat.config.settings import settings
settings = Settings()
