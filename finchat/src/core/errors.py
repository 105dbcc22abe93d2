"""Exception hierarchy for the FinChat retrieval and chat pipeline."""

from __future__ import annotations


class FinChatError(Exception):
    """Base exception for all FinChat errors."""


class EmbeddingServiceError(FinChatError):
    """The embedding service failed or returned a payload that is not a vector."""


class RetrievalError(FinChatError):
    """A vector-index query failed for one namespace."""

    def __init__(self, message: str, namespace: str | None = None) -> None:
        super().__init__(message)
        self.namespace = namespace


class NoContextFoundError(FinChatError):
    """Every queried namespace came back empty (or failed)."""


class AuthorizationError(FinChatError):
    """The caller is not allowed to act on the requested chat."""


class NoUserMessageError(FinChatError, ValueError):
    """The conversation holds no user message to answer."""
