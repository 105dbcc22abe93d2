"""
FinChat - Core Data Model
==========================
Value types passed between the embedder, the namespace selector, the
prompt augmenter and the completion streamer.

``ChatMessage`` and ``AugmentedPrompt`` stay plain dicts / lists so they
serialise straight into MongoDB and JSON responses; the retrieval types
are frozen dataclasses because they are compared and reduced.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

# ── Type aliases ───────────────────────────────────────────────────────
QueryVector = tuple[float, ...]
ChatMessage = dict[str, str]
AugmentedPrompt = list[ChatMessage]
MessageRecord = dict[str, object]

PROMPT_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")


def validate_namespace(namespace: str) -> str:
    """Reject namespace names that are not usable as index partition names."""
    if not _NAMESPACE_RE.match(namespace):
        raise ValueError(f"Invalid namespace name: {namespace!r}")
    return namespace


@dataclass(frozen=True)
class Match:
    """One nearest-neighbour hit: the stored chunk text and its similarity."""

    text: str
    score: float


@dataclass(frozen=True)
class NamespaceResult:
    """Top-K matches of one namespace plus their aggregate (mean) score."""

    namespace: str
    score: float
    matches: tuple[Match, ...]

    @classmethod
    def from_matches(cls, namespace: str, matches: list[Match] | tuple[Match, ...]) -> NamespaceResult:
        matches = tuple(matches)
        return cls(namespace=namespace, score=mean_score(matches), matches=matches)

    @property
    def is_empty(self) -> bool:
        return not self.matches

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.matches]


@dataclass(frozen=True)
class NamespaceFailure:
    """A namespace whose query raised; excluded from selection."""

    namespace: str
    reason: str


NamespaceOutcome = NamespaceResult | NamespaceFailure


def mean_score(matches: tuple[Match, ...] | list[Match]) -> float:
    """
    Arithmetic mean of match scores.

    An empty result set scores ``-inf`` so it can never win a max-score
    comparison, and a NaN score is never produced.
    """
    if not matches:
        return -math.inf
    return math.fsum(m.score for m in matches) / len(matches)
