"""
FinChat - Namespace Selector
=============================
Picks the single namespace whose top-K matches are, on average, the most
similar to the query vector.  Context is sourced from that namespace only;
results from different namespaces are never merged.

Algorithm
---------
1. Fan out one ``query(namespace, vector, top_k)`` per configured
   namespace, concurrently, each bounded by ``timeout`` seconds.
2. Tag each outcome: ``NamespaceResult`` on success, ``NamespaceFailure``
   when the query raised (any ``Exception``) or timed out.  Failures are
   excluded instead of aborting the whole selection.
3. Score each result by the arithmetic mean of its match scores.  An
   empty result scores ``-inf`` and is excluded.
4. Walk outcomes in *configured* order (``asyncio.gather`` preserves it,
   whatever the completion order) and keep the first strictly greater
   score, so ties go to the namespace listed first.
5. Nothing left: ``RetrievalError`` if every namespace failed, otherwise
   ``NoContextFoundError``.

Scoring policy
--------------
A plain mean is sensitive to K and to outliers: one perfect match with
four zero matches (mean 0.2) loses to five 0.5 matches, while a namespace
holding a single 1.0 match beats one with five 0.9 matches.  This is the
intended behaviour.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Sequence

from finchat.src.core.errors import NoContextFoundError, RetrievalError
from finchat.src.core.models import NamespaceFailure, NamespaceOutcome, NamespaceResult, QueryVector
from finchat.src.database.vector_store import NamespaceRetriever
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TOP_K = 5


def _unique(namespaces: Sequence[str]) -> list[str]:
    """Drop duplicates, keeping first occurrence (order is the tie-break)."""
    return list(dict.fromkeys(namespaces))


def pick_best(outcomes: Sequence[NamespaceOutcome]) -> NamespaceResult:
    """
    Reduce tagged per-namespace outcomes to the best result.

    Pure function: the order of *outcomes* is the tie-break order.

    Raises
    ------
    RetrievalError
        If every outcome is a failure.
    NoContextFoundError
        If no successful outcome has any match.
    """
    best: NamespaceResult | None = None
    for outcome in outcomes:
        if isinstance(outcome, NamespaceFailure):
            continue
        if outcome.is_empty or not math.isfinite(outcome.score):
            continue
        if best is None or outcome.score > best.score:
            best = outcome

    if best is not None:
        return best

    if outcomes and all(isinstance(o, NamespaceFailure) for o in outcomes):
        reasons = "; ".join(f"{o.namespace}: {o.reason}" for o in outcomes)  # type: ignore[union-attr]
        raise RetrievalError(f"All namespace queries failed ({reasons})")
    raise NoContextFoundError(f"No matches in any of {len(outcomes)} namespace(s)")


class NamespaceSelector:
    """
    Concurrent best-namespace selection over a ``NamespaceRetriever``.

    Parameters
    ----------
    retriever
        Backend answering ``query(namespace, vector, top_k)``.
    namespaces
        Ordered namespace list (injected configuration).
    top_k
        Matches fetched per namespace.
    timeout
        Seconds before one namespace query is treated as failed.
    """

    __slots__ = ("_retriever", "_namespaces", "_top_k", "_timeout")

    def __init__(self, retriever: NamespaceRetriever, namespaces: Sequence[str], top_k: int = DEFAULT_TOP_K, timeout: float | None = None) -> None:
        if top_k < 1:
            raise ValueError(f"top_k must be ≥ 1, got {top_k}")
        self._retriever = retriever
        self._namespaces = _unique(namespaces)
        self._top_k = top_k
        self._timeout = timeout


    @property
    def namespaces(self) -> list[str]:
        return list(self._namespaces)


    async def select_best(self, vector: QueryVector, namespaces: Sequence[str] | None = None) -> NamespaceResult:
        """
        Query every namespace concurrently and return the best-scoring one.

        Parameters
        ----------
        vector
            The embedded user question.
        namespaces
            Optional per-call override of the configured namespace list.

        Raises
        ------
        ValueError
            If there is no namespace to query.
        NoContextFoundError
            If every namespace came back empty.
        RetrievalError
            If every namespace query failed.
        """
        names = _unique(namespaces) if namespaces is not None else self._namespaces
        if not names:
            raise ValueError("At least one namespace is required")

        t_start = time.perf_counter()
        outcomes: list[NamespaceOutcome] = await asyncio.gather(*(self._query_one(ns, vector) for ns in names))
        elapsed_ms = (time.perf_counter() - t_start) * 1000

        for outcome in outcomes:
            if isinstance(outcome, NamespaceFailure):
                logger.warning("[SELECT] Namespace '%s' excluded: %s", outcome.namespace, outcome.reason)
            else:
                logger.info("[SELECT] Namespace '%s': %d match(es), mean score %.4f", outcome.namespace, len(outcome.matches), outcome.score)

        best = pick_best(outcomes)
        logger.info("[SELECT] Best namespace: '%s' (score=%.4f) from %d queried in %.1fms", best.namespace, best.score, len(names), elapsed_ms)
        return best


    async def _query_one(self, namespace: str, vector: QueryVector) -> NamespaceOutcome:
        try:
            matches = await asyncio.wait_for(self._retriever.query(namespace, vector, self._top_k), timeout=self._timeout)
        except RetrievalError as exc:
            return NamespaceFailure(namespace=namespace, reason=str(exc))
        except asyncio.TimeoutError:
            return NamespaceFailure(namespace=namespace, reason=f"timed out after {self._timeout}s")
        except Exception as exc:
            logger.exception("[SELECT] Unexpected error querying namespace '%s'", namespace)
            return NamespaceFailure(namespace=namespace, reason=f"{type(exc).__name__}: {exc}")
        return NamespaceResult.from_matches(namespace, matches[: self._top_k])
