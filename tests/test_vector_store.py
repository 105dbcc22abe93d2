"""
Tests for the LanceDB namespace store against a real on-disk database
in a temporary directory.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from finchat.src.core.errors import RetrievalError
from finchat.src.core.selector import NamespaceSelector
from finchat.src.database.vector_store import LanceNamespaceStore, build_records, make_record_id, validate_namespace

TEXTS = ["Apple designs consumer electronics.", "Microsoft builds enterprise software.", "Exxon explores for oil and gas."]
VECTORS = [(1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.7, 0.7, 0.0)]


def _metadatas(source="companies.txt", n=3):
    return [{"source_file": source, "chunk_index": i} for i in range(n)]


@pytest.fixture
def store(tmp_path):
    return LanceNamespaceStore(db_path=str(tmp_path / "lancedb"))


def _seed(store, namespace="stock-descriptions"):
    return asyncio.run(store.add_documents(namespace, TEXTS, VECTORS, _metadatas()))


class TestLanceNamespaceStore:
    """Tests for ``LanceNamespaceStore``."""

    def test_add_and_count(self, store):
        assert _seed(store) == 3
        assert store.count("stock-descriptions") == 3
        assert store.list_namespaces() == ["stock-descriptions"]

    def test_query_most_similar_first(self, store):
        _seed(store)
        matches = asyncio.run(store.query("stock-descriptions", (1.0, 0.0, 0.0), top_k=2))

        assert len(matches) == 2
        assert matches[0].text == TEXTS[0]
        assert matches[0].score == pytest.approx(1.0, abs=1e-5)
        assert matches[0].score > matches[1].score

    def test_scores_are_cosine_similarity(self, store):
        _seed(store)
        matches = asyncio.run(store.query("stock-descriptions", (0.0, 0.0, 1.0), top_k=3))
        assert all(m.score == pytest.approx(0.0, abs=1e-5) for m in matches)

    def test_namespaces_isolated(self, store):
        _seed(store, "stock-descriptions")
        asyncio.run(store.add_documents("earnings-calls", ["Q3 revenue grew 8%."], [(0.0, 1.0, 0.0)], _metadatas("q3.txt", 1)))

        matches = asyncio.run(store.query("earnings-calls", (1.0, 0.0, 0.0), top_k=5))
        assert [m.text for m in matches] == ["Q3 revenue grew 8%."]

    def test_unknown_namespace_returns_empty(self, store):
        assert asyncio.run(store.query("never-written", (1.0, 0.0, 0.0), top_k=5)) == []
        assert store.count("never-written") == 0

    def test_reingest_overwrites(self, store):
        """Deterministic ids: ingesting the same file twice does not duplicate rows."""
        _seed(store)
        _seed(store)
        assert store.count("stock-descriptions") == 3

    def test_drop_namespace(self, store):
        _seed(store)
        store.drop_namespace("stock-descriptions")
        assert store.count("stock-descriptions") == 0
        store.drop_namespace("stock-descriptions")

    def test_backend_failure_wrapped(self, store):
        _seed(store)
        with patch.object(LanceNamespaceStore, "_search", side_effect=OSError("disk gone")):
            with pytest.raises(RetrievalError) as excinfo:
                asyncio.run(store.query("stock-descriptions", (1.0, 0.0, 0.0), top_k=5))
        assert excinfo.value.namespace == "stock-descriptions"

    def test_invalid_namespace_query_wrapped(self, store):
        with pytest.raises(RetrievalError) as excinfo:
            asyncio.run(store.query("earnings calls", (1.0, 0.0, 0.0), top_k=5))
        assert excinfo.value.namespace == "earnings calls"

    def test_selector_skips_invalid_namespace(self, store):
        _seed(store, "good")
        selector = NamespaceSelector(store, ["good", "earnings calls"], top_k=2)
        best = asyncio.run(selector.select_best((1.0, 0.0, 0.0)))
        assert best.namespace == "good"

    def test_list_namespaces_sorted(self, store):
        _seed(store, "stock-descriptions")
        _seed(store, "earnings-calls")
        assert store.list_namespaces() == ["earnings-calls", "stock-descriptions"]

    def test_list_namespaces_follows_pages(self, store):
        store.db = Mock()
        store.db.list_tables.side_effect = [SimpleNamespace(tables=["b-ns", "a-ns"], page_token="next"), SimpleNamespace(tables=["c-ns"], page_token=None)]

        assert store.list_namespaces() == ["a-ns", "b-ns", "c-ns"]
        assert [c.kwargs["page_token"] for c in store.db.list_tables.call_args_list] == [None, "next"]

    def test_empty_add_is_noop(self, store):
        assert asyncio.run(store.add_documents("stock-descriptions", [], [], [])) == 0
        assert store.list_namespaces() == []


class TestRecords:
    """Tests for record building shared by both backends."""

    def test_record_id_deterministic(self):
        assert make_record_id("ns", "a.txt", 0) == make_record_id("ns", "a.txt", 0)
        assert make_record_id("ns", "a.txt", 0) != make_record_id("other", "a.txt", 0)

    def test_build_records(self):
        records = build_records("ns", ["t"], [(1, 2)], [{"source_file": "a.txt", "chunk_index": 4}])
        assert records == [{"id": make_record_id("ns", "a.txt", 4), "vector": [1.0, 2.0], "text": "t", "source_file": "a.txt", "chunk_index": 4}]

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="Length mismatch"):
            build_records("ns", ["a", "b"], [(1.0,)], [{}])

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="dimensionality"):
            build_records("ns", ["a", "b"], [(1.0,), (1.0, 2.0)], [{}, {}])

    @pytest.mark.parametrize("name", ["", "../etc", "has space", "-leading-dash"])
    def test_invalid_namespace(self, name):
        with pytest.raises(ValueError):
            validate_namespace(name)

    def test_valid_namespace(self):
        assert validate_namespace("stock-descriptions") == "stock-descriptions"
