"""Tests for the full-text engine."""

from __future__ import annotations

import json

import pytest

from docsref.index.engine import (
    FullTextIndex,
    edit_distance,
    max_edit_distance,
)


def _index(**options) -> FullTextIndex:
    index = FullTextIndex(
        ("title", "content"),
        ("title", "category"),
        boost={"title": 3.0, "content": 1.0},
        **options,
    )
    index.add_all(
        [
            {"id": "1", "title": "Generics", "content": "Generic functions and generic classes", "category": "handbook"},
            {"id": "2", "title": "Classes", "content": "Class members and inheritance", "category": "handbook"},
            {"id": "3", "title": "Modules", "content": "Import and export of declarations", "category": "reference"},
        ]
    )
    return index


class TestEditDistance:
    """Test bounded Levenshtein distance."""

    def test_identical(self) -> None:
        assert edit_distance("class", "class", 1) == 0

    def test_single_edit(self) -> None:
        assert edit_distance("class", "clas", 1) == 1
        assert edit_distance("class", "glass", 1) == 1

    def test_exceeds_limit(self) -> None:
        assert edit_distance("class", "module", 2) is None

    def test_length_gap_short_circuits(self) -> None:
        assert edit_distance("a", "abcdef", 2) is None


class TestMaxEditDistance:
    def test_fraction_of_length(self) -> None:
        assert max_edit_distance("interface", 0.1) == 1
        assert max_edit_distance("type", 0.1) == 0

    def test_disabled(self) -> None:
        assert max_edit_distance("interface", 0) == 0

    def test_absolute_capped(self) -> None:
        assert max_edit_distance("interface", 2) == 2
        assert max_edit_distance("interface", 10) == 6


def test_term_frequency_raises_score() -> None:
    """More occurrences in a field of the same length score higher."""
    index = FullTextIndex(("content",), prefix=False)
    index.add({"id": "once", "content": "cache miss miss miss"})
    index.add({"id": "many", "content": "cache cache cache miss"})
    index.add({"id": "none", "content": "other words entirely here"})
    assert [result.id for result in index.search("cache")] == ["many", "once"]


def test_shorter_field_scores_higher() -> None:
    index = FullTextIndex(("content",), prefix=False)
    index.add({"id": "short", "content": "cache entry"})
    index.add({"id": "long", "content": "cache entry with a much longer body of text"})
    assert [result.id for result in index.search("cache")] == ["short", "long"]


class TestFullTextIndex:
    """Test indexing and querying."""

    def test_add_and_len(self) -> None:
        index = _index()
        assert len(index) == 3
        assert "1" in index
        assert "9" not in index

    def test_duplicate_id_rejected(self) -> None:
        index = _index()
        with pytest.raises(ValueError):
            index.add({"id": "1", "title": "again"})

    def test_missing_id_rejected(self) -> None:
        index = _index()
        with pytest.raises(ValueError):
            index.add({"title": "no id"})

    def test_exact_match(self) -> None:
        results = _index().search("inheritance")
        assert [result.id for result in results] == ["2"]
        assert results[0].match == {"inheritance": ["content"]}

    def test_title_boost(self) -> None:
        """A title hit outranks a content-only hit."""
        index = FullTextIndex(("title", "content"), boost={"title": 3.0, "content": 1.0})
        index.add({"id": "a", "title": "Other", "content": "decorators here"})
        index.add({"id": "b", "title": "Decorators", "content": "something else"})
        assert [result.id for result in index.search("decorators")] == ["b", "a"]

    def test_prefix_match(self) -> None:
        results = _index(prefix=True).search("inherit")
        assert [result.id for result in results] == ["2"]
        assert results[0].terms == ["inheritance"]

    def test_prefix_disabled(self) -> None:
        assert _index(prefix=False).search("inherit") == []

    def test_exact_beats_prefix(self) -> None:
        index = FullTextIndex(("content",), prefix=True)
        index.add({"id": "a", "content": "generics"})
        index.add({"id": "b", "content": "generic"})
        assert [result.id for result in index.search("generic")] == ["b", "a"]

    def test_fuzzy_match(self) -> None:
        """One typo in a long term still matches with fuzziness enabled."""
        results = _index(prefix=False, fuzzy=0.1).search("inheritanse")
        assert [result.id for result in results] == ["2"]

    def test_fuzzy_disabled(self) -> None:
        assert _index(prefix=False, fuzzy=0).search("inheritanse") == []

    def test_filter_uses_stored_fields(self) -> None:
        index = _index()
        results = index.search("and", filter=lambda stored: stored.get("category") == "reference")
        assert [result.id for result in results] == ["3"]

    def test_more_query_terms_score_higher(self) -> None:
        results = _index().search("generic functions")
        assert results[0].id == "1"

    def test_no_match(self) -> None:
        assert _index().search("zzzzzz") == []
        assert _index().search("") == []

    def test_stored_fields(self) -> None:
        index = _index()
        assert index.get_stored_fields("3") == {"title": "Modules", "category": "reference"}
        assert index.get_stored_fields("missing") is None

    def test_remove(self) -> None:
        index = _index()
        index.remove("2")
        assert len(index) == 2
        assert index.search("inheritance") == []
        assert index.get_stored_fields("2") is None

    def test_remove_drops_vocabulary(self) -> None:
        """Terms unique to a removed document no longer expand or match."""
        index = _index(prefix=True)
        index.remove("2")
        assert index.search("inherit") == []
        assert sorted(result.id for result in index.search("and")) == ["1", "3"]

    def test_remove_unknown(self) -> None:
        with pytest.raises(KeyError):
            _index().remove("missing")

    def test_remove_then_add_same_id(self) -> None:
        index = _index()
        index.remove("2")
        index.add({"id": "2", "title": "Classes", "content": "Abstract classes", "category": "handbook"})
        assert [result.id for result in index.search("abstract")] == ["2"]
        assert index.search("inheritance") == []


class TestSerialization:
    """Test JSON snapshots."""

    def test_round_trip_preserves_results(self) -> None:
        index = _index(fuzzy=0.1)
        snapshot = json.loads(json.dumps(index.to_dict()))
        restored = FullTextIndex.from_dict(snapshot)

        for query in ("generic", "class", "import declarations", "inheritanse"):
            original = [(r.id, r.score) for r in index.search(query)]
            assert [(r.id, r.score) for r in restored.search(query)] == original
        assert restored.get_stored_fields("1") == index.get_stored_fields("1")
        assert restored.fields == index.fields
        assert restored.boost == index.boost

    def test_restored_index_accepts_new_documents(self) -> None:
        restored = FullTextIndex.from_dict(json.loads(json.dumps(_index().to_dict())))
        restored.add({"id": "4", "title": "Enums", "content": "Enum members"})
        assert [result.id for result in restored.search("enum")] == ["4"]

    def test_unknown_version(self) -> None:
        data = _index().to_dict()
        data["version"] = 99
        with pytest.raises(ValueError):
            FullTextIndex.from_dict(data)

    def test_malformed(self) -> None:
        with pytest.raises((KeyError, TypeError, ValueError)):
            FullTextIndex.from_dict({"version": 1, "fields": ["title"]})

    def test_snapshot_stores_token_corpora(self) -> None:
        data = _index().to_dict()
        assert data["document_ids"] == ["1", "2", "3"]
        assert data["corpora"]["title"] == [["generics"], ["classes"], ["modules"]]

    def test_stored_fields_for_unknown_document(self) -> None:
        """Inconsistent snapshots are rejected instead of failing at query time."""
        data = json.loads(json.dumps(_index().to_dict()))
        data["stored_fields"]["99"] = {"title": "Ghost"}
        with pytest.raises(ValueError):
            FullTextIndex.from_dict(data)

    def test_corpus_length_mismatch(self) -> None:
        data = json.loads(json.dumps(_index().to_dict()))
        data["corpora"]["content"].append(["ghost"])
        with pytest.raises(ValueError):
            FullTextIndex.from_dict(data)

    def test_duplicate_document_ids(self) -> None:
        data = json.loads(json.dumps(_index().to_dict()))
        data["document_ids"][1] = "1"
        with pytest.raises(ValueError):
            FullTextIndex.from_dict(data)

    def test_non_string_tokens(self) -> None:
        data = json.loads(json.dumps(_index().to_dict()))
        data["corpora"]["title"][0] = [42]
        with pytest.raises(TypeError):
            FullTextIndex.from_dict(data)
