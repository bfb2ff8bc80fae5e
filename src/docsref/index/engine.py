"""Multi-field keyword index ranked with BM25+.

Documents are plain mappings with an ``id`` key. Each configured field is
tokenized and scored by its own :class:`rank_bm25.BM25Plus` model; field scores
are combined with per-field boosts. Query terms are expanded to exact, prefix
and fuzzy matches over the vocabulary before scoring. Configured store fields
are kept verbatim and can be read back by id. The whole structure serializes
to a JSON-compatible dict.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from rank_bm25 import BM25Plus

from docsref.utils.text import tokenize

FORMAT_VERSION = 1

BM25_K1 = 1.2
BM25_B = 0.7
BM25_DELTA = 0.5

PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45
MAX_FUZZY_DISTANCE = 6

StoredFilter = Callable[[Mapping[str, Any]], bool]


@dataclass(slots=True)
class SearchMatch:
    id: str
    score: float
    terms: List[str]
    match: Dict[str, List[str]]


@dataclass(slots=True)
class _Accumulator:
    score: float = 0.0
    query_terms: Set[str] = field(default_factory=set)
    match: Dict[str, List[str]] = field(default_factory=dict)


def edit_distance(source: str, target: str, max_distance: int) -> Optional[int]:
    """Levenshtein distance, or ``None`` once it must exceed ``max_distance``."""
    if abs(len(source) - len(target)) > max_distance:
        return None
    previous = list(range(len(target) + 1))
    for i, source_char in enumerate(source, 1):
        current = [i] + [0] * len(target)
        row_min = i
        for j, target_char in enumerate(target, 1):
            cost = 0 if source_char == target_char else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            row_min = min(row_min, current[j])
        if row_min > max_distance:
            return None
        previous = current
    distance = previous[-1]
    return distance if distance <= max_distance else None


def max_edit_distance(term: str, fuzzy: float | int | bool) -> int:
    """Edit distance allowed for ``term``.

    Values below 1 are a fraction of the term length, larger values are absolute.
    """
    if not fuzzy:
        return 0
    if fuzzy < 1:
        distance = int(fuzzy * len(term) + 0.5)
    else:
        distance = int(fuzzy)
    return min(distance, MAX_FUZZY_DISTANCE)


class FullTextIndex:
    """Keyword index over a fixed set of text fields."""

    def __init__(
        self,
        fields: Sequence[str],
        store_fields: Sequence[str] = (),
        *,
        boost: Mapping[str, float] | None = None,
        prefix: bool = True,
        fuzzy: float = 0.0,
    ) -> None:
        if not fields:
            raise ValueError("At least one field must be indexed")
        self.fields = tuple(fields)
        self.store_fields = tuple(store_fields)
        self.boost = dict(boost or {})
        self.prefix = prefix
        self.fuzzy = fuzzy
        # document id -> field -> tokens, in insertion order
        self._tokens: Dict[str, Dict[str, List[str]]] = {}
        self._stored: Dict[str, Dict[str, Any]] = {}
        # term -> field -> document ids
        self._postings: Dict[str, Dict[str, Set[str]]] = {}
        self._vocabulary: Optional[List[str]] = None
        self._scorers: Optional[Dict[str, BM25Plus]] = None
        self._rows: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._tokens

    def ids(self) -> List[str]:
        return list(self._tokens)

    def add(self, document: Mapping[str, Any]) -> None:
        doc_id = document.get("id")
        if doc_id is None:
            raise ValueError("Document has no 'id'")
        doc_id = str(doc_id)
        if doc_id in self._tokens:
            raise ValueError(f"Duplicate document id: {doc_id}")
        tokens = {name: tokenize(str(document.get(name) or "")) for name in self.fields}
        stored = {name: document[name] for name in self.store_fields if name in document}
        self._insert(doc_id, tokens, stored)

    def add_all(self, documents: Iterable[Mapping[str, Any]]) -> None:
        for document in documents:
            self.add(document)

    def _insert(self, doc_id: str, tokens: Dict[str, List[str]], stored: Dict[str, Any]) -> None:
        self._tokens[doc_id] = tokens
        self._stored[doc_id] = stored
        for name, terms in tokens.items():
            for term in terms:
                self._postings.setdefault(term, {}).setdefault(name, set()).add(doc_id)
        self._invalidate()

    def remove(self, doc_id: str) -> None:
        """Remove a document by id. Raises ``KeyError`` if it is not indexed."""
        if doc_id not in self._tokens:
            raise KeyError(f"Document not in index: {doc_id}")
        tokens = self._tokens.pop(doc_id)
        self._stored.pop(doc_id, None)
        for name, terms in tokens.items():
            for term in set(terms):
                by_field = self._postings.get(term)
                if by_field is None:
                    continue
                doc_ids = by_field.get(name)
                if doc_ids is not None:
                    doc_ids.discard(doc_id)
                    if not doc_ids:
                        del by_field[name]
                if not by_field:
                    del self._postings[term]
        self._invalidate()

    def _invalidate(self) -> None:
        self._vocabulary = None
        self._scorers = None

    def get_stored_fields(self, doc_id: str) -> Optional[Dict[str, Any]]:
        if doc_id not in self._tokens:
            return None
        return dict(self._stored.get(doc_id, {}))

    def search(
        self,
        query: str,
        *,
        filter: StoredFilter | None = None,
        boost: Mapping[str, float] | None = None,
        prefix: bool | None = None,
        fuzzy: float | None = None,
    ) -> List[SearchMatch]:
        """Score every document matching at least one query term.

        ``filter`` receives a candidate's stored fields. A document's score is
        multiplied by the number of distinct query terms it matched. Results are
        ordered by score (descending), then id.
        """
        boost = self.boost if boost is None else dict(boost)
        prefix = self.prefix if prefix is None else prefix
        fuzzy = self.fuzzy if fuzzy is None else fuzzy

        query_terms = list(dict.fromkeys(tokenize(query)))
        accumulators: Dict[str, _Accumulator] = {}
        for query_term in query_terms:
            for term, weight in self._expand(query_term, prefix=prefix, fuzzy=fuzzy):
                self._score_term(term, weight, query_term, boost, accumulators)

        matches: List[SearchMatch] = []
        for doc_id, accumulator in accumulators.items():
            if filter is not None and not filter(self._stored.get(doc_id, {})):
                continue
            matches.append(
                SearchMatch(
                    id=doc_id,
                    score=accumulator.score * len(accumulator.query_terms),
                    terms=sorted(accumulator.match),
                    match=accumulator.match,
                )
            )
        matches.sort(key=lambda item: (-item.score, item.id))
        return matches

    def _terms(self) -> List[str]:
        if self._vocabulary is None:
            self._vocabulary = sorted(self._postings)
        return self._vocabulary

    def _field_scorers(self) -> Dict[str, BM25Plus]:
        """One BM25+ model per field, rebuilt after the document set changes."""
        if self._scorers is None:
            doc_ids = list(self._tokens)
            self._rows = {doc_id: row for row, doc_id in enumerate(doc_ids)}
            scorers: Dict[str, BM25Plus] = {}
            for name in self.fields:
                corpus = [self._tokens[doc_id][name] for doc_id in doc_ids]
                # BM25Plus divides by the average field length
                if any(corpus):
                    scorers[name] = BM25Plus(corpus, k1=BM25_K1, b=BM25_B, delta=BM25_DELTA)
            self._scorers = scorers
        return self._scorers

    def _expand(self, query_term: str, *, prefix: bool, fuzzy: float) -> List[Tuple[str, float]]:
        expansions: Dict[str, float] = {}
        length = len(query_term)
        if query_term in self._postings:
            expansions[query_term] = 1.0

        if prefix:
            vocabulary = self._terms()
            for term in vocabulary[bisect_left(vocabulary, query_term) :]:
                if not term.startswith(query_term):
                    break
                if term != query_term:
                    extra = len(term) - length
                    expansions[term] = PREFIX_WEIGHT * length / (length + 0.3 * extra)

        distance_limit = max_edit_distance(query_term, fuzzy)
        if distance_limit > 0:
            for term in self._terms():
                if term in expansions:
                    continue
                distance = edit_distance(query_term, term, distance_limit)
                if distance is not None:
                    expansions[term] = FUZZY_WEIGHT * length / (length + distance)

        return sorted(expansions.items())

    def _score_term(
        self,
        term: str,
        weight: float,
        query_term: str,
        boost: Mapping[str, float],
        accumulators: Dict[str, _Accumulator],
    ) -> None:
        scorers = self._field_scorers()
        by_field = self._postings.get(term, {})
        for name in self.fields:
            field_boost = boost.get(name, 1.0)
            scorer = scorers.get(name)
            doc_ids = by_field.get(name)
            if not field_boost or scorer is None or not doc_ids:
                continue
            ordered = sorted(doc_ids)
            scores = scorer.get_batch_scores([term], [self._rows[doc_id] for doc_id in ordered])
            for doc_id, score in zip(ordered, scores):
                accumulator = accumulators.setdefault(doc_id, _Accumulator())
                accumulator.score += field_boost * weight * float(score)
                accumulator.query_terms.add(query_term)
                accumulator.match.setdefault(term, []).append(name)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible snapshot: field configuration, tokenized corpora, stored fields."""
        doc_ids = list(self._tokens)
        return {
            "version": FORMAT_VERSION,
            "fields": list(self.fields),
            "store_fields": list(self.store_fields),
            "boost": dict(self.boost),
            "search_options": {"prefix": self.prefix, "fuzzy": self.fuzzy},
            "document_ids": doc_ids,
            "corpora": {
                name: [self._tokens[doc_id][name] for doc_id in doc_ids] for name in self.fields
            },
            "stored_fields": {doc_id: self._stored.get(doc_id, {}) for doc_id in doc_ids},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FullTextIndex":
        """Rebuild an index from :meth:`to_dict` output.

        Raises ``ValueError``, ``KeyError`` or ``TypeError`` on malformed or
        inconsistent input.
        """
        version = data.get("version")
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported index format version: {version!r}")
        options = data.get("search_options", {})
        index = cls(
            data["fields"],
            data["store_fields"],
            boost=data["boost"],
            prefix=bool(options.get("prefix", True)),
            fuzzy=options.get("fuzzy", 0.0),
        )

        doc_ids = [str(doc_id) for doc_id in data["document_ids"]]
        if len(set(doc_ids)) != len(doc_ids):
            raise ValueError("Duplicate document ids in index snapshot")
        corpora = data["corpora"]
        if set(corpora) != set(index.fields):
            raise ValueError("Corpus fields do not match field configuration")
        for name in index.fields:
            if len(corpora[name]) != len(doc_ids):
                raise ValueError(f"Corpus for field {name!r} does not match document table")
        stored_fields = data["stored_fields"]
        unknown = set(stored_fields) - set(doc_ids)
        if unknown:
            raise ValueError(f"Stored fields reference unknown documents: {sorted(unknown)[:5]}")

        for row, doc_id in enumerate(doc_ids):
            tokens: Dict[str, List[str]] = {}
            for name in index.fields:
                terms = corpora[name][row]
                if not isinstance(terms, list) or not all(isinstance(term, str) for term in terms):
                    raise TypeError(f"Malformed token list for {doc_id!r} field {name!r}")
                tokens[name] = list(terms)
            index._insert(doc_id, tokens, dict(stored_fields.get(doc_id, {})))
        return index
