"""Search index construction, persistence and querying."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from docsref.errors import IndexPersistenceError
from docsref.index.engine import FullTextIndex
from docsref.models import IndexedEntry, ProcessedDocument, SearchHit
from docsref.utils.text import clean_query, truncate

LOGGER = logging.getLogger(__name__)

INDEX_FIELDS = ("title", "content")
STORE_FIELDS = ("title", "path", "category", "section", "importance")
FIELD_BOOST = {"title": 3.0, "content": 1.0}
FUZZINESS = 0.1
MAX_RESULTS = 5


def create_index() -> FullTextIndex:
    return FullTextIndex(
        INDEX_FIELDS,
        STORE_FIELDS,
        boost=FIELD_BOOST,
        prefix=True,
        fuzzy=FUZZINESS,
    )


def format_match(match: Mapping[str, Sequence[str]]) -> str:
    """Summarize matched terms and the fields they were found in."""
    parts = [
        f"{term} ({', '.join(dict.fromkeys(fields))})" for term, fields in sorted(match.items())
    ]
    return truncate("; ".join(parts))


def parent_document_id(chunk_id: str) -> str:
    return chunk_id.rsplit("_", 1)[0]


def _entries(documents: Iterable[ProcessedDocument]) -> List[Dict[str, Any]]:
    """Index entries for every chunk that has content.

    Empty heading sections would match on the document title alone, so they are
    left out; chunk ids keep their position in the document.
    """
    return [
        entry.as_fields()
        for document in documents
        for entry in IndexedEntry.from_document(document)
        if entry.content.strip()
    ]


def _add_entries(index: FullTextIndex, entries: Iterable[Mapping[str, Any]]) -> int:
    added = 0
    for entry in entries:
        if entry["id"] in index:
            LOGGER.warning("Skipping duplicate index entry %s (%s)", entry["id"], entry["path"])
            continue
        index.add(entry)
        added += 1
    return added


class SearchIndexBuilder:
    """Owns one full-text index and its on-disk snapshot."""

    def __init__(self, index_path: Path, *, max_results: int = MAX_RESULTS) -> None:
        self.index_path = Path(index_path)
        self.max_results = max_results
        self._index = create_index()

    def __len__(self) -> int:
        return len(self._index)

    @property
    def index(self) -> FullTextIndex:
        return self._index

    async def build_index(self, documents: Sequence[ProcessedDocument]) -> int:
        """Index every chunk of ``documents`` from scratch and persist the result."""
        index = create_index()
        added = _add_entries(index, _entries(documents))
        self._index = index
        LOGGER.info("Indexed %d chunks from %d documents", added, len(documents))
        await self.save_index()
        return added

    async def save_index(self) -> None:
        """Write the index to disk.

        Raises :class:`IndexPersistenceError` if the snapshot cannot be written.
        """
        payload = self._index.to_dict()
        try:
            await asyncio.to_thread(self._write, payload)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Error saving search index to %s: %s", self.index_path, exc)
            raise IndexPersistenceError("save", self.index_path, exc) from exc
        LOGGER.debug("Saved search index to %s", self.index_path)

    def _write(self, payload: Mapping[str, Any]) -> None:
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.index_path.with_name(self.index_path.name + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, separators=(",", ":"))
        os.replace(temp_path, self.index_path)

    def _read(self) -> Any:
        with self.index_path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    async def load_index(self) -> bool:
        """Replace the in-memory index with the snapshot on disk.

        Returns ``False`` if there is no usable snapshot, so the caller rebuilds.
        """
        try:
            data = await asyncio.to_thread(self._read)
            index = FullTextIndex.from_dict(data)
        except FileNotFoundError:
            LOGGER.info("No search index found at %s", self.index_path)
            return False
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.warning("Error loading search index from %s: %s", self.index_path, exc)
            return False

        missing = set(STORE_FIELDS) - set(index.store_fields)
        if index.fields != INDEX_FIELDS or missing:
            LOGGER.warning("Search index at %s has an outdated schema", self.index_path)
            return False

        self._index = index
        LOGGER.debug("Loaded %d index entries from %s", len(index), self.index_path)
        return True

    def search(self, query: str, *, category: str | None = None) -> List[SearchHit]:
        """Run a keyword query, optionally restricted to one category.

        Only the first few meaningful words of ``query`` are used. Hits are
        ranked by relevance, ties broken by chunk importance.
        """
        cleaned = clean_query(query)
        if not cleaned:
            return []

        index = self._index
        predicate = None
        if category:
            predicate = lambda stored: stored.get("category") == category  # noqa: E731

        hits: List[SearchHit] = []
        for match in index.search(cleaned, filter=predicate, boost=FIELD_BOOST, fuzzy=FUZZINESS):
            stored = index.get_stored_fields(match.id) or {}
            hits.append(
                SearchHit(
                    id=match.id,
                    score=match.score,
                    title=stored.get("title", ""),
                    category=stored.get("category", ""),
                    path=stored.get("path", ""),
                    section=stored.get("section", ""),
                    importance=float(stored.get("importance", 0.0)),
                    match=format_match(match.match),
                    terms=match.terms,
                )
            )

        hits.sort(key=lambda hit: (-hit.score, -hit.importance, hit.id))
        return hits[: self.max_results]

    def get_stored_fields(self, doc_id: str) -> Dict[str, Any]:
        return self._index.get_stored_fields(doc_id) or {}

    async def update_docs(self, documents: Sequence[ProcessedDocument]) -> int:
        """Replace the entries of ``documents`` and persist the index.

        All previous chunks of each document are removed first, so a document
        that shrank leaves no stale chunks behind.
        """
        index = self._index
        entries = _entries(documents)
        document_ids = {document.id for document in documents}
        stale = {doc_id for doc_id in index.ids() if parent_document_id(doc_id) in document_ids}

        for doc_id in sorted(stale):
            try:
                index.remove(doc_id)
            except KeyError as exc:
                LOGGER.warning("Error removing document %s: %s", doc_id, exc)

        added = _add_entries(index, entries)
        LOGGER.info("Updated %d documents (%d removed, %d added)", len(documents), len(stale), added)
        await self.save_index()
        return added
