"""Documentation search services and their registry."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping

from pydantic import BaseModel, ValidationError, field_validator

from docsref.cache import TwoTierCache
from docsref.config import DEFAULT_SOURCES, AppConfig, DocsSource
from docsref.errors import InvalidSearchArgumentsError, SearchError, UnknownSourceError
from docsref.index.builder import SearchIndexBuilder
from docsref.ingestion.markdown_loader import MarkdownProcessor, count_chunks
from docsref.models import SearchHit

LOGGER = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: str
    category: str | None = None
    version: str | None = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Empty query")
        return value


@dataclass(slots=True)
class SearchResult:
    id: str
    score: float
    title: str
    category: str
    path: str
    url: str
    snippet: str
    section: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SearchResult":
        return cls(**payload)


class DocsSearchService:
    """Keyword search over one documentation source.

    Loads the persisted index on first use, rebuilding it from the corpus when
    there is none, and caches query results.
    """

    def __init__(
        self,
        source: DocsSource,
        builder: SearchIndexBuilder,
        processor: MarkdownProcessor,
        cache: TwoTierCache,
    ) -> None:
        self.source = source
        self.builder = builder
        self.processor = processor
        self.cache = cache
        self.chunk_counts: Dict[str, int] = {}
        self._ready = False
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def ready(self) -> bool:
        return self._ready

    async def initialize(self) -> bool:
        """Load the persisted index or build a new one.

        Returns ``True`` when an existing index was loaded.
        """
        if await self.builder.load_index():
            LOGGER.info("%s search index loaded (%d entries)", self.source.label, len(self.builder))
            self._ready = True
            return True
        LOGGER.info("Building new %s search index...", self.source.label)
        await self.reindex()
        LOGGER.info("%s search index built successfully", self.source.label)
        return False

    async def ensure_initialized(self) -> None:
        if self._ready:
            return
        async with self._init_lock:
            if not self._ready:
                await self.initialize()

    async def reindex(self) -> int:
        documents = await self.processor.process_all_docs(self.source.category_paths)
        self.chunk_counts = count_chunks(documents)
        for category, chunks in sorted(self.chunk_counts.items()):
            LOGGER.debug("%s %s: %d chunks", self.source.label, category, chunks)
        count = await self.builder.build_index(documents)
        self._ready = True
        return count

    def validate(
        self, query: str, category: str | None = None, version: str | None = None
    ) -> SearchRequest:
        """Check search arguments before any I/O happens."""
        try:
            request = SearchRequest(query=query, category=category, version=version)
        except ValidationError as exc:
            raise InvalidSearchArgumentsError(
                f"Invalid arguments for {self.source.label} docs search",
                details={
                    "expected": "{ query: string, category?: string }",
                    "errors": [error["msg"] for error in exc.errors()],
                },
            ) from exc

        if request.category is not None and request.category not in self.source.categories:
            raise InvalidSearchArgumentsError(
                f"Unknown {self.source.label} category: {request.category}",
                details={"validCategories": list(self.source.categories)},
            )
        for validator in self.source.validators:
            validator(request)
        return request

    def cache_key(self, request: SearchRequest) -> str:
        return f"{self.source.name}:{json.dumps(request.model_dump(), sort_keys=True)}"

    async def search(
        self, query: str, category: str | None = None, version: str | None = None
    ) -> List[SearchResult]:
        """Search the source. An empty list means nothing matched."""
        request = self.validate(query, category, version)
        key = self.cache_key(request)
        cached = await self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Cache hit for %s", key)
            return [SearchResult.from_dict(item) for item in cached]

        await self.ensure_initialized()
        hits = self.builder.search(request.query, category=request.category)
        results = [self._to_result(hit) for hit in hits]
        await self.cache.set(
            key,
            [asdict(result) for result in results],
            memory_only=not self.source.persist_results,
        )
        return results

    def _to_result(self, hit: SearchHit) -> SearchResult:
        if not hit.path:
            raise SearchError("Document path not found in search index", details={"id": hit.id})
        location = (self.processor.base_path / hit.path).resolve()
        return SearchResult(
            id=hit.id,
            score=hit.score,
            title=hit.title or "Untitled",
            category=hit.category or "uncategorized",
            path=hit.path,
            url=location.as_uri(),
            snippet=hit.match,
            section=hit.section,
        )


class ServiceRegistry:
    """Named documentation search services."""

    def __init__(self) -> None:
        self._services: Dict[str, DocsSearchService] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __iter__(self) -> Iterator[DocsSearchService]:
        return iter(self._services.values())

    def register(self, name: str, service: DocsSearchService) -> None:
        self._services[name] = service
        LOGGER.debug("Registered documentation service: %s", name)

    def get(self, name: str) -> DocsSearchService:
        service = self._services.get(name)
        if service is None:
            raise UnknownSourceError(name, list(self._services))
        return service

    def names(self) -> List[str]:
        return list(self._services)

    async def initialize_all(self, *, rebuild: bool = False) -> Dict[str, BaseException]:
        """Initialize (or rebuild) every service independently.

        Returns the failures keyed by source name; other sources are unaffected.
        """
        names = self.names()
        outcomes = await asyncio.gather(
            *(
                self._services[name].reindex() if rebuild else self._services[name].ensure_initialized()
                for name in names
            ),
            return_exceptions=True,
        )
        failures: Dict[str, BaseException] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                LOGGER.error("Failed to initialize %s docs service: %s", name, outcome)
                failures[name] = outcome
        return failures


def build_service(source: DocsSource, config: AppConfig, cache: TwoTierCache) -> DocsSearchService:
    processor = MarkdownProcessor(
        source.resolve_docs_dir(config.docs_root),
        ignore_dirs=config.ignore_dirs,
        concurrency=config.concurrency,
    )
    builder = SearchIndexBuilder(config.index_path(source))
    return DocsSearchService(source, builder, processor, cache)


def build_registry(
    config: AppConfig,
    sources: Iterable[DocsSource] = DEFAULT_SOURCES,
    *,
    cache: TwoTierCache | None = None,
) -> ServiceRegistry:
    """Wire one shared cache and one service per source."""
    cache = cache or TwoTierCache(config.query_cache_dir(), config.cache)
    registry = ServiceRegistry()
    for source in sources:
        registry.register(source.name, build_service(source, config, cache))
    return registry
