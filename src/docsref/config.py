"""Application configuration defaults and documentation sources."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Tuple

from docsref.errors import InvalidSearchArgumentsError

DEFAULT_IGNORED_DIRS: Tuple[str, ...] = ("templates", "diagrams", "scripts")

_SEMVER = re.compile(r"^\d+\.\d+\.\d+$")

RequestValidator = Callable[[Any], None]


def validate_node_version(request: Any) -> None:
    """Accept ``latest`` or a plain ``X.Y.Z`` version."""
    version = getattr(request, "version", None) or "latest"
    if version != "latest" and not _SEMVER.match(version):
        raise InvalidSearchArgumentsError(
            'Invalid version format. Must be "latest" or follow semver (e.g., "18.0.0")',
            details={"version": version},
        )


@dataclass(slots=True)
class CacheConfig:
    max_memory_entries: int = 1000
    max_disk_size: int = 100 * 1024 * 1024
    memory_ttl: float = 60 * 60
    disk_ttl: float = 60 * 60 * 24


@dataclass(slots=True)
class DocsSource:
    """A documentation corpus and the categories it can be filtered by."""

    name: str
    label: str
    docs_dir: Path
    category_paths: Dict[str, List[str]]
    categories: Tuple[str, ...] = ()
    validators: Tuple[RequestValidator, ...] = ()
    persist_results: bool = False

    def __post_init__(self) -> None:
        self.docs_dir = Path(self.docs_dir)
        if not self.categories:
            self.categories = tuple(self.category_paths)

    def resolve_docs_dir(self, docs_root: Path) -> Path:
        if self.docs_dir.is_absolute():
            return self.docs_dir
        return Path(docs_root) / self.docs_dir


@dataclass(slots=True)
class AppConfig:
    docs_root: Path | None = None
    cache_dir: Path = Path("cache")
    cache: CacheConfig = field(default_factory=CacheConfig)
    concurrency: int = 16
    ignore_dirs: Sequence[str] = DEFAULT_IGNORED_DIRS

    def __post_init__(self) -> None:
        if self.docs_root is None:
            self.docs_root = Path.cwd()
        self.docs_root = Path(self.docs_root)
        self.cache_dir = Path(self.cache_dir)

    def resolve_cache_dir(self) -> Path:
        if self.cache_dir.is_absolute():
            return self.cache_dir
        return Path(self.docs_root) / self.cache_dir

    def index_path(self, source: DocsSource) -> Path:
        return self.resolve_cache_dir() / "indexes" / f"{source.name}.json"

    def query_cache_dir(self) -> Path:
        return self.resolve_cache_dir() / "queries"


TYPESCRIPT_SOURCE = DocsSource(
    name="typescript",
    label="TypeScript",
    docs_dir=Path("ts-docs/copy/en"),
    category_paths={
        "handbook": ["handbook-v2", "handbook-v1"],
        "reference": ["reference"],
        "release-notes": ["release-notes"],
        "declaration-files": ["declaration-files"],
        "javascript": ["javascript"],
        "configuration": ["project-config"],
        "project-structure": ["modules-reference"],
        "tooling": ["tutorials"],
        "best-practices": ["get-started"],
    },
)

DISCORD_SOURCE = DocsSource(
    name="discord",
    label="Discord.js",
    docs_dir=Path("discord-docs/guide"),
    category_paths={
        "preparations": ["preparations"],
        "creating-your-bot": ["creating-your-bot"],
        "slash-commands": ["slash-commands"],
        "interactions": ["interactions"],
        "message-components": ["message-components"],
        "popular-topics": ["popular-topics"],
        "voice": ["voice"],
        "additional-features": ["additional-features"],
        "improving-dev-environment": ["improving-dev-environment"],
        "miscellaneous": ["miscellaneous"],
    },
)

NODE_SOURCE = DocsSource(
    name="node",
    label="Node.js",
    docs_dir=Path("node-docs/copy"),
    category_paths={
        "api": ["api"],
        "contributing": ["contributing"],
    },
    validators=(validate_node_version,),
)

DEFAULT_SOURCES: Tuple[DocsSource, ...] = (TYPESCRIPT_SOURCE, NODE_SOURCE, DISCORD_SOURCE)
