"""Exceptions raised by docsref components."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional


class DocsrefError(Exception):
    """Base exception for all docsref errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class CorpusReadError(DocsrefError):
    """Raised when a corpus directory cannot be traversed at all."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None) -> None:
        self.path = Path(path)
        self.cause = cause
        message = f"Cannot read documentation directory {self.path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, details={"path": str(self.path)})


class IndexPersistenceError(DocsrefError):
    """Raised when the search index cannot be written to disk."""

    def __init__(self, operation: str, path: Path, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.path = Path(path)
        self.cause = cause
        message = f"Failed to {operation} search index at {self.path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, details={"operation": operation, "path": str(self.path)})


class InvalidSearchArgumentsError(DocsrefError):
    """Raised when a search request is rejected before touching the index."""


class UnknownSourceError(DocsrefError):
    """Raised when a documentation source is not registered."""

    def __init__(self, name: str, available: Optional[list[str]] = None) -> None:
        self.name = name
        super().__init__(
            f"Documentation source not found: {name}",
            details={"available": sorted(available or [])},
        )


class SearchError(DocsrefError):
    """Raised when a search hit cannot be resolved to a document."""
