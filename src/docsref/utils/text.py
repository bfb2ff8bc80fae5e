"""Text helpers for markdown preprocessing and query handling."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List

_FRONTMATTER = re.compile(r"\A---.*?---", re.DOTALL)
_CAPITAL = re.compile(r"([A-Z])")
_TERM_SEPARATOR = re.compile(r"[\s\W_]+", re.UNICODE)

MAX_QUERY_TERMS = 3
MIN_QUERY_TERM_LENGTH = 3
SNIPPET_LENGTH = 150


def strip_frontmatter(text: str) -> str:
    """Remove a leading YAML frontmatter block and surrounding whitespace."""
    return _FRONTMATTER.sub("", text, count=1).strip()


def title_from_path(path: Path | str) -> str:
    """Derive a display title from a markdown filename.

    ``TypeScriptTooling.md`` becomes ``Type Script Tooling``.
    """
    name = Path(path).name
    if name.endswith(".md"):
        name = name[: -len(".md")]
    return _CAPITAL.sub(r" \1", name).strip()


def tokenize(text: str) -> List[str]:
    """Split text into lowercase index terms."""
    if not text:
        return []
    return [term for term in _TERM_SEPARATOR.split(text.lower()) if term]


def clean_query(query: str) -> str:
    """Drop short words and keep only the first few query terms.

    Bounds the cost of a query and keeps results focused.
    """
    words = [word for word in query.split() if len(word) >= MIN_QUERY_TERM_LENGTH]
    return " ".join(words[:MAX_QUERY_TERMS])


def truncate(text: str, limit: int = SNIPPET_LENGTH) -> str:
    return text[:limit]

