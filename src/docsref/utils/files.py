"""Utility helpers for working with documentation files."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Collection, Iterator

from docsref.errors import CorpusReadError

LOGGER = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".md"


def iter_markdown_paths(root: Path, *, ignore_dirs: Collection[str] = ()) -> Iterator[Path]:
    """Yield markdown files under ``root`` in sorted order.

    Walks with an explicit stack instead of recursion. Directories whose name is
    in ``ignore_dirs`` are pruned. Failing to list ``root`` itself raises
    :class:`CorpusReadError`; unreadable subdirectories are logged and skipped.
    """
    root = Path(root)
    if not root.is_dir():
        raise CorpusReadError(root, NotADirectoryError(f"not a directory: {root}"))

    stack = [root]
    while stack:
        directory = stack.pop()
        try:
            entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            if directory == root:
                raise CorpusReadError(root, exc) from exc
            LOGGER.error("Failed to list %s: %s", directory, exc)
            continue

        subdirs = []
        for entry in entries:
            if entry.is_dir():
                if entry.name not in ignore_dirs:
                    subdirs.append(entry)
            elif entry.is_file() and entry.name.endswith(MARKDOWN_SUFFIX):
                yield entry
        # reversed so the stack pops subdirectories in name order
        stack.extend(reversed(subdirs))


def encode_document_id(relative_path: str) -> str:
    """Encode a relative document path as a filesystem and URL safe identifier."""
    return base64.urlsafe_b64encode(relative_path.encode("utf-8")).decode("ascii")


def decode_document_id(document_id: str) -> str:
    return base64.urlsafe_b64decode(document_id.encode("ascii")).decode("utf-8")


def relative_posix(path: Path, base: Path) -> str:
    """Return ``path`` relative to ``base`` with forward slashes, or as-is if outside it."""
    try:
        return Path(path).relative_to(base).as_posix()
    except ValueError:
        return Path(path).as_posix()
