"""Markdown loading and section chunking.

Uses markdown-it-py to turn a document into a flat stream of top-level blocks,
then groups the blocks into chunks at heading boundaries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Mapping, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token

from docsref.config import DEFAULT_IGNORED_DIRS
from docsref.errors import CorpusReadError
from docsref.models import Chunk, DocumentMetadata, ProcessedDocument, RawDocument
from docsref.utils.files import encode_document_id, iter_markdown_paths, relative_posix
from docsref.utils.text import strip_frontmatter, title_from_path

LOGGER = logging.getLogger(__name__)

KEY_TERMS = ("interface", "type", "class", "function", "example", "usage")

_BLOCK_KINDS = {
    "heading_open": "heading",
    "paragraph_open": "paragraph",
    "bullet_list_open": "list",
    "ordered_list_open": "list",
    "blockquote_open": "blockquote",
    "table_open": "table",
    "fence": "code",
    "code_block": "code",
    "html_block": "html",
    "hr": "hr",
}


@dataclass(frozen=True, slots=True)
class Block:
    """A top-level markdown block."""

    kind: str
    text: str


def _span_text(tokens: Iterable[Token]) -> str:
    parts = []
    for token in tokens:
        if token.type == "inline":
            parts.append(token.content)
        elif token.type in ("fence", "code_block"):
            parts.append(token.content.rstrip("\n"))
    return "\n".join(part for part in parts if part)


def lex_blocks(markdown: str, parser: MarkdownIt | None = None) -> List[Block]:
    """Parse markdown into its top-level blocks."""
    parser = parser or create_parser()
    tokens = parser.parse(markdown)
    blocks: List[Block] = []
    position = 0
    while position < len(tokens):
        token = tokens[position]
        kind = _BLOCK_KINDS.get(token.type, token.type.removesuffix("_open"))
        if token.nesting == 1:
            end = position + 1
            while not (tokens[end].level == token.level and tokens[end].nesting == -1):
                end += 1
            blocks.append(Block(kind, _span_text(tokens[position : end + 1])))
            position = end + 1
            continue
        if token.type in ("fence", "code_block"):
            blocks.append(Block(kind, token.content.rstrip("\n")))
        else:
            blocks.append(Block(kind, token.content.strip()))
        position += 1
    return blocks


def create_parser() -> MarkdownIt:
    return MarkdownIt("commonmark").enable("table")


def calculate_importance(section: str, blocks: Sequence[Block]) -> float:
    """Score a section from its heading and the kinds of blocks it contains."""
    importance = 1.0
    lowered = section.lower()
    if any(term in lowered for term in KEY_TERMS):
        importance += 1.0
    if any(block.kind == "code" for block in blocks):
        importance += 1.0
    if any(block.kind == "list" for block in blocks):
        importance += 0.5
    return importance


def chunk_blocks(blocks: Iterable[Block]) -> List[Chunk]:
    """Group blocks into chunks, one per heading section.

    Content before the first heading becomes a chunk only if there is any.
    Each heading yields a chunk even when its section is empty.
    """
    chunks: List[Chunk] = []
    section = ""
    has_heading = False
    buffer: List[Block] = []

    def flush() -> None:
        if buffer or has_heading:
            content = "\n".join(block.text for block in buffer if block.text)
            chunks.append(Chunk(content, section, calculate_importance(section, buffer)))

    for block in blocks:
        if block.kind == "heading":
            flush()
            section = block.text
            has_heading = True
            buffer = []
        else:
            buffer.append(block)
    flush()
    return chunks


def build_document(raw: RawDocument, parser: MarkdownIt | None = None) -> ProcessedDocument:
    """Turn a raw markdown file into a processed, chunked document."""
    content = strip_frontmatter(raw.text)
    chunks = chunk_blocks(lex_blocks(content, parser)) if content else []
    if content and not chunks:
        # e.g. only link reference definitions, which produce no blocks
        chunks = [Chunk(content, "", 1.0)]
    return ProcessedDocument(
        id=encode_document_id(raw.relative_path),
        title=title_from_path(raw.path),
        content=content,
        chunks=chunks,
        metadata=DocumentMetadata(
            category=raw.category,
            path=raw.relative_path,
            last_modified=raw.last_modified,
        ),
    )


class MarkdownProcessor:
    """Reads markdown trees and converts them into processed documents."""

    def __init__(
        self,
        base_path: Path,
        *,
        ignore_dirs: Collection[str] = DEFAULT_IGNORED_DIRS,
        concurrency: int = 16,
    ) -> None:
        self.base_path = Path(base_path)
        self.ignore_dirs = frozenset(ignore_dirs)
        self.concurrency = max(concurrency, 1)
        self._parser = create_parser()

    def _read(self, path: Path, category: str) -> RawDocument:
        text = path.read_text(encoding="utf-8")
        stat = path.stat()
        return RawDocument(
            path=path,
            relative_path=relative_posix(path, self.base_path),
            category=category,
            text=text,
            last_modified=stat.st_mtime,
        )

    async def process_file(self, path: Path, category: str) -> ProcessedDocument:
        raw = await asyncio.to_thread(self._read, Path(path), category)
        return build_document(raw, self._parser)

    async def process_directory(self, dir_path: Path, category: str) -> List[ProcessedDocument]:
        """Process every markdown file under ``dir_path``.

        Raises :class:`CorpusReadError` if the directory itself cannot be read.
        Individual files that fail are logged and left out.
        """
        paths = await asyncio.to_thread(
            lambda: sorted(iter_markdown_paths(Path(dir_path), ignore_dirs=self.ignore_dirs))
        )
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(path: Path) -> ProcessedDocument | None:
            async with semaphore:
                try:
                    return await self.process_file(path, category)
                except Exception as exc:
                    LOGGER.error("Failed to process %s: %s", path, exc)
                    return None

        documents = await asyncio.gather(*(guarded(path) for path in paths))
        return [document for document in documents if document is not None]

    async def process_all_docs(self, category_paths: Mapping[str, Sequence[str]]) -> List[ProcessedDocument]:
        """Process every configured category, skipping paths that cannot be read."""
        all_docs: List[ProcessedDocument] = []
        for category, paths in category_paths.items():
            for sub_path in paths:
                full_path = self.base_path / sub_path
                try:
                    documents = await self.process_directory(full_path, category)
                except CorpusReadError as exc:
                    LOGGER.error("Error processing %s: %s", full_path, exc)
                    continue
                LOGGER.debug("Processed %d documents from %s", len(documents), full_path)
                all_docs.extend(documents)
        return all_docs


def count_chunks(documents: Iterable[ProcessedDocument]) -> Dict[str, int]:
    """Chunk counts per category."""
    counts: Dict[str, int] = {}
    for document in documents:
        category = document.metadata.category
        counts[category] = counts.get(category, 0) + len(document.chunks)
    return counts
