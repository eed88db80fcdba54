"""Document chunking strategies."""

import re
from typing import Optional

from .base import BaseChunker
from .document import Chunk, Document

_PARAGRAPH = re.compile(r"(?:(?!\n[ \t]*\n).)+", re.DOTALL)
_SOFT_BREAKS = "。！？；，、.!?;,"


def _is_wide(char: str) -> bool:
    # CJK text has no spaces; any character boundary is a valid break
    return ord(char) >= 0x2E80


class FixedSizeChunker(BaseChunker):
    """Chunk documents into fixed-size pieces with optional overlap."""

    def __init__(self, chunk_size: int = 800, overlap: int = 80):
        if overlap >= chunk_size:
            raise ValueError("Overlap must be less than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, document: Document) -> list[Chunk]:
        text = document.content
        chunks = []
        start, position = 0, 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            chunks.append(Chunk(
                id=f"{document.id}_chunk_{position}", document_id=document.id, content=text[start:end],
                position=position, start_index=start, end_index=end,
                metadata={"chunker": "fixed_size"},
            ))
            start = end - self.overlap if end < len(text) else end
            position += 1
        return chunks


class SmartChunker(BaseChunker):
    """Paragraph-first chunker with overlapping windows for long paragraphs.

    Paragraphs (separated by blank lines) that fit in ``chunk_size`` become
    one chunk each. Longer paragraphs are cut into windows of at most
    ``chunk_size`` characters overlapping by ``overlap`` characters, breaking
    at whitespace or punctuation where possible. A single token longer than
    the window is emitted whole rather than cut or dropped.
    """

    def __init__(self, chunk_size: int = 800, overlap: int = 80):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("Overlap must be less than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, document: Document) -> list[Chunk]:
        spans: list[tuple[int, int]] = []
        for match in _PARAGRAPH.finditer(document.content):
            start, end = self._strip_span(document.content, match.start(), match.end())
            if start >= end:
                continue
            if end - start <= self.chunk_size:
                spans.append((start, end))
            else:
                spans.extend(self._split_paragraph(document.content, start, end))

        return [
            Chunk(
                id=f"{document.id}_chunk_{position}",
                document_id=document.id,
                content=document.content[start:end],
                position=position,
                start_index=start,
                end_index=end,
                metadata={"chunker": "smart"},
            )
            for position, (start, end) in enumerate(spans)
        ]

    @staticmethod
    def _strip_span(text: str, start: int, end: int) -> tuple[int, int]:
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        return start, end

    def _split_paragraph(self, text: str, start: int, end: int) -> list[tuple[int, int]]:
        spans = []
        cursor = start
        while cursor < end:
            window_end = min(cursor + self.chunk_size, end)
            overlap = True
            if window_end < end:
                cut = self._find_break(text, cursor, window_end)
                if cut is None:
                    # One unbreakable token: keep it whole
                    cut = window_end
                    while cut < end and not text[cut].isspace():
                        cut += 1
                    overlap = False
                window_end = cut

            piece_start, piece_end = self._strip_span(text, cursor, window_end)
            if piece_start < piece_end:
                spans.append((piece_start, piece_end))
            if window_end >= end:
                break

            if overlap:
                next_cursor = max(window_end - self.overlap, cursor + 1)
                cursor = self._align_start(text, next_cursor, window_end)
            else:
                cursor = window_end
        return spans

    def _find_break(self, text: str, start: int, end: int) -> Optional[int]:
        """Last position in (start, end] where a chunk may end."""
        # A break right after the window is a clean whitespace cut
        if text[end].isspace():
            return end
        for i in range(end - 1, start, -1):
            if text[i].isspace():
                return i
        for i in range(end - 1, start, -1):
            if text[i] in _SOFT_BREAKS:
                return i + 1
        if any(_is_wide(c) for c in text[start:end]):
            return end
        return None

    @staticmethod
    def _align_start(text: str, start: int, limit: int) -> int:
        """Move an overlap start forward so it does not begin mid-word."""
        if start <= 0 or text[start - 1].isspace() or _is_wide(text[start]):
            return start
        for i in range(start, limit):
            if text[i].isspace():
                return i + 1
        return start
