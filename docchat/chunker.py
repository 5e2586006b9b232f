"""
Text Chunker Module

Splits cleaned page text into overlapping chunks for embedding:
- Notation protection: LaTeX-style math is swapped for placeholders so that
  sentence and paragraph splitting never cuts through a formula
- Segmentation: paragraphs, falling back to sentences, falling back to the whole page
- Greedy packing with a minimum floor, a target size and a hard maximum
- Character overlap between consecutive chunks of a page
"""
import re
from typing import Any, Dict, List, Tuple
from uuid import uuid4

from .data_models import Chunk

# Tried in priority order at every candidate position.
NOTATION_PATTERNS = [
    re.compile(r'\$\$[^$]+\$\$'),
    re.compile(r'\$[^$]+\$'),
    re.compile(r'\[[^\]]*\\[a-zA-Z]+[^\]]*\]'),
    re.compile(r'\([^)]*\\[a-zA-Z]+[^)]*\)'),
]
NOTATION_OPENERS = frozenset('$[(')
PLACEHOLDER_PATTERN = re.compile(r'__MATH_(\d+)__')

PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')
SENTENCE_PATTERN = re.compile(r'[^.!?]*[.!?]+|[^.!?]+\Z')
WHITESPACE = re.compile(r'\s')

PARAGRAPH_JOINER = "\n\n"
SENTENCE_JOINER = " "

# Prefix length used when the full chunk cannot be located verbatim.
LOCATE_PREFIX = 64


class ProtectedText:
    """Page text with notation spans replaced by `__MATH_n__` placeholders."""

    def __init__(self, text: str, spans: List[str]):
        self.text = text
        self.spans = spans

    @classmethod
    def protect(cls, text: str) -> 'ProtectedText':
        """
        Single left-to-right scan over the text.

        At each `$`, `[` or `(` the notation patterns are tried in priority
        order and the first match is taken whole; scanning resumes after it,
        so anything nested inside a protected span is left alone. Unbalanced
        delimiters never match and pass through as literal text.
        """
        spans: List[str] = []
        parts: List[str] = []
        literal_start = 0
        pos = 0
        while pos < len(text):
            if text[pos] not in NOTATION_OPENERS:
                pos += 1
                continue
            match = None
            for pattern in NOTATION_PATTERNS:
                match = pattern.match(text, pos)
                if match:
                    break
            if match is None:
                pos += 1
                continue
            parts.append(text[literal_start:pos])
            parts.append(f"__MATH_{len(spans)}__")
            spans.append(match.group(0))
            pos = match.end()
            literal_start = pos
        parts.append(text[literal_start:])
        return cls("".join(parts), spans)

    def restore(self, text: str) -> str:
        """Substitute every placeholder in `text` back with its original notation."""
        def _original(match: re.Match) -> str:
            index = int(match.group(1))
            if index < len(self.spans):
                return self.spans[index]
            return match.group(0)
        return PLACEHOLDER_PATTERN.sub(_original, text)


def split_sentences(text: str) -> List[str]:
    """Split at `.`, `!` or `?`; a trailing unterminated fragment is kept."""
    return [s.strip() for s in SENTENCE_PATTERN.findall(text) if s.strip()]


class TextChunker:
    """
    Splits page text into chunks that never cut a protected notation span.

    Lengths are measured on the protected text, so a long formula counts as
    its short placeholder and always travels whole inside one chunk.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        min_chunk_size: int = 400,
        max_chunk_size: int = 1500,
        overlap: int = 200
    ):
        """
        Initialize the chunker.

        Args:
            chunk_size: Target size of each chunk in characters
            min_chunk_size: A chunk is only closed once its buffer reaches this size
            max_chunk_size: Segments longer than this are re-split into sentences
            overlap: Number of trailing characters repeated at the start of the next chunk
        """
        if not 0 < min_chunk_size <= chunk_size <= max_chunk_size:
            raise ValueError(
                f"Expected 0 < min_chunk_size <= chunk_size <= max_chunk_size, "
                f"got {min_chunk_size}, {chunk_size}, {max_chunk_size}"
            )
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(f"overlap must be in [0, chunk_size), got {overlap}")

        self.chunk_size = chunk_size
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap

    def chunk(
        self,
        page_text: str,
        page_number: int,
        start_chunk_index: int,
        document_id: str
    ) -> List[Chunk]:
        """
        Chunk one page of cleaned text.

        Args:
            page_text: Cleaned page text
            page_number: 1-based page number
            start_chunk_index: chunk_index assigned to the first emitted chunk
            document_id: Owning document

        Returns:
            List of Chunk objects (empty for a blank page)
        """
        if not page_text or not page_text.strip():
            return []

        protected = ProtectedText.protect(page_text)
        pieces = self._pack(self._segment(protected.text))

        chunks = []
        search_from = 0
        previous_end = 0
        for offset, (body, overlap_text) in enumerate(pieces):
            content = protected.restore(body)
            overlap_length = len(protected.restore(overlap_text))
            start, end = self._locate(page_text, content, search_from, previous_end)
            chunks.append(Chunk(
                id=uuid4().hex,
                document_id=document_id,
                page_number=page_number,
                chunk_index=start_chunk_index + offset,
                content=content,
                start_index=start,
                end_index=end,
                overlap_length=overlap_length,
            ))
            search_from = start + 1
            previous_end = end

        return chunks

    def _segment(self, text: str) -> List[Tuple[str, str]]:
        """Return (segment, joiner) pairs; the joiner precedes the segment inside a buffer."""
        paragraphs = [p.strip() for p in PARAGRAPH_SPLIT.split(text) if p.strip()]
        if len(paragraphs) > 1:
            segments = []
            for paragraph in paragraphs:
                if len(paragraph) > self.max_chunk_size:
                    sentences = self._sentences(paragraph)
                    segments.append((sentences[0], PARAGRAPH_JOINER))
                    segments.extend((s, SENTENCE_JOINER) for s in sentences[1:])
                else:
                    segments.append((paragraph, PARAGRAPH_JOINER))
            return segments

        sentences = self._sentences(text.strip())
        return [(s, SENTENCE_JOINER) for s in sentences]

    def _sentences(self, text: str) -> List[str]:
        sentences = split_sentences(text) or [text]
        result = []
        for sentence in sentences:
            if len(sentence) > self.max_chunk_size:
                result.extend(self._split_words(sentence))
            else:
                result.append(sentence)
        return result

    def _split_words(self, sentence: str) -> List[str]:
        """Last resort for a sentence with no terminator: cut at whitespace near chunk_size."""
        pieces = []
        current: List[str] = []
        length = 0
        for word in sentence.split():
            if current and length + 1 + len(word) > self.chunk_size:
                pieces.append(" ".join(current))
                current, length = [], 0
            length += len(word) + (1 if current else 0)
            current.append(word)
        if current:
            pieces.append(" ".join(current))
        return pieces

    def _pack(self, segments: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
        """Greedily pack segments; returns (protected body, protected overlap prefix) pairs."""
        pieces = []
        buffer = ""
        overlap_text = ""
        for segment, joiner in segments:
            if buffer:
                projected = len(buffer) + len(joiner) + len(segment)
                if projected > self.chunk_size and len(buffer) >= self.min_chunk_size:
                    pieces.append((buffer, overlap_text))
                    overlap_text = self._overlap_tail(buffer)
                    buffer = overlap_text
            buffer = f"{buffer}{joiner}{segment}" if buffer else segment
        if buffer.strip():
            pieces.append((buffer, overlap_text))
        return pieces

    def _overlap_tail(self, buffer: str) -> str:
        """Trailing `overlap` characters, moved so they start on a word and outside any placeholder."""
        if self.overlap == 0:
            return ""
        start = max(0, len(buffer) - self.overlap)
        for match in PLACEHOLDER_PATTERN.finditer(buffer):
            if match.start() < start < match.end():
                start = match.start()
                break
        if start > 0 and not buffer[start - 1].isspace():
            boundary = WHITESPACE.search(buffer, start)
            if boundary is None:
                return ""
            start = boundary.end()
        return buffer[start:].lstrip()

    @staticmethod
    def _locate(page_text: str, content: str, search_from: int, previous_end: int) -> Tuple[int, int]:
        """Best-effort offsets of a chunk inside the page text."""
        start = page_text.find(content, search_from)
        if start == -1:
            start = page_text.find(content[:LOCATE_PREFIX], search_from)
        if start == -1:
            start = min(previous_end, len(page_text))
        return start, min(start + len(content), len(page_text))

    def get_statistics(self, chunks: List[Chunk]) -> Dict[str, Any]:
        """
        Get statistics about chunks.

        Args:
            chunks: List of chunks

        Returns:
            Dictionary with statistics
        """
        if not chunks:
            return {
                'total_chunks': 0,
                'avg_chunk_size': 0,
                'min_chunk_size': 0,
                'max_chunk_size': 0,
                'pages': 0,
            }

        lengths = [len(c) for c in chunks]
        return {
            'total_chunks': len(chunks),
            'avg_chunk_size': sum(lengths) / len(lengths),
            'min_chunk_size': min(lengths),
            'max_chunk_size': max(lengths),
            'pages': len({c.page_number for c in chunks}),
        }


def chunk_pages(
    chunker: TextChunker,
    pages,
    document_id: str,
    start_chunk_index: int = 0
) -> List[Chunk]:
    """Chunk a sequence of PageText objects with chunk_index continuing across pages."""
    chunks: List[Chunk] = []
    next_index = start_chunk_index
    for page in pages:
        page_chunks = chunker.chunk(page.content, page.page_number, next_index, document_id)
        chunks.extend(page_chunks)
        next_index += len(page_chunks)
    return chunks
