# infrastructure/text_splitter.py
"""
Separator-aware text splitting with overlap.

Windows of `chunk_size` characters are cut at the last paragraph break, line
break or sentence terminator (ASCII and CJK) inside the window, as long as the
resulting chunk is not shorter than `min_ratio * chunk_size`. Without a usable
separator the cut falls back to the last whitespace, then to a hard cut.
"""
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from config import settings
from core.domain import Chunk
from core.enums import SplitStrategy
from core.exceptions import InvalidInputError

logger = logging.getLogger(settings.LOGGER_NAME)

DEFAULT_SEPARATORS = ["\n\n", "\n", "。", "！", "？", ";", "；", ".", "!", "?"]

_PARAGRAPH_RE = re.compile(r'\n\s*\n')
_SENTENCE_RE = re.compile(r'[^。！？.!?]*[。！？.!?]+')
_SIZE_BUCKETS = [(0, 100), (100, 200), (200, 300), (300, 400), (400, None)]


class TextSplitter:
    """Splits one document's text into ordered, overlapping chunks."""

    def __init__(
        self,
        chunk_size: int = settings.CHUNK_SIZE,
        chunk_overlap: int = settings.CHUNK_OVERLAP,
        separators: Optional[List[str]] = None,
        min_ratio: float = settings.CHUNK_MIN_RATIO
    ):
        if chunk_size <= 0:
            raise InvalidInputError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise InvalidInputError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap}"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators) if separators else list(DEFAULT_SEPARATORS)
        self.min_ratio = min_ratio

    # ============= Fixed-size splitting =============

    def split_text(
        self,
        text: str,
        document_id: str = "",
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[Chunk]:
        """Split `text` into overlapping chunks with offsets into the original text."""
        if not text or not text.strip():
            return []

        metadata = metadata or {}
        text_length = len(text)

        if text_length <= self.chunk_size:
            return [self._make_chunk(
                document_id, 0, text.strip(), 0, text_length,
                {**metadata, "chunk_size": text_length, "is_complete": True, "has_overlap": False}
            )]

        chunks: List[Chunk] = []
        start = 0
        index = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            chunk_start, chunk_end = self._find_split(text, start, end)
            raw = text[chunk_start:chunk_end]
            stripped = raw.strip()

            if stripped:
                chunks.append(self._make_chunk(
                    document_id, index, stripped, chunk_start, chunk_end,
                    {
                        **metadata,
                        "chunk_size": len(raw),
                        "is_complete": chunk_end >= text_length,
                        "has_overlap": chunk_start > 0 and self.chunk_overlap > 0,
                    }
                ))
                index += 1

            next_start = max(chunk_end - self.chunk_overlap, chunk_start + 1)
            if next_start >= text_length or next_start <= start or chunk_end >= text_length:
                break
            start = next_start

        logger.debug(f"[SPLITTER] Split {text_length} chars into {len(chunks)} chunks")
        return chunks

    def _find_split(self, text: str, start: int, end: int) -> Tuple[int, int]:
        """Return (start, end) of the best chunk inside the window [start, end)."""
        if end >= len(text):
            return start, len(text)

        min_length = self.chunk_size * self.min_ratio
        window = text[start:end]

        for separator in self.separators:
            pos = window.rfind(separator)
            if pos <= 0:
                continue
            split_end = start + pos + len(separator)
            if len(text[start:split_end].strip()) >= min_length:
                return start, split_end

        space_pos = self._find_last_space(text, start, end)
        if space_pos > start:
            return start, space_pos

        # Hard cut; may split a word
        return start, end

    @staticmethod
    def _find_last_space(text: str, start: int, end: int) -> int:
        for i in range(end - 1, start, -1):
            if text[i].isspace():
                return i
        return -1

    @staticmethod
    def _make_chunk(document_id: str, index: int, text: str, start: int, end: int,
                    metadata: Dict[str, Any]) -> Chunk:
        return Chunk(
            id=uuid.uuid4().hex,
            document_id=document_id,
            index=index,
            text=text,
            start_offset=start,
            end_offset=end,
            metadata=metadata
        )

    # ============= Alternative strategies =============

    def split_by_paragraphs(self, text: str, document_id: str = "",
                            metadata: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """One chunk per blank-line separated paragraph."""
        return self._split_by_pattern(text, _PARAGRAPH_RE, "paragraph", document_id, metadata, split=True)

    def split_by_sentences(self, text: str, document_id: str = "",
                           metadata: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """One chunk per sentence (ASCII and CJK terminators). Trailing text without a terminator is dropped."""
        return self._split_by_pattern(text, _SENTENCE_RE, "sentence", document_id, metadata, split=False)

    def _split_by_pattern(self, text: str, pattern: re.Pattern, kind: str, document_id: str,
                          metadata: Optional[Dict[str, Any]], split: bool) -> List[Chunk]:
        if not text or not text.strip():
            return []
        metadata = metadata or {}

        spans: List[Tuple[int, int]] = []
        if split:
            pos = 0
            for match in pattern.finditer(text):
                spans.append((pos, match.start()))
                pos = match.end()
            spans.append((pos, len(text)))
        else:
            spans = [m.span() for m in pattern.finditer(text)]

        chunks: List[Chunk] = []
        for start, end in spans:
            segment = text[start:end]
            stripped = segment.strip()
            if not stripped:
                continue
            lead = len(segment) - len(segment.lstrip())
            chunks.append(self._make_chunk(
                document_id, len(chunks), stripped, start + lead, start + lead + len(stripped),
                {**metadata, "type": kind, "length": len(stripped)}
            ))
        return chunks

    def smart_split(self, text: str, document_id: str = "",
                    metadata: Optional[Dict[str, Any]] = None,
                    strategy: SplitStrategy = SplitStrategy.AUTO) -> List[Chunk]:
        strategy = SplitStrategy(strategy)
        if strategy == SplitStrategy.PARAGRAPH:
            return self.split_by_paragraphs(text, document_id, metadata)
        if strategy == SplitStrategy.SENTENCE:
            return self.split_by_sentences(text, document_id, metadata)
        if strategy == SplitStrategy.FIXED:
            return self.split_text(text, document_id, metadata)
        return self._auto_split(text, document_id, metadata)

    def _auto_split(self, text: str, document_id: str,
                    metadata: Optional[Dict[str, Any]]) -> List[Chunk]:
        if not text or not text.strip():
            return []
        text_length = len(text)
        paragraph_count = len(_PARAGRAPH_RE.findall(text)) + 1
        avg_paragraph = text_length / paragraph_count

        if self.chunk_size * 0.7 <= avg_paragraph <= self.chunk_size * 1.3:
            return self.split_by_paragraphs(text, document_id, metadata)
        if text_length < self.chunk_size * 2:
            return self.split_by_sentences(text, document_id, metadata)
        return self.split_text(text, document_id, metadata)

    # ============= Post-processing =============

    def merge_small_chunks(self, chunks: List[Chunk], min_size: Optional[int] = None) -> List[Chunk]:
        """Merge undersized chunks into their successor while the result fits in chunk_size."""
        if min_size is None:
            min_size = int(self.chunk_size * self.min_ratio)

        merged: List[Chunk] = []
        current: Optional[Chunk] = None

        for chunk in chunks:
            if current is None:
                current = chunk
                continue
            if len(current.text) < min_size and len(current.text) + len(chunk.text) <= self.chunk_size:
                text = current.text + "\n" + chunk.text
                current = Chunk(
                    id=current.id,
                    document_id=current.document_id,
                    index=current.index,
                    text=text,
                    start_offset=current.start_offset,
                    end_offset=chunk.end_offset,
                    metadata={**current.metadata, "chunk_size": len(text)},
                    document_name=current.document_name
                )
            else:
                merged.append(current)
                current = chunk

        if current is not None:
            merged.append(current)

        return [
            Chunk(
                id=c.id, document_id=c.document_id, index=i, text=c.text,
                start_offset=c.start_offset, end_offset=c.end_offset,
                metadata=c.metadata, document_name=c.document_name
            )
            for i, c in enumerate(merged)
        ]

    @staticmethod
    def get_statistics(chunks: List[Chunk]) -> Dict[str, Any]:
        if not chunks:
            return {
                "total_chunks": 0,
                "total_length": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "size_distribution": []
            }

        lengths = [len(c.text) for c in chunks]
        total = sum(lengths)
        distribution = []
        for low, high in _SIZE_BUCKETS:
            count = sum(1 for n in lengths if n >= low and (high is None or n < high))
            distribution.append({"min": low, "max": high, "count": count})

        return {
            "total_chunks": len(chunks),
            "total_length": total,
            "avg_chunk_size": round(total / len(chunks)),
            "min_chunk_size": min(lengths),
            "max_chunk_size": max(lengths),
            "size_distribution": distribution
        }
