"""Text chunking strategies for knowledge ingestion.

Every strategy is a pure function ``(text, params) -> list[TextFragment]`` and
records the character offsets of each fragment within the original text, which
the page locator relies on.
"""

import re
from enum import Enum
from typing import Callable

from pydantic import BaseModel

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# A run of non-terminators followed by terminators (or end of text)
SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")


class ChunkingStrategy(str, Enum):
    FIXED_SIZE = "fixed-size"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    SEMANTIC = "semantic"


class ChunkingParams(BaseModel):
    chunk_size: int = 1000
    overlap: int = 200
    max_chunks: int = 50


class TextFragment(BaseModel):
    """A fragment of source text. `end_char` is exclusive."""

    text: str
    start_char: int
    end_char: int
    chunk_index: int

    @property
    def length(self) -> int:
        return len(self.text)


def _trimmed_span(text: str, start: int, end: int) -> tuple[int, int]:
    """Shrink [start, end) so it excludes leading and trailing whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def fixed_size_chunking(
    text: str, chunk_size: int = 1000, overlap: int = 200
) -> list[TextFragment]:
    """Slide a window of `chunk_size` characters over the text.

    Each window starts `overlap` characters before the previous one ended.
    Overlap is clamped to ``[0, chunk_size - 1]`` and the loop stops as soon as
    the next window would not start further right. Fragment text is trimmed but
    offsets are those of the window, so consecutive spans cover the whole text.

    Args:
        text: The text to chunk.
        chunk_size: Window size in characters.
        overlap: Characters shared between consecutive windows.

    Returns:
        List of fragments in text order.
    """
    if not text or chunk_size <= 0:
        return []

    safe_overlap = max(0, min(overlap, chunk_size - 1))

    fragments = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        piece = text[start:end].strip()
        if piece:
            fragments.append(
                TextFragment(
                    text=piece,
                    start_char=start,
                    end_char=end,
                    chunk_index=len(fragments),
                )
            )

        next_start = end - safe_overlap
        if next_start <= start:
            break
        start = next_start

    return fragments


def sentence_chunking(
    text: str, max_chunk_size: int = 1000, max_chunks: int = 50
) -> list[TextFragment]:
    """Pack consecutive sentences into fragments of at most `max_chunk_size` characters.

    Sentences end at ``.``, ``!`` or ``?`` and keep their punctuation. A sentence
    longer than `max_chunk_size` becomes a fragment on its own.

    Args:
        text: The text to chunk.
        max_chunk_size: Maximum characters per fragment.
        max_chunks: Stop once this many fragments have been produced.

    Returns:
        List of fragments, each a verbatim span of the original text.
    """
    if not text or max_chunks <= 0:
        return []

    fragments: list[TextFragment] = []
    buffer_start: int | None = None
    buffer_end = 0

    def flush() -> None:
        fragments.append(
            TextFragment(
                text=text[buffer_start:buffer_end],
                start_char=buffer_start,
                end_char=buffer_end,
                chunk_index=len(fragments),
            )
        )

    for match in SENTENCE.finditer(text):
        start, end = _trimmed_span(text, match.start(), match.end())
        if start == end:
            continue

        if buffer_start is None:
            buffer_start, buffer_end = start, end
        elif end - buffer_start > max_chunk_size:
            flush()
            if len(fragments) >= max_chunks:
                return fragments
            buffer_start, buffer_end = start, end
        else:
            buffer_end = end

    if buffer_start is not None and len(fragments) < max_chunks:
        flush()

    return fragments


def paragraph_chunking(text: str, max_chunks: int = 50) -> list[TextFragment]:
    """Treat each blank-line separated paragraph as one fragment.

    Args:
        text: The text to chunk.
        max_chunks: Maximum number of paragraphs to keep.

    Returns:
        List of fragments, one per non-empty paragraph.
    """
    if not text or max_chunks <= 0:
        return []

    boundaries = [0]
    for match in PARAGRAPH_BREAK.finditer(text):
        boundaries.extend([match.start(), match.end()])
    boundaries.append(len(text))

    fragments = []
    for seg_start, seg_end in zip(boundaries[::2], boundaries[1::2]):
        start, end = _trimmed_span(text, seg_start, seg_end)
        if start == end:
            continue
        fragments.append(
            TextFragment(
                text=text[start:end],
                start_char=start,
                end_char=end,
                chunk_index=len(fragments),
            )
        )
        if len(fragments) >= max_chunks:
            break

    return fragments


def semantic_chunking(text: str, max_chunks: int = 50) -> list[TextFragment]:
    """Paragraph boundaries used as a structural stand-in for semantic ones.

    No NLP segmentation is performed; this is `paragraph_chunking` under
    another name so stored documents keep the strategy the caller asked for.
    """
    return paragraph_chunking(text, max_chunks)


_STRATEGIES: dict[ChunkingStrategy, Callable[[str, ChunkingParams], list[TextFragment]]] = {
    ChunkingStrategy.FIXED_SIZE: lambda text, p: fixed_size_chunking(
        text, p.chunk_size, p.overlap
    ),
    ChunkingStrategy.SENTENCE: lambda text, p: sentence_chunking(
        text, p.chunk_size, p.max_chunks
    ),
    ChunkingStrategy.PARAGRAPH: lambda text, p: paragraph_chunking(text, p.max_chunks),
    ChunkingStrategy.SEMANTIC: lambda text, p: semantic_chunking(text, p.max_chunks),
}


def chunk_text(
    text: str,
    strategy: ChunkingStrategy | str = ChunkingStrategy.FIXED_SIZE,
    params: ChunkingParams | None = None,
) -> list[TextFragment]:
    """Split text with the given strategy and cap the result at `max_chunks`.

    Args:
        text: The text to chunk.
        strategy: One of the ChunkingStrategy values.
        params: Size, overlap and fragment cap. Defaults apply when omitted.

    Returns:
        Fragments with contiguous chunk indices starting at zero.
    """
    params = params or ChunkingParams()
    fragments = _STRATEGIES[ChunkingStrategy(strategy)](text, params)
    fragments = fragments[: max(params.max_chunks, 0)]

    return [
        fragment
        if fragment.chunk_index == i
        else fragment.model_copy(update={"chunk_index": i})
        for i, fragment in enumerate(fragments)
    ]
