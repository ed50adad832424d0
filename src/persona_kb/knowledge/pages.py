"""Heuristic source-page estimation for extracted text.

Text extracted from PDFs often keeps the printed page numbers as lines of their
own. Those lines are collected as markers and a fragment's page is guessed
from its relative position in the document. The result is advisory only.
"""

import math

from pydantic import BaseModel

MAX_MARKER_DIGITS = 3
MIN_PAGE_NUMBER = 1
MAX_PAGE_NUMBER = 1000


class PageMarker(BaseModel):
    """A line that looks like a printed page number."""

    page_number: int
    order: int
    line_number: int


def locate_pages(text: str) -> list[PageMarker]:
    """Scan the text line by line for bare page numbers.

    A line counts as a marker when, once stripped, it is made only of digits,
    has at most three of them, and its value lies in [1, 1000].

    Args:
        text: Full extracted document text.

    Returns:
        Markers in the order they were encountered.
    """
    markers = []
    for line_number, line in enumerate(text.splitlines()):
        candidate = line.strip()
        if not candidate.isascii() or not candidate.isdigit():
            continue
        if len(candidate) > MAX_MARKER_DIGITS:
            continue
        value = int(candidate)
        if MIN_PAGE_NUMBER <= value <= MAX_PAGE_NUMBER:
            markers.append(
                PageMarker(page_number=value, order=len(markers), line_number=line_number)
            )
    return markers


def estimate_page(
    start_char: int, text_length: int, markers: list[PageMarker]
) -> int | None:
    """Estimate the page a fragment starting at `start_char` came from.

    The fragment's relative position is projected onto the marker list:
    ``ceil(start_char / text_length * len(markers))`` clamped to
    ``[1, len(markers)]`` selects the (1-based) marker whose value is returned.

    Args:
        start_char: Offset of the fragment in the document text.
        text_length: Length of the document text.
        markers: Markers from `locate_pages`.

    Returns:
        Estimated page number, or None when no markers were found.
    """
    if not markers or text_length <= 0:
        return None

    relative_position = start_char / text_length
    estimated_index = math.ceil(relative_position * len(markers))
    estimated_index = min(max(estimated_index, 1), len(markers))
    return markers[estimated_index - 1].page_number
