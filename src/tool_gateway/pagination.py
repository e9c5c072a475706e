"""Cursor pagination.

A cursor is the base64 encoding of a decimal offset into the discovery
result. Pages are computed statelessly; if the discovery result changes
between two requests, entries may be skipped or repeated across pages.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Generic, Optional, Sequence, TypeVar

from tool_gateway.errors import InvalidCursorError

DEFAULT_PAGE_SIZE = 50

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results and the cursor of the next one."""
    items: list[T]
    next_cursor: Optional[str]


def encode_cursor(offset: int) -> str:
    """Encode an offset as an opaque cursor."""
    return base64.b64encode(str(offset).encode("ascii")).decode("ascii")


def decode_cursor(cursor: str) -> int:
    """
    Decode a cursor back into an offset.

    Raises:
        InvalidCursorError: If the cursor is not base64 of a non-negative
            decimal integer
    """
    try:
        raw = base64.b64decode(cursor.encode("ascii"), validate=True).decode("ascii")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError(cursor) from e

    if not raw.isdigit():
        raise InvalidCursorError(cursor)
    return int(raw)


def paginate(
    items: Sequence[T],
    cursor: Optional[str] = None,
    page_size: int = DEFAULT_PAGE_SIZE
) -> Page[T]:
    """
    Slice one page out of ``items``.

    Args:
        items: Ordered results
        cursor: Cursor from the previous page, or None for the first page
        page_size: Maximum items per page

    Returns:
        The page; offsets past the end give an empty page
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    offset = decode_cursor(cursor) if cursor else 0
    end = offset + page_size
    next_cursor = encode_cursor(end) if end < len(items) else None

    return Page(items=list(items[offset:end]), next_cursor=next_cursor)
