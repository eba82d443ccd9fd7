"""Offset cursor helpers for the filtered search strategy."""

from __future__ import annotations

from typing import Optional

MAX_CURSOR_LENGTH = 100


def encode_cursor(offset: int) -> str:
	"""Encode a non-negative row offset as an opaque cursor string."""

	return str(max(0, int(offset)))


def decode_cursor(value: Optional[str]) -> int:
	"""Decode a cursor back to its offset.

	Stale or tampered cursors restart pagination at offset 0 instead of failing
	the request.
	"""

	if not value or len(value) > MAX_CURSOR_LENGTH:
		return 0
	text = value.strip()
	if not text.isascii() or not text.isdigit():
		return 0
	return int(text)


def next_cursor(offset: int, limit: int, returned: int) -> Optional[str]:
	"""A full page implies more rows may follow; a short page ends the result set."""

	if limit <= 0 or returned < limit:
		return None
	return encode_cursor(offset + limit)
