import pytest

from app.domain.properties.cursor import decode_cursor, encode_cursor, next_cursor


@pytest.mark.parametrize("offset", [0, 1, 24, 48, 10**12])
def test_cursor_round_trip(offset):
	assert decode_cursor(encode_cursor(offset)) == offset


@pytest.mark.parametrize("value", [None, "", "abc", "-5", "12.5", "1e3", "٣", "9" * 101])
def test_invalid_cursor_restarts_at_zero(value):
	assert decode_cursor(value) == 0


def test_next_cursor_only_for_full_pages():
	assert next_cursor(0, 24, 24) == "24"
	assert next_cursor(24, 24, 24) == "48"
	assert next_cursor(48, 24, 7) is None
	assert next_cursor(0, 24, 0) is None
