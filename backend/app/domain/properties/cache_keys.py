"""Deterministic cache key derivation for discovery query shapes.

Keys are a pure function of the query parameters: mapping keys are sorted,
sequences are ordered by their canonical form, and numeric strings collapse
onto the number they spell, so two semantically identical shapes built in a
different order (or with ``"12"`` instead of ``12``) share one entry.
"""

from __future__ import annotations

import dataclasses
import json
import math
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel

from app.domain.properties.models import IdentityClass

COORD_PRECISION = 3
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
# Longer numeric strings are hashed verbatim and huge ints as hex: decimal conversion is length-capped.
_MAX_NUMERIC_LENGTH = 30
_MAX_INT_BITS = 128
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_MASK32 = 0xFFFFFFFF


def _normalise_number(value: float | int) -> int | float | str:
	if isinstance(value, float):
		if math.isnan(value) or math.isinf(value):
			return str(value)
		if value.is_integer() and abs(value) < 2**_MAX_INT_BITS:
			return int(value)
		return value
	if value.bit_length() > _MAX_INT_BITS:
		return hex(value)
	return value


def canonicalize(value: Any) -> Any:
	"""Return a JSON-ready structure independent of insertion order and numeric spelling."""

	if value is None or isinstance(value, bool):
		return value
	if isinstance(value, (int, float)):
		return _normalise_number(value)
	if isinstance(value, str):
		text = value.strip()
		if len(text) <= _MAX_NUMERIC_LENGTH and _NUMERIC_RE.match(text):
			return _normalise_number(float(text)) if "." in text else int(text)
		return value
	if isinstance(value, Enum):
		return canonicalize(value.value)
	if isinstance(value, (UUID, datetime, date)):
		return str(value)
	if isinstance(value, BaseModel):
		return canonicalize(value.model_dump(mode="python", exclude_none=True))
	if dataclasses.is_dataclass(value) and not isinstance(value, type):
		return canonicalize(dataclasses.asdict(value))
	if isinstance(value, Mapping):
		return {
			str(key): canonicalize(nested)
			for key, nested in sorted(value.items(), key=lambda item: str(item[0]))
			if nested is not None
		}
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [canonicalize(item) for item in value]
		return sorted(items, key=_serialise)
	return str(value)


def _serialise(value: Any) -> str:
	return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def canonical_string(value: Any) -> str:
	return _serialise(canonicalize(value))


def rolling_hash(text: str, *, multiplier: int = 31) -> int:
	"""32-bit polynomial rolling hash, returned as an unsigned magnitude."""

	acc = 0
	for char in text:
		acc = (acc * multiplier + ord(char)) & _MASK32
	if acc & 0x80000000:
		acc -= 1 << 32
	return abs(acc)


def _base36(number: int) -> str:
	if number == 0:
		return "0"
	digits: list[str] = []
	while number:
		number, rem = divmod(number, 36)
		digits.append(_BASE36[rem])
	return "".join(reversed(digits))


def digest(value: Any) -> str:
	"""Bounded-length digest of the canonical form (two independent 32-bit lanes)."""

	text = canonical_string(value)
	return f"{_base36(rolling_hash(text))}.{_base36(rolling_hash(text, multiplier=131))}"


def round_coordinate(value: float, precision: int = COORD_PRECISION) -> float:
	factor = 10**precision
	return math.floor(float(value) * factor + 0.5) / factor


def rounded_bounds(bounds: Any, precision: int = COORD_PRECISION) -> dict[str, float]:
	"""Round a viewport so near-duplicate viewports (~110m) collapse to one key."""

	if isinstance(bounds, BaseModel):
		data = bounds.model_dump()
	elif dataclasses.is_dataclass(bounds) and not isinstance(bounds, type):
		data = dataclasses.asdict(bounds)
	else:
		data = dict(bounds)
	return {side: round_coordinate(data[side], precision) for side in ("north", "south", "east", "west")}


def zoom_bucket(zoom: float) -> int:
	return int(math.floor(float(zoom)))


def derive(namespace: str, query_shape: Any, *, identity_class: Optional[IdentityClass] = None) -> str:
	"""Build ``{namespace}[{identity}:]{digest}``.

	``identity_class`` carries only ``auth``/``anon``; raw user ids never reach a key.
	"""

	tag = f"{identity_class}:" if identity_class in ("auth", "anon") else ""
	return f"{namespace}{tag}{digest(query_shape)}"


def bounds_shape(bounds: Any, **extra: Any) -> dict[str, Any]:
	return {"bounds": rounded_bounds(bounds), **extra}


def cluster_shape(bounds: Any, zoom: float, filters: Any = None) -> dict[str, Any]:
	return {"bounds": rounded_bounds(bounds), "zoom": zoom_bucket(zoom), "filters": filters}
