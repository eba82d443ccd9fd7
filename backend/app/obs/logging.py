"""JSON logging with per-request context for the discovery service."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from app.settings import settings

_LOGGER_NAME = "rentals"
_CONTEXT_FIELDS = ("request_id", "route", "user_id", "client_ip")
_EMPTY: Mapping[str, str] = MappingProxyType({})
_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("rentals_log_context", default=_EMPTY)

# Contact details and exact locations never reach the log stream.
_REDACTED_KEYS = ("token", "secret", "authorization", "password", "phone", "whatsapp", "email", "address")
_LOCATION_KEYS = frozenset({"lat", "lng", "latitude", "longitude", "coordinates"})
_MAX_STRING = 256
_MAX_ITEMS = 10

_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Merge request fields into the logging context. Unknown names are ignored."""
	merged = dict(_CONTEXT.get())
	for name in _CONTEXT_FIELDS:
		value = fields.get(name)
		if value is not None:
			merged[name] = value
	return _CONTEXT.set(MappingProxyType(merged))


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _scrub(key: str, value: Any, depth: int = 0) -> Any:
	lowered = key.lower()
	if lowered in _LOCATION_KEYS or any(marker in lowered for marker in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else value[:_MAX_STRING] + "..."
	if depth >= 2:
		return str(value)[:_MAX_STRING]
	if isinstance(value, Mapping):
		items = list(value.items())[:_MAX_ITEMS]
		return {str(k): _scrub(str(k), v, depth + 1) for k, v in items}
	if isinstance(value, (list, tuple, set, frozenset)):
		items = list(value)
		scrubbed = [_scrub(key, item, depth + 1) for item in items[:_MAX_ITEMS]]
		if len(items) > _MAX_ITEMS:
			scrubbed.append(f"+{len(items) - _MAX_ITEMS}")
		return scrubbed
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per line: service identity, request context, then ``extra`` fields."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key not in _STANDARD_ATTRS and key not in payload:
				payload[key] = _scrub(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info records at ``obs_log_sampling_rate_info``. Warnings and above always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
