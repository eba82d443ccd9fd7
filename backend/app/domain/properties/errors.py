"""Error taxonomy for property discovery operations."""

from __future__ import annotations


class DiscoveryError(Exception):
	"""Base class for errors surfaced to callers of the discovery procedures."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class QueryValidationError(DiscoveryError):
	"""Raised when a query violates a range or ordering invariant. Never retried."""

	def __init__(self, detail: str, *, status_code: int = 422) -> None:
		super().__init__(detail, status_code=status_code)


class PropertyNotFound(DiscoveryError):
	def __init__(self, property_id: str) -> None:
		super().__init__("property_not_found", status_code=404)
		self.property_id = property_id


class UpstreamUnavailable(DiscoveryError):
	"""Raised when the catalog store fails. The detail never leaks the cause."""

	def __init__(self, operation: str = "search") -> None:
		super().__init__("search_temporarily_unavailable", status_code=503)
		self.operation = operation


class CacheDegraded(Exception):
	"""Internal to the result cache; always converted into a miss or no-op."""
