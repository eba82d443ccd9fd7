"""Fail-open Redis result cache for discovery queries."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from time import perf_counter
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

from app.domain.properties.errors import CacheDegraded
from app.infra.redis import RedisProxy, redis_client
from app.obs import metrics as obs_metrics
from app.settings import Settings, settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_KEY_LENGTH = 250
_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9:_\-\.]+$")


class CacheKind(str, Enum):
	SEARCH = "search"
	DETAIL = "detail"
	BOUNDS = "bounds"
	AUTOCOMPLETE = "autocomplete"
	FACETS = "facets"
	CLUSTERS = "clusters"
	FAVORITES = "favorites"


# Namespaces holding result lists that may contain any property.
LIST_KINDS = (CacheKind.SEARCH, CacheKind.BOUNDS, CacheKind.CLUSTERS, CacheKind.FACETS)


@dataclass(frozen=True, slots=True)
class CachePolicy:
	ttl_seconds: int
	namespace: str


@dataclass(frozen=True)
class TTLPolicy:
	"""Maps each cache entry kind to its TTL and key namespace."""

	root: str
	entries: Mapping[CacheKind, CachePolicy]

	@classmethod
	def from_settings(cls, config: Settings | None = None) -> "TTLPolicy":
		cfg = config or settings
		root = cfg.cache_namespace.strip(":") or "rentals"
		ttls = {
			CacheKind.SEARCH: cfg.cache_ttl_search,
			CacheKind.DETAIL: cfg.cache_ttl_detail,
			CacheKind.BOUNDS: cfg.cache_ttl_bounds,
			CacheKind.AUTOCOMPLETE: cfg.cache_ttl_autocomplete,
			CacheKind.FACETS: cfg.cache_ttl_facets,
			CacheKind.CLUSTERS: cfg.cache_ttl_clusters,
			CacheKind.FAVORITES: cfg.cache_ttl_favorites,
		}
		entries: dict[CacheKind, CachePolicy] = {}
		for kind, ttl in ttls.items():
			if kind is CacheKind.AUTOCOMPLETE:
				namespace = f"{root}:autocomplete:"
			elif kind is CacheKind.FAVORITES:
				namespace = f"{root}:user:favorites:"
			else:
				namespace = f"{root}:property:{kind.value}:"
			entries[kind] = CachePolicy(ttl_seconds=int(ttl), namespace=namespace)
		return cls(root=root, entries=entries)

	def ttl(self, kind: CacheKind) -> int:
		return self.entries[kind].ttl_seconds

	def namespace(self, kind: CacheKind) -> str:
		return self.entries[kind].namespace

	def kind_for_key(self, key: str) -> Optional[CacheKind]:
		for kind, policy in self.entries.items():
			if key.startswith(policy.namespace):
				return kind
		return None


class ResultCache:
	"""Key/value wrapper whose every failure degrades to a miss or a no-op.

	Callers can always proceed as if the cache were empty; cache trouble costs
	latency, never correctness.
	"""

	def __init__(
		self,
		redis: RedisProxy | Any | None = None,
		*,
		policy: TTLPolicy | None = None,
		timeout: float | None = None,
		max_value_bytes: int | None = None,
	) -> None:
		self.redis = redis or redis_client
		self.policy = policy or TTLPolicy.from_settings()
		self.timeout = timeout if timeout is not None else settings.cache_timeout_seconds
		self.max_value_bytes = max_value_bytes or settings.cache_max_value_bytes

	def is_valid_key(self, key: str) -> bool:
		if not isinstance(key, str) or not key.startswith(f"{self.policy.root}:"):
			return False
		if len(key) > MAX_KEY_LENGTH:
			return False
		if not _KEY_PATTERN.match(key):
			return False
		return self.policy.kind_for_key(key) is not None

	def _label(self, key: str) -> str:
		kind = self.policy.kind_for_key(key)
		return kind.value if kind else "unknown"

	async def _guard(self, operation: Callable[[], Awaitable[T]]) -> T:
		try:
			return await asyncio.wait_for(operation(), timeout=self.timeout)
		except Exception as exc:
			raise CacheDegraded(str(exc) or exc.__class__.__name__) from exc

	async def get(self, key: str) -> Optional[str]:
		if not self.is_valid_key(key):
			logger.warning("property.cache.invalid_key", extra={"op": "get", "cache_key": str(key)[:80]})
			return None
		label = self._label(key)
		try:
			raw = await self._guard(lambda: self.redis.get(key))
		except CacheDegraded as exc:
			obs_metrics.inc_cache_event(label, "error")
			logger.warning("property.cache.get_failed", extra={"kind": label, "error": str(exc)})
			return None
		if raw is None:
			obs_metrics.inc_cache_event(label, "miss")
			return None
		obs_metrics.inc_cache_event(label, "hit")
		if isinstance(raw, bytes):
			return raw.decode("utf-8")
		return str(raw)

	async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
		if not self.is_valid_key(key):
			logger.warning("property.cache.invalid_key", extra={"op": "set", "cache_key": str(key)[:80]})
			return False
		label = self._label(key)
		if not isinstance(value, str):
			obs_metrics.inc_cache_event(label, "skip")
			logger.warning("property.cache.invalid_value", extra={"kind": label, "type": type(value).__name__})
			return False
		try:
			size = len(value.encode("utf-8"))
		except UnicodeEncodeError:
			obs_metrics.inc_cache_event(label, "skip")
			logger.warning("property.cache.invalid_value", extra={"kind": label, "type": "str"})
			return False
		if size > self.max_value_bytes:
			obs_metrics.inc_cache_event(label, "skip")
			logger.warning("property.cache.value_too_large", extra={"kind": label, "size": size})
			return False
		try:
			if ttl:
				await self._guard(lambda: self.redis.set(key, value, ex=int(ttl)))
			else:
				await self._guard(lambda: self.redis.set(key, value))
		except CacheDegraded as exc:
			obs_metrics.inc_cache_event(label, "error")
			logger.warning("property.cache.set_failed", extra={"kind": label, "error": str(exc)})
			return False
		obs_metrics.inc_cache_event(label, "set")
		return True

	async def delete(self, *keys: str) -> int:
		valid = [key for key in keys if self.is_valid_key(key)]
		if not valid:
			return 0
		try:
			return int(await self._guard(lambda: self.redis.delete(*valid)))
		except CacheDegraded as exc:
			logger.warning("property.cache.delete_failed", extra={"error": str(exc)})
			return 0

	async def get_json(self, kind: CacheKind, key: str) -> Any | None:
		raw = await self.get(key)
		if raw is None:
			return None
		try:
			return json.loads(raw)
		except ValueError:
			logger.warning("property.cache.decode_failed", extra={"kind": kind.value})
			return None

	async def set_json(self, kind: CacheKind, key: str, value: Any) -> bool:
		try:
			payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
		except (TypeError, ValueError):
			logger.warning("property.cache.encode_failed", extra={"kind": kind.value})
			return False
		return await self.set(key, payload, self.policy.ttl(kind))

	async def _delete_prefix(self, prefix: str) -> int:
		deleted = 0
		pending: list[str] = []
		async for key in self.redis.scan_iter(match=f"{prefix}*", count=500):
			pending.append(key)
			if len(pending) >= 500:
				deleted += int(await self.redis.delete(*pending))
				pending = []
		if pending:
			deleted += int(await self.redis.delete(*pending))
		return deleted

	async def invalidate_prefixes(self, prefixes: Iterable[str]) -> int:
		"""Remove every key under the given namespace prefixes. Returns keys deleted."""

		total = 0
		for prefix in prefixes:
			if not self.is_valid_key(prefix):
				continue
			try:
				total += await self._guard(lambda prefix=prefix: self._delete_prefix(prefix))
			except CacheDegraded as exc:
				logger.warning("property.cache.invalidate_failed", extra={"prefix": prefix, "error": str(exc)})
		obs_metrics.inc_cache_invalidations(total)
		return total

	def detail_key(self, property_id: str, identity_class: str) -> str:
		return f"{self.policy.namespace(CacheKind.DETAIL)}{identity_class}:{property_id}"

	async def invalidate_property(self, property_id: str) -> int:
		"""Evict the detail entries for ``property_id`` and every list namespace."""

		removed = await self.delete(
			self.detail_key(property_id, "auth"),
			self.detail_key(property_id, "anon"),
		)
		removed += await self.invalidate_search_results()
		logger.info("property.cache.invalidated", extra={"property_id": property_id, "removed": removed})
		return removed

	async def invalidate_search_results(self) -> int:
		return await self.invalidate_prefixes(self.policy.namespace(kind) for kind in LIST_KINDS)

	async def health_check(self) -> dict[str, Any]:
		start = perf_counter()
		try:
			pong = await self._guard(lambda: self.redis.ping())
		except CacheDegraded as exc:
			obs_metrics.mark_redis(False)
			return {"status": "unhealthy", "details": {"error": str(exc)}}
		if not pong:
			obs_metrics.mark_redis(False)
			return {"status": "unhealthy", "details": {"error": "ping_failed"}}
		latency = perf_counter() - start
		obs_metrics.mark_redis(True, latency_seconds=latency)
		return {"status": "healthy", "details": {"connected": True, "latency_ms": round(latency * 1000, 2)}}

	async def stats(self) -> dict[str, int]:
		async def _count(prefix: str) -> int:
			total = 0
			async for _ in self.redis.scan_iter(match=f"{prefix}*", count=500):
				total += 1
			return total

		result: dict[str, int] = {}
		try:
			for kind, policy in self.policy.entries.items():
				result[kind.value] = await self._guard(lambda prefix=policy.namespace: _count(prefix))
		except CacheDegraded as exc:
			logger.warning("property.cache.stats_failed", extra={"error": str(exc)})
			return {}
		return result
