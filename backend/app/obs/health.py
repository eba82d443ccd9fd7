"""Health check helpers for liveness and readiness checks."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Optional, Tuple

from app.domain.properties.cache import ResultCache
from app.infra import postgres
from app.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	try:
		pool = await postgres.get_pool()
	except Exception as exc:  # pragma: no cover - connection bootstrap failure
		metrics.mark_postgres(False)
		LOGGER.warning("Postgres connection unavailable", exc_info=True)
		return {"ok": False, "error": str(exc)}

	start = perf_counter()
	try:
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
		latency = perf_counter() - start
		metrics.mark_postgres(True, latency_seconds=latency)
		return {"ok": True, "latency_ms": round(latency * 1000, 2)}
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_postgres(False)
		LOGGER.warning("Postgres readiness query failed", exc_info=True)
		return {"ok": False, "error": str(exc)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(cache: ResultCache, *, check_postgres: bool = True) -> Tuple[int, Dict[str, Any]]:
	"""Report dependency health.

	The cache fails open, so an unhealthy Redis is reported but does not make the
	service unready; only the catalog store does.
	"""
	cache_state = await cache.health_check()
	checks: Dict[str, Optional[Dict[str, Any]]] = {"redis": cache_state}
	ok = True
	if check_postgres:
		postgres_state = await _postgres_status()
		checks["postgres"] = postgres_state
		ok = bool(postgres_state.get("ok"))
	degraded = cache_state.get("status") != "healthy"
	status = "ok" if ok and not degraded else ("degraded" if ok else "unavailable")
	return (200 if ok else 503), {"status": status, "checks": checks}
