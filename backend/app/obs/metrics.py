"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"rentals_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"rentals_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REDIS_UP = Gauge("rentals_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("rentals_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("rentals_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("rentals_postgres_latency_seconds", "Postgres ping latency (seconds)")

SEARCH_QUERIES = Counter(
	"property_search_queries_total",
	"Property discovery queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"property_search_latency_seconds",
	"Property discovery latency in seconds",
	["kind"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

CACHE_EVENTS = Counter(
	"property_cache_events_total",
	"Result cache operations by outcome",
	["kind", "result"],
)

CACHE_INVALIDATIONS = Counter(
	"property_cache_invalidations_total",
	"Cache keys removed by bulk invalidation",
)

TRACKING_FAILURES = Counter(
	"property_tracking_failures_total",
	"Analytics tracking calls that failed and were swallowed",
	["event"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if ok and latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if ok and latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def inc_cache_event(kind: str, result: str) -> None:
	CACHE_EVENTS.labels(kind=kind, result=result).inc()


def inc_cache_invalidations(count: int) -> None:
	if count > 0:
		CACHE_INVALIDATIONS.inc(count)


def inc_tracking_failure(event: str) -> None:
	TRACKING_FAILURES.labels(event=event).inc()
