"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import ops, properties
from app.api.errors import install_error_handlers
from app.domain.properties.cache import ResultCache, TTLPolicy
from app.domain.properties.catalog import CatalogStore, PostgresCatalogStore
from app.domain.properties.clustering import ClusterAggregator
from app.domain.properties.memory import MemoryCatalogStore
from app.domain.properties.service import PropertyDiscoveryService
from app.domain.properties.visibility import VisibilityFilter
from app.infra import postgres
from app.infra.redis import redis_client
from app.obs import init as obs_init
from app.settings import settings

logger = logging.getLogger(__name__)


def build_discovery_service(catalog: CatalogStore) -> PropertyDiscoveryService:
	"""Construct the discovery graph once per process from settings."""
	cache = ResultCache(
		redis_client,
		policy=TTLPolicy.from_settings(settings),
		timeout=settings.cache_timeout_seconds,
		max_value_bytes=settings.cache_max_value_bytes,
	)
	return PropertyDiscoveryService(
		catalog,
		cache,
		visibility=VisibilityFilter(default_city=settings.default_city, default_currency=settings.default_currency),
		aggregator=ClusterAggregator(member_cap=settings.cluster_member_cap),
		bounds_max_limit=settings.bounds_max_limit,
	)


@asynccontextmanager
async def lifespan(app: FastAPI):
	catalog: CatalogStore
	if settings.catalog_backend == "memory":
		catalog = MemoryCatalogStore()
	else:
		pool = await postgres.init_pool()
		catalog = PostgresCatalogStore(pool)
	app.state.discovery = build_discovery_service(catalog)
	logger.info("discovery.startup", extra={"catalog_backend": settings.catalog_backend})
	try:
		yield
	finally:
		await postgres.close_pool()
		await redis_client.aclose()


app = FastAPI(title="Rental Property Discovery", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)

app.include_router(properties.router)
app.include_router(ops.router, tags=["ops"])
