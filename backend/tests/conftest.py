import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.properties import models
from app.domain.properties.cache import ResultCache, TTLPolicy
from app.domain.properties.memory import MemoryCatalogStore
from app.infra import postgres
from app.main import app, build_discovery_service
from app.settings import settings

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


class ExplodingRedis:
	"""Cache store double that fails every call."""

	async def get(self, *args, **kwargs):
		raise ConnectionError("redis down")

	set = delete = ping = get

	async def scan_iter(self, *args, **kwargs):
		raise ConnectionError("redis down")
		yield  # pragma: no cover


@pytest.fixture
def exploding_redis() -> ExplodingRedis:
	return ExplodingRedis()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode, and read from the in-memory catalog.
	"""
	original_env = settings.environment
	original_backend = settings.catalog_backend
	settings.environment = "dev"
	settings.catalog_backend = "memory"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.catalog_backend = original_backend


@pytest.fixture
def make_property():
	"""Factory for catalog records with sensible Tegucigalpa defaults."""

	def _make(property_id: str, **overrides) -> models.PropertyRecord:
		minutes = overrides.pop("age_minutes", 0)
		image_count = overrides.pop("image_count", 2)
		data = {
			"id": property_id,
			"title": f"Apartamento {property_id}",
			"type": "apartment",
			"price": models.Price(amount=overrides.pop("price", 12000)),
			"description": "Amplio y luminoso",
			"street_address": "Calle Principal 123",
			"formatted_address": "Calle Principal 123, Lomas del Guijarro, Tegucigalpa",
			"neighborhood": "Lomas del Guijarro",
			"city": "Tegucigalpa",
			"coordinates": models.GeoPoint(lat=14.0900, lng=-87.1900),
			"bedrooms": 2,
			"bathrooms": 1.5,
			"area_sqm": 85.0,
			"amenities": ["parking", "security"],
			"images": [
				models.PropertyImage(id=f"{property_id}-img{idx}", url=f"https://img.example/{property_id}/{idx}.jpg", order=idx)
				for idx in range(image_count)
			],
			"contact_phone": "+50499990000",
			"contact_whatsapp": "+50499990001",
			"landlord": models.LandlordSummary(id="landlord-1", name="Inmobiliaria Sol", phone="+50488887777", verified=True),
			"created_at": BASE_TIME - timedelta(minutes=minutes),
			"updated_at": BASE_TIME - timedelta(minutes=minutes),
		}
		data.update(overrides)
		return models.PropertyRecord(**data)

	return _make


@pytest.fixture
def catalog() -> MemoryCatalogStore:
	return MemoryCatalogStore()


@pytest.fixture
def result_cache(fake_redis) -> ResultCache:
	return ResultCache(fake_redis, policy=TTLPolicy.from_settings(settings), timeout=1.0)


@pytest_asyncio.fixture
async def api_client(catalog):
	app.state.discovery = build_discovery_service(catalog)
	transport = ASGITransport(app=app)
	try:
		async with AsyncClient(transport=transport, base_url="http://testserver") as client:
			yield client
	finally:
		app.state.discovery = None
