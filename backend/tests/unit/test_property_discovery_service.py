import json

import pytest

from app.domain.properties import cache_keys, models, schemas
from app.domain.properties.cache import CacheKind, ResultCache, TTLPolicy
from app.domain.properties.errors import PropertyNotFound, QueryValidationError, UpstreamUnavailable
from app.domain.properties.memory import MemoryCatalogStore
from app.domain.properties.service import PropertyDiscoveryService
from app.settings import settings

ANON = models.CallerContext.anonymous()
USER = models.CallerContext.for_user("user-42")
VIEWPORT = schemas.MapBounds(north=14.2, south=14.0, east=-87.1, west=-87.3)


class CountingCatalog(MemoryCatalogStore):
	def __init__(self, records=()):
		super().__init__(records)
		self.calls: dict[str, int] = {}

	def _count(self, name):
		self.calls[name] = self.calls.get(name, 0) + 1

	async def list_properties(self, *args, **kwargs):
		self._count("list_properties")
		return await super().list_properties(*args, **kwargs)

	async def cluster(self, *args, **kwargs):
		self._count("cluster")
		return await super().cluster(*args, **kwargs)

	async def get_by_id(self, property_id):
		self._count("get_by_id")
		return await super().get_by_id(property_id)


class BrokenCatalog:
	def __getattr__(self, name):
		async def _fail(*args, **kwargs):
			raise RuntimeError("connection refused")

		return _fail


def _service(catalog, cache) -> PropertyDiscoveryService:
	return PropertyDiscoveryService(catalog, cache)


@pytest.mark.asyncio
async def test_repeated_search_is_served_from_cache(make_property, result_cache):
	catalog = CountingCatalog([make_property("p1"), make_property("p2", age_minutes=5)])
	service = _service(catalog, result_cache)
	query = schemas.SearchQuery(location="guijarro", limit=10)

	first = await service.search(query, ANON)
	second = await service.search(query, ANON)

	assert first == second
	assert catalog.calls["list_properties"] == 1
	assert first.total == 2
	assert first.next_cursor is None


@pytest.mark.asyncio
async def test_anonymous_results_are_redacted_before_caching(make_property, result_cache, fake_redis):
	catalog = MemoryCatalogStore([make_property("p1", image_count=5)])
	service = _service(catalog, result_cache)

	result = await service.search(schemas.SearchQuery(), ANON)

	listing = result.properties[0]
	assert len(listing.images) == 3
	assert listing.landlord.phone is None
	assert listing.contact_phone is None

	keys = await fake_redis.keys("rentals:property:search:anon:*")
	assert len(keys) == 1
	cached = json.loads(await fake_redis.get(keys[0]))
	assert "contact_phone" not in cached["properties"][0]
	assert "phone" not in cached["properties"][0]["landlord"]
	assert len(cached["properties"][0]["images"]) == 3


@pytest.mark.asyncio
async def test_identity_classes_never_share_entries(make_property, result_cache, fake_redis):
	service = _service(MemoryCatalogStore([make_property("p1", image_count=5)]), result_cache)

	anonymous = await service.search(schemas.SearchQuery(), ANON)
	authenticated = await service.search(schemas.SearchQuery(), USER)

	assert len(anonymous.properties[0].images) == 3
	assert len(authenticated.properties[0].images) == 5
	assert authenticated.properties[0].landlord.phone == "+50488887777"
	assert len(await fake_redis.keys("rentals:property:search:anon:*")) == 1
	assert len(await fake_redis.keys("rentals:property:search:auth:*")) == 1


@pytest.mark.asyncio
async def test_full_page_returns_offset_cursor(make_property, result_cache):
	catalog = MemoryCatalogStore([make_property(f"p{idx}", age_minutes=idx) for idx in range(3)])
	service = _service(catalog, result_cache)

	first = await service.search(schemas.SearchQuery(limit=2, sort_by="reciente"), ANON)
	second = await service.search(schemas.SearchQuery(limit=2, sort_by="recency", cursor=first.next_cursor), ANON)

	assert first.next_cursor == "2"
	assert [p.id for p in second.properties] == ["p2"]
	assert second.next_cursor is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
	("query", "detail"),
	[
		(schemas.SearchQuery(price_min=20000, price_max=10000), "price_range_inverted"),
		(schemas.SearchQuery(bounds=schemas.MapBounds(north=14.0, south=14.0, east=-87.1, west=-87.3)), "bounds_inverted"),
		(schemas.SearchQuery(bounds=schemas.MapBounds(north=14.0, south=14.2, east=-87.1, west=-87.3)), "bounds_inverted"),
		(schemas.SearchQuery(bounds=schemas.MapBounds(north=25.0, south=14.0, east=-87.1, west=-87.3)), "bounds_too_large"),
		(schemas.SearchQuery(bounds=schemas.MapBounds(north=14.2, south=14.0, east=-80.0, west=-91.0)), "bounds_too_large"),
		(schemas.SearchQuery(coordinates=schemas.Coordinates(lat=14.1, lng=-87.2), radius_km=0.05), "radius_out_of_range"),
		(schemas.SearchQuery(coordinates=schemas.Coordinates(lat=14.1, lng=-87.2), radius_km=51), "radius_out_of_range"),
		(schemas.SearchQuery(radius_km=5), "radius_requires_coordinates"),
	],
)
async def test_invalid_queries_are_rejected_before_any_io(make_property, result_cache, query, detail):
	catalog = CountingCatalog([make_property("p1")])
	service = _service(catalog, result_cache)

	with pytest.raises(QueryValidationError) as excinfo:
		await service.search(query, ANON)

	assert excinfo.value.detail == detail
	assert excinfo.value.status_code == 422
	assert catalog.calls == {}


def test_limit_is_clamped_not_rejected():
	assert schemas.SearchQuery(limit=500).limit == 50
	assert schemas.SearchQuery(limit=0).limit == 1
	assert schemas.SearchQuery(limit=None).limit == 24


@pytest.mark.asyncio
async def test_search_survives_a_failing_cache(make_property, exploding_redis):
	cache = ResultCache(exploding_redis, policy=TTLPolicy.from_settings(settings), timeout=0.5)
	catalog = CountingCatalog([make_property("p1"), make_property("p2")])
	service = _service(catalog, cache)

	first = await service.search(schemas.SearchQuery(), ANON)
	second = await service.search(schemas.SearchQuery(), ANON)

	assert first.total == 2
	assert first == second
	assert catalog.calls["list_properties"] == 2


@pytest.mark.asyncio
async def test_search_includes_facets(make_property, result_cache):
	catalog = MemoryCatalogStore(
		[
			make_property("p1", price=4000),
			make_property("p2", price=12000, type="house", neighborhood="Kennedy", amenities=["pool"]),
		]
	)
	service = _service(catalog, result_cache)

	result = await service.search(schemas.SearchQuery(), ANON)

	ranges = {entry.range: entry.count for entry in result.facets.price_ranges}
	types = {entry.type: entry.count for entry in result.facets.property_types}
	assert ranges["0-5000"] == 1
	assert ranges["10000-15000"] == 1
	assert ranges["25000+"] == 0
	assert types == {"apartment": 1, "house": 1, "room": 0, "office": 0}
	assert {entry.name for entry in result.facets.neighborhoods} == {"Lomas del Guijarro", "Kennedy"}


@pytest.mark.asyncio
async def test_catalog_outage_is_surfaced_without_detail(result_cache):
	service = _service(BrokenCatalog(), result_cache)

	with pytest.raises(UpstreamUnavailable) as excinfo:
		await service.search(schemas.SearchQuery(), ANON)

	assert excinfo.value.detail == "search_temporarily_unavailable"


@pytest.mark.asyncio
async def test_cluster_requests_share_key_within_zoom_level(make_property, result_cache):
	catalog = CountingCatalog(
		[
			make_property("a", coordinates=models.GeoPoint(lat=14.0901, lng=-87.1901), price=8000),
			make_property("b", coordinates=models.GeoPoint(lat=14.0902, lng=-87.1902), price=10000),
			make_property("c", coordinates=models.GeoPoint(lat=14.1900, lng=-87.2900), price=20000),
		]
	)
	service = _service(catalog, result_cache)

	first = await service.get_clusters(schemas.ClusterQuery(bounds=VIEWPORT, zoom=12.0))
	second = await service.get_clusters(schemas.ClusterQuery(bounds=VIEWPORT, zoom=12.9))

	assert first == second
	assert catalog.calls["cluster"] == 1
	assert sum(point.count for point in first) == 3
	largest = first[0]
	assert largest.count == 2
	assert largest.avg_price == pytest.approx(9000.0)


@pytest.mark.asyncio
async def test_detail_not_found(result_cache):
	service = _service(MemoryCatalogStore(), result_cache)

	with pytest.raises(PropertyNotFound) as excinfo:
		await service.get_by_id("missing", ANON)

	assert excinfo.value.detail == "property_not_found"
	assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_detail_is_cached_and_counts_view_on_miss(make_property, result_cache):
	catalog = CountingCatalog([make_property("p1")])
	service = _service(catalog, result_cache)

	first = await service.get_by_id("p1", ANON)
	second = await service.get_by_id("p1", ANON)

	assert first == second
	assert catalog.calls["get_by_id"] == 1
	assert (await catalog.get_by_id("p1")).view_count == 1


@pytest.mark.asyncio
async def test_toggle_favorite_evicts_cached_entries(make_property, result_cache, fake_redis):
	catalog = MemoryCatalogStore([make_property("p1")])
	service = _service(catalog, result_cache)

	await service.get_by_id("p1", ANON)
	await service.search(schemas.SearchQuery(), ANON)
	assert await fake_redis.exists(result_cache.detail_key("p1", "anon"))
	assert await fake_redis.keys("rentals:property:search:*")

	response = await service.toggle_favorite(USER.user_id, "p1")

	assert response.is_favorite is True
	assert not await fake_redis.exists(result_cache.detail_key("p1", "anon"))
	assert await fake_redis.keys("rentals:property:search:*") == []
	refreshed = await service.get_by_id("p1", ANON)
	assert refreshed.favorite_count == 1

	again = await service.toggle_favorite(USER.user_id, "p1")
	assert again.is_favorite is False
	assert (await catalog.get_by_id("p1")).favorite_count == 0


@pytest.mark.asyncio
async def test_list_favorites_refreshes_after_toggle(make_property, result_cache):
	service = _service(MemoryCatalogStore([make_property("p1"), make_property("p2")]), result_cache)

	assert (await service.list_favorites("user-42")).property_ids == []
	await service.toggle_favorite("user-42", "p2")

	assert (await service.list_favorites("user-42")).property_ids == ["p2"]


@pytest.mark.asyncio
async def test_toggle_favorite_on_unknown_property(result_cache):
	service = _service(MemoryCatalogStore(), result_cache)

	with pytest.raises(PropertyNotFound):
		await service.toggle_favorite("user-42", "ghost")


@pytest.mark.asyncio
async def test_bounds_query_is_projected_and_echoes_viewport(make_property, result_cache):
	catalog = MemoryCatalogStore(
		[
			make_property("inside", image_count=4),
			make_property("outside", coordinates=models.GeoPoint(lat=15.5, lng=-88.0)),
		]
	)
	service = _service(catalog, result_cache)

	result = await service.get_by_bounds(schemas.BoundsQuery(bounds=VIEWPORT), ANON)

	assert [p.id for p in result.properties] == ["inside"]
	assert result.total == 1
	assert result.bounds == VIEWPORT
	assert len(result.properties[0].images) == 3


@pytest.mark.asyncio
async def test_nearby_reports_center_and_radius(make_property, result_cache):
	service = _service(MemoryCatalogStore([make_property("p1")]), result_cache)
	center = schemas.Coordinates(lat=14.09, lng=-87.19)

	result = await service.search_nearby(schemas.NearbyQuery(coordinates=center, radius_km=2), USER)

	assert result.total == 1
	assert result.center == center
	assert result.radius_km == 2
	assert result.properties[0].distance_km == pytest.approx(0.0, abs=0.01)


@pytest.mark.asyncio
async def test_nearby_rejects_tiny_radius(result_cache):
	service = _service(MemoryCatalogStore(), result_cache)

	with pytest.raises(QueryValidationError):
		await service.search_nearby(
			schemas.NearbyQuery(coordinates=schemas.Coordinates(lat=14.09, lng=-87.19), radius_km=0.05), ANON
		)


@pytest.mark.asyncio
async def test_autocomplete_combines_neighborhoods_and_types(make_property, result_cache):
	catalog = MemoryCatalogStore(
		[
			make_property("p1", neighborhood="Colonia Palmira"),
			make_property("p2", neighborhood="Colonia Palmira"),
			make_property("p3", neighborhood="Colonia Kennedy"),
		]
	)
	service = _service(catalog, result_cache)

	places = await service.autocomplete(schemas.AutocompleteQuery(query="Colonia", limit=10))
	types = await service.autocomplete(schemas.AutocompleteQuery(query="cas", limit=10))

	assert [s.text for s in places] == ["Colonia Palmira", "Colonia Kennedy"]
	assert places[0].subtitle == "2 propiedades"
	assert [s.text for s in types] == ["Casas"]
	assert types[0].metadata == {"filterType": "propertyType", "filterValue": "house"}


@pytest.mark.asyncio
async def test_autocomplete_and_facets_degrade_to_empty(result_cache):
	service = _service(BrokenCatalog(), result_cache)

	assert await service.autocomplete(schemas.AutocompleteQuery(query="centro")) == []
	facets = await service.get_search_facets(schemas.FacetsQuery())
	assert facets == schemas.FacetSummary.empty()


@pytest.mark.asyncio
async def test_similar_properties_are_projected(make_property, result_cache):
	catalog = MemoryCatalogStore(
		[make_property("base", price=10000), make_property("twin", price=11000, image_count=6)]
	)
	service = _service(catalog, result_cache)

	similar = await service.get_similar(schemas.SimilarQuery(property_id="base"), ANON)
	missing = await service.get_similar(schemas.SimilarQuery(property_id="ghost"), ANON)

	assert [p.id for p in similar] == ["twin"]
	assert len(similar[0].images) == 3
	assert missing == []


@pytest.mark.asyncio
async def test_track_view_records_event_and_counter(make_property, result_cache):
	catalog = MemoryCatalogStore([make_property("p1")])
	service = _service(catalog, result_cache)

	response = await service.track_view(
		schemas.TrackViewPayload(property_id="p1", source="mapa", session_id="s-1"),
		ANON,
		ip_address="10.0.0.1",
	)

	assert response.success is True
	assert catalog.views[0].source == "map"
	assert catalog.views[0].ip_address == "10.0.0.1"
	assert (await catalog.get_by_id("p1")).view_count == 1


@pytest.mark.asyncio
async def test_failed_contact_is_recorded_without_counting(make_property, result_cache):
	catalog = MemoryCatalogStore([make_property("p1")])
	service = _service(catalog, result_cache)

	response = await service.track_contact(
		schemas.TrackContactPayload(property_id="p1", success=False, error_message="whatsapp_unavailable"),
		"user-42",
	)

	assert response.success is True
	assert catalog.contacts[0].success is False
	assert (await catalog.get_by_id("p1")).contact_count == 0


@pytest.mark.asyncio
async def test_tracking_failures_return_unsuccessful(result_cache):
	service = _service(BrokenCatalog(), result_cache)

	view = await service.track_view(schemas.TrackViewPayload(property_id="p1"), ANON)
	contact = await service.track_contact(schemas.TrackContactPayload(property_id="p1"), "user-42")

	assert view.success is False
	assert contact.success is False


def test_cluster_keys_ignore_sub_integer_zoom():
	namespace = TTLPolicy.from_settings(settings).namespace(CacheKind.CLUSTERS)

	assert cache_keys.derive(namespace, cache_keys.cluster_shape(VIEWPORT, 12.0)) == cache_keys.derive(
		namespace, cache_keys.cluster_shape(VIEWPORT, 12.9)
	)


class FacetOutageCatalog(CountingCatalog):
	def __init__(self, records=()):
		super().__init__(records)
		self.facets_down = True

	async def facet_counts(self, *args, **kwargs):
		if self.facets_down:
			raise RuntimeError("statement timeout")
		return await super().facet_counts(*args, **kwargs)


@pytest.mark.asyncio
async def test_search_with_failed_facets_is_not_cached(make_property, result_cache, fake_redis):
	catalog = FacetOutageCatalog([make_property("p1")])
	service = _service(catalog, result_cache)

	degraded = await service.search(schemas.SearchQuery(), ANON)

	assert degraded.total == 1
	assert degraded.facets == schemas.FacetSummary.empty()
	assert await fake_redis.keys("rentals:property:search:*") == []

	catalog.facets_down = False
	recovered = await service.search(schemas.SearchQuery(), ANON)

	assert catalog.calls["list_properties"] == 2
	assert {entry.type: entry.count for entry in recovered.facets.property_types}["apartment"] == 1
	assert len(await fake_redis.keys("rentals:property:search:*")) == 1
