"""Property discovery orchestration: validate, cache, query, project."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ValidationError

from app.domain.properties import cache_keys, models, schemas
from app.domain.properties.adapter import CatalogQueryAdapter, Strategy, to_catalog_filters
from app.domain.properties.cache import CacheKind, ResultCache
from app.domain.properties.catalog import CatalogStore
from app.domain.properties.clustering import ClusterAggregator
from app.domain.properties.cursor import decode_cursor
from app.domain.properties.errors import DiscoveryError, PropertyNotFound, QueryValidationError
from app.domain.properties.facets import build_summary
from app.domain.properties.visibility import VisibilityFilter
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

MAX_BOUNDS_SPAN_DEGREES = 10.0
MIN_RADIUS_KM = 0.1
MAX_RADIUS_KM = 50.0
MIN_TYPE_SUGGESTION_LENGTH = 3

_TYPE_LABELS = (
	("apartment", "Apartamentos"),
	("house", "Casas"),
	("room", "Habitaciones"),
	("office", "Oficinas"),
)


def check_price_range(filters: Optional[schemas.PropertyFilters]) -> None:
	if filters is not None and filters.price_min > filters.price_max:
		raise QueryValidationError("price_range_inverted")


def check_bounds(bounds: Optional[schemas.MapBounds]) -> None:
	if bounds is None:
		return
	if bounds.north <= bounds.south or bounds.east <= bounds.west:
		raise QueryValidationError("bounds_inverted")
	if bounds.north - bounds.south > MAX_BOUNDS_SPAN_DEGREES or bounds.east - bounds.west > MAX_BOUNDS_SPAN_DEGREES:
		raise QueryValidationError("bounds_too_large")


def check_radius(radius_km: Optional[float], coordinates: Optional[schemas.Coordinates]) -> None:
	if radius_km is None:
		return
	if coordinates is None:
		raise QueryValidationError("radius_requires_coordinates")
	if not MIN_RADIUS_KM <= radius_km <= MAX_RADIUS_KM:
		raise QueryValidationError("radius_out_of_range")


def _dump(model: BaseModel) -> dict[str, Any]:
	# Unset optional fields are left out so redacted values never reach the cache.
	return model.model_dump(mode="json", exclude_none=True)


def _filters_shape(filters: Optional[schemas.PropertyFilters]) -> Optional[dict[str, Any]]:
	if filters is None:
		return None
	return filters.model_dump(mode="json", exclude_none=True)


class PropertyDiscoveryService:
	"""Entry point for every discovery procedure.

	Read paths follow one shape: validate, derive a key, try the cache, run one
	catalog strategy on a miss, project for the caller and write back. Writes go
	straight to the catalog and then evict the cached entries they touch.
	"""

	def __init__(
		self,
		catalog: CatalogStore,
		cache: ResultCache,
		*,
		visibility: VisibilityFilter | None = None,
		aggregator: ClusterAggregator | None = None,
		bounds_max_limit: int | None = None,
	) -> None:
		self.adapter = CatalogQueryAdapter(catalog)
		self.cache = cache
		self.policy = cache.policy
		self.visibility = visibility or VisibilityFilter(
			default_city=settings.default_city,
			default_currency=settings.default_currency,
		)
		self.aggregator = aggregator or ClusterAggregator(member_cap=settings.cluster_member_cap)
		self.bounds_max_limit = bounds_max_limit or settings.bounds_max_limit

	def _key(self, kind: CacheKind, shape: Any, caller: models.CallerContext | None = None) -> str:
		identity = caller.identity_class if caller is not None else None
		return cache_keys.derive(self.policy.namespace(kind), shape, identity_class=identity)

	async def _cached(self, kind: CacheKind, key: str, model: type[BaseModel]) -> Any:
		payload = await self.cache.get_json(kind, key)
		if payload is None:
			return None
		try:
			if isinstance(payload, list):
				return [model.model_validate(item) for item in payload]
			return model.model_validate(payload)
		except ValidationError:
			logger.warning("property.cache.stale_shape", extra={"kind": kind.value})
			return None

	async def _store(self, kind: CacheKind, key: str, value: BaseModel | Sequence[BaseModel]) -> None:
		if isinstance(value, BaseModel):
			payload: Any = _dump(value)
		else:
			payload = [_dump(item) for item in value]
		await self.cache.set_json(kind, key, payload)

	# --- Validation -----------------------------------------------------------

	def validate_query(self, query: schemas.SearchQuery) -> schemas.SearchQuery:
		"""Reject queries that break a range or ordering invariant before any I/O."""

		check_price_range(query)
		check_bounds(query.bounds)
		check_radius(query.radius_km, query.coordinates)
		return query

	@staticmethod
	def _search_shape(query: schemas.SearchQuery) -> dict[str, Any]:
		shape = query.model_dump(mode="json", exclude_none=True)
		if query.bounds is not None:
			shape["bounds"] = cache_keys.rounded_bounds(query.bounds)
		shape["cursor"] = decode_cursor(query.cursor)
		return {"op": "search", **shape}

	# --- Read procedures ------------------------------------------------------

	async def search(self, query: schemas.SearchQuery, caller: models.CallerContext) -> schemas.SearchResult:
		query = self.validate_query(query)
		key = self._key(CacheKind.SEARCH, self._search_shape(query), caller)
		cached = await self._cached(CacheKind.SEARCH, key, schemas.SearchResult)
		if cached is not None:
			logger.debug("property.search.cache_hit", extra={"cache_key": key})
			return cached

		strategy = CatalogQueryAdapter.select_strategy(query)
		started = time.perf_counter()
		outcome, (facets, facets_complete) = await asyncio.gather(
			self.adapter.execute(query),
			self._facets(schemas.FacetsQuery(bounds=query.bounds, base_filters=query.filters())),
		)
		obs_metrics.inc_search_query(strategy.value)
		obs_metrics.observe_search_latency(strategy.value, time.perf_counter() - started)

		result = schemas.SearchResult(
			properties=self.visibility.project_many(outcome.records, caller),
			total=outcome.total,
			facets=facets,
			next_cursor=None if outcome.strategy is Strategy.RADIUS else outcome.next_cursor,
		)
		# Empty facets from a failed catalog call must not outlive the outage.
		if facets_complete:
			await self._store(CacheKind.SEARCH, key, result)
		else:
			logger.warning("property.search.facets_degraded", extra={"cache_key": key})
		logger.info(
			"property.search.completed",
			extra={"strategy": strategy.value, "total": result.total, "returned": len(result.properties)},
		)
		return result

	async def get_by_id(self, property_id: str, caller: models.CallerContext) -> schemas.PropertyOut:
		key = self.cache.detail_key(property_id, caller.identity_class)
		cached = await self._cached(CacheKind.DETAIL, key, schemas.PropertyOut)
		if cached is not None:
			return cached

		record = await self.adapter.detail(property_id)
		if record is None:
			raise PropertyNotFound(property_id)
		try:
			await self.adapter.increment_view(property_id)
		except DiscoveryError:
			logger.warning("property.detail.view_increment_failed", extra={"property_id": property_id})

		projected = self.visibility.project(record, caller)
		await self._store(CacheKind.DETAIL, key, projected)
		return projected

	async def get_by_bounds(self, query: schemas.BoundsQuery, caller: models.CallerContext) -> schemas.BoundsResult:
		check_bounds(query.bounds)
		check_price_range(query.filters)
		limit = min(query.limit, self.bounds_max_limit)
		shape = cache_keys.bounds_shape(query.bounds, filters=_filters_shape(query.filters), limit=limit)
		key = self._key(CacheKind.BOUNDS, shape, caller)
		cached = await self._cached(CacheKind.BOUNDS, key, schemas.BoundsResult)
		if cached is not None:
			return cached

		started = time.perf_counter()
		page = await self.adapter.bounds(query.bounds, to_catalog_filters(query.filters), limit=limit)
		obs_metrics.inc_search_query(Strategy.BOUNDS.value)
		obs_metrics.observe_search_latency(Strategy.BOUNDS.value, time.perf_counter() - started)

		result = schemas.BoundsResult(
			properties=self.visibility.project_many(page.records, caller),
			total=page.total,
			bounds=query.bounds,
		)
		await self._store(CacheKind.BOUNDS, key, result)
		return result

	async def get_clusters(self, query: schemas.ClusterQuery) -> list[schemas.ClusterPoint]:
		"""Cluster markers carry no caller-sensitive fields, so one entry serves every caller."""

		check_bounds(query.bounds)
		check_price_range(query.filters)
		key = self._key(CacheKind.CLUSTERS, cache_keys.cluster_shape(query.bounds, query.zoom, _filters_shape(query.filters)))
		cached = await self._cached(CacheKind.CLUSTERS, key, schemas.ClusterPoint)
		if cached is not None:
			return cached

		started = time.perf_counter()
		level = self.aggregator.zoom_level(query.zoom)
		rows = await self.adapter.clusters(query.bounds, level, to_catalog_filters(query.filters))
		obs_metrics.inc_search_query("clusters")
		obs_metrics.observe_search_latency("clusters", time.perf_counter() - started)

		points = self.aggregator.cluster(rows, query.zoom)
		await self._store(CacheKind.CLUSTERS, key, points)
		return points

	async def search_nearby(self, query: schemas.NearbyQuery, caller: models.CallerContext) -> schemas.NearbyResult:
		check_radius(query.radius_km, query.coordinates)
		check_price_range(query.filters)
		shape = {
			"op": "nearby",
			"center": query.coordinates,
			"radius_km": query.radius_km,
			"filters": _filters_shape(query.filters),
			"limit": query.limit,
		}
		key = self._key(CacheKind.SEARCH, shape, caller)
		cached = await self._cached(CacheKind.SEARCH, key, schemas.NearbyResult)
		if cached is not None:
			return cached

		started = time.perf_counter()
		records = await self.adapter.radius(
			query.coordinates, query.radius_km, to_catalog_filters(query.filters), limit=query.limit
		)
		obs_metrics.inc_search_query(Strategy.RADIUS.value)
		obs_metrics.observe_search_latency(Strategy.RADIUS.value, time.perf_counter() - started)

		result = schemas.NearbyResult(
			properties=self.visibility.project_many(records, caller),
			total=len(records),
			center=query.coordinates,
			radius_km=query.radius_km,
		)
		await self._store(CacheKind.SEARCH, key, result)
		return result

	async def autocomplete(self, query: schemas.AutocompleteQuery) -> list[schemas.Suggestion]:
		text = query.normalized_query()
		key = self._key(CacheKind.AUTOCOMPLETE, {"q": text, "limit": query.limit})
		cached = await self._cached(CacheKind.AUTOCOMPLETE, key, schemas.Suggestion)
		if cached is not None:
			return cached

		try:
			hits = await self.adapter.neighborhoods(text, limit=math.ceil(query.limit / 2))
		except DiscoveryError:
			return []

		suggestions = [
			schemas.Suggestion(
				id=f"neighborhood-{hit.id}",
				text=hit.name,
				type="location",
				icon="map-pin",
				subtitle=f"{hit.properties_count} propiedades",
				metadata={"propertyCount": hit.properties_count, "type": "neighborhood"},
			)
			for hit in hits
		]
		if len(text) >= MIN_TYPE_SUGGESTION_LENGTH:
			suggestions.extend(
				schemas.Suggestion(
					id=f"type-{type_key}",
					text=label,
					type="filter",
					icon="home",
					subtitle=f"Buscar {label.lower()}",
					metadata={"filterType": "propertyType", "filterValue": type_key},
				)
				for type_key, label in _TYPE_LABELS
				if text in label.lower()
			)
		suggestions = suggestions[: query.limit]
		await self._store(CacheKind.AUTOCOMPLETE, key, suggestions)
		return suggestions

	async def get_similar(self, query: schemas.SimilarQuery, caller: models.CallerContext) -> list[schemas.PropertyOut]:
		shape = {"op": "similar", "id": query.property_id, "limit": query.limit}
		key = self._key(CacheKind.SEARCH, shape, caller)
		cached = await self._cached(CacheKind.SEARCH, key, schemas.PropertyOut)
		if cached is not None:
			return cached

		base = await self.adapter.detail(query.property_id)
		if base is None:
			return []
		records = await self.adapter.similar(base, limit=query.limit)
		projected = self.visibility.project_many(records, caller)
		await self._store(CacheKind.SEARCH, key, projected)
		return projected

	async def get_search_facets(self, query: schemas.FacetsQuery) -> schemas.FacetSummary:
		summary, _ = await self._facets(query)
		return summary

	async def _facets(self, query: schemas.FacetsQuery) -> tuple[schemas.FacetSummary, bool]:
		"""Return the summary and whether it is complete.

		A failed catalog call yields an empty summary flagged as incomplete.
		"""

		try:
			check_bounds(query.bounds)
			check_price_range(query.base_filters)
		except QueryValidationError:
			return schemas.FacetSummary.empty(), True
		shape = {
			"bounds": cache_keys.rounded_bounds(query.bounds) if query.bounds is not None else None,
			"filters": _filters_shape(query.base_filters),
		}
		key = self._key(CacheKind.FACETS, shape)
		cached = await self._cached(CacheKind.FACETS, key, schemas.FacetSummary)
		if cached is not None:
			return cached, True

		try:
			counts = await self.adapter.facets(to_catalog_filters(query.base_filters), query.bounds)
		except DiscoveryError:
			return schemas.FacetSummary.empty(), False
		summary = build_summary(counts)
		await self._store(CacheKind.FACETS, key, summary)
		return summary, True

	# --- Mutations ------------------------------------------------------------

	def _favorites_key(self, user_id: str) -> str:
		return self._key(CacheKind.FAVORITES, {"user": user_id})

	async def toggle_favorite(self, user_id: str, property_id: str) -> schemas.FavoriteResponse:
		if await self.adapter.detail(property_id) is None:
			raise PropertyNotFound(property_id)
		is_favorite = await self.adapter.toggle_favorite(user_id, property_id)
		await self.cache.delete(self._favorites_key(user_id))
		await self.cache.invalidate_property(property_id)
		logger.info("property.favorite.toggled", extra={"property_id": property_id, "is_favorite": is_favorite})
		return schemas.FavoriteResponse(is_favorite=is_favorite)

	async def list_favorites(self, user_id: str) -> schemas.FavoritesList:
		key = self._favorites_key(user_id)
		cached = await self._cached(CacheKind.FAVORITES, key, schemas.FavoritesList)
		if cached is not None:
			return cached
		result = schemas.FavoritesList(property_ids=await self.adapter.favorites(user_id))
		await self._store(CacheKind.FAVORITES, key, result)
		return result

	async def track_view(
		self,
		payload: schemas.TrackViewPayload,
		caller: models.CallerContext,
		*,
		ip_address: Optional[str] = None,
		user_agent: Optional[str] = None,
		referrer: Optional[str] = None,
	) -> schemas.TrackResponse:
		event = models.ViewEvent(
			property_id=payload.property_id,
			source=payload.source,
			user_id=caller.user_id,
			session_id=payload.session_id,
			ip_address=ip_address,
			user_agent=user_agent,
			referrer=referrer,
		)
		try:
			await self.adapter.record_view(event)
		except DiscoveryError:
			obs_metrics.inc_tracking_failure("view")
			return schemas.TrackResponse(success=False)
		await self.cache.invalidate_property(payload.property_id)
		return schemas.TrackResponse(success=True)

	async def track_contact(
		self,
		payload: schemas.TrackContactPayload,
		user_id: str,
		*,
		ip_address: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> schemas.TrackResponse:
		event = models.ContactEvent(
			property_id=payload.property_id,
			source=payload.source,
			contact_method=payload.contact_method,
			user_id=user_id,
			session_id=payload.session_id,
			phone_number=payload.phone_number,
			success=payload.success,
			error_message=payload.error_message,
			ip_address=ip_address,
			user_agent=user_agent,
		)
		try:
			await self.adapter.record_contact(event)
		except DiscoveryError:
			obs_metrics.inc_tracking_failure("contact")
			return schemas.TrackResponse(success=False)
		if payload.success:
			await self.cache.invalidate_property(payload.property_id)
		return schemas.TrackResponse(success=True)
