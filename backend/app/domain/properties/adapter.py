"""Strategy selection over the catalog store primitives."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from app.domain.properties import models, schemas
from app.domain.properties.catalog import CatalogStore
from app.domain.properties.cursor import decode_cursor, next_cursor
from app.domain.properties.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Strategy(str, Enum):
	FILTERED = "filtered"
	BOUNDS = "bounds"
	RADIUS = "radius"


@dataclass(slots=True)
class StrategyResult:
	strategy: Strategy
	records: list[models.PropertyRecord]
	total: int
	next_cursor: Optional[str] = None


def to_catalog_filters(filters: Optional[schemas.PropertyFilters]) -> models.CatalogFilters:
	if filters is None:
		return models.CatalogFilters()
	text = (filters.location or "").strip() or None
	return models.CatalogFilters(
		price_min=filters.price_min,
		price_max=filters.price_max,
		bedrooms=tuple(sorted(set(filters.bedrooms))),
		property_types=tuple(sorted(set(filters.property_types))),
		amenities=tuple(sorted(set(filters.amenities))),
		text=text,
	)


def to_bounds(bounds: schemas.MapBounds) -> models.GeoBounds:
	return models.GeoBounds(north=bounds.north, south=bounds.south, east=bounds.east, west=bounds.west)


def to_point(coordinates: schemas.Coordinates) -> models.GeoPoint:
	return models.GeoPoint(lat=coordinates.lat, lng=coordinates.lng)


def effective_sort(sort_by: str, coordinates: Optional[schemas.Coordinates]) -> str:
	if sort_by == "distance" and coordinates is None:
		return "recency"
	return sort_by


class CatalogQueryAdapter:
	"""Runs exactly one catalog strategy per query and normalises its result.

	Any failure inside the catalog store surfaces as :class:`UpstreamUnavailable`;
	the cause is logged here and never returned to the caller.
	"""

	def __init__(self, catalog: CatalogStore) -> None:
		self.catalog = catalog

	@staticmethod
	def select_strategy(query: schemas.SearchQuery, *, map_query: bool = False) -> Strategy:
		if query.coordinates is not None and query.radius_km is not None:
			return Strategy.RADIUS
		if query.bounds is not None and map_query:
			return Strategy.BOUNDS
		return Strategy.FILTERED

	async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
		try:
			return await factory()
		except Exception as exc:
			logger.error("property.catalog.failed", extra={"operation": operation}, exc_info=exc)
			raise UpstreamUnavailable(operation) from exc

	async def execute(self, query: schemas.SearchQuery, *, map_query: bool = False) -> StrategyResult:
		strategy = self.select_strategy(query, map_query=map_query)
		filters = to_catalog_filters(query)
		if strategy is Strategy.RADIUS:
			records = await self.radius(query.coordinates, query.radius_km, filters, limit=query.limit)
			return StrategyResult(strategy=strategy, records=records, total=len(records))
		if strategy is Strategy.BOUNDS:
			page = await self.bounds(query.bounds, filters, limit=query.limit)
			return StrategyResult(strategy=strategy, records=page.records, total=page.total)
		offset = decode_cursor(query.cursor)
		sort = effective_sort(query.sort_by, query.coordinates)
		center = to_point(query.coordinates) if query.coordinates is not None else None
		page = await self._call(
			"search",
			lambda: self.catalog.list_properties(filters, sort=sort, offset=offset, limit=query.limit, center=center),
		)
		return StrategyResult(
			strategy=strategy,
			records=page.records,
			total=page.total,
			next_cursor=next_cursor(offset, query.limit, len(page.records)),
		)

	async def bounds(
		self,
		bounds: schemas.MapBounds,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> models.CatalogPage:
		return await self._call("bounds", lambda: self.catalog.in_bounds(to_bounds(bounds), filters, limit=limit))

	async def radius(
		self,
		center: schemas.Coordinates,
		radius_km: float,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> list[models.PropertyRecord]:
		return await self._call(
			"nearby",
			lambda: self.catalog.nearby(to_point(center), radius_km, filters, limit=limit),
		)

	async def clusters(
		self,
		bounds: schemas.MapBounds,
		zoom: int,
		filters: models.CatalogFilters,
	) -> list[models.CatalogCluster]:
		return await self._call("clusters", lambda: self.catalog.cluster(to_bounds(bounds), zoom, filters))

	async def detail(self, property_id: str) -> Optional[models.PropertyRecord]:
		return await self._call("detail", lambda: self.catalog.get_by_id(property_id))

	async def similar(self, base: models.PropertyRecord, *, limit: int) -> list[models.PropertyRecord]:
		amount = base.price.amount
		bedrooms = sorted({max(0, base.bedrooms - 1), base.bedrooms, base.bedrooms + 1})
		return await self._call(
			"similar",
			lambda: self.catalog.find_similar(
				property_type=base.type,
				bedrooms=bedrooms,
				price_min=math.floor(amount * 0.7),
				price_max=math.ceil(amount * 1.3),
				exclude_id=base.id,
				limit=limit,
			),
		)

	async def facets(
		self,
		filters: models.CatalogFilters,
		bounds: Optional[schemas.MapBounds] = None,
	) -> models.FacetCounts:
		geo = to_bounds(bounds) if bounds is not None else None
		return await self._call("facets", lambda: self.catalog.facet_counts(filters, geo))

	async def neighborhoods(self, text: str, *, limit: int) -> list[models.NeighborhoodHit]:
		return await self._call("autocomplete", lambda: self.catalog.neighborhoods_matching(text, limit=limit))

	async def toggle_favorite(self, user_id: str, property_id: str) -> bool:
		"""Flip the favorite flag and keep the counter in step. Returns the new state."""

		async def _toggle() -> bool:
			if await self.catalog.is_favorite(user_id, property_id):
				await self.catalog.remove_favorite(user_id, property_id)
				await self.catalog.decrement_favorite(property_id)
				return False
			await self.catalog.add_favorite(user_id, property_id)
			await self.catalog.increment_favorite(property_id)
			return True

		return await self._call("favorite", _toggle)

	async def favorites(self, user_id: str) -> list[str]:
		return await self._call("favorites", lambda: self.catalog.list_favorites(user_id))

	async def increment_view(self, property_id: str) -> None:
		await self._call("view", lambda: self.catalog.increment_view(property_id))

	async def record_view(self, event: models.ViewEvent) -> None:
		async def _record() -> None:
			await self.catalog.record_view(event)
			await self.catalog.increment_view(event.property_id)

		await self._call("track_view", _record)

	async def record_contact(self, event: models.ContactEvent) -> None:
		async def _record() -> None:
			await self.catalog.record_contact(event)
			if event.success:
				await self.catalog.increment_contact(event.property_id)

		await self._call("track_contact", _record)
