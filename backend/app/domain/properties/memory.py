"""In-memory catalog store for local development and tests."""

from __future__ import annotations

import asyncio
import math
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from app.domain.properties import models
from app.domain.properties.catalog import CatalogStore
from app.domain.properties.facets import price_bucket
from app.domain.properties.schemas import PRICE_CEILING

EARTH_RADIUS_KM = 6371.0088


def haversine_km(a: models.GeoPoint, b: models.GeoPoint) -> float:
	lat1, lng1, lat2, lng2 = map(math.radians, (a.lat, a.lng, b.lat, b.lng))
	dlat = lat2 - lat1
	dlng = lng2 - lng1
	h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
	return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def matches(record: models.PropertyRecord, filters: models.CatalogFilters) -> bool:
	amount = record.price.amount
	if filters.price_min > 0 and amount < filters.price_min:
		return False
	if filters.price_max < PRICE_CEILING and amount > filters.price_max:
		return False
	if filters.bedrooms and record.bedrooms not in filters.bedrooms:
		return False
	if filters.property_types and record.type not in filters.property_types:
		return False
	if filters.amenities and not set(filters.amenities).issubset(record.amenities):
		return False
	if filters.text:
		needle = filters.text.lower()
		haystack = (record.title, record.description, record.neighborhood or "")
		if not any(needle in field.lower() for field in haystack):
			return False
	return True


def _sort(records: list[models.PropertyRecord], sort: str, center: Optional[models.GeoPoint]) -> None:
	# Stable sorts applied from the secondary key outwards.
	records.sort(key=lambda r: r.created_at, reverse=True)
	if sort == "relevance":
		records.sort(key=lambda r: r.featured, reverse=True)
	elif sort == "price_asc":
		records.sort(key=lambda r: r.price.amount)
	elif sort == "price_desc":
		records.sort(key=lambda r: r.price.amount, reverse=True)
	elif sort == "distance" and center is not None:
		records.sort(key=lambda r: haversine_km(center, r.coordinates) if r.coordinates else math.inf)


class MemoryCatalogStore(CatalogStore):
	"""Catalog primitives over a seeded list of :class:`models.PropertyRecord`."""

	def __init__(self, records: Iterable[models.PropertyRecord] = ()) -> None:
		self._records: dict[str, models.PropertyRecord] = {}
		self._favorites: dict[str, list[str]] = {}
		self.views: list[models.ViewEvent] = []
		self.contacts: list[models.ContactEvent] = []
		self._lock = asyncio.Lock()
		self.seed(records)

	def seed(self, records: Iterable[models.PropertyRecord]) -> None:
		for record in records:
			self._records[record.id] = record

	def reset(self) -> None:
		self._records.clear()
		self._favorites.clear()
		self.views.clear()
		self.contacts.clear()

	def _active(self, filters: models.CatalogFilters) -> list[models.PropertyRecord]:
		return [record for record in self._records.values() if matches(record, filters)]

	async def list_properties(
		self,
		filters: models.CatalogFilters,
		*,
		sort: str,
		offset: int,
		limit: int,
		center: Optional[models.GeoPoint] = None,
	) -> models.CatalogPage:
		rows = self._active(filters)
		_sort(rows, sort, center)
		page = rows[offset : offset + limit]
		if sort == "distance" and center is not None:
			page = [
				replace(record, distance_km=haversine_km(center, record.coordinates)) if record.coordinates else record
				for record in page
			]
		return models.CatalogPage(records=page, total=len(rows))

	async def in_bounds(
		self,
		bounds: models.GeoBounds,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> models.CatalogPage:
		rows = [r for r in self._active(filters) if r.coordinates is not None and bounds.contains(r.coordinates)]
		_sort(rows, "relevance", None)
		return models.CatalogPage(records=rows[:limit], total=len(rows))

	async def nearby(
		self,
		center: models.GeoPoint,
		radius_km: float,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> list[models.PropertyRecord]:
		hits: list[models.PropertyRecord] = []
		for record in self._active(filters):
			if record.coordinates is None:
				continue
			distance = haversine_km(center, record.coordinates)
			if distance <= radius_km:
				hits.append(replace(record, distance_km=distance))
		hits.sort(key=lambda r: (r.distance_km, -r.created_at.timestamp()))
		return hits[:limit]

	async def cluster(
		self,
		bounds: models.GeoBounds,
		zoom: int,
		filters: models.CatalogFilters,
	) -> list[models.CatalogCluster]:
		cell = 360.0 / (2**zoom)
		cells: dict[tuple[int, int], list[models.PropertyRecord]] = {}
		for record in self._active(filters):
			point = record.coordinates
			if point is None or not bounds.contains(point):
				continue
			key = (math.floor(point.lng / cell), math.floor(point.lat / cell))
			cells.setdefault(key, []).append(record)
		clusters: list[models.CatalogCluster] = []
		for (gx, gy), members in cells.items():
			members.sort(key=lambda r: r.id)
			clusters.append(
				models.CatalogCluster(
					cluster_id=f"z{zoom}:{gx}:{gy}",
					centroid=models.GeoPoint(
						lat=sum(m.coordinates.lat for m in members) / len(members),
						lng=sum(m.coordinates.lng for m in members) / len(members),
					),
					prices=[m.price.amount for m in members],
					property_ids=[m.id for m in members],
				)
			)
		return clusters

	async def get_by_id(self, property_id: str) -> Optional[models.PropertyRecord]:
		return self._records.get(property_id)

	async def find_similar(
		self,
		*,
		property_type: str,
		bedrooms: Sequence[int],
		price_min: float,
		price_max: float,
		exclude_id: str,
		limit: int,
	) -> list[models.PropertyRecord]:
		rows = [
			record
			for record in self._records.values()
			if record.id != exclude_id
			and record.type == property_type
			and record.bedrooms in bedrooms
			and price_min <= record.price.amount <= price_max
		]
		_sort(rows, "relevance", None)
		return rows[:limit]

	async def neighborhoods_matching(self, text: str, *, limit: int) -> list[models.NeighborhoodHit]:
		counts = Counter(r.neighborhood for r in self._records.values() if r.neighborhood)
		needle = text.lower()
		hits = [
			models.NeighborhoodHit(id=uuid.uuid5(uuid.NAMESPACE_URL, name).hex[:12], name=name, properties_count=count)
			for name, count in counts.items()
			if needle in name.lower()
		]
		hits.sort(key=lambda hit: (-hit.properties_count, hit.name))
		return hits[:limit]

	async def facet_counts(
		self,
		filters: models.CatalogFilters,
		bounds: Optional[models.GeoBounds] = None,
	) -> models.FacetCounts:
		rows = self._active(filters)
		if bounds is not None:
			rows = [r for r in rows if r.coordinates is not None and bounds.contains(r.coordinates)]
		amenities: Counter[str] = Counter()
		for record in rows:
			amenities.update(record.amenities)
		return models.FacetCounts(
			neighborhoods=dict(Counter(r.neighborhood for r in rows if r.neighborhood)),
			price_ranges=dict(Counter(price_bucket(r.price.amount) for r in rows)),
			property_types=dict(Counter(r.type for r in rows)),
			amenities=dict(amenities),
		)

	async def _bump(self, property_id: str, field: str, delta: int) -> None:
		async with self._lock:
			record = self._records.get(property_id)
			if record is None:
				return
			setattr(record, field, max(0, getattr(record, field) + delta))
			record.updated_at = datetime.now(timezone.utc)

	async def increment_view(self, property_id: str) -> None:
		await self._bump(property_id, "view_count", 1)

	async def increment_contact(self, property_id: str) -> None:
		await self._bump(property_id, "contact_count", 1)

	async def increment_favorite(self, property_id: str) -> None:
		await self._bump(property_id, "favorite_count", 1)

	async def decrement_favorite(self, property_id: str) -> None:
		await self._bump(property_id, "favorite_count", -1)

	async def is_favorite(self, user_id: str, property_id: str) -> bool:
		return property_id in self._favorites.get(user_id, [])

	async def add_favorite(self, user_id: str, property_id: str) -> None:
		async with self._lock:
			favorites = self._favorites.setdefault(user_id, [])
			if property_id not in favorites:
				favorites.insert(0, property_id)

	async def remove_favorite(self, user_id: str, property_id: str) -> None:
		async with self._lock:
			favorites = self._favorites.get(user_id, [])
			if property_id in favorites:
				favorites.remove(property_id)

	async def list_favorites(self, user_id: str) -> list[str]:
		return list(self._favorites.get(user_id, []))

	async def record_view(self, event: models.ViewEvent) -> None:
		self.views.append(event)

	async def record_contact(self, event: models.ContactEvent) -> None:
		self.contacts.append(event)
