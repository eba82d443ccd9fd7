"""Catalog store collaborator: the query primitives discovery reads through."""

from __future__ import annotations

import json
from typing import Any, Optional, Protocol, Sequence

import asyncpg

from app.domain.properties import models
from app.domain.properties.facets import PRICE_BUCKETS
from app.domain.properties.schemas import PRICE_CEILING


class CatalogStore(Protocol):
	async def list_properties(
		self,
		filters: models.CatalogFilters,
		*,
		sort: str,
		offset: int,
		limit: int,
		center: Optional[models.GeoPoint] = None,
	) -> models.CatalogPage:
		...

	async def in_bounds(
		self,
		bounds: models.GeoBounds,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> models.CatalogPage:
		...

	async def nearby(
		self,
		center: models.GeoPoint,
		radius_km: float,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> list[models.PropertyRecord]:
		...

	async def cluster(
		self,
		bounds: models.GeoBounds,
		zoom: int,
		filters: models.CatalogFilters,
	) -> list[models.CatalogCluster]:
		...

	async def get_by_id(self, property_id: str) -> Optional[models.PropertyRecord]:
		...

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
		...

	async def neighborhoods_matching(self, text: str, *, limit: int) -> list[models.NeighborhoodHit]:
		...

	async def facet_counts(
		self,
		filters: models.CatalogFilters,
		bounds: Optional[models.GeoBounds] = None,
	) -> models.FacetCounts:
		...

	async def increment_view(self, property_id: str) -> None:
		...

	async def increment_contact(self, property_id: str) -> None:
		...

	async def increment_favorite(self, property_id: str) -> None:
		...

	async def decrement_favorite(self, property_id: str) -> None:
		...

	async def is_favorite(self, user_id: str, property_id: str) -> bool:
		...

	async def add_favorite(self, user_id: str, property_id: str) -> None:
		...

	async def remove_favorite(self, user_id: str, property_id: str) -> None:
		...

	async def list_favorites(self, user_id: str) -> list[str]:
		...

	async def record_view(self, event: models.ViewEvent) -> None:
		...

	async def record_contact(self, event: models.ContactEvent) -> None:
		...


_SORT_SQL = {
	"relevance": "p.featured DESC, p.created_at DESC",
	"price_asc": "p.price_amount ASC, p.created_at DESC",
	"price_desc": "p.price_amount DESC, p.created_at DESC",
	"recency": "p.created_at DESC",
}

_SELECT = """
SELECT p.id::text AS id, p.title, p.description, p.type, p.price_amount, p.currency,
       p.bedrooms, p.bathrooms, p.area_sqm, p.amenities, p.featured,
       p.view_count, p.favorite_count, p.contact_count,
       p.contact_phone, p.contact_whatsapp, p.created_at, p.updated_at,
       l.street_address, l.formatted_address, l.neighborhood, l.city,
       ST_Y(l.coordinates::geometry) AS lat, ST_X(l.coordinates::geometry) AS lng,
       ll.id::text AS landlord_id, ll.business_name, ll.whatsapp_number, ll.rating,
       ll.verification_status,
       COALESCE(img.images, '[]'::json) AS images
       {extra}
FROM properties p
LEFT JOIN property_locations l ON l.property_id = p.id
LEFT JOIN landlords ll ON ll.id = p.landlord_id
LEFT JOIN LATERAL (
    SELECT json_agg(
        json_build_object(
            'id', i.id::text, 'url', i.image_url, 'alt', i.alt_text,
            'is_primary', i.is_primary, 'order', i.display_order
        ) ORDER BY i.display_order
    ) AS images
    FROM property_images i
    WHERE i.property_id = p.id
) img ON TRUE
"""

_FROM_FILTERED = """
FROM properties p
LEFT JOIN property_locations l ON l.property_id = p.id
"""


class _Args:
	"""Positional parameter accumulator for asyncpg's ``$n`` placeholders."""

	def __init__(self) -> None:
		self.values: list[Any] = []

	def add(self, value: Any) -> str:
		self.values.append(value)
		return f"${len(self.values)}"


def _filter_clauses(
	filters: models.CatalogFilters,
	args: _Args,
	bounds: Optional[models.GeoBounds] = None,
) -> list[str]:
	clauses = ["p.status = 'active'"]
	if filters.price_min > 0:
		clauses.append(f"p.price_amount >= {args.add(float(filters.price_min))}")
	if filters.price_max < PRICE_CEILING:
		clauses.append(f"p.price_amount <= {args.add(float(filters.price_max))}")
	if filters.bedrooms:
		clauses.append(f"p.bedrooms = ANY({args.add(list(filters.bedrooms))}::int[])")
	if filters.property_types:
		clauses.append(f"p.type = ANY({args.add(list(filters.property_types))}::text[])")
	if filters.amenities:
		clauses.append(f"p.amenities @> {args.add(list(filters.amenities))}::text[]")
	if filters.text:
		pattern = args.add(f"%{filters.text}%")
		clauses.append(f"(p.title ILIKE {pattern} OR p.description ILIKE {pattern} OR l.neighborhood ILIKE {pattern})")
	if bounds is not None:
		clauses.append(
			"l.coordinates::geometry && ST_MakeEnvelope({}, {}, {}, {}, 4326)".format(
				args.add(bounds.west), args.add(bounds.south), args.add(bounds.east), args.add(bounds.north)
			)
		)
	return clauses


def _json_value(raw: Any) -> Any:
	if isinstance(raw, str):
		return json.loads(raw)
	return raw


def _record_from_row(row: Any) -> models.PropertyRecord:
	coordinates = None
	if row["lat"] is not None and row["lng"] is not None:
		coordinates = models.GeoPoint(lat=float(row["lat"]), lng=float(row["lng"]))
	landlord = None
	if row["landlord_id"]:
		landlord = models.LandlordSummary(
			id=row["landlord_id"],
			name=row["business_name"] or "Propietario",
			phone=row["whatsapp_number"],
			rating=float(row["rating"] or 4.5),
			verified=row["verification_status"] == "verified",
		)
	images = [
		models.PropertyImage(
			id=str(item.get("id")),
			url=item.get("url") or "",
			alt=item.get("alt") or "",
			is_primary=bool(item.get("is_primary")),
			order=int(item.get("order") or 0),
		)
		for item in _json_value(row["images"]) or []
	]
	keys = row.keys()
	return models.PropertyRecord(
		id=row["id"],
		title=row["title"],
		type=row["type"],
		price=models.Price(amount=float(row["price_amount"]), currency=row["currency"] or "HNL"),
		description=row["description"] or "",
		street_address=row["street_address"],
		formatted_address=row["formatted_address"],
		neighborhood=row["neighborhood"],
		city=row["city"],
		coordinates=coordinates,
		bedrooms=int(row["bedrooms"] or 0),
		bathrooms=float(row["bathrooms"] or 0),
		area_sqm=float(row["area_sqm"]) if row["area_sqm"] is not None else None,
		amenities=list(row["amenities"] or []),
		images=images,
		view_count=int(row["view_count"] or 0),
		favorite_count=int(row["favorite_count"] or 0),
		contact_count=int(row["contact_count"] or 0),
		contact_phone=row["contact_phone"],
		contact_whatsapp=row["contact_whatsapp"],
		landlord=landlord,
		featured=bool(row["featured"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
		distance_km=float(row["distance_km"]) if "distance_km" in keys and row["distance_km"] is not None else None,
	)


class PostgresCatalogStore(CatalogStore):
	"""Catalog primitives backed by PostGIS through asyncpg."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self.pool = pool

	async def list_properties(
		self,
		filters: models.CatalogFilters,
		*,
		sort: str,
		offset: int,
		limit: int,
		center: Optional[models.GeoPoint] = None,
	) -> models.CatalogPage:
		args = _Args()
		extra = ", count(*) OVER () AS total_count"
		if sort == "distance" and center is not None:
			point = "ST_SetSRID(ST_MakePoint({}, {}), 4326)::geography".format(args.add(center.lng), args.add(center.lat))
			extra += f", ST_Distance(l.coordinates, {point}) / 1000.0 AS distance_km"
			order = "distance_km ASC NULLS LAST, p.created_at DESC"
		else:
			order = _SORT_SQL.get(sort, _SORT_SQL["relevance"])
		where = " AND ".join(_filter_clauses(filters, args))
		query = (
			_SELECT.format(extra=extra)
			+ f"WHERE {where}\nORDER BY {order}\nOFFSET {args.add(offset)} LIMIT {args.add(limit)}"
		)
		rows = await self.pool.fetch(query, *args.values)
		if rows:
			return models.CatalogPage(records=[_record_from_row(row) for row in rows], total=int(rows[0]["total_count"]))
		if offset == 0:
			return models.CatalogPage(records=[], total=0)
		count_args = _Args()
		count_where = " AND ".join(_filter_clauses(filters, count_args))
		total = await self.pool.fetchval(f"SELECT count(*) {_FROM_FILTERED} WHERE {count_where}", *count_args.values)
		return models.CatalogPage(records=[], total=int(total or 0))

	async def in_bounds(
		self,
		bounds: models.GeoBounds,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> models.CatalogPage:
		args = _Args()
		where = " AND ".join(_filter_clauses(filters, args, bounds))
		query = (
			_SELECT.format(extra=", count(*) OVER () AS total_count")
			+ f"WHERE {where}\nORDER BY {_SORT_SQL['relevance']}\nLIMIT {args.add(limit)}"
		)
		rows = await self.pool.fetch(query, *args.values)
		total = int(rows[0]["total_count"]) if rows else 0
		return models.CatalogPage(records=[_record_from_row(row) for row in rows], total=total)

	async def nearby(
		self,
		center: models.GeoPoint,
		radius_km: float,
		filters: models.CatalogFilters,
		*,
		limit: int,
	) -> list[models.PropertyRecord]:
		args = _Args()
		point = "ST_SetSRID(ST_MakePoint({}, {}), 4326)::geography".format(args.add(center.lng), args.add(center.lat))
		clauses = _filter_clauses(filters, args)
		clauses.append(f"ST_DWithin(l.coordinates, {point}, {args.add(radius_km * 1000.0)})")
		query = (
			_SELECT.format(extra=f", ST_Distance(l.coordinates, {point}) / 1000.0 AS distance_km")
			+ f"WHERE {' AND '.join(clauses)}\nORDER BY distance_km ASC, p.created_at DESC\nLIMIT {args.add(limit)}"
		)
		rows = await self.pool.fetch(query, *args.values)
		return [_record_from_row(row) for row in rows]

	async def cluster(
		self,
		bounds: models.GeoBounds,
		zoom: int,
		filters: models.CatalogFilters,
	) -> list[models.CatalogCluster]:
		args = _Args()
		cell = args.add(360.0 / (2**zoom))
		where = " AND ".join(_filter_clauses(filters, args, bounds))
		query = f"""
		WITH pts AS (
			SELECT p.id::text AS id, p.price_amount::float8 AS price,
			       l.coordinates::geometry AS geom,
			       ST_SnapToGrid(l.coordinates::geometry, {cell}) AS cell
			{_FROM_FILTERED}
			WHERE {where} AND l.coordinates IS NOT NULL
		)
		SELECT concat('z', {args.add(zoom)}::int, ':', ST_X(cell), ':', ST_Y(cell)) AS cluster_id,
		       ST_Y(ST_Centroid(ST_Collect(geom))) AS centroid_lat,
		       ST_X(ST_Centroid(ST_Collect(geom))) AS centroid_lng,
		       array_agg(price ORDER BY id) AS prices,
		       array_agg(id ORDER BY id) AS property_ids
		FROM pts
		GROUP BY cell
		"""
		rows = await self.pool.fetch(query, *args.values)
		return [
			models.CatalogCluster(
				cluster_id=row["cluster_id"],
				centroid=models.GeoPoint(lat=float(row["centroid_lat"]), lng=float(row["centroid_lng"])),
				prices=[float(price) for price in row["prices"] or []],
				property_ids=list(row["property_ids"] or []),
			)
			for row in rows
		]

	async def get_by_id(self, property_id: str) -> Optional[models.PropertyRecord]:
		# Withdrawn or draft listings are not addressable by id either.
		query = _SELECT.format(extra="") + "WHERE p.id::text = $1 AND p.status = 'active'"
		row = await self.pool.fetchrow(query, property_id)
		if row is None:
			return None
		return _record_from_row(row)

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
		query = (
			_SELECT.format(extra="")
			+ """
			WHERE p.status = 'active'
			  AND p.type = $1
			  AND p.bedrooms = ANY($2::int[])
			  AND p.price_amount BETWEEN $3 AND $4
			  AND p.id::text <> $5
			ORDER BY p.featured DESC, p.created_at DESC
			LIMIT $6
			"""
		)
		rows = await self.pool.fetch(
			query, property_type, list(bedrooms), float(price_min), float(price_max), exclude_id, limit
		)
		return [_record_from_row(row) for row in rows]

	async def neighborhoods_matching(self, text: str, *, limit: int) -> list[models.NeighborhoodHit]:
		rows = await self.pool.fetch(
			"""
			SELECT id::text AS id, name, properties_count
			FROM neighborhoods
			WHERE name ILIKE $1
			ORDER BY properties_count DESC
			LIMIT $2
			""",
			f"%{text}%",
			limit,
		)
		return [
			models.NeighborhoodHit(id=row["id"], name=row["name"], properties_count=int(row["properties_count"] or 0))
			for row in rows
		]

	async def facet_counts(
		self,
		filters: models.CatalogFilters,
		bounds: Optional[models.GeoBounds] = None,
	) -> models.FacetCounts:
		args = _Args()
		where = " AND ".join(_filter_clauses(filters, args, bounds))
		cases = " ".join(
			f"WHEN p.price_amount < {high} THEN '{label}'" for label, _, high in PRICE_BUCKETS if high is not None
		)
		overflow = PRICE_BUCKETS[-1][0]
		query = f"""
		WITH base AS (
			SELECT p.type, p.amenities, l.neighborhood,
			       CASE {cases} ELSE '{overflow}' END AS bucket
			{_FROM_FILTERED}
			WHERE {where}
		)
		SELECT
			(SELECT json_object_agg(neighborhood, c) FROM (
				SELECT neighborhood, count(*) AS c FROM base WHERE neighborhood IS NOT NULL GROUP BY neighborhood
			) n) AS neighborhoods,
			(SELECT json_object_agg(bucket, c) FROM (SELECT bucket, count(*) AS c FROM base GROUP BY bucket) b) AS price_ranges,
			(SELECT json_object_agg(type, c) FROM (SELECT type, count(*) AS c FROM base GROUP BY type) t) AS property_types,
			(SELECT json_object_agg(amenity, c) FROM (
				SELECT amenity, count(*) AS c FROM base, unnest(base.amenities) AS amenity GROUP BY amenity
			) a) AS amenities
		"""
		row = await self.pool.fetchrow(query, *args.values)
		if row is None:
			return models.FacetCounts()
		return models.FacetCounts(
			neighborhoods=dict(_json_value(row["neighborhoods"]) or {}),
			price_ranges=dict(_json_value(row["price_ranges"]) or {}),
			property_types=dict(_json_value(row["property_types"]) or {}),
			amenities=dict(_json_value(row["amenities"]) or {}),
		)

	async def increment_view(self, property_id: str) -> None:
		await self.pool.execute("UPDATE properties SET view_count = view_count + 1 WHERE id::text = $1", property_id)

	async def increment_contact(self, property_id: str) -> None:
		await self.pool.execute(
			"UPDATE properties SET contact_count = contact_count + 1 WHERE id::text = $1", property_id
		)

	async def increment_favorite(self, property_id: str) -> None:
		await self.pool.execute(
			"UPDATE properties SET favorite_count = favorite_count + 1 WHERE id::text = $1", property_id
		)

	async def decrement_favorite(self, property_id: str) -> None:
		await self.pool.execute(
			"UPDATE properties SET favorite_count = GREATEST(favorite_count - 1, 0) WHERE id::text = $1",
			property_id,
		)

	async def is_favorite(self, user_id: str, property_id: str) -> bool:
		row = await self.pool.fetchrow(
			"SELECT 1 FROM property_favorites WHERE user_id::text = $1 AND property_id::text = $2 LIMIT 1",
			user_id,
			property_id,
		)
		return row is not None

	async def add_favorite(self, user_id: str, property_id: str) -> None:
		await self.pool.execute(
			"""
			INSERT INTO property_favorites (user_id, property_id)
			VALUES ($1::uuid, $2::uuid)
			ON CONFLICT (user_id, property_id) DO NOTHING
			""",
			user_id,
			property_id,
		)

	async def remove_favorite(self, user_id: str, property_id: str) -> None:
		await self.pool.execute(
			"DELETE FROM property_favorites WHERE user_id::text = $1 AND property_id::text = $2",
			user_id,
			property_id,
		)

	async def list_favorites(self, user_id: str) -> list[str]:
		rows = await self.pool.fetch(
			"""
			SELECT property_id::text AS property_id
			FROM property_favorites
			WHERE user_id::text = $1
			ORDER BY created_at DESC
			""",
			user_id,
		)
		return [row["property_id"] for row in rows]

	async def record_view(self, event: models.ViewEvent) -> None:
		await self.pool.execute(
			"""
			INSERT INTO property_views (property_id, user_id, session_id, source, ip_address, user_agent, referrer)
			VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7)
			""",
			event.property_id,
			event.user_id,
			event.session_id,
			event.source,
			event.ip_address,
			event.user_agent,
			event.referrer,
		)

	async def record_contact(self, event: models.ContactEvent) -> None:
		await self.pool.execute(
			"""
			INSERT INTO property_contact_events (
				property_id, user_id, session_id, contact_method, source,
				phone_number, success, error_message, ip_address, user_agent
			)
			VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7, $8, $9, $10)
			""",
			event.property_id,
			event.user_id,
			event.session_id,
			event.contact_method,
			event.source,
			event.phone_number,
			event.success,
			event.error_message,
			event.ip_address,
			event.user_agent,
		)
