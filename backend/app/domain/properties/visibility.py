"""Caller-dependent field projection for property records."""

from __future__ import annotations

from typing import Iterable, Optional

from app.domain.properties import models, schemas

ANONYMOUS_IMAGE_LIMIT = 3


class VisibilityFilter:
	"""Project catalog records into the shape a given caller may see.

	Anonymous callers get a neighborhood-level address, no contact numbers and
	at most three images. Every entry point returning a property goes through
	:meth:`project` before the result is cached or returned.
	"""

	def __init__(self, *, default_city: str, default_currency: str = "HNL") -> None:
		self._default_city = default_city
		self._default_currency = default_currency

	def anonymous_address(self, record: models.PropertyRecord) -> str:
		city = (record.city or "").strip() or self._default_city
		neighborhood = (record.neighborhood or "").strip()
		if neighborhood:
			return f"{neighborhood}, {city}"
		return city

	def _full_address(self, record: models.PropertyRecord) -> str:
		for candidate in (record.formatted_address, record.street_address):
			if candidate and candidate.strip():
				return candidate.strip()
		return self.anonymous_address(record)

	def project(self, record: models.PropertyRecord, caller: models.CallerContext) -> schemas.PropertyOut:
		authenticated = caller.is_authenticated
		images = sorted(record.images, key=lambda image: image.order)
		if not authenticated:
			images = images[:ANONYMOUS_IMAGE_LIMIT]
		return schemas.PropertyOut(
			id=record.id,
			title=record.title,
			description=record.description or "",
			type=record.type,
			address=self._full_address(record) if authenticated else self.anonymous_address(record),
			neighborhood=record.neighborhood,
			city=record.city or self._default_city,
			coordinates=_coordinates(record.coordinates),
			price=schemas.PriceOut(
				amount=float(record.price.amount),
				currency=record.price.currency or self._default_currency,
				period=record.price.period or "month",
			),
			bedrooms=record.bedrooms,
			bathrooms=record.bathrooms,
			area_sqm=record.area_sqm,
			amenities=list(record.amenities),
			images=[
				schemas.ImageOut(
					id=image.id,
					url=image.url,
					alt=image.alt or record.title,
					is_primary=image.is_primary,
					order=image.order,
				)
				for image in images
			],
			view_count=record.view_count,
			favorite_count=record.favorite_count,
			contact_count=record.contact_count,
			contact_phone=record.contact_phone if authenticated else None,
			contact_whatsapp=record.contact_whatsapp if authenticated else None,
			landlord=_landlord(record.landlord, include_phone=authenticated),
			distance_km=record.distance_km,
			created_at=record.created_at,
			updated_at=record.updated_at,
		)

	def project_many(
		self,
		records: Iterable[models.PropertyRecord],
		caller: models.CallerContext,
	) -> list[schemas.PropertyOut]:
		return [self.project(record, caller) for record in records]


def _coordinates(point: Optional[models.GeoPoint]) -> Optional[schemas.Coordinates]:
	if point is None:
		return None
	return schemas.Coordinates(lat=point.lat, lng=point.lng)


def _landlord(landlord: Optional[models.LandlordSummary], *, include_phone: bool) -> Optional[schemas.LandlordOut]:
	if landlord is None:
		return None
	return schemas.LandlordOut(
		id=landlord.id,
		name=landlord.name or "Propietario",
		phone=landlord.phone if include_phone else None,
		rating=landlord.rating,
		verified=landlord.verified,
	)
