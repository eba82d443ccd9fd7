"""Domain models for the property discovery subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

IdentityClass = Literal["auth", "anon"]


@dataclass(slots=True, frozen=True)
class CallerContext:
	"""Viewer identity resolved per request. Never persisted."""

	user_id: Optional[str] = None
	is_authenticated: bool = False

	@property
	def identity_class(self) -> IdentityClass:
		return "auth" if self.is_authenticated else "anon"

	@classmethod
	def anonymous(cls) -> "CallerContext":
		return cls(user_id=None, is_authenticated=False)

	@classmethod
	def for_user(cls, user_id: str) -> "CallerContext":
		return cls(user_id=user_id, is_authenticated=True)


@dataclass(slots=True, frozen=True)
class GeoPoint:
	lat: float
	lng: float


@dataclass(slots=True, frozen=True)
class GeoBounds:
	north: float
	south: float
	east: float
	west: float

	def contains(self, point: GeoPoint) -> bool:
		return self.south <= point.lat <= self.north and self.west <= point.lng <= self.east


@dataclass(slots=True)
class Price:
	amount: float
	currency: str = "HNL"
	period: str = "month"


@dataclass(slots=True)
class PropertyImage:
	id: str
	url: str
	alt: str = ""
	is_primary: bool = False
	order: int = 0


@dataclass(slots=True)
class LandlordSummary:
	id: str
	name: str = "Propietario"
	phone: Optional[str] = None
	rating: float = 4.5
	verified: bool = False


@dataclass(slots=True)
class PropertyRecord:
	"""Canonical catalog entity. Owned by the catalog store, read-only here."""

	id: str
	title: str
	type: str
	price: Price
	description: str = ""
	street_address: Optional[str] = None
	formatted_address: Optional[str] = None
	neighborhood: Optional[str] = None
	city: Optional[str] = None
	coordinates: Optional[GeoPoint] = None
	bedrooms: int = 0
	bathrooms: float = 0
	area_sqm: Optional[float] = None
	amenities: list[str] = field(default_factory=list)
	images: list[PropertyImage] = field(default_factory=list)
	view_count: int = 0
	favorite_count: int = 0
	contact_count: int = 0
	contact_phone: Optional[str] = None
	contact_whatsapp: Optional[str] = None
	landlord: Optional[LandlordSummary] = None
	featured: bool = False
	created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
	updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
	distance_km: Optional[float] = None


@dataclass(slots=True, frozen=True)
class CatalogFilters:
	"""Predicate set handed to the catalog primitives."""

	price_min: float = 0
	price_max: float = 100_000
	bedrooms: tuple[int, ...] = ()
	property_types: tuple[str, ...] = ()
	amenities: tuple[str, ...] = ()
	text: Optional[str] = None


@dataclass(slots=True)
class CatalogPage:
	records: list[PropertyRecord]
	total: int


@dataclass(slots=True)
class CatalogCluster:
	"""Raw cluster row produced by the catalog clustering primitive."""

	cluster_id: str
	centroid: GeoPoint
	prices: list[float]
	property_ids: list[str]


@dataclass(slots=True)
class FacetCounts:
	neighborhoods: dict[str, int] = field(default_factory=dict)
	price_ranges: dict[str, int] = field(default_factory=dict)
	property_types: dict[str, int] = field(default_factory=dict)
	amenities: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class NeighborhoodHit:
	id: str
	name: str
	properties_count: int = 0


@dataclass(slots=True)
class ViewEvent:
	property_id: str
	source: str
	user_id: Optional[str] = None
	session_id: Optional[str] = None
	ip_address: Optional[str] = None
	user_agent: Optional[str] = None
	referrer: Optional[str] = None


@dataclass(slots=True)
class ContactEvent:
	property_id: str
	source: str
	contact_method: str
	user_id: Optional[str] = None
	session_id: Optional[str] = None
	phone_number: Optional[str] = None
	success: bool = True
	error_message: Optional[str] = None
	ip_address: Optional[str] = None
	user_agent: Optional[str] = None
