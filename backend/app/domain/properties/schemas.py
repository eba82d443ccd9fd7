"""Pydantic schemas for property discovery procedures."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SortMode = Literal["relevance", "price_asc", "price_desc", "recency", "distance"]
PropertyType = Literal["apartment", "house", "room", "office"]
ViewSource = Literal["list", "map", "modal", "detail"]
ContactMethod = Literal["whatsapp", "phone", "email"]

PRICE_CEILING = 1_000_000
MAX_LIMIT = 50
DEFAULT_LIMIT = 24

# Accepted for clients still sending the original Spanish labels.
_SORT_ALIASES = {
	"relevancia": "relevance",
	"precio_asc": "price_asc",
	"precio_desc": "price_desc",
	"reciente": "recency",
}
_SOURCE_ALIASES = {
	"lista": "list",
	"mapa": "map",
	"detalle": "detail",
}

Bedroom = Annotated[int, Field(ge=0, le=20)]
Amenity = Annotated[str, Field(min_length=1, max_length=100)]


class Coordinates(BaseModel):
	model_config = ConfigDict(frozen=True)

	lat: float = Field(..., ge=-90.0, le=90.0)
	lng: float = Field(..., ge=-180.0, le=180.0)


class MapBounds(BaseModel):
	"""Viewport rectangle. Ordering and span are checked by the query normaliser."""

	model_config = ConfigDict(frozen=True)

	north: float = Field(..., ge=-90.0, le=90.0)
	south: float = Field(..., ge=-90.0, le=90.0)
	east: float = Field(..., ge=-180.0, le=180.0)
	west: float = Field(..., ge=-180.0, le=180.0)


class PropertyFilters(BaseModel):
	model_config = ConfigDict(frozen=True)

	location: Optional[str] = Field(default=None, max_length=200)
	price_min: float = Field(default=0, ge=0, le=PRICE_CEILING)
	price_max: float = Field(default=100_000, ge=0, le=PRICE_CEILING)
	bedrooms: tuple[Bedroom, ...] = Field(default=(), max_length=10)
	property_types: tuple[PropertyType, ...] = Field(default=(), max_length=10)
	amenities: tuple[Amenity, ...] = Field(default=(), max_length=20)
	sort_by: SortMode = "relevance"

	@field_validator("sort_by", mode="before")
	def _normalise_sort(cls, value: Any) -> Any:  # type: ignore[override]
		if isinstance(value, str):
			lowered = value.strip().lower()
			return _SORT_ALIASES.get(lowered, lowered)
		return value


class SearchQuery(PropertyFilters):
	"""Immutable search request shared by the list strategies."""

	bounds: Optional[MapBounds] = None
	coordinates: Optional[Coordinates] = None
	radius_km: Optional[float] = None
	cursor: Optional[str] = Field(default=None, max_length=100)
	limit: int = DEFAULT_LIMIT

	@field_validator("limit", mode="before")
	def _clamp_limit(cls, value: Any) -> Any:  # type: ignore[override]
		if value is None:
			return DEFAULT_LIMIT
		try:
			number = int(value)
		except (TypeError, ValueError):
			return value
		return max(1, min(MAX_LIMIT, number))

	def filters(self) -> PropertyFilters:
		return PropertyFilters(**self.model_dump(include=set(PropertyFilters.model_fields)))


class BoundsQuery(BaseModel):
	bounds: MapBounds
	filters: Optional[PropertyFilters] = None
	limit: int = Field(default=100, ge=1, le=1000)


class ClusterQuery(BaseModel):
	bounds: MapBounds
	zoom: float = Field(..., ge=1, le=20)
	filters: Optional[PropertyFilters] = None


class NearbyQuery(BaseModel):
	coordinates: Coordinates
	radius_km: float = 5.0
	filters: Optional[PropertyFilters] = None
	limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)


class AutocompleteQuery(BaseModel):
	query: str = Field(
		...,
		min_length=2,
		max_length=100,
		pattern=r"^[a-zA-Z0-9\s\-\.áéíóúñüÁÉÍÓÚÑÜ]+$",
	)
	limit: int = Field(default=10, ge=1, le=20)
	location: Optional[Coordinates] = None

	def normalized_query(self) -> str:
		return self.query.strip().lower()


class SimilarQuery(BaseModel):
	property_id: str = Field(..., min_length=1, max_length=64)
	limit: int = Field(default=6, ge=1, le=20)


class FacetsQuery(BaseModel):
	bounds: Optional[MapBounds] = None
	base_filters: Optional[PropertyFilters] = None


class FavoriteToggle(BaseModel):
	property_id: str = Field(..., min_length=1, max_length=64)


class TrackViewPayload(BaseModel):
	property_id: str = Field(..., min_length=1, max_length=64)
	source: ViewSource = "list"
	session_id: Optional[str] = Field(default=None, max_length=128)

	@field_validator("source", mode="before")
	def _normalise_source(cls, value: Any) -> Any:  # type: ignore[override]
		if isinstance(value, str):
			return _SOURCE_ALIASES.get(value.strip().lower(), value.strip().lower())
		return value


class TrackContactPayload(BaseModel):
	property_id: str = Field(..., min_length=1, max_length=64)
	source: Literal["modal", "detail", "list"] = "modal"
	contact_method: ContactMethod = "whatsapp"
	session_id: Optional[str] = Field(default=None, max_length=128)
	phone_number: Optional[str] = Field(default=None, max_length=20)
	success: bool = True
	error_message: Optional[str] = Field(default=None, max_length=500)

	@field_validator("source", mode="before")
	def _normalise_source(cls, value: Any) -> Any:  # type: ignore[override]
		if isinstance(value, str):
			return _SOURCE_ALIASES.get(value.strip().lower(), value.strip().lower())
		return value


# --- Responses ----------------------------------------------------------------


class PriceOut(BaseModel):
	amount: float
	currency: str
	period: str = "month"


class ImageOut(BaseModel):
	id: str
	url: str
	alt: str = ""
	is_primary: bool = False
	order: int = 0


class LandlordOut(BaseModel):
	id: str
	name: str
	phone: Optional[str] = None
	rating: float
	verified: bool


class PropertyOut(BaseModel):
	"""Visibility-projected property. Absent sensitive fields are dropped on dump."""

	id: str
	title: str
	description: str = ""
	type: str
	address: str
	neighborhood: Optional[str] = None
	city: Optional[str] = None
	coordinates: Optional[Coordinates] = None
	price: PriceOut
	bedrooms: int
	bathrooms: float
	area_sqm: Optional[float] = None
	amenities: list[str] = Field(default_factory=list)
	images: list[ImageOut] = Field(default_factory=list)
	view_count: int = 0
	favorite_count: int = 0
	contact_count: int = 0
	contact_phone: Optional[str] = None
	contact_whatsapp: Optional[str] = None
	landlord: Optional[LandlordOut] = None
	distance_km: Optional[float] = None
	created_at: datetime
	updated_at: datetime


class NeighborhoodFacet(BaseModel):
	name: str
	count: int


class PriceRangeFacet(BaseModel):
	range: str
	count: int


class TypeFacet(BaseModel):
	type: str
	count: int


class AmenityFacet(BaseModel):
	amenity: str
	count: int


class FacetSummary(BaseModel):
	neighborhoods: list[NeighborhoodFacet] = Field(default_factory=list)
	price_ranges: list[PriceRangeFacet] = Field(default_factory=list)
	property_types: list[TypeFacet] = Field(default_factory=list)
	amenities: list[AmenityFacet] = Field(default_factory=list)

	@classmethod
	def empty(cls) -> "FacetSummary":
		return cls()


class SearchResult(BaseModel):
	properties: list[PropertyOut]
	total: int = Field(..., ge=0)
	facets: FacetSummary = Field(default_factory=FacetSummary)
	next_cursor: Optional[str] = None


class BoundsResult(BaseModel):
	properties: list[PropertyOut]
	total: int = Field(..., ge=0)
	bounds: MapBounds


class NearbyResult(BaseModel):
	properties: list[PropertyOut]
	total: int = Field(..., ge=0)
	center: Coordinates
	radius_km: float


class ClusterPoint(BaseModel):
	id: str
	coordinates: Coordinates
	count: int = Field(..., ge=0)
	min_price: float
	avg_price: float
	max_price: float
	property_ids: list[str] = Field(default_factory=list)


class Suggestion(BaseModel):
	id: str
	text: str
	type: Literal["location", "filter"]
	icon: str
	subtitle: Optional[str] = None
	metadata: dict[str, Any] = Field(default_factory=dict)


class FavoriteResponse(BaseModel):
	is_favorite: bool


class TrackResponse(BaseModel):
	success: bool


class FavoritesList(BaseModel):
	property_ids: list[str]
