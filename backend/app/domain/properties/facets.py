"""Facet bucketing shared by the catalog implementations."""

from __future__ import annotations

from typing import Optional

from app.domain.properties import models, schemas

# (label, lower bound inclusive, upper bound exclusive)
PRICE_BUCKETS: tuple[tuple[str, float, Optional[float]], ...] = (
	("0-5000", 0, 5000),
	("5000-10000", 5000, 10000),
	("10000-15000", 10000, 15000),
	("15000-25000", 15000, 25000),
	("25000+", 25000, None),
)
PROPERTY_TYPES = ("apartment", "house", "room", "office")
TOP_N = 20


def price_bucket(amount: float) -> str:
	for label, low, high in PRICE_BUCKETS:
		if amount >= low and (high is None or amount < high):
			return label
	return PRICE_BUCKETS[0][0]


def _top(counts: dict[str, int]) -> list[tuple[str, int]]:
	ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
	return ordered[:TOP_N]


def build_summary(counts: models.FacetCounts) -> schemas.FacetSummary:
	return schemas.FacetSummary(
		neighborhoods=[
			schemas.NeighborhoodFacet(name=name, count=count) for name, count in _top(counts.neighborhoods)
		],
		price_ranges=[
			schemas.PriceRangeFacet(range=label, count=int(counts.price_ranges.get(label, 0)))
			for label, _, _ in PRICE_BUCKETS
		],
		property_types=[
			schemas.TypeFacet(type=kind, count=int(counts.property_types.get(kind, 0))) for kind in PROPERTY_TYPES
		],
		amenities=[schemas.AmenityFacet(amenity=name, count=count) for name, count in _top(counts.amenities)],
	)
