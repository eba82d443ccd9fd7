"""Map cluster aggregation over catalog clustering rows."""

from __future__ import annotations

from typing import Iterable

from app.domain.properties import models, schemas
from app.domain.properties.cache_keys import zoom_bucket


class ClusterAggregator:
	"""Shape raw catalog clusters into :class:`schemas.ClusterPoint` markers.

	The merge radius per zoom level belongs to the catalog primitive because it
	runs against indexed geometry. This layer owns the integer zoom bucket, the
	per-cluster member cap and the price aggregates.
	"""

	def __init__(self, *, member_cap: int = 50) -> None:
		self._member_cap = max(1, member_cap)

	@staticmethod
	def zoom_level(zoom: float) -> int:
		return zoom_bucket(zoom)

	def cluster(self, rows: Iterable[models.CatalogCluster], zoom: float) -> list[schemas.ClusterPoint]:
		level = self.zoom_level(zoom)
		points: list[schemas.ClusterPoint] = []
		for row in rows:
			prices = [float(price) for price in row.prices if price is not None]
			count = len(row.property_ids)
			if count == 0:
				continue
			if prices:
				min_price = min(prices)
				max_price = max(prices)
				avg_price = sum(prices) / len(prices)
			else:
				min_price = max_price = avg_price = 0.0
			points.append(
				schemas.ClusterPoint(
					id=row.cluster_id or f"z{level}:{row.centroid.lat:.4f}:{row.centroid.lng:.4f}",
					coordinates=schemas.Coordinates(lat=row.centroid.lat, lng=row.centroid.lng),
					count=count,
					min_price=min_price,
					avg_price=avg_price,
					max_price=max_price,
					property_ids=list(row.property_ids[: self._member_cap]),
				)
			)
		points.sort(key=lambda point: (-point.count, point.id))
		return points
