import pytest

from app.domain.properties import models
from app.domain.properties.clustering import ClusterAggregator


def _row(cluster_id, prices, ids, lat=14.1, lng=-87.2):
	return models.CatalogCluster(
		cluster_id=cluster_id,
		centroid=models.GeoPoint(lat=lat, lng=lng),
		prices=prices,
		property_ids=ids,
	)


def test_cluster_aggregates_prices_and_caps_members():
	aggregator = ClusterAggregator(member_cap=2)
	rows = [
		_row("small", [5000], ["a"]),
		_row("big", [1000, 2000, 4000], ["b", "c", "d"]),
	]

	points = aggregator.cluster(rows, 11.6)

	assert [point.id for point in points] == ["big", "small"]
	big = points[0]
	assert big.count == 3
	assert big.property_ids == ["b", "c"]
	assert big.min_price == 1000
	assert big.max_price == 4000
	assert big.avg_price == pytest.approx(7000 / 3)


def test_empty_clusters_are_skipped():
	points = ClusterAggregator().cluster([_row("empty", [], [])], 10)

	assert points == []


def test_zoom_level_is_floored():
	assert ClusterAggregator.zoom_level(12.0) == 12
	assert ClusterAggregator.zoom_level(12.9) == 12
