import re

from app.domain.properties import cache_keys, schemas

NAMESPACE = "rentals:property:search:"


def test_derive_ignores_field_insertion_order():
	first = {"price_min": 1000, "bedrooms": [3, 1, 2], "location": "centro"}
	second = {"location": "centro", "bedrooms": [1, 2, 3], "price_min": 1000}

	assert cache_keys.derive(NAMESPACE, first) == cache_keys.derive(NAMESPACE, second)


def test_derive_is_stable_across_numeric_spelling():
	assert cache_keys.derive(NAMESPACE, {"price": "12000"}) == cache_keys.derive(NAMESPACE, {"price": 12000})
	assert cache_keys.derive(NAMESPACE, {"price": 12000.0}) == cache_keys.derive(NAMESPACE, {"price": 12000})
	assert cache_keys.derive(NAMESPACE, {"price": 12000}) != cache_keys.derive(NAMESPACE, {"price": 12001})


def test_none_values_do_not_change_the_key():
	assert cache_keys.derive(NAMESPACE, {"a": 1, "b": None}) == cache_keys.derive(NAMESPACE, {"a": 1})


def test_pydantic_queries_with_equivalent_content_share_a_key():
	first = schemas.SearchQuery(bedrooms=(2, 1), property_types=("house", "apartment"), sort_by="relevancia")
	second = schemas.SearchQuery(property_types=("apartment", "house"), bedrooms=(1, 2), sort_by="relevance")

	assert cache_keys.derive(NAMESPACE, first) == cache_keys.derive(NAMESPACE, second)


def test_identity_class_tags_the_key_without_user_id():
	shape = {"location": "centro"}
	anon = cache_keys.derive(NAMESPACE, shape, identity_class="anon")
	auth = cache_keys.derive(NAMESPACE, shape, identity_class="auth")

	assert anon != auth
	assert anon.startswith(f"{NAMESPACE}anon:")
	assert auth.startswith(f"{NAMESPACE}auth:")


def test_keys_are_short_and_use_restricted_alphabet():
	shape = {"location": "x" * 5000, "amenities": [f"amenity-{idx}" for idx in range(200)]}
	key = cache_keys.derive(NAMESPACE, shape, identity_class="anon")

	assert len(key) <= 250
	assert re.match(r"^[a-zA-Z0-9:_\-\.]+$", key)


def test_rounding_collapses_near_duplicate_viewports():
	near_a = {"north": 14.10004, "south": 14.05001, "east": -87.15002, "west": -87.25004}
	near_b = {"north": 14.10001, "south": 14.04996, "east": -87.14999, "west": -87.24996}
	far = {"north": 14.102, "south": 14.05, "east": -87.15, "west": -87.25}

	assert cache_keys.rounded_bounds(near_a) == cache_keys.rounded_bounds(near_b)
	assert cache_keys.derive(NAMESPACE, cache_keys.bounds_shape(near_a)) == cache_keys.derive(
		NAMESPACE, cache_keys.bounds_shape(near_b)
	)
	assert cache_keys.derive(NAMESPACE, cache_keys.bounds_shape(near_a)) != cache_keys.derive(
		NAMESPACE, cache_keys.bounds_shape(far)
	)


def test_round_coordinate_to_three_decimals():
	assert cache_keys.round_coordinate(14.0996) == 14.1
	assert cache_keys.round_coordinate(-87.2004) == -87.2


def test_zoom_is_floored_before_hashing():
	bounds = schemas.MapBounds(north=14.2, south=14.0, east=-87.1, west=-87.3)

	assert cache_keys.zoom_bucket(12.9) == 12
	assert cache_keys.derive(NAMESPACE, cache_keys.cluster_shape(bounds, 12.0)) == cache_keys.derive(
		NAMESPACE, cache_keys.cluster_shape(bounds, 12.9)
	)
	assert cache_keys.derive(NAMESPACE, cache_keys.cluster_shape(bounds, 12.9)) != cache_keys.derive(
		NAMESPACE, cache_keys.cluster_shape(bounds, 13.0)
	)


def test_digest_never_raises_on_odd_inputs():
	odd = {"nan": float("nan"), "nested": {"set": {3, 1}, "tuple": (None, "a")}, 5: object()}
	odd["digits"] = "9" * 4400
	odd["inf"] = float("inf")

	assert cache_keys.digest(odd) == cache_keys.digest(odd)


def test_long_digit_runs_do_not_break_key_derivation():
	long_digits = {"location": "1" * 5000}
	huge_number = {"price": 10**5000}

	key = cache_keys.derive(NAMESPACE, long_digits, identity_class="anon")

	assert key == cache_keys.derive(NAMESPACE, long_digits, identity_class="anon")
	assert len(key) <= 250
	assert cache_keys.derive(NAMESPACE, huge_number) != cache_keys.derive(NAMESPACE, {"price": 10**5000 + 1})
	assert cache_keys.derive(NAMESPACE, {"price": "1" * 31}) != cache_keys.derive(NAMESPACE, {"price": "1" * 32})
