from app.domain.properties.models import CallerContext
from app.domain.properties.visibility import VisibilityFilter

ANON = CallerContext.anonymous()
AUTH = CallerContext.for_user("user-1")


def _filter() -> VisibilityFilter:
	return VisibilityFilter(default_city="Tegucigalpa", default_currency="HNL")


def test_anonymous_projection_redacts_contact_and_address(make_property):
	record = make_property("p1", image_count=5)

	projected = _filter().project(record, ANON)

	assert projected.address == "Lomas del Guijarro, Tegucigalpa"
	assert len(projected.images) == 3
	assert projected.contact_phone is None
	assert projected.contact_whatsapp is None
	assert projected.landlord is not None and projected.landlord.phone is None

	dumped = projected.model_dump(exclude_none=True)
	assert "contact_phone" not in dumped
	assert "contact_whatsapp" not in dumped
	assert "phone" not in dumped["landlord"]


def test_anonymous_address_falls_back_to_city_then_default(make_property):
	no_neighborhood = make_property("p1", neighborhood=None, city="San Pedro Sula")
	nothing = make_property("p2", neighborhood=None, city=None, coordinates=None)

	assert _filter().project(no_neighborhood, ANON).address == "San Pedro Sula"
	assert _filter().project(nothing, ANON).address == "Tegucigalpa"


def test_authenticated_projection_keeps_full_record(make_property):
	record = make_property("p1", image_count=5)

	projected = _filter().project(record, AUTH)

	assert projected.address == "Calle Principal 123, Lomas del Guijarro, Tegucigalpa"
	assert len(projected.images) == 5
	assert projected.contact_phone == "+50499990000"
	assert projected.landlord.phone == "+50488887777"


def test_authenticated_address_falls_back_to_street(make_property):
	record = make_property("p1", formatted_address=None)

	assert _filter().project(record, AUTH).address == "Calle Principal 123"


def test_images_are_ordered_before_truncation(make_property):
	record = make_property("p1", image_count=5)
	record.images.reverse()

	projected = _filter().project(record, ANON)

	assert [image.order for image in projected.images] == [0, 1, 2]
	assert projected.images[0].alt == record.title
