"""REST endpoints for property discovery."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request

from app.domain.properties import schemas
from app.domain.properties.errors import DiscoveryError
from app.domain.properties.models import CallerContext
from app.domain.properties.service import PropertyDiscoveryService
from app.infra.auth import get_caller_context, get_current_user

router = APIRouter(prefix="/properties", tags=["properties"])


def get_discovery_service(request: Request) -> PropertyDiscoveryService:
	service = getattr(request.app.state, "discovery", None)
	if service is None:
		raise HTTPException(status_code=503, detail="search_temporarily_unavailable")
	return service


def _as_http_error(exc: DiscoveryError) -> HTTPException:
	return HTTPException(status_code=exc.status_code, detail=exc.detail)


def _client_ip(request: Request) -> Optional[str]:
	forwarded = request.headers.get("X-Forwarded-For")
	if forwarded:
		return forwarded.split(",")[0].strip() or None
	return request.client.host if request.client else None


@router.post("/search", response_model=schemas.SearchResult, response_model_exclude_none=True)
async def search_endpoint(
	query: schemas.SearchQuery,
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.SearchResult:
	try:
		return await service.search(query, caller)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/bounds", response_model=schemas.BoundsResult, response_model_exclude_none=True)
async def bounds_endpoint(
	query: schemas.BoundsQuery,
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.BoundsResult:
	try:
		return await service.get_by_bounds(query, caller)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/clusters", response_model=list[schemas.ClusterPoint])
async def clusters_endpoint(
	query: schemas.ClusterQuery,
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> list[schemas.ClusterPoint]:
	try:
		return await service.get_clusters(query)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/nearby", response_model=schemas.NearbyResult, response_model_exclude_none=True)
async def nearby_endpoint(
	query: schemas.NearbyQuery,
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.NearbyResult:
	try:
		return await service.search_nearby(query, caller)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/autocomplete", response_model=list[schemas.Suggestion])
async def autocomplete_endpoint(
	query: schemas.AutocompleteQuery,
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> list[schemas.Suggestion]:
	return await service.autocomplete(query)


@router.post("/facets", response_model=schemas.FacetSummary)
async def facets_endpoint(
	query: schemas.FacetsQuery,
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.FacetSummary:
	return await service.get_search_facets(query)


@router.get("/favorites", response_model=schemas.FavoritesList)
async def list_favorites_endpoint(
	caller: CallerContext = Depends(get_current_user),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.FavoritesList:
	try:
		return await service.list_favorites(caller.user_id)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/favorites/toggle", response_model=schemas.FavoriteResponse)
async def toggle_favorite_endpoint(
	payload: schemas.FavoriteToggle,
	caller: CallerContext = Depends(get_current_user),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.FavoriteResponse:
	try:
		return await service.toggle_favorite(caller.user_id, payload.property_id)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.post("/track/view", response_model=schemas.TrackResponse)
async def track_view_endpoint(
	payload: schemas.TrackViewPayload,
	request: Request,
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
	user_agent: Optional[str] = Header(default=None, alias="User-Agent"),
	referer: Optional[str] = Header(default=None, alias="Referer"),
) -> schemas.TrackResponse:
	return await service.track_view(
		payload,
		caller,
		ip_address=_client_ip(request),
		user_agent=user_agent,
		referrer=referer,
	)


@router.post("/track/contact", response_model=schemas.TrackResponse)
async def track_contact_endpoint(
	payload: schemas.TrackContactPayload,
	request: Request,
	caller: CallerContext = Depends(get_current_user),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
	user_agent: Optional[str] = Header(default=None, alias="User-Agent"),
) -> schemas.TrackResponse:
	return await service.track_contact(
		payload,
		caller.user_id,
		ip_address=_client_ip(request),
		user_agent=user_agent,
	)


@router.get("/{property_id}", response_model=schemas.PropertyOut, response_model_exclude_none=True)
async def get_property_endpoint(
	property_id: str = Path(..., min_length=1, max_length=64),
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> schemas.PropertyOut:
	try:
		return await service.get_by_id(property_id, caller)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{property_id}/similar", response_model=list[schemas.PropertyOut], response_model_exclude_none=True)
async def similar_endpoint(
	property_id: str = Path(..., min_length=1, max_length=64),
	limit: int = Query(default=6, ge=1, le=20),
	caller: CallerContext = Depends(get_caller_context),
	service: PropertyDiscoveryService = Depends(get_discovery_service),
) -> list[schemas.PropertyOut]:
	try:
		return await service.get_similar(schemas.SimilarQuery(property_id=property_id, limit=limit), caller)
	except DiscoveryError as exc:
		raise _as_http_error(exc) from exc
