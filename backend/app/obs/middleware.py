"""Request correlation, access logging and HTTP metrics."""

from __future__ import annotations

import re
import time
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.obs import logging as obs_logging
from app.obs import metrics
from app.settings import settings

REQUEST_ID_HEADER = "X-Request-Id"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")
# Health checks and scrapes are counted but not access-logged.
_QUIET_PATHS = frozenset({"/health/live", "/health/ready", "/metrics"})


def _request_id(request: Request) -> str:
	supplied = request.headers.get(REQUEST_ID_HEADER)
	if supplied and _REQUEST_ID_RE.match(supplied):
		return supplied
	return uuid4().hex


def _route_template(request: Request) -> str:
	# Templates keep property ids out of metric labels.
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	return path or "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
	def __init__(self, app, *, enabled: bool = True) -> None:
		super().__init__(app)
		self._enabled = enabled
		self._logger = obs_logging.get_logger("rentals.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not (self._enabled and settings.obs_enabled):
			return await call_next(request)

		request_id = _request_id(request)
		request.state.request_id = request_id
		client_ip = request.client.host if request.client else None
		token = obs_logging.bind_context(request_id=request_id, client_ip=client_ip)
		started = time.perf_counter()
		status_code = 500
		response: Optional[Response] = None
		try:
			response = await call_next(request)
			status_code = response.status_code
		except Exception:
			self._logger.exception("http.request.failed", extra={"method": request.method})
			raise
		finally:
			elapsed = time.perf_counter() - started
			route = _route_template(request)
			metrics.observe_request(route, request.method, status_code, elapsed)
			if request.url.path not in _QUIET_PATHS:
				self._logger.info(
					"http.request",
					extra={
						"route": route,
						"method": request.method,
						"status": status_code,
						"latency_ms": round(elapsed * 1000, 3),
					},
				)
			obs_logging.reset_context(token)

		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
