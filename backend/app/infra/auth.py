"""Caller context resolution for FastAPI endpoints.

Discovery never authenticates on its own: it trusts a Bearer JWT issued by the
auth service (HS256, settings.secret_key) and, in development only, an
``X-User-Id`` header for local tools.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.domain.properties.models import CallerContext
from app.infra import jwt as jwt_helper
from app.obs.logging import bind_context
from app.settings import settings

_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> CallerContext:
	"""Decode an access JWT into an authenticated caller.

	All decode failures are normalised to ``invalid_token``.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	return CallerContext.for_user(str(payload["sub"]).strip())


def _resolve(
	x_user_id: Optional[str],
	credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[CallerContext]:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return CallerContext.for_user(x_user_id.strip())
	return None


async def get_caller_context(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> CallerContext:
	"""Resolve the viewer for public procedures.

	A missing or invalid token degrades to the anonymous context instead of
	failing the request; the response is simply redacted.
	"""
	try:
		caller = _resolve(x_user_id, credentials)
	except HTTPException:
		caller = None
	if caller is None:
		return CallerContext.anonymous()
	bind_context(user_id=caller.user_id)
	return caller


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> CallerContext:
	"""Require an authenticated caller (favorites, contact tracking)."""
	caller = _resolve(x_user_id, credentials)
	if caller is None:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	bind_context(user_id=caller.user_id)
	return caller
