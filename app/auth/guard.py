"""
Credential guard: bearer token -> UserScope.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..errors import Unauthorized
from .scope import UserScope

# auto_error=False so a missing header is a 401 from us, not FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_user_scope(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserScope:
    """Resolve the bearer token and bind the data handles to its user."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    state = request.app.state
    user = await state.auth_client.get_user(credentials.credentials)
    return UserScope(user, state.domain_registry, state.site_registry)
