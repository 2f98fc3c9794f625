"""Request authentication for the canvas API."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.errors import UnauthorizedError
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

# Acting user for requests authenticated with the admin API key
SYSTEM_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


class AuthContext:
    """Authenticated caller."""

    def __init__(self, user_id: UUID, token: str, is_admin: bool = False):
        self.user_id = user_id
        self.token = token
        self.is_admin = is_admin


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[AuthContext]:
    """
    Resolve the caller from the request.

    Supports two authentication methods:
    1. Admin API key (X-API-Key header) for internal tools
    2. Supabase JWT (Bearer auth) for canvas users

    Returns None if no valid auth is present.
    """
    admin_key = get_settings().ADMIN_API_KEY
    if x_api_key and admin_key and x_api_key == admin_key:
        logger.debug("Authenticated via admin API key")
        return AuthContext(user_id=SYSTEM_USER_ID, token="api-key", is_admin=True)

    if not credentials:
        return None

    token = credentials.credentials
    try:
        # Validates signature and expiry
        auth_response = get_supabase().auth.get_user(token)
        if not auth_response or not auth_response.user:
            return None
        return AuthContext(user_id=UUID(str(auth_response.user.id)), token=token)
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise UnauthorizedError("Not authenticated")
    return auth
