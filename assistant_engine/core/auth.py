"""Bearer-token authentication for FastAPI routes."""

import asyncio
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assistant_engine.core.logging import get_logger
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


class AuthContext:
    """Context object containing authenticated user info."""

    def __init__(self, user_id: str, token: str, email: Optional[str] = None):
        self.user_id = user_id
        self.token = token
        self.email = email


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthContext]:
    """
    Resolve the Supabase user behind a Bearer token.

    Supabase verifies the JWT signature and expiry. Returns None when no
    token is present or it doesn't verify.
    """
    if not credentials:
        return None

    token = credentials.credentials

    try:
        client = get_supabase()
        auth_response = await asyncio.to_thread(client.auth.get_user, token)

        if not auth_response or not auth_response.user:
            return None

        return AuthContext(
            user_id=str(auth_response.user.id),
            token=token,
            email=auth_response.user.email,
        )
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth
