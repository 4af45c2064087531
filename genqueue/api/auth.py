"""
Bearer token verification, delegated to Supabase Auth.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends, Header

from genqueue.core.config import HTTP_TIMEOUT, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL
from genqueue.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


class SupabaseAuth:
    def __init__(
        self,
        url: str = None,
        api_key: str = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = (url or SUPABASE_URL).rstrip("/")
        self.api_key = api_key or SUPABASE_SERVICE_ROLE_KEY
        self._client = client or httpx.Client(timeout=HTTP_TIMEOUT)

    def get_user(self, token: str) -> dict:
        """Resolve a JWT to its user record (``GET /auth/v1/user``)."""
        try:
            resp = self._client.get(
                f"{self.url}/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth lookup failed: {e}")
            raise AuthenticationError("Authentication service unavailable") from e

        if resp.status_code != 200:
            raise AuthenticationError("Invalid or expired token")

        user = resp.json()
        if not user.get("id"):
            raise AuthenticationError("Invalid or expired token")
        return user


def get_auth() -> SupabaseAuth:
    return SupabaseAuth()


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        raise AuthenticationError("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be a bearer token")
    return token.strip()


def get_current_user(
    token: str = Depends(bearer_token),
    auth: SupabaseAuth = Depends(get_auth),
) -> dict:
    """Dependency: the authenticated Supabase user for this request."""
    return auth.get_user(token)
