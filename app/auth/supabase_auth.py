"""
Supabase Auth lookup for SimplHost.

Resolves a user access token to the identity behind it by asking the
Supabase Auth server, the same way a client SDK's ``auth.getUser()`` does.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from ..errors import Unauthorized
from .scope import AuthenticatedUser

logger = logging.getLogger("simplhost.auth.supabase")


class SupabaseAuthClient:
    """Resolves bearer tokens against ``/auth/v1/user``."""

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def get_user(self, token: str) -> AuthenticatedUser:
        """
        Look up the user owning an access token.

        Raises Unauthorized for unknown or expired tokens, and also when
        the auth server cannot be reached: an unverifiable token is never
        accepted.
        """
        if not self.supabase_url:
            logger.error("Supabase URL not configured, rejecting request")
            raise Unauthorized()

        session = await self._get_session()
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }
        try:
            async with session.get(
                f"{self.supabase_url}/auth/v1/user", headers=headers
            ) as resp:
                if resp.status != 200:
                    logger.debug(f"Token rejected by auth server ({resp.status})")
                    raise Unauthorized()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Auth lookup failed: {e}")
            raise Unauthorized() from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise Unauthorized()
        return AuthenticatedUser(id=user_id, email=data.get("email"))

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
