"""
OneRoster token provider

Issues bearer credentials for the analytics collector via the OAuth2
client-credentials grant and caches them until shortly before expiry.
"""
import asyncio
import time
import logging
from typing import Optional, Callable

import httpx

from session_service.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


class TokenError(RuntimeError):
    """Raised when no access token could be obtained"""


class TokenProvider:
    """Cached client-credentials token."""

    def __init__(
        self,
        auth_endpoint: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        expiry_buffer_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time
    ):
        self.auth_endpoint = auth_endpoint or settings.ONEROSTER_AUTH_ENDPOINT
        self.client_id = client_id or settings.ONEROSTER_CLIENT_ID
        self.client_secret = client_secret or settings.ONEROSTER_CLIENT_SECRET
        self.expiry_buffer_seconds = (
            settings.TOKEN_EXPIRY_BUFFER_SECONDS if expiry_buffer_seconds is None else expiry_buffer_seconds
        )
        self.transport = transport
        self.clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    def _cached(self) -> Optional[str]:
        if self._token and self._expires_at > self.clock() + self.expiry_buffer_seconds:
            return self._token
        return None

    async def get_token(self) -> str:
        """
        Valid access token, from cache when it is not within the expiry
        buffer.

        Raises:
            TokenError: credentials missing or the auth endpoint failed
        """
        token = self._cached()
        if token:
            return token

        async with self._lock:
            token = self._cached()
            if token:
                return token
            logger.info("Generating new OneRoster token")
            return await self._generate()

    async def _generate(self) -> str:
        if not self.client_id or not self.client_secret:
            raise TokenError("OneRoster client credentials are not configured")

        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.post(
                    self.auth_endpoint,
                    data={
                        'grant_type': 'client_credentials',
                        'client_id': self.client_id,
                        'client_secret': self.client_secret,
                    },
                    headers={'Content-Type': 'application/x-www-form-urlencoded'}
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error generating OneRoster token: {str(e)}")
            raise TokenError(f"Failed to generate OneRoster token: {str(e)}") from e

        access_token = payload.get('access_token')
        if not access_token:
            raise TokenError("Failed to generate token: no access_token in response")

        expires_in = payload.get('expires_in') or DEFAULT_EXPIRES_IN_SECONDS
        self._token = access_token
        self._expires_at = self.clock() + expires_in
        return access_token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0
