"""
Identity resolution against the auth collaborator.

The chat pipeline only consumes the resolved user id; credentials are checked
by Supabase Auth. Any failure resolves to an anonymous identity, which still
gets answers but is never persisted.
"""
from typing import Optional

import httpx
import structlog

from sales_copilot.models.chat import Identity
from sales_copilot.services.config import Settings

logger = structlog.get_logger()

ANONYMOUS = Identity()


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityResolver:
    """Resolves a bearer token to a user id via `GET /auth/v1/user`"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.AUTH_TIMEOUT)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.SUPABASE_URL and self.settings.SUPABASE_ANON_KEY)

    async def resolve(self, authorization: Optional[str]) -> Identity:
        token = bearer_token(authorization)
        if not token or not self.enabled:
            return ANONYMOUS

        try:
            response = await self.http_client.get(
                f"{self.settings.SUPABASE_URL.rstrip('/')}/auth/v1/user",
                headers={
                    "apikey": self.settings.SUPABASE_ANON_KEY,
                    "Authorization": f"Bearer {token}",
                },
            )
        except httpx.HTTPError as e:
            logger.warning("Identity lookup failed", error=str(e))
            return ANONYMOUS

        if response.status_code != 200:
            logger.info("Identity lookup rejected token", status=response.status_code)
            return ANONYMOUS

        try:
            user_id = str(response.json().get("id") or "")
        except (ValueError, AttributeError):
            logger.warning("Identity lookup returned an unexpected body")
            return ANONYMOUS

        return Identity(user_id=user_id or None, access_token=token)

    async def close(self):
        await self.http_client.aclose()
