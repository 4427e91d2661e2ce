"""Discord as the external identity provider.

Only two calls are needed: the user's profile (on login) and the user's
role ids in the configured guild (on every sync).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx

from portal.domain.errors import ProviderUnavailableError, TokenInvalidError
from portal.domain.models import ProviderProfile

logger = logging.getLogger(__name__)

DISCORD_API_BASE = os.getenv("DISCORD_API_BASE", "https://discord.com/api/v10")
DISCORD_GUILD_ID = os.getenv("DISCORD_GUILD_ID", "")
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))


class IdentityProvider(Protocol):
    async def fetch_profile(self, access_token: str) -> ProviderProfile: ...

    async def fetch_current_groups(self, access_token: str) -> set[str]: ...


class DiscordIdentityProvider:
    def __init__(
        self,
        guild_id: str | None = None,
        api_base: str = DISCORD_API_BASE,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.guild_id = guild_id if guild_id is not None else DISCORD_GUILD_ID
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, access_token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get_json(self, access_token: str, path: str) -> dict[str, Any]:
        if not access_token:
            raise TokenInvalidError("no provider access token")
        try:
            async with self._client(access_token) as client:
                response = await client.get(path)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError("identity provider timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"identity provider request failed: {exc}") from exc

        if response.status_code == 401:
            raise TokenInvalidError("identity provider rejected the access token")
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError(
                f"identity provider returned {response.status_code}",
                {"status_code": response.status_code},
            )
        if response.status_code >= 400:
            # 403/404 on the guild member route mean the token cannot see the guild.
            raise TokenInvalidError(
                f"identity provider returned {response.status_code}",
                {"status_code": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError("unexpected identity provider payload") from exc
        if not isinstance(payload, dict):
            raise ProviderUnavailableError("unexpected identity provider payload")
        return payload

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        data = await self._get_json(access_token, "/users/@me")
        external_id = str(data.get("id") or "")
        if not external_id:
            raise ProviderUnavailableError("identity provider profile has no id")
        return ProviderProfile(
            external_id=external_id,
            display_name=data.get("global_name") or data.get("username") or external_id,
            external_avatar_ref=data.get("avatar"),
            email=data.get("email"),
        )

    async def fetch_current_groups(self, access_token: str) -> set[str]:
        if not self.guild_id:
            logger.warning("DISCORD_GUILD_ID is not set; cannot read guild roles")
            raise ProviderUnavailableError("guild is not configured")
        data = await self._get_json(access_token, f"/users/@me/guilds/{self.guild_id}/member")
        roles = data.get("roles") or []
        return {str(role_id) for role_id in roles}
