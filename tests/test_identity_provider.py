from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from portal.domain.errors import ProviderUnavailableError, TokenInvalidError
from portal.services.identity_provider import DiscordIdentityProvider

API_BASE = "https://discord.test/api/v10"
MEMBER_URL = f"{API_BASE}/users/@me/guilds/guild-1/member"


def _provider(guild_id: str = "guild-1") -> DiscordIdentityProvider:
    return DiscordIdentityProvider(guild_id=guild_id, api_base=API_BASE, timeout=2.0)


@respx.mock
def test_fetch_profile_prefers_global_name() -> None:
    route = respx.get(f"{API_BASE}/users/@me").mock(
        return_value=httpx.Response(
            200,
            json={
                "id": "80351110224678912",
                "username": "nelly",
                "global_name": "Nelly",
                "avatar": "8342729096ea3675442027381ff50dfe",
                "email": "nelly@example.com",
            },
        )
    )

    profile = asyncio.run(_provider().fetch_profile("user-token"))

    assert profile.external_id == "80351110224678912"
    assert profile.display_name == "Nelly"
    assert profile.external_avatar_ref == "8342729096ea3675442027381ff50dfe"
    assert profile.email == "nelly@example.com"
    assert route.calls.last.request.headers["Authorization"] == "Bearer user-token"


@respx.mock
def test_fetch_profile_falls_back_to_username() -> None:
    respx.get(f"{API_BASE}/users/@me").mock(
        return_value=httpx.Response(200, json={"id": "42", "username": "nelly", "global_name": None})
    )
    profile = asyncio.run(_provider().fetch_profile("user-token"))
    assert profile.display_name == "nelly"
    assert profile.email is None


@respx.mock
def test_fetch_current_groups_returns_role_ids() -> None:
    respx.get(MEMBER_URL).mock(
        return_value=httpx.Response(200, json={"roles": ["111", 222], "nick": "Officer Nelly"})
    )
    groups = asyncio.run(_provider().fetch_current_groups("user-token"))
    assert groups == {"111", "222"}


@respx.mock
def test_fetch_current_groups_without_roles_is_empty() -> None:
    respx.get(MEMBER_URL).mock(return_value=httpx.Response(200, json={"roles": []}))
    assert asyncio.run(_provider().fetch_current_groups("user-token")) == set()


@respx.mock
def test_unauthorized_maps_to_token_invalid() -> None:
    respx.get(MEMBER_URL).mock(return_value=httpx.Response(401, json={"message": "401: Unauthorized"}))
    with pytest.raises(TokenInvalidError):
        asyncio.run(_provider().fetch_current_groups("expired-token"))


@respx.mock
def test_not_in_guild_maps_to_token_invalid() -> None:
    respx.get(MEMBER_URL).mock(return_value=httpx.Response(404, json={"message": "Unknown Guild"}))
    with pytest.raises(TokenInvalidError) as exc_info:
        asyncio.run(_provider().fetch_current_groups("user-token"))
    assert exc_info.value.detail == {"status_code": 404}
    assert exc_info.value.retryable is False


@respx.mock
def test_rate_limit_and_server_errors_are_retryable() -> None:
    route = respx.get(MEMBER_URL)
    for status_code in (429, 502):
        route.mock(return_value=httpx.Response(status_code))
        with pytest.raises(ProviderUnavailableError) as exc_info:
            asyncio.run(_provider().fetch_current_groups("user-token"))
        assert exc_info.value.retryable is True


@respx.mock
def test_transport_timeout_maps_to_unavailable() -> None:
    respx.get(MEMBER_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))
    with pytest.raises(ProviderUnavailableError):
        asyncio.run(_provider().fetch_current_groups("user-token"))


@respx.mock
def test_connection_error_maps_to_unavailable() -> None:
    respx.get(MEMBER_URL).mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(ProviderUnavailableError):
        asyncio.run(_provider().fetch_current_groups("user-token"))


@respx.mock
def test_unexpected_payload_maps_to_unavailable() -> None:
    respx.get(MEMBER_URL).mock(return_value=httpx.Response(200, json=["not", "an", "object"]))
    with pytest.raises(ProviderUnavailableError):
        asyncio.run(_provider().fetch_current_groups("user-token"))


@respx.mock
def test_non_json_body_maps_to_unavailable() -> None:
    respx.get(MEMBER_URL).mock(return_value=httpx.Response(200, text="<html>maintenance</html>"))
    with pytest.raises(ProviderUnavailableError) as exc_info:
        asyncio.run(_provider().fetch_current_groups("user-token"))
    assert exc_info.value.retryable is True


@respx.mock
def test_missing_guild_and_token_fail_without_request() -> None:
    # no routes registered: any outgoing request would fail the test
    with pytest.raises(ProviderUnavailableError):
        asyncio.run(_provider(guild_id="").fetch_current_groups("user-token"))
    with pytest.raises(TokenInvalidError):
        asyncio.run(_provider().fetch_current_groups(""))