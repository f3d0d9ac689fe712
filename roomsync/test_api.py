"""Tests for the room application HTTP client."""

import httpx
import pytest

from .api import SECRET_HEADER_KEY, RoomApiClient, RoomApiError, to_rtc_ice_servers

ICE_SERVERS = [
    {"urls": ["stun:stun.example.com:3478"]},
    {
        "urls": "turn:turn.example.com:3478",
        "username": "user",
        "credential": "pass",
        "credentialType": "password",
    },
]


def _client(handler) -> RoomApiClient:
    return RoomApiClient("https://chat.example.com", "tok-1", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_ice_servers_sends_secret_header():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=ICE_SERVERS)

    async with _client(handler) as client:
        servers = await client.fetch_ice_servers()

    assert servers == ICE_SERVERS
    assert seen[0].url.path == "/app/ice-servers"
    assert seen[0].headers[SECRET_HEADER_KEY] == "tok-1"


@pytest.mark.asyncio
async def test_fetch_member_name():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/app/member-name/1234"
        return httpx.Response(200, json={"name": "Bob"})

    async with _client(handler) as client:
        assert await client.fetch_member_name("1234") == "Bob"


@pytest.mark.asyncio
async def test_error_status_raises_api_error():
    async with _client(lambda request: httpx.Response(403)) as client:
        with pytest.raises(RoomApiError, match="403"):
            await client.fetch_ice_servers()


@pytest.mark.asyncio
async def test_network_error_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(RoomApiError):
            await client.fetch_member_name("1234")


@pytest.mark.asyncio
async def test_unexpected_payload_raises_api_error():
    async with _client(lambda request: httpx.Response(200, json={"nope": 1})) as client:
        with pytest.raises(RoomApiError):
            await client.fetch_ice_servers()
        with pytest.raises(RoomApiError):
            await client.fetch_member_name("1234")


def test_to_rtc_ice_servers():
    servers = to_rtc_ice_servers(ICE_SERVERS)
    assert len(servers) == 2
    assert servers[1].urls == "turn:turn.example.com:3478"
    assert servers[1].username == "user"
    assert servers[1].credential == "pass"


def test_stable_mode_adds_tcp_variants():
    servers = to_rtc_ice_servers(ICE_SERVERS, stable_mode=True)
    assert len(servers) == 4
    assert servers[2].urls == ["stun:stun.example.com:3478?transport=tcp"]
    assert servers[3].urls == "turn:turn.example.com:3478?transport=tcp"
