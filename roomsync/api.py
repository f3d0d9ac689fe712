"""
HTTP client for the room application endpoints.

Two endpoints are consumed, both authenticated with the member's room token
in the ``X-W-Chat-Secret`` header:

    GET /app/ice-servers            -> [{urls, username, credential, credentialType}]
    GET /app/member-name/{peer_id}  -> {"name": "..."}
"""

import logging
from typing import Any

import httpx
from aiortc import RTCIceServer


logger = logging.getLogger(__name__)

SECRET_HEADER_KEY = "X-W-Chat-Secret"
DEFAULT_TIMEOUT_S = 10.0


class RoomApiError(Exception):
    """Raised when an application endpoint cannot be reached or answers with an error."""


class RoomApiClient:
    """
    Async client for the ICE-server and member-name endpoints.

    Args:
        base_url: Application origin (e.g. "https://chat.example.com")
        token: Member token sent with every request
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={SECRET_HEADER_KEY: token},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RoomApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RoomApiError(
                f"GET {path} failed with status {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise RoomApiError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise RoomApiError(f"GET {path} returned invalid JSON: {e}") from e

    async def fetch_ice_servers(self) -> list[dict[str, Any]]:
        servers = await self._get_json("/app/ice-servers")
        if not isinstance(servers, list):
            raise RoomApiError("ICE server list expected")
        logger.debug(f"ICE servers: {servers}")
        return servers

    async def fetch_member_name(self, peer_id: str) -> str:
        data = await self._get_json(f"/app/member-name/{peer_id}")
        if not isinstance(data, dict) or "name" not in data:
            raise RoomApiError(f"No name for member {peer_id}")
        return str(data["name"])


def to_rtc_ice_servers(
    servers: list[dict[str, Any]], stable_mode: bool = False
) -> list[RTCIceServer]:
    """
    Convert ICE server descriptors into aiortc servers.

    In stable mode every server is added a second time with its URLs forced
    to TCP transport, for networks that block UDP.
    """
    result = [
        RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
            credentialType=server.get("credentialType") or "password",
        )
        for server in servers
    ]
    if not stable_mode:
        return result

    for server in servers:
        urls = server["urls"]
        if isinstance(urls, str):
            tcp_urls: str | list[str] = f"{urls}?transport=tcp"
        else:
            tcp_urls = [f"{url}?transport=tcp" for url in urls]
        result.append(
            RTCIceServer(
                urls=tcp_urls,
                username=server.get("username"),
                credential=server.get("credential"),
                credentialType=server.get("credentialType") or "password",
            )
        )
    return result
