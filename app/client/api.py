"""Read and delete client for the authenticated /sessions API."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import httpx

from app.exceptions import Forbidden, NotFound, Unauthorized, UpstreamFailure
from app.schemas.session import CursorPage, MessageRead, SessionRead

TokenProvider = Callable[[], Awaitable[Optional[str]]]


class SessionsApiClient:
    """Remote counterpart of LocalSessionStore for signed-in users."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = client

    async def _request(
        self, method: str, path: str, params: Optional[dict] = None
    ) -> httpx.Response:
        token = await self._token_provider()
        if not token:
            raise Unauthorized()
        headers = {"Authorization": f"Bearer {token}"}
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self._client is not None:
            response = await self._client.request(
                method, f"{self.base_url}{path}", params=query, headers=headers
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", params=query, headers=headers
                )
        if response.status_code == 401:
            raise Unauthorized()
        if response.status_code == 403:
            raise Forbidden()
        if response.status_code == 404:
            raise NotFound()
        if response.status_code >= 400:
            raise UpstreamFailure(f"{method} {path} failed with {response.status_code}")
        return response

    async def list_sessions(
        self, cursor: Optional[str] = None, limit: int = 20
    ) -> CursorPage[SessionRead, str]:
        response = await self._request(
            "GET", "/sessions", {"cursor": cursor, "limit": limit}
        )
        return CursorPage[SessionRead, str].model_validate(response.json())

    async def list_messages(
        self, session_id: str, cursor: Optional[str] = None, limit: int = 50
    ) -> CursorPage[MessageRead, str]:
        response = await self._request(
            "GET",
            f"/sessions/{session_id}/messages",
            {"cursor": cursor, "limit": limit},
        )
        return CursorPage[MessageRead, str].model_validate(response.json())

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")
