"""Streaming connection to POST /chat."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

import httpx

from app.infra.logging_config import get_logger

logger = get_logger("connection")

DONE_SENTINEL = "[DONE]"


class ChatHttpError(Exception):
    """Non-200 response from the chat endpoint, with whatever body came back."""

    def __init__(
        self,
        status_code: int,
        payload: Optional[dict[str, Any]] = None,
        text: str = "",
    ) -> None:
        super().__init__(f"Chat request failed with status {status_code}")
        self.status_code = status_code
        self.payload = payload or {}
        self.text = text


class ChatConnection:
    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def stream(
        self, headers: dict[str, str], body: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]:
        """
        POST the turn and yield each decoded `data:` event until [DONE].

        Raises:
            ChatHttpError: The server answered with a non-200 status.
            httpx.HTTPError: The transport failed.
        """
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream(
                "POST", f"{self.base_url}/chat", json=body, headers=headers
            ) as response:
                if response.status_code != 200:
                    raw = (await response.aread()).decode("utf-8", errors="replace")
                    raise ChatHttpError(
                        response.status_code, _parse_json(raw), raw
                    )
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if data == DONE_SENTINEL:
                        return
                    event = _parse_json(data)
                    if event is None:
                        logger.debug("Skipping undecodable stream line: %s", data)
                        continue
                    yield event
        finally:
            if self._client is None:
                await client.aclose()


def _parse_json(raw: str) -> Optional[dict[str, Any]]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
