"""Client for the TVmaze public API, used as a TV search fallback."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import UpstreamError

logger = logging.getLogger(__name__)


class TVMazeClient:
    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client

    async def search(self, query: str) -> list[dict[str, Any]]:
        """Return ``{score, show}`` matches for a free-text show search."""

        data = await self._get("/search/shows", {"q": query})
        if not isinstance(data, list):
            raise UpstreamError("TVmaze returned an unexpected payload.")
        return [entry for entry in data if isinstance(entry, dict)]

    async def get_show(self, show_id: int) -> dict[str, Any]:
        data = await self._get(f"/shows/{show_id}")
        if not isinstance(data, dict):
            raise UpstreamError("TVmaze returned an unexpected payload.")
        return data

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(
                path, params=params, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            logger.warning("TVmaze request to %s failed: %s", path, exc)
            raise UpstreamError("TVmaze request failed.") from exc

        if response.status_code >= 400:
            logger.warning(
                "TVmaze request to %s failed with status %s",
                path,
                response.status_code,
            )
            raise UpstreamError(
                f"TVmaze request failed with status {response.status_code}.",
                upstream_status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("TVmaze returned an invalid JSON payload.") from exc
