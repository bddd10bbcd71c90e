"""Client for The Movie Database (TMDB) search and details endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import UpstreamError

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"


class TMDBClient:
    """Thin wrapper returning raw TMDB JSON payloads."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def search(
        self, query: str, search_type: str, page: int = 1
    ) -> dict[str, Any]:
        """Return a page of TMDB search results for ``movie``, ``tv`` or ``multi``."""

        return await self._get(
            f"/search/{search_type}",
            {"query": query, "page": page, "include_adult": "false"},
        )

    async def get_details(self, tmdb_id: int, media_type: str) -> dict[str, Any]:
        """Return the TMDB details payload for a movie or TV show."""

        return await self._get(f"/{media_type}/{tmdb_id}")

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self._settings.tmdb_api_key:
            raise UpstreamError("TMDB_API_KEY is not configured.")

        query: dict[str, Any] = {"api_key": self._settings.tmdb_api_key}
        for key, value in (params or {}).items():
            if value is not None:
                query[key] = value

        try:
            response = await self._client.get(
                path, params=query, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            raise UpstreamError("TMDB request failed.") from exc

        if response.status_code >= 400:
            message = f"TMDB request failed with status {response.status_code}."
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and payload.get("status_message"):
                message = str(payload["status_message"])
            logger.warning("TMDB request to %s failed: %s", path, message)
            raise UpstreamError(message, upstream_status=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("TMDB returned an invalid JSON payload.") from exc
        if not isinstance(data, dict):
            raise UpstreamError("TMDB returned an unexpected payload.")
        return data


def build_image_url(path: str | None, base_url: str) -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"
