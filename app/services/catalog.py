"""Catalog search and title hydration backed by TMDB with a TVmaze fallback."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Title
from ..errors import NotFoundError, UpstreamError
from ..models import (
    CatalogResult,
    CatalogSearchResponse,
    HydrateRequest,
    TitlePayload,
)
from ..utils import extract_year, parse_date, strip_html
from .tmdb import BACKDROP_BASE_URL, POSTER_BASE_URL, TMDBClient, build_image_url
from .tvmaze import TVMazeClient

logger = logging.getLogger(__name__)

TITLE_LIST_LIMIT = 50


def map_tmdb_results(
    payload: dict[str, Any], search_type: str
) -> list[CatalogResult]:
    """Normalise TMDB search hits, dropping people and unnamed entries."""

    results: list[CatalogResult] = []
    for item in payload.get("results") or []:
        if not isinstance(item, dict):
            continue
        media_type = item.get("media_type") if search_type == "multi" else search_type
        if media_type not in {"movie", "tv"}:
            continue
        title = item.get("title") if media_type == "movie" else item.get("name")
        if not title:
            continue
        release = (
            item.get("release_date")
            if media_type == "movie"
            else item.get("first_air_date")
        )
        results.append(
            CatalogResult(
                source="tmdb",
                media_type=media_type,
                external_id=int(item["id"]),
                title=title,
                year=extract_year(release),
                overview=item.get("overview"),
                poster_url=build_image_url(item.get("poster_path"), POSTER_BASE_URL),
                backdrop_url=build_image_url(
                    item.get("backdrop_path"), BACKDROP_BASE_URL
                ),
            )
        )
    return results


def map_tvmaze_results(entries: list[dict[str, Any]]) -> list[CatalogResult]:
    results: list[CatalogResult] = []
    for entry in entries:
        show = entry.get("show")
        if not isinstance(show, dict) or not show.get("name"):
            continue
        image = show.get("image") or {}
        results.append(
            CatalogResult(
                source="tvmaze",
                media_type="tv",
                external_id=int(show["id"]),
                title=show["name"],
                year=extract_year(show.get("premiered")),
                overview=strip_html(show.get("summary")),
                poster_url=image.get("medium") or image.get("original"),
                backdrop_url=None,
            )
        )
    return results


class CatalogService:
    """Search upstream catalogs and cache chosen titles in the local database."""

    def __init__(
        self,
        tmdb: TMDBClient,
        tvmaze: TVMazeClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._tmdb = tmdb
        self._tvmaze = tvmaze
        self._session_factory = session_factory

    async def search(
        self, query: str, search_type: str = "multi", page: int = 1
    ) -> CatalogSearchResponse:
        tmdb_payload = await self._tmdb.search(query, search_type, page)
        tmdb_page = int(tmdb_payload.get("page") or page)
        tmdb_results = map_tmdb_results(tmdb_payload, search_type)

        if tmdb_results:
            return CatalogSearchResponse(
                page=tmdb_page,
                total_results=int(tmdb_payload.get("total_results") or 0),
                results=tmdb_results,
            )

        if search_type == "movie":
            return CatalogSearchResponse(page=tmdb_page, total_results=0, results=[])

        logger.info("TMDB returned no TV matches for %r; trying TVmaze", query)
        tvmaze_results = map_tvmaze_results(await self._tvmaze.search(query))
        return CatalogSearchResponse(
            page=1, total_results=len(tvmaze_results), results=tvmaze_results
        )

    async def hydrate(self, request: HydrateRequest) -> Title:
        """Fetch upstream metadata and upsert it as a local title."""

        if request.source == "tmdb":
            fields = await self._tmdb_fields(request.external_id, request.media_type)
            media_type = request.media_type
        else:
            fields = await self._tvmaze_fields(request.external_id)
            media_type = "tv"

        tmdb_id = fields.pop("tmdb_id")
        try:
            async with self._session_factory() as session:
                title = await find_title(session, tmdb_id, media_type)
                if title is None:
                    title = Title(tmdb_id=tmdb_id, media_type=media_type, **fields)
                    session.add(title)
                    logger.info("Hydrated new title %s/%s", media_type, tmdb_id)
                else:
                    for key, value in fields.items():
                        setattr(title, key, value)
                await session.commit()
                await session.refresh(title)
                return title
        except SQLAlchemyError as exc:
            logger.exception("Failed to store %s/%s", media_type, tmdb_id)
            raise UpstreamError("Upstream catalog error.") from exc

    async def _tmdb_fields(self, tmdb_id: int, media_type: str) -> dict[str, Any]:
        details = await self._tmdb.get_details(tmdb_id, media_type)
        name = details.get("title") if media_type == "movie" else details.get("name")
        if not name:
            raise UpstreamError("TMDB title missing name.")

        if media_type == "movie":
            release = details.get("release_date")
            runtime = details.get("runtime")
        else:
            release = details.get("first_air_date")
            episode_runtimes = details.get("episode_run_time") or []
            runtime = episode_runtimes[0] if episode_runtimes else None

        return {
            "tmdb_id": int(details.get("id") or tmdb_id),
            "title": name,
            "original_title": details.get("title") or details.get("name"),
            "release_date": parse_date(release),
            "poster_path": details.get("poster_path"),
            "backdrop_path": details.get("backdrop_path"),
            "overview": details.get("overview"),
            "runtime_minutes": runtime,
            "genres": [
                genre["name"]
                for genre in details.get("genres") or []
                if isinstance(genre, dict) and genre.get("name")
            ],
        }

    async def _tvmaze_fields(self, show_id: int) -> dict[str, Any]:
        show = await self._tvmaze.get_show(show_id)
        name = show.get("name")
        if not name:
            raise UpstreamError("TVmaze show missing name.")
        image = show.get("image") or {}
        return {
            # TVmaze ids share the tmdb_id column until source-specific ids exist.
            "tmdb_id": int(show.get("id") or show_id),
            "title": name,
            "original_title": None,
            "release_date": parse_date(show.get("premiered")),
            "poster_path": image.get("medium") or image.get("original"),
            "backdrop_path": None,
            "overview": strip_html(show.get("summary")),
            "runtime_minutes": None,
            "genres": [str(genre) for genre in show.get("genres") or []],
        }

    async def get_title(self, tmdb_id: int, media_type: str) -> TitlePayload:
        """Return a stored title, or a TMDB preview when it is not hydrated yet."""

        async with self._session_factory() as session:
            title = await find_title(session, tmdb_id, media_type)
        if title is not None:
            return TitlePayload.from_record(title)

        try:
            details = await self._tmdb.get_details(tmdb_id, media_type)
        except UpstreamError as exc:
            logger.info("TMDB preview for %s/%s unavailable: %s", media_type, tmdb_id, exc)
            raise NotFoundError("Title not found.") from exc

        episode_runtimes = details.get("episode_run_time") or []
        release = details.get("release_date") or details.get("first_air_date")
        return TitlePayload(
            id=f"tmdb-{tmdb_id}",
            tmdb_id=tmdb_id,
            media_type=media_type,
            title=details.get("title") or details.get("name") or f"TMDB #{tmdb_id}",
            original_title=details.get("original_title") or details.get("name"),
            release_date=parse_date(release),
            poster_path=details.get("poster_path"),
            backdrop_path=details.get("backdrop_path"),
            overview=details.get("overview"),
            runtime_minutes=details.get("runtime")
            or (episode_runtimes[0] if episode_runtimes else None),
            genres=[
                genre["name"]
                for genre in details.get("genres") or []
                if isinstance(genre, dict) and genre.get("name")
            ],
            vote_average=details.get("vote_average"),
        )

    async def list_titles(self, query: str | None = None) -> list[Title]:
        stmt = select(Title).order_by(Title.created_at.desc()).limit(TITLE_LIST_LIMIT)
        needle = (query or "").strip()
        if needle:
            stmt = stmt.where(
                func.lower(Title.title).contains(needle.lower(), autoescape=True)
            )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def ping(self) -> None:
        await self._tmdb.search("matrix", "movie", 1)


async def find_title(
    session: AsyncSession, tmdb_id: int, media_type: str
) -> Title | None:
    stmt = select(Title).where(Title.tmdb_id == tmdb_id, Title.media_type == media_type)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_title(
    session: AsyncSession, tmdb_id: int, media_type: str, action: str
) -> Title:
    """Return a hydrated title or raise NOT_FOUND asking for hydration first."""

    title = await find_title(session, tmdb_id, media_type)
    if title is None:
        raise NotFoundError(f"Title not found. Hydrate the title before {action}.")
    return title
