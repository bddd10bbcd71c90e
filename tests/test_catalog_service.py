"""Catalog search fallback and hydration tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import pytest

from app.config import Settings
from app.database import Database
from app.errors import NotFoundError, UpstreamError
from app.models import HydrateRequest
from app.services.catalog import CatalogService
from app.services.tmdb import TMDBClient
from app.services.tvmaze import TVMazeClient

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_service(
    tmdb_handler: Handler,
    tvmaze_handler: Handler,
    session_factory: Any = None,
    **settings_overrides: Any,
) -> CatalogService:
    overrides = {"TMDB_API_KEY": "tmdb-key", **settings_overrides}
    settings = Settings(_env_file=None, **overrides)  # type: ignore[arg-type]
    tmdb_client = httpx.AsyncClient(
        base_url="https://api.themoviedb.org/3",
        transport=httpx.MockTransport(tmdb_handler),
    )
    tvmaze_client = httpx.AsyncClient(
        base_url="https://api.tvmaze.com",
        transport=httpx.MockTransport(tvmaze_handler),
    )
    return CatalogService(
        TMDBClient(settings, tmdb_client),
        TVMazeClient(tvmaze_client),
        session_factory,
    )


def unexpected(request: httpx.Request) -> httpx.Response:  # pragma: no cover
    raise AssertionError(f"Unexpected request to {request.url}")


@pytest.mark.anyio("asyncio")
async def test_search_returns_tmdb_results_and_drops_people() -> None:
    requests: list[httpx.Request] = []

    def tmdb(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_results": 3,
                "results": [
                    {
                        "id": 603,
                        "media_type": "movie",
                        "title": "The Matrix",
                        "release_date": "1999-03-31",
                        "poster_path": "/matrix.jpg",
                    },
                    {"id": 6384, "media_type": "person", "name": "Keanu Reeves"},
                    {
                        "id": 1399,
                        "media_type": "tv",
                        "name": "Game of Thrones",
                        "first_air_date": "2011-04-17",
                    },
                ],
            },
        )

    service = build_service(tmdb, unexpected)
    response = await service.search("matrix", "multi", 1)

    assert requests[0].url.path == "/3/search/multi"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["query"] == "matrix"
    assert [(item.media_type, item.external_id) for item in response.results] == [
        ("movie", 603),
        ("tv", 1399),
    ]
    first = response.results[0].to_payload()
    assert first["source"] == "tmdb"
    assert first["year"] == 1999
    assert first["posterUrl"] == "https://image.tmdb.org/t/p/w500/matrix.jpg"
    assert first["backdropUrl"] is None


@pytest.mark.anyio("asyncio")
async def test_search_falls_back_to_tvmaze_for_tv() -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"page": 1, "total_results": 0, "results": []})

    def tvmaze(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search/shows"
        assert request.url.params["q"] == "obscure show"
        return httpx.Response(
            200,
            json=[
                {
                    "score": 0.9,
                    "show": {
                        "id": 42,
                        "name": "Obscure Show",
                        "premiered": "2015-06-01",
                        "summary": "<p>Rarely <b>seen</b>.</p>",
                        "image": {"medium": "https://static.tvmaze.com/42.jpg"},
                    },
                },
                {"score": 0.1, "show": {"id": 43}},
            ],
        )

    service = build_service(tmdb, tvmaze)
    response = await service.search("obscure show", "tv", 1)

    assert response.total_results == 1
    result = response.results[0]
    assert result.source == "tvmaze"
    assert result.media_type == "tv"
    assert result.external_id == 42
    assert result.year == 2015
    assert result.overview == "Rarely seen."
    assert result.poster_url == "https://static.tvmaze.com/42.jpg"


@pytest.mark.anyio("asyncio")
async def test_movie_search_never_falls_back() -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"page": 1, "total_results": 0, "results": []})

    service = build_service(tmdb, unexpected)
    response = await service.search("nothing here", "movie", 1)

    assert response.results == []


@pytest.mark.anyio("asyncio")
async def test_search_surfaces_tmdb_status_message() -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            401, json={"status_message": "Invalid API key: You must be granted a valid key."}
        )

    service = build_service(tmdb, unexpected)
    with pytest.raises(UpstreamError) as excinfo:
        await service.search("matrix", "multi", 1)

    assert excinfo.value.status_code == 502
    assert excinfo.value.upstream_status == 401
    assert "Invalid API key" in excinfo.value.message


@pytest.mark.anyio("asyncio")
async def test_search_requires_tmdb_key() -> None:
    service = build_service(unexpected, unexpected, TMDB_API_KEY=None)

    with pytest.raises(UpstreamError, match="TMDB_API_KEY"):
        await service.search("matrix", "multi", 1)


@pytest.mark.anyio("asyncio")
async def test_tvmaze_failure_is_upstream_error() -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"page": 1, "results": []})

    def tvmaze(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    service = build_service(tmdb, tvmaze)
    with pytest.raises(UpstreamError, match="status 503"):
        await service.search("some show", "multi", 1)


def test_hydrate_upserts_tmdb_title(tmp_path) -> None:
    """Hydrating twice should update the existing row rather than duplicate it."""

    overviews = iter(["First overview", "Updated overview"])

    def tmdb(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/movie/603"
        return httpx.Response(
            200,
            json={
                "id": 603,
                "title": "The Matrix",
                "release_date": "1999-03-31",
                "runtime": 136,
                "overview": next(overviews),
                "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
            },
        )

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        service = build_service(tmdb, unexpected, database.session_factory)
        request = HydrateRequest(source="tmdb", external_id=603, media_type="movie")

        first = await service.hydrate(request)
        second = await service.hydrate(request)
        titles = await service.list_titles("MATRIX")

        assert first.id == second.id
        assert second.overview == "Updated overview"
        assert second.runtime_minutes == 136
        assert second.genres == ["Action", "Science Fiction"]
        assert second.release_date.isoformat() == "1999-03-31"
        assert [title.id for title in titles] == [first.id]
        assert await service.list_titles("nope") == []

        await database.dispose()

    asyncio.run(runner())


def test_hydrate_tvmaze_show_as_tv_title(tmp_path) -> None:
    def tvmaze(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/shows/42"
        return httpx.Response(
            200,
            json={
                "id": 42,
                "name": "Obscure Show",
                "premiered": "2015-06-01",
                "summary": "<p>Rarely seen.</p>",
                "genres": ["Drama"],
                "image": {"original": "https://static.tvmaze.com/42-full.jpg"},
            },
        )

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'tvmaze.db'}")
        await database.create_all()
        service = build_service(unexpected, tvmaze, database.session_factory)

        title = await service.hydrate(
            HydrateRequest(source="tvmaze", external_id=42, media_type="tv")
        )
        payload = await service.get_title(42, "tv")

        assert title.media_type == "tv"
        assert title.tmdb_id == 42
        assert title.poster_path == "https://static.tvmaze.com/42-full.jpg"
        assert title.overview == "Rarely seen."
        assert payload.id == title.id
        assert payload.genres == ["Drama"]

        await database.dispose()

    asyncio.run(runner())


def test_get_title_previews_unhydrated_tmdb_title(tmp_path) -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/3/tv/1399":
            return httpx.Response(
                200,
                json={
                    "id": 1399,
                    "name": "Game of Thrones",
                    "first_air_date": "2011-04-17",
                    "episode_run_time": [60],
                    "vote_average": 8.4,
                },
            )
        return httpx.Response(404, json={"status_message": "Not found"})

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'preview.db'}")
        await database.create_all()
        service = build_service(tmdb, unexpected, database.session_factory)

        preview = await service.get_title(1399, "tv")
        assert preview.id == "tmdb-1399"
        assert preview.runtime_minutes == 60
        assert preview.vote_average == 8.4

        with pytest.raises(NotFoundError):
            await service.get_title(999, "movie")

        await database.dispose()

    asyncio.run(runner())


def test_hydrate_request_rejects_tvmaze_movies() -> None:
    with pytest.raises(ValueError, match="TVmaze only supports tv"):
        HydrateRequest.model_validate(
            {"source": "tvmaze", "externalId": 1, "mediaType": "movie"}
        )


def test_hydrate_storage_failure_is_upstream_error(tmp_path) -> None:
    def tmdb(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 603, "title": "The Matrix"})

    async def runner() -> None:
        # No create_all: the titles table is missing.
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing.db'}")
        service = build_service(tmdb, unexpected, database.session_factory)

        with pytest.raises(UpstreamError, match="Upstream catalog error"):
            await service.hydrate(
                HydrateRequest(source="tmdb", external_id=603, media_type="movie")
            )

        await database.dispose()

    asyncio.run(runner())


def test_hydrate_request_requires_numeric_ids() -> None:
    for external_id in ("603", True):
        with pytest.raises(ValueError):
            HydrateRequest.model_validate(
                {"source": "tmdb", "externalId": external_id, "mediaType": "movie"}
            )
