"""HTTP route tests exercising the JSON envelope, auth and gates."""

from __future__ import annotations

import asyncio
from typing import Any, Iterator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.database import Database
from app.main import install_security_headers, install_services, register_routes
from app.services.tmdb import TMDBClient
from app.services.tvmaze import TVMazeClient

ADMIN_HEADERS = {"x-admin-passphrase": "letmein"}


def tmdb_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.startswith("/3/search/"):
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_results": 1,
                "results": [
                    {
                        "id": 603,
                        "media_type": "movie",
                        "title": "The Matrix",
                        "release_date": "1999-03-31",
                    }
                ],
            },
        )
    if path == "/3/movie/603":
        return httpx.Response(
            200,
            json={
                "id": 603,
                "title": "The Matrix",
                "release_date": "1999-03-31",
                "runtime": 136,
                "genres": [{"id": 28, "name": "Action"}],
            },
        )
    return httpx.Response(404, json={"status_message": "The resource could not be found."})


def tvmaze_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=[])


def build_client(tmp_path, **settings_overrides: Any) -> Iterator[TestClient]:
    overrides = {
        "TMDB_API_KEY": "tmdb-key",
        "PUBLIC_READONLY": True,
        "ADMIN_PASSPHRASE": "letmein",
        **settings_overrides,
    }
    settings = Settings(_env_file=None, **overrides)  # type: ignore[arg-type]
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'routes.db'}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    app = FastAPI()
    register_routes(app)
    install_security_headers(app)
    install_services(
        app,
        settings,
        database,
        TMDBClient(
            settings,
            httpx.AsyncClient(
                base_url="https://api.themoviedb.org/3",
                transport=httpx.MockTransport(tmdb_handler),
            ),
        ),
        TVMazeClient(
            httpx.AsyncClient(
                base_url="https://api.tvmaze.com",
                transport=httpx.MockTransport(tvmaze_handler),
            )
        ),
    )

    with TestClient(app) as client:
        yield client
    asyncio.run(database.dispose())


@pytest.fixture
def client(tmp_path) -> Iterator[TestClient]:
    yield from build_client(tmp_path)


def sign_up(client: TestClient, email: str = "viewer@example.com") -> None:
    response = client.post(
        "/api/auth/sign-up",
        data={"name": "Viewer", "email": email, "password": "secret"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/me"


def hydrate_matrix(client: TestClient) -> dict[str, Any]:
    response = client.post(
        "/api/catalog/hydrate",
        json={"source": "tmdb", "externalId": 603, "mediaType": "movie"},
    )
    assert response.status_code == 200
    return response.json()["data"]


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/api/health/db").json() == {"ok": True}
    assert client.get("/api/health/catalog").json() == {"ok": True}

    response = client.get("/api/health/db-stats")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_responses_carry_security_headers(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.headers["x-frame-options"] == "DENY"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "strict-transport-security" not in response.headers


def test_search_validates_query(client: TestClient) -> None:
    response = client.get("/api/catalog/search", params={"q": "a"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "BAD_REQUEST"
    assert "q" in payload["error"]["details"]


def test_search_returns_normalized_results(client: TestClient) -> None:
    response = client.get("/api/catalog/search", params={"q": "matrix"})

    assert response.status_code == 200
    results = response.json()["data"]["results"]
    assert results[0]["externalId"] == 603
    assert results[0]["source"] == "tmdb"
    assert results[0]["year"] == 1999


def test_search_is_rate_limited_per_client(tmp_path) -> None:
    for client in build_client(tmp_path, SEARCH_RATE_LIMIT=2):
        statuses = [
            client.get("/api/catalog/search", params={"q": "matrix"}).status_code
            for _ in range(3)
        ]
        assert statuses == [200, 200, 429]

        limited = client.get("/api/catalog/search", params={"q": "matrix"})
        assert limited.json() == {
            "ok": False,
            "error": {"code": "RATE_LIMITED", "message": "Too many requests"},
        }

        other = client.get(
            "/api/catalog/search",
            params={"q": "matrix"},
            headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"},
        )
        assert other.status_code == 200


def test_hydrate_requires_session(client: TestClient) -> None:
    response = client.post(
        "/api/catalog/hydrate",
        json={"source": "tmdb", "externalId": 603, "mediaType": "movie"},
    )
    assert response.status_code == 401

    sign_up(client)
    title = hydrate_matrix(client)
    assert title["tmdbId"] == 603
    assert title["genres"] == ["Action"]

    stored = client.get("/api/titles/603").json()["data"]
    assert stored["id"] == title["id"]
    assert [item["tmdbId"] for item in client.get("/api/titles").json()["data"]] == [603]


def test_title_lookup_validation(client: TestClient) -> None:
    assert client.get("/api/titles/abc").json()["error"]["message"] == "Invalid tmdbId."
    assert client.get("/api/titles/0").status_code == 400
    assert client.get("/api/titles/603", params={"mediaType": "book"}).status_code == 400

    missing = client.get("/api/titles/42")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    preview = client.get("/api/titles/603").json()["data"]
    assert preview["id"] == "tmdb-603"


def test_review_writes_require_admin(client: TestClient) -> None:
    sign_up(client)
    hydrate_matrix(client)
    body = {
        "tmdbId": 603,
        "mediaType": "movie",
        "rating": 4,
        "body": "Whoa.",
        "tags": ["Sci-Fi"],
    }

    denied = client.post("/api/reviews", json=body)
    assert denied.status_code == 401
    assert denied.json() == {"ok": False, "error": "ADMIN_REQUIRED"}

    created = client.post("/api/reviews", json=body, headers=ADMIN_HEADERS)
    assert created.status_code == 200
    review = created.json()["data"]
    assert review["tags"] == ["sci-fi"]
    assert review["title"]["title"] == "The Matrix"

    mine = client.get("/api/reviews", params={"mine": "true"}).json()["data"]
    assert [item["id"] for item in mine] == [review["id"]]
    assert client.get(f"/api/reviews/{review['id']}").json()["data"]["body"] == "Whoa."

    assert client.delete(f"/api/reviews/{review['id']}").status_code == 401
    assert client.delete(f"/api/reviews/{review['id']}", headers=ADMIN_HEADERS).json() == {
        "ok": True
    }
    assert client.get(f"/api/reviews/{review['id']}").status_code == 404


def test_review_body_validation(client: TestClient) -> None:
    response = client.post(
        "/api/reviews",
        json={"tmdbId": 603, "mediaType": "movie", "rating": 9, "body": ""},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 400
    details = response.json()["error"]["details"]
    assert {"rating", "body"} <= set(details)

    invalid_json = client.post(
        "/api/reviews",
        content=b"{not json",
        headers={**ADMIN_HEADERS, "content-type": "application/json"},
    )
    assert invalid_json.status_code == 400
    assert invalid_json.json()["error"]["message"] == "Invalid request body."


def test_mine_reviews_require_session(client: TestClient) -> None:
    response = client.get("/api/reviews", params={"mine": "true"})

    assert response.status_code == 401


def test_admin_unlock_sets_cookie_for_diary_writes(client: TestClient) -> None:
    sign_up(client)
    hydrate_matrix(client)

    failed = client.post(
        "/api/admin/unlock", data={"passphrase": "wrong"}, follow_redirects=False
    )
    assert failed.status_code == 303
    assert failed.headers["location"].startswith("/admin/unlock?error=1&next=")

    unlocked = client.post(
        "/api/admin/unlock",
        data={"passphrase": "letmein", "next": "/diary"},
        follow_redirects=False,
    )
    assert unlocked.headers["location"] == "/diary"
    assert client.cookies.get("ft_admin") == "letmein"

    logged = client.post(
        "/api/diary/log",
        json={
            "tmdbId": 603,
            "mediaType": "movie",
            "watchedOn": "2024-03-01",
            "rating": 4.5,
            "liked": True,
        },
    )
    assert logged.status_code == 200
    assert logged.json()["data"]["watchedOn"] == "2024-03-01"

    entries = client.get("/api/diary", params={"month": 3, "year": 2024}).json()["data"]
    assert entries[0]["title"]["tmdbId"] == 603

    stats = client.get("/api/diary/stats", params={"year": 2024, "month": 3}).json()
    assert stats["data"] == {
        "total": 1,
        "yearCount": 1,
        "monthCount": 1,
        "avgRating": 4.5,
    }


def test_writes_open_when_public_readonly_disabled(tmp_path) -> None:
    for client in build_client(tmp_path, PUBLIC_READONLY=False, ADMIN_PASSPHRASE=None):
        response = client.post(
            "/api/diary/log",
            json={"tmdbId": 1, "mediaType": "movie", "watchedOn": "2024-01-01"},
        )
        assert response.status_code == 404
        assert "Hydrate the title" in response.json()["error"]["message"]


def test_list_routes_enforce_ownership(client: TestClient) -> None:
    assert client.get("/api/lists").status_code == 401

    sign_up(client, "owner@example.com")
    hydrate_matrix(client)
    created = client.post("/api/lists", json={"name": "Best of 1999"}).json()["data"]
    list_id = created["id"]
    assert created["privacy"] == "public"

    assert client.get("/api/lists/not-a-uuid").json()["error"]["message"] == "Invalid listId."

    item = client.post(
        f"/api/lists/{list_id}/items",
        json={"tmdbId": 603, "mediaType": "movie", "note": "Top pick"},
    ).json()["data"]
    assert item["rank"] == 1

    noted = client.put(
        f"/api/lists/{list_id}/items", json={"id": item["id"], "note": "Still top"}
    ).json()["data"]
    assert noted["note"] == "Still top"

    reordered = client.put(
        f"/api/lists/{list_id}/items", json={"items": [{"id": item["id"], "rank": 3}]}
    )
    assert reordered.json() == {"ok": True}
    items = client.get(f"/api/lists/{list_id}/items").json()["data"]
    assert [(entry["rank"], entry["title"]["title"]) for entry in items] == [
        (3, "The Matrix")
    ]

    renamed = client.put(f"/api/lists/{list_id}", json={"name": "Best of the 90s"})
    assert renamed.json()["data"]["name"] == "Best of the 90s"

    stats = client.get("/api/health/db-stats").json()["data"]
    assert stats == {"titles": 1, "reviews": 0, "lists": 1}

    client.cookies.clear()
    sign_up(client, "intruder@example.com")
    forbidden = client.get(f"/api/lists/{list_id}")
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "FORBIDDEN"
    assert client.delete(f"/api/lists/{list_id}").status_code == 403


def test_sign_in_flow_and_session(client: TestClient) -> None:
    assert client.get("/api/auth/session").json() == {"ok": True, "user": None}

    sign_up(client, "reader@example.com")
    session = client.get("/api/auth/session").json()
    assert session["user"]["email"] == "reader@example.com"
    assert session["user"]["name"] == "Viewer"

    duplicate = client.post(
        "/api/auth/sign-up",
        data={"email": "reader@example.com", "password": "other"},
        follow_redirects=False,
    )
    assert duplicate.headers["location"] == "/sign-in?error=exists"

    signed_out = client.get("/sign-out", follow_redirects=False)
    assert signed_out.headers["location"] == "/"
    assert client.get("/api/auth/session").json()["user"] is None

    wrong = client.post(
        "/api/auth/sign-in",
        data={"email": "reader@example.com", "password": "nope"},
        follow_redirects=False,
    )
    assert wrong.headers["location"] == "/sign-in?error=invalid"

    right = client.post(
        "/api/auth/sign-in",
        data={"email": "reader@example.com", "password": "secret", "next": "//evil.test"},
        follow_redirects=False,
    )
    assert right.headers["location"] == "/me"
    assert client.get("/api/auth/session").json()["user"]["email"] == "reader@example.com"

    redirect = client.get("/api/auth/sign-in", follow_redirects=False)
    assert redirect.status_code == 303
    assert redirect.headers["location"] == "/sign-in"


def test_html_pages_render_forms(client: TestClient) -> None:
    sign_in = client.get("/sign-in", params={"error": "invalid"})
    assert sign_in.status_code == 200
    assert 'action="/api/auth/sign-in"' in sign_in.text
    assert "was not recognised" in sign_in.text

    sign_up_page = client.get("/sign-up", params={"next": "/lists"})
    assert 'value="/lists"' in sign_up_page.text

    unlock = client.get("/admin/unlock", params={"error": "1"})
    assert "Incorrect passphrase." in unlock.text


def test_dates_with_trailing_text_are_rejected(client: TestClient) -> None:
    sign_up(client)
    hydrate_matrix(client)

    diary = client.post(
        "/api/diary/log",
        json={"tmdbId": 603, "mediaType": "movie", "watchedOn": "2024-01-01garbage"},
        headers=ADMIN_HEADERS,
    )
    review = client.post(
        "/api/reviews",
        json={
            "tmdbId": 603,
            "mediaType": "movie",
            "watchedOn": "2024-01-01T99:99",
            "body": "Timeless.",
        },
        headers=ADMIN_HEADERS,
    )

    assert diary.status_code == 400
    assert diary.json()["error"]["message"] == "watchedOn must be a valid date."
    assert review.status_code == 400


def test_body_ids_must_be_json_numbers(client: TestClient) -> None:
    sign_up(client)
    hydrate_matrix(client)

    response = client.post(
        "/api/reviews",
        json={"tmdbId": "603", "mediaType": "movie", "body": "Quoted id"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 400
    assert "tmdbId" in response.json()["error"]["details"]
