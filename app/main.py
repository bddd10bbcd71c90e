"""Entry point for the FastAPI-powered movie diary service."""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, Form, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings
from .database import Database
from .errors import (
    AdminRequiredError,
    ApiError,
    BadRequestError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from .models import (
    DiaryEntryPayload,
    DiaryLogRequest,
    DiaryQuery,
    DiaryStatsQuery,
    HydrateRequest,
    ListCreate,
    ListItemCreate,
    ListItemDelete,
    ListItemNoteUpdate,
    ListItemPayload,
    ListItemReorder,
    ListPayload,
    ListUpdate,
    ReviewCreate,
    ReviewPayload,
    ReviewQuery,
    SearchQuery,
    SessionUser,
    TitlePayload,
    field_errors,
)
from .rate_limit import TokenBucketLimiter, client_key
from .security import (
    ADMIN_COOKIE_NAME,
    SESSION_COOKIE_NAME,
    SessionPayload,
    admin_cookie_options,
    encode_session,
    is_admin_request,
    passphrase_matches,
    security_headers,
    session_cookie_options,
)
from .services.accounts import AccountService, EmailAlreadyRegistered
from .services.catalog import CatalogService
from .services.diary import DiaryService
from .services.lists import ListService
from .services.reviews import ReviewService
from .services.tmdb import TMDBClient
from .services.tvmaze import TVMazeClient
from .web import render_admin_unlock_page, render_sign_in_page, render_sign_up_page

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    tvmaze_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tvmaze_base_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    install_services(
        fastapi_app,
        settings,
        database,
        TMDBClient(settings, tmdb_http_client),
        TVMazeClient(tvmaze_http_client),
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def install_services(
    fastapi_app: FastAPI,
    app_settings: Settings,
    database: Database,
    tmdb: TMDBClient,
    tvmaze: TVMazeClient,
) -> None:
    """Attach the database, upstream clients and services to ``app.state``."""

    session_factory = database.session_factory
    fastapi_app.state.settings = app_settings
    fastapi_app.state.database = database
    fastapi_app.state.catalog_service = CatalogService(tmdb, tvmaze, session_factory)
    fastapi_app.state.review_service = ReviewService(session_factory)
    fastapi_app.state.diary_service = DiaryService(session_factory)
    fastapi_app.state.list_service = ListService(session_factory)
    fastapi_app.state.account_service = AccountService(session_factory)
    fastapi_app.state.search_limiter = TokenBucketLimiter(
        app_settings.search_rate_limit, app_settings.search_refill_per_ms
    )


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="A movie and TV diary backed by TMDB and TVmaze",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    install_security_headers(fastapi_app)

    register_routes(fastapi_app)
    return fastapi_app


def install_security_headers(fastapi_app: FastAPI) -> None:
    @fastapi_app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        for key, value in security_headers(get_settings(request.app)).items():
            response.headers[key] = value
        return response


def get_settings(fastapi_app: FastAPI) -> Settings:
    configured = getattr(fastapi_app.state, "settings", None)
    if isinstance(configured, Settings):
        return configured
    return settings


def _service(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def get_catalog_service(fastapi_app: FastAPI) -> CatalogService:
    return _service(fastapi_app, "catalog_service", CatalogService)


def get_review_service(fastapi_app: FastAPI) -> ReviewService:
    return _service(fastapi_app, "review_service", ReviewService)


def get_diary_service(fastapi_app: FastAPI) -> DiaryService:
    return _service(fastapi_app, "diary_service", DiaryService)


def get_list_service(fastapi_app: FastAPI) -> ListService:
    return _service(fastapi_app, "list_service", ListService)


def get_account_service(fastapi_app: FastAPI) -> AccountService:
    return _service(fastapi_app, "account_service", AccountService)


def register_error_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ApiError)
    async def _api_error(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @fastapi_app.exception_handler(RequestValidationError)
    async def _request_validation_error(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = BadRequestError(
            "Invalid request.", details=jsonable_encoder(exc.errors())
        )
        return JSONResponse(error.to_payload(), status_code=400)

    @fastapi_app.exception_handler(SQLAlchemyError)
    async def _database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error while handling %s", request.url.path)
        error = ApiError(500, "SERVER_ERROR", "Database operation failed.")
        return JSONResponse(error.to_payload(), status_code=500)


def register_routes(fastapi_app: FastAPI) -> None:
    register_error_handlers(fastapi_app)

    async def _session_user(request: Request) -> SessionUser | None:
        service = get_account_service(fastapi_app)
        return await service.resolve_session(request.cookies.get(SESSION_COOKIE_NAME))

    async def _require_user(request: Request) -> SessionUser:
        user = await _session_user(request)
        if user is None:
            raise UnauthorizedError()
        return user

    def _require_admin(request: Request) -> None:
        if not is_admin_request(
            get_settings(fastapi_app), request.headers, request.cookies
        ):
            raise AdminRequiredError()

    # Health -----------------------------------------------------------------

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/health/db")
    async def health_db() -> JSONResponse:
        database = getattr(fastapi_app.state, "database", None)
        try:
            if not isinstance(database, Database):
                raise RuntimeError("Database not initialised")
            await database.ping()
        except Exception:
            logger.exception("[health/db] query failed")
            return JSONResponse(
                {"ok": False, "error": "DB health check failed"}, status_code=500
            )
        return JSONResponse({"ok": True})

    @fastapi_app.get("/api/health/catalog")
    async def health_catalog() -> JSONResponse:
        try:
            await get_catalog_service(fastapi_app).ping()
        except UpstreamError:
            logger.exception("[health/catalog] query failed")
            return JSONResponse(
                {"ok": False, "error": "Catalog health check failed"}, status_code=502
            )
        return JSONResponse({"ok": True})

    @fastapi_app.get("/api/health/db-stats")
    async def health_db_stats(request: Request) -> dict[str, Any]:
        user = await _require_user(request)
        stats = await get_account_service(fastapi_app).db_stats(user.id)
        return _ok(stats.to_payload())

    # Catalog ----------------------------------------------------------------

    @fastapi_app.get("/api/catalog/search")
    async def catalog_search(request: Request) -> dict[str, Any]:
        limiter = getattr(fastapi_app.state, "search_limiter", None)
        if isinstance(limiter, TokenBucketLimiter) and limiter.is_limited(
            client_key(request)
        ):
            raise RateLimitedError()

        query = _parse(
            SearchQuery, dict(request.query_params), "Invalid query parameters."
        )
        result = await get_catalog_service(fastapi_app).search(
            query.q, query.type, query.page
        )
        return _ok({"results": [item.to_payload() for item in result.results]})

    @fastapi_app.post("/api/catalog/hydrate")
    async def catalog_hydrate(request: Request) -> dict[str, Any]:
        await _require_user(request)
        payload = _parse(HydrateRequest, await _json_body(request))
        title = await get_catalog_service(fastapi_app).hydrate(payload)
        return _ok(TitlePayload.from_record(title).to_payload())

    @fastapi_app.get("/api/titles")
    async def list_titles(q: str | None = None) -> dict[str, Any]:
        titles = await get_catalog_service(fastapi_app).list_titles(q)
        return _ok([TitlePayload.from_record(title).to_payload() for title in titles])

    @fastapi_app.get("/api/titles/{tmdb_id}")
    async def get_title(request: Request, tmdb_id: str) -> dict[str, Any]:
        parsed_id = _coerce_positive_int(tmdb_id)
        if parsed_id is None:
            raise BadRequestError("Invalid tmdbId.")
        media_type = request.query_params.get("mediaType") or "movie"
        if media_type not in {"movie", "tv"}:
            raise BadRequestError(
                "Invalid query parameters.",
                details={"mediaType": ["Input should be 'movie' or 'tv'"]},
            )
        title = await get_catalog_service(fastapi_app).get_title(parsed_id, media_type)
        return _ok(title.to_payload())

    # Reviews ----------------------------------------------------------------

    @fastapi_app.get("/api/reviews")
    async def list_reviews(request: Request) -> dict[str, Any]:
        query = _parse(
            ReviewQuery, dict(request.query_params), "Invalid query parameters."
        )
        user = await _session_user(request)
        reviews = await get_review_service(fastapi_app).list_reviews(
            query, user_id=user.id if user else None
        )
        return _ok([ReviewPayload.from_record(review).to_payload() for review in reviews])

    @fastapi_app.post("/api/reviews")
    async def create_review(request: Request) -> dict[str, Any]:
        _require_admin(request)
        payload = _parse(ReviewCreate, await _json_body(request))
        user = await _session_user(request)
        review = await get_review_service(fastapi_app).create(
            payload, user_id=user.id if user else None
        )
        return _ok(ReviewPayload.from_record(review).to_payload())

    @fastapi_app.get("/api/reviews/{review_id}")
    async def get_review(review_id: str) -> dict[str, Any]:
        review = await get_review_service(fastapi_app).get(review_id)
        return _ok(ReviewPayload.from_record(review).to_payload())

    @fastapi_app.delete("/api/reviews/{review_id}")
    async def delete_review(request: Request, review_id: str) -> dict[str, Any]:
        _require_admin(request)
        await get_review_service(fastapi_app).delete(review_id)
        return _ok()

    # Diary ------------------------------------------------------------------

    @fastapi_app.post("/api/diary/log")
    async def log_diary_entry(request: Request) -> dict[str, Any]:
        _require_admin(request)
        payload = _parse(DiaryLogRequest, await _json_body(request))
        entry = await get_diary_service(fastapi_app).log(payload)
        return _ok(DiaryEntryPayload.from_record(entry).to_payload())

    @fastapi_app.get("/api/diary")
    async def list_diary(request: Request) -> dict[str, Any]:
        query = _parse(DiaryQuery, dict(request.query_params), "Invalid query parameters.")
        entries = await get_diary_service(fastapi_app).list_entries(query)
        return _ok(
            [
                DiaryEntryPayload.from_record(entry, include_title=True).to_payload()
                for entry in entries
            ]
        )

    @fastapi_app.get("/api/diary/stats")
    async def diary_stats(request: Request) -> dict[str, Any]:
        query = _parse(
            DiaryStatsQuery, dict(request.query_params), "Invalid query parameters."
        )
        stats = await get_diary_service(fastapi_app).stats(query)
        return _ok(stats.to_payload())

    # Lists ------------------------------------------------------------------

    @fastapi_app.get("/api/lists")
    async def list_lists(request: Request) -> dict[str, Any]:
        user = await _require_user(request)
        lists = await get_list_service(fastapi_app).list_for_user(user.id)
        return _ok([ListPayload.from_record(item).to_payload() for item in lists])

    @fastapi_app.post("/api/lists")
    async def create_list(request: Request) -> dict[str, Any]:
        user = await _require_user(request)
        payload = _parse(ListCreate, await _json_body(request))
        created = await get_list_service(fastapi_app).create(user.id, payload)
        return _ok(ListPayload.from_record(created).to_payload())

    @fastapi_app.get("/api/lists/{list_id}")
    async def get_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        user_list = await get_list_service(fastapi_app).get(
            _validate_list_id(list_id), user.id
        )
        return _ok(ListPayload.from_record(user_list).to_payload())

    @fastapi_app.put("/api/lists/{list_id}")
    async def update_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        list_id = _validate_list_id(list_id)
        payload = _parse(ListUpdate, await _json_body(request))
        updated = await get_list_service(fastapi_app).update(list_id, user.id, payload)
        return _ok(ListPayload.from_record(updated).to_payload())

    @fastapi_app.delete("/api/lists/{list_id}")
    async def delete_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        await get_list_service(fastapi_app).delete(_validate_list_id(list_id), user.id)
        return _ok()

    @fastapi_app.get("/api/lists/{list_id}/items")
    async def list_items(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        items = await get_list_service(fastapi_app).list_items(
            _validate_list_id(list_id), user.id
        )
        return _ok([item.to_payload() for item in items])

    @fastapi_app.post("/api/lists/{list_id}/items")
    async def add_list_item(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        list_id = _validate_list_id(list_id)
        payload = _parse(ListItemCreate, await _json_body(request))
        item = await get_list_service(fastapi_app).add_item(list_id, user.id, payload)
        return _ok(ListItemPayload.from_record(item).to_payload())

    @fastapi_app.put("/api/lists/{list_id}/items")
    async def update_list_items(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        list_id = _validate_list_id(list_id)
        body = await _json_body(request)
        service = get_list_service(fastapi_app)

        try:
            reorder = ListItemReorder.model_validate(body)
        except ValidationError:
            note_update = _parse(ListItemNoteUpdate, body)
            item = await service.update_note(list_id, user.id, note_update)
            return _ok(ListItemPayload.from_record(item).to_payload())

        await service.reorder(list_id, user.id, reorder)
        return _ok()

    @fastapi_app.delete("/api/lists/{list_id}/items")
    async def delete_list_item(request: Request, list_id: str) -> dict[str, Any]:
        user = await _require_user(request)
        list_id = _validate_list_id(list_id)
        payload = _parse(ListItemDelete, await _json_body(request))
        await get_list_service(fastapi_app).remove_item(list_id, user.id, payload)
        return _ok()

    # Auth -------------------------------------------------------------------

    @fastapi_app.get("/api/auth/session")
    async def auth_session(request: Request) -> dict[str, Any]:
        user = await _session_user(request)
        return {"ok": True, "user": user.to_payload() if user else None}

    @fastapi_app.get("/api/auth/sign-in")
    async def sign_in_redirect() -> RedirectResponse:
        return RedirectResponse("/sign-in", status_code=303)

    @fastapi_app.post("/api/auth/sign-in")
    async def sign_in(
        email: str = Form(default=""),
        password: str = Form(default=""),
        next: str = Form(default=""),
    ) -> RedirectResponse:
        email = email.strip()
        next_path = _resolve_next_path(next)
        if not email or not password:
            return RedirectResponse("/sign-in", status_code=303)

        try:
            user = await get_account_service(fastapi_app).authenticate(email, password)
        except SQLAlchemyError:
            logger.exception("Sign in failed for %s", email)
            return RedirectResponse("/sign-in?error=server", status_code=303)
        if user is None:
            return RedirectResponse("/sign-in?error=invalid", status_code=303)

        response = RedirectResponse(next_path, status_code=303)
        _set_session_cookie(response, user.id, user.email)
        return response

    @fastapi_app.get("/api/auth/sign-up")
    async def sign_up_redirect() -> RedirectResponse:
        return RedirectResponse("/sign-up", status_code=303)

    @fastapi_app.post("/api/auth/sign-up")
    async def sign_up(
        name: str = Form(default=""),
        email: str = Form(default=""),
        password: str = Form(default=""),
        next: str = Form(default=""),
    ) -> RedirectResponse:
        name = name.strip()
        email = email.strip()
        next_path = _resolve_next_path(next)
        if not email or not password:
            return RedirectResponse("/sign-up", status_code=303)

        try:
            user = await get_account_service(fastapi_app).sign_up(
                name=name, email=email, password=password
            )
        except EmailAlreadyRegistered:
            return RedirectResponse("/sign-in?error=exists", status_code=303)
        except SQLAlchemyError:
            logger.exception("Sign up failed for %s", email)
            return RedirectResponse("/sign-up?error=server", status_code=303)

        response = RedirectResponse(next_path, status_code=303)
        _set_session_cookie(response, user.id, user.email)
        return response

    @fastapi_app.get("/sign-out")
    async def sign_out() -> RedirectResponse:
        response = RedirectResponse("/", status_code=303)
        options = session_cookie_options(get_settings(fastapi_app))
        response.delete_cookie(
            SESSION_COOKIE_NAME,
            path=options["path"],
            secure=options["secure"],
            httponly=options["httponly"],
            samesite=options["samesite"],
        )
        return response

    @fastapi_app.post("/api/admin/unlock")
    async def admin_unlock(
        passphrase: str = Form(default=""),
        next: str = Form(default="/reviews"),
    ) -> RedirectResponse:
        app_settings = get_settings(fastapi_app)
        next_path = next or "/reviews"
        if not passphrase_matches(app_settings, passphrase):
            query = httpx.QueryParams({"error": "1", "next": next_path})
            return RedirectResponse(f"/admin/unlock?{query}", status_code=303)

        response = RedirectResponse(
            _resolve_next_path(next_path, "/reviews"), status_code=303
        )
        response.set_cookie(
            ADMIN_COOKIE_NAME,
            app_settings.admin_passphrase or "",
            **admin_cookie_options(app_settings),
        )
        return response

    def _set_session_cookie(response: RedirectResponse, user_id: str, email: str) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            encode_session(SessionPayload(id=user_id, email=email)),
            **session_cookie_options(get_settings(fastapi_app)),
        )

    # Pages ------------------------------------------------------------------

    @fastapi_app.get("/sign-in", response_class=HTMLResponse)
    async def sign_in_page(next: str = "/me", error: str | None = None) -> HTMLResponse:
        return HTMLResponse(
            render_sign_in_page(
                get_settings(fastapi_app),
                next_path=_resolve_next_path(next),
                error=error,
            )
        )

    @fastapi_app.get("/sign-up", response_class=HTMLResponse)
    async def sign_up_page(next: str = "/me", error: str | None = None) -> HTMLResponse:
        return HTMLResponse(
            render_sign_up_page(
                get_settings(fastapi_app),
                next_path=_resolve_next_path(next),
                error=error,
            )
        )

    @fastapi_app.get("/admin/unlock", response_class=HTMLResponse)
    async def admin_unlock_page(
        next: str = "/reviews", error: str | None = None
    ) -> HTMLResponse:
        return HTMLResponse(
            render_admin_unlock_page(
                get_settings(fastapi_app),
                next_path=_resolve_next_path(next, "/reviews"),
                failed=bool(error),
            )
        )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _parse(
    model: type[ModelT], data: Any, message: str = "Invalid request body."
) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise BadRequestError(message, details=field_errors(exc)) from exc


def _ok(data: Any = None) -> dict[str, Any]:
    if data is None:
        return {"ok": True}
    return {"ok": True, "data": data}


def _validate_list_id(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError as exc:
        raise BadRequestError("Invalid listId.") from exc


def _coerce_positive_int(value: str) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _resolve_next_path(raw: str | None, default: str = "/me") -> str:
    """Only allow same-site relative redirect targets."""

    candidate = (raw or "").strip()
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return default


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
