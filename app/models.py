"""Pydantic models describing request bodies and API payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .db_models import DiaryEntry, ListItem, ListPrivacy, Review, Title, UserList

MediaType = Literal["movie", "tv"]
SearchType = Literal["movie", "tv", "multi"]
CatalogSource = Literal["tmdb", "tvmaze"]


class ApiModel(BaseModel):
    """Base model exchanging camelCase JSON with snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def field_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Group validation messages by their top-level field name."""

    grouped: dict[str, list[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ()
        key = str(location[0]) if location else "_root"
        grouped.setdefault(key, []).append(str(error.get("msg", "Invalid value")))
    return grouped


# Catalog ------------------------------------------------------------------


class CatalogResult(ApiModel):
    """A search hit normalised across TMDB and TVmaze."""

    source: CatalogSource
    media_type: MediaType
    external_id: int
    title: str
    year: int | None = None
    overview: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None


class CatalogSearchResponse(ApiModel):
    page: int
    total_results: int
    results: list[CatalogResult] = Field(default_factory=list)


class SearchQuery(ApiModel):
    q: str = Field(min_length=2)
    type: SearchType = "multi"
    page: int = Field(default=1, ge=1)

    @field_validator("q", mode="before")
    @classmethod
    def _strip_query(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class HydrateRequest(ApiModel):
    source: CatalogSource
    external_id: int = Field(gt=0, strict=True)
    media_type: MediaType

    @model_validator(mode="after")
    def _tvmaze_is_tv_only(self) -> "HydrateRequest":
        if self.source == "tvmaze" and self.media_type != "tv":
            raise ValueError("TVmaze only supports tv mediaType.")
        return self


class TitlePayload(ApiModel):
    id: str
    tmdb_id: int
    media_type: str
    title: str
    original_title: str | None = None
    release_date: date | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str | None = None
    runtime_minutes: int | None = None
    genres: list[str] = Field(default_factory=list)
    vote_average: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Title) -> "TitlePayload":
        return cls(
            id=record.id,
            tmdb_id=record.tmdb_id,
            media_type=record.media_type,
            title=record.title,
            original_title=record.original_title,
            release_date=record.release_date,
            poster_path=record.poster_path,
            backdrop_path=record.backdrop_path,
            overview=record.overview,
            runtime_minutes=record.runtime_minutes,
            genres=list(record.genres or []),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class TitleSummary(ApiModel):
    """Compact title reference embedded in reviews, diary entries and lists."""

    tmdb_id: int
    media_type: str
    title: str
    release_date: date | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None

    @classmethod
    def from_record(cls, record: Title) -> "TitleSummary":
        return cls(
            tmdb_id=record.tmdb_id,
            media_type=record.media_type,
            title=record.title,
            release_date=record.release_date,
            poster_path=record.poster_path,
            backdrop_path=record.backdrop_path,
        )


# Reviews ------------------------------------------------------------------


class ReviewCreate(ApiModel):
    tmdb_id: int = Field(gt=0, strict=True)
    media_type: MediaType
    watched_on: str | None = None
    rating: float | None = Field(default=None, ge=0, le=5, strict=True)
    contains_spoilers: bool = False
    liked: bool = False
    body: str = Field(min_length=1)
    tags: list[str] | None = None

    @field_validator("tags")
    @classmethod
    def _tags_not_blank(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(not tag for tag in value):
            raise ValueError("Tags must be non-empty strings.")
        return value


class ReviewQuery(ApiModel):
    limit: int = Field(default=12, ge=1, le=50)
    tmdb_id: int | None = Field(default=None, gt=0)
    media_type: MediaType | None = None
    mine: bool = False


class ReviewPayload(ApiModel):
    id: str
    title: TitleSummary
    watched_on: date | None = None
    rating: float | None = None
    contains_spoilers: bool = False
    liked: bool = False
    body: str
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: Review) -> "ReviewPayload":
        return cls(
            id=record.id,
            title=TitleSummary.from_record(record.title),
            watched_on=record.watched_on,
            rating=None if record.rating is None else float(record.rating),
            contains_spoilers=bool(record.contains_spoilers),
            liked=bool(record.liked),
            body=record.body,
            tags=[link.tag.name for link in record.tag_links],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


# Diary --------------------------------------------------------------------


class DiaryLogRequest(ApiModel):
    tmdb_id: int = Field(gt=0, strict=True)
    media_type: MediaType
    watched_on: str
    rating: float | None = Field(default=None, ge=0, le=5, strict=True)
    liked: bool = False
    rewatch: bool = False
    notes: str | None = None


class DiaryQuery(ApiModel):
    limit: int = Field(default=12, ge=1, le=50)
    month: int | None = Field(default=None, ge=1, le=12)
    year: int | None = Field(default=None, ge=1970, le=2100)


class DiaryStatsQuery(ApiModel):
    month: int | None = Field(default=None, ge=1, le=12)
    year: int | None = Field(default=None, ge=1970, le=2100)


class DiaryEntryPayload(ApiModel):
    id: str
    title_id: str
    watched_on: date
    rating: float | None = None
    liked: bool = False
    rewatch: bool = False
    notes: str | None = None
    created_at: datetime
    title: TitlePayload | None = None

    @classmethod
    def from_record(
        cls, record: DiaryEntry, *, include_title: bool = False
    ) -> "DiaryEntryPayload":
        return cls(
            id=record.id,
            title_id=record.title_id,
            watched_on=record.watched_on,
            rating=None if record.rating is None else float(record.rating),
            liked=bool(record.liked),
            rewatch=bool(record.rewatch),
            notes=record.notes,
            created_at=record.created_at,
            title=TitlePayload.from_record(record.title) if include_title else None,
        )


class DiaryStats(ApiModel):
    total: int
    year_count: int
    month_count: int
    avg_rating: float


# Lists --------------------------------------------------------------------


class ListCreate(ApiModel):
    name: str = Field(min_length=1)
    description: str | None = None
    privacy: ListPrivacy = ListPrivacy.public


class ListUpdate(ApiModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    privacy: ListPrivacy | None = None


class ListPayload(ApiModel):
    id: str
    user_id: str
    name: str
    description: str | None = None
    privacy: ListPrivacy
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: UserList) -> "ListPayload":
        return cls(
            id=record.id,
            user_id=record.user_id,
            name=record.name,
            description=record.description,
            privacy=record.privacy,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ListItemCreate(ApiModel):
    tmdb_id: int = Field(gt=0, strict=True)
    media_type: MediaType
    rank: int | None = Field(default=None, ge=1, strict=True)
    note: str | None = None


class ListItemRank(ApiModel):
    id: str = Field(min_length=1)
    rank: int = Field(ge=1, strict=True)


class ListItemReorder(ApiModel):
    items: list[ListItemRank]


class ListItemNoteUpdate(ApiModel):
    id: str = Field(min_length=1)
    note: str | None = Field(default=None, max_length=500)


class ListItemDelete(ApiModel):
    id: str = Field(min_length=1)


class ListItemPayload(ApiModel):
    id: str
    list_id: str
    title_id: str
    rank: int
    note: str | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: ListItem) -> "ListItemPayload":
        return cls(
            id=record.id,
            list_id=record.list_id,
            title_id=record.title_id,
            rank=record.rank,
            note=record.note,
            created_at=record.created_at,
        )


class LatestReview(ApiModel):
    id: str
    rating: float | None = None
    watched_on: date | None = None
    created_at: datetime


class ListItemDetail(ApiModel):
    """A list entry joined with its title and the viewer's latest review."""

    id: str
    rank: int
    note: str | None = None
    title: TitleSummary
    latest_review: LatestReview | None = None

    @classmethod
    def from_record(
        cls, record: ListItem, latest_review: Review | None
    ) -> "ListItemDetail":
        review = None
        if latest_review is not None:
            review = LatestReview(
                id=latest_review.id,
                rating=(
                    None
                    if latest_review.rating is None
                    else float(latest_review.rating)
                ),
                watched_on=latest_review.watched_on,
                created_at=latest_review.created_at,
            )
        return cls(
            id=record.id,
            rank=record.rank,
            note=record.note,
            title=TitleSummary.from_record(record.title),
            latest_review=review,
        )


# Accounts -----------------------------------------------------------------


class SessionUser(ApiModel):
    id: str
    email: str
    name: str | None = None


class DbStats(ApiModel):
    titles: int
    reviews: int
    lists: int
