"""Review authoring, lookup and deletion."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import Review, ReviewTag, Tag, Title
from ..errors import BadRequestError, NotFoundError, UnauthorizedError
from ..models import ReviewCreate, ReviewQuery
from ..utils import normalize_tags, parse_date
from .catalog import require_title

logger = logging.getLogger(__name__)


def _review_options():
    return (
        selectinload(Review.title),
        selectinload(Review.tag_links).selectinload(ReviewTag.tag),
    )


class ReviewService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, payload: ReviewCreate, *, user_id: str | None = None) -> Review:
        """Create a review and its tag links in a single transaction."""

        watched_on = parse_date(payload.watched_on)
        if payload.watched_on and watched_on is None:
            raise BadRequestError("watchedOn must be a valid date.")

        tag_names = normalize_tags(payload.tags)

        async with self._session_factory() as session:
            title = await require_title(
                session, payload.tmdb_id, payload.media_type, "creating a review"
            )
            tags = await self._upsert_tags(session, tag_names) if tag_names else []
            review = Review(
                title_id=title.id,
                user_id=user_id,
                watched_on=watched_on,
                rating=payload.rating,
                contains_spoilers=payload.contains_spoilers,
                liked=payload.liked,
                body=payload.body,
                tag_links=[ReviewTag(tag=tag) for tag in tags],
            )
            session.add(review)
            await session.commit()
            logger.info("Created review %s for title %s", review.id, title.id)
            review_id = review.id

        return await self.get(review_id)

    @staticmethod
    async def _upsert_tags(session: AsyncSession, names: list[str]) -> list[Tag]:
        result = await session.execute(select(Tag).where(Tag.name.in_(names)))
        existing = {tag.name: tag for tag in result.scalars().all()}
        tags: list[Tag] = []
        for name in names:
            tag = existing.get(name)
            if tag is None:
                tag = Tag(name=name)
                session.add(tag)
                existing[name] = tag
            tags.append(tag)
        return tags

    async def list_reviews(
        self, query: ReviewQuery, *, user_id: str | None = None
    ) -> list[Review]:
        """Return recent reviews, newest first, with optional title/author filters."""

        stmt = (
            select(Review)
            .options(*_review_options())
            .order_by(Review.created_at.desc())
            .limit(query.limit)
        )
        if query.mine:
            if not user_id:
                raise UnauthorizedError()
            stmt = stmt.where(Review.user_id == user_id)
        if query.tmdb_id is not None:
            stmt = stmt.join(Review.title).where(Title.tmdb_id == query.tmdb_id)
            if query.media_type is not None:
                stmt = stmt.where(Title.media_type == query.media_type)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get(self, review_id: str) -> Review:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Review).options(*_review_options()).where(Review.id == review_id)
            )
            review = result.scalar_one_or_none()
        if review is None:
            raise NotFoundError("Review not found.")
        return review

    async def delete(self, review_id: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Review)
                .options(selectinload(Review.tag_links))
                .where(Review.id == review_id)
            )
            review = result.scalar_one_or_none()
            if review is None:
                raise NotFoundError("Review not found.")
            await session.delete(review)
            await session.commit()
            logger.info("Deleted review %s", review_id)
