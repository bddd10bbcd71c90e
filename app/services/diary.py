"""Diary logging, listing and aggregate statistics."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import DiaryEntry
from ..errors import BadRequestError
from ..models import DiaryLogRequest, DiaryQuery, DiaryStats, DiaryStatsQuery
from ..utils import clean_text, month_bounds, parse_date, year_bounds
from .catalog import require_title

logger = logging.getLogger(__name__)


class DiaryService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log(self, payload: DiaryLogRequest) -> DiaryEntry:
        watched_on = parse_date(payload.watched_on)
        if watched_on is None:
            raise BadRequestError("watchedOn must be a valid date.")

        async with self._session_factory() as session:
            title = await require_title(
                session, payload.tmdb_id, payload.media_type, "logging a diary entry"
            )
            entry = DiaryEntry(
                title_id=title.id,
                watched_on=watched_on,
                rating=payload.rating,
                liked=payload.liked,
                rewatch=payload.rewatch,
                notes=clean_text(payload.notes),
            )
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
            logger.info("Logged diary entry %s for title %s", entry.id, title.id)
            return entry

    async def list_entries(self, query: DiaryQuery) -> list[DiaryEntry]:
        """Return entries by most recent watch date, filtered to a month if given."""

        stmt = (
            select(DiaryEntry)
            .options(selectinload(DiaryEntry.title))
            .order_by(DiaryEntry.watched_on.desc(), DiaryEntry.created_at.desc())
            .limit(query.limit)
        )
        if query.month and query.year:
            start, end = month_bounds(query.year, query.month)
            stmt = stmt.where(DiaryEntry.watched_on >= start, DiaryEntry.watched_on < end)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def stats(self, query: DiaryStatsQuery) -> DiaryStats:
        async with self._session_factory() as session:
            total = await session.scalar(select(func.count(DiaryEntry.id)))
            average = await session.scalar(select(func.avg(DiaryEntry.rating)))

            year_count = 0
            if query.year:
                start, end = year_bounds(query.year)
                year_count = await self._count_between(session, start, end)

            month_count = 0
            if query.month and query.year:
                start, end = month_bounds(query.year, query.month)
                month_count = await self._count_between(session, start, end)

        return DiaryStats(
            total=int(total or 0),
            year_count=year_count,
            month_count=month_count,
            avg_rating=0.0 if average is None else float(average),
        )

    @staticmethod
    async def _count_between(session: AsyncSession, start, end) -> int:
        count = await session.scalar(
            select(func.count(DiaryEntry.id)).where(
                DiaryEntry.watched_on >= start, DiaryEntry.watched_on < end
            )
        )
        return int(count or 0)
