"""Populate a database with an example title and diary entry."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select

from .database import Database
from .db_models import DiaryEntry, Title
from .services.catalog import find_title

logger = logging.getLogger(__name__)

EXAMPLE_TITLE = {
    "title": "Example Film",
    "original_title": "Example Film",
    "overview": "Seeded example title.",
    "release_date": date(2020, 1, 1),
    "genres": ["Drama"],
    "runtime_minutes": 120,
}
EXAMPLE_WATCHED_ON = date(2024, 1, 1)


async def seed_database(database: Database) -> Title:
    """Upsert the example title and log one diary entry for it if missing."""

    await database.create_all()
    async with database.session() as session:
        title = await find_title(session, 1, "movie")
        if title is None:
            title = Title(tmdb_id=1, media_type="movie", **EXAMPLE_TITLE)
            session.add(title)
            await session.flush()
        else:
            for key, value in EXAMPLE_TITLE.items():
                setattr(title, key, value)

        existing_entry = await session.scalar(
            select(DiaryEntry.id).where(
                DiaryEntry.title_id == title.id,
                DiaryEntry.watched_on == EXAMPLE_WATCHED_ON,
            )
        )
        if existing_entry is None:
            session.add(
                DiaryEntry(
                    title_id=title.id,
                    watched_on=EXAMPLE_WATCHED_ON,
                    rating=3.5,
                    liked=True,
                    rewatch=False,
                    notes="Seeded diary entry.",
                )
            )
            logger.info("Seeded diary entry for %s", title.id)
        await session.commit()
        await session.refresh(title)
        return title
