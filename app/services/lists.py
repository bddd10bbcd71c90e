"""Ranked list curation owned by signed-in users."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import ListItem, Review, UserList
from ..errors import ForbiddenError, NotFoundError
from ..models import (
    ListCreate,
    ListItemCreate,
    ListItemDelete,
    ListItemDetail,
    ListItemNoteUpdate,
    ListItemReorder,
    ListUpdate,
)
from ..utils import clean_text
from .catalog import require_title

logger = logging.getLogger(__name__)


class ListService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_for_user(self, user_id: str) -> list[UserList]:
        stmt = (
            select(UserList)
            .where(UserList.user_id == user_id)
            .order_by(UserList.updated_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create(self, user_id: str, payload: ListCreate) -> UserList:
        async with self._session_factory() as session:
            user_list = UserList(
                user_id=user_id,
                name=payload.name,
                description=payload.description,
                privacy=payload.privacy,
            )
            session.add(user_list)
            await session.commit()
            await session.refresh(user_list)
            logger.info("Created list %s for user %s", user_list.id, user_id)
            return user_list

    async def get(self, list_id: str, user_id: str) -> UserList:
        async with self._session_factory() as session:
            return await self._owned_list(session, list_id, user_id)

    async def update(
        self, list_id: str, user_id: str, payload: ListUpdate
    ) -> UserList:
        """Apply the supplied fields; omitted or null fields are left unchanged."""

        async with self._session_factory() as session:
            user_list = await self._owned_list(session, list_id, user_id)
            if payload.name is not None:
                user_list.name = payload.name
            if payload.description is not None:
                user_list.description = payload.description
            if payload.privacy is not None:
                user_list.privacy = payload.privacy
            await session.commit()
            await session.refresh(user_list)
            return user_list

    async def delete(self, list_id: str, user_id: str) -> None:
        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            await session.execute(delete(ListItem).where(ListItem.list_id == list_id))
            await session.execute(delete(UserList).where(UserList.id == list_id))
            await session.commit()
            logger.info("Deleted list %s", list_id)

    async def list_items(self, list_id: str, user_id: str) -> list[ListItemDetail]:
        """Return items by rank with the viewer's most recent review of each title."""

        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            result = await session.execute(
                select(ListItem)
                .options(selectinload(ListItem.title))
                .where(ListItem.list_id == list_id)
                .order_by(ListItem.rank.asc(), ListItem.created_at.asc())
            )
            items = list(result.scalars().all())

            latest: dict[str, Review] = {}
            title_ids = {item.title_id for item in items}
            if title_ids:
                reviews = await session.execute(
                    select(Review)
                    .where(Review.user_id == user_id, Review.title_id.in_(title_ids))
                    .order_by(Review.created_at.desc())
                )
                for review in reviews.scalars().all():
                    latest.setdefault(review.title_id, review)

        return [
            ListItemDetail.from_record(item, latest.get(item.title_id)) for item in items
        ]

    async def add_item(
        self, list_id: str, user_id: str, payload: ListItemCreate
    ) -> ListItem:
        """Append a hydrated title, defaulting its rank to one past the current max."""

        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            title = await require_title(
                session, payload.tmdb_id, payload.media_type, "adding it to a list"
            )
            rank = payload.rank
            if not rank:
                current_max = await session.scalar(
                    select(func.max(ListItem.rank)).where(ListItem.list_id == list_id)
                )
                rank = int(current_max or 0) + 1

            item = ListItem(
                list_id=list_id,
                title_id=title.id,
                rank=rank,
                note=clean_text(payload.note),
            )
            session.add(item)
            await session.commit()
            await session.refresh(item)
            return item

    async def reorder(
        self, list_id: str, user_id: str, payload: ListItemReorder
    ) -> None:
        """Assign new ranks to the supplied items atomically."""

        requested = {entry.id for entry in payload.items}
        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            result = await session.execute(
                select(ListItem.id).where(
                    ListItem.list_id == list_id, ListItem.id.in_(requested)
                )
            )
            found = set(result.scalars().all())
            if len(found) != len(payload.items):
                raise NotFoundError("One or more list items not found.")

            for entry in payload.items:
                await session.execute(
                    update(ListItem)
                    .where(ListItem.id == entry.id)
                    .values(rank=entry.rank)
                )
            await session.commit()
            logger.info("Reordered %d items in list %s", len(payload.items), list_id)

    async def update_note(
        self, list_id: str, user_id: str, payload: ListItemNoteUpdate
    ) -> ListItem:
        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            item = await self._list_item(session, list_id, payload.id)
            item.note = clean_text(payload.note)
            await session.commit()
            await session.refresh(item)
            return item

    async def remove_item(
        self, list_id: str, user_id: str, payload: ListItemDelete
    ) -> None:
        async with self._session_factory() as session:
            await self._owned_list(session, list_id, user_id)
            item = await self._list_item(session, list_id, payload.id)
            await session.delete(item)
            await session.commit()

    @staticmethod
    async def _owned_list(
        session: AsyncSession, list_id: str, user_id: str
    ) -> UserList:
        user_list = await session.get(UserList, list_id)
        if user_list is None:
            raise NotFoundError("List not found.")
        if user_list.user_id != user_id:
            raise ForbiddenError()
        return user_list

    @staticmethod
    async def _list_item(
        session: AsyncSession, list_id: str, item_id: str
    ) -> ListItem:
        item = await session.get(ListItem, item_id)
        if item is None or item.list_id != list_id:
            raise NotFoundError("List item not found.")
        return item
