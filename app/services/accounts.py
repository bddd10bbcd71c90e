"""Account creation, credential checks and session resolution."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import AuthUser, Review, Title, UserList, UserProfile
from ..models import DbStats, SessionUser
from ..security import SessionPayload, decode_session, hash_password, verify_password
from ..utils import slugify

logger = logging.getLogger(__name__)


class EmailAlreadyRegistered(ValueError):
    """Raised when signing up with an email that already has an account."""


def normalize_username(seed: str) -> str:
    return slugify(seed)


class AccountService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def sign_up(self, *, name: str, email: str, password: str) -> AuthUser:
        """Create a user and profile, deriving a unique username."""

        async with self._session_factory() as session:
            existing = await session.scalar(
                select(AuthUser.id).where(AuthUser.email == email)
            )
            if existing:
                raise EmailAlreadyRegistered(email)

            seed = name or email.split("@", 1)[0]
            username = await self._unique_username(session, seed)
            user = AuthUser(email=email, password_hash=hash_password(password))
            user.profile = UserProfile(username=username, display_name=name or None)
            session.add(user)
            await session.commit()
            logger.info("Registered user %s as %s", user.id, username)
            return user

    @staticmethod
    async def _unique_username(session: AsyncSession, seed: str) -> str:
        base = normalize_username(seed)
        candidate = base
        suffix = 1
        while await session.scalar(
            select(UserProfile.id).where(UserProfile.username == candidate)
        ):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    async def authenticate(self, email: str, password: str) -> AuthUser | None:
        """Return the user when the credentials match, otherwise ``None``."""

        async with self._session_factory() as session:
            user = await session.scalar(select(AuthUser).where(AuthUser.email == email))
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    async def resolve_session(self, cookie_value: str | None) -> SessionUser | None:
        """Return the signed-in user described by a session cookie, if still valid."""

        payload = decode_session(cookie_value)
        if payload is None:
            return None
        return await self.load_session_user(payload)

    async def load_session_user(self, payload: SessionPayload) -> SessionUser | None:
        """Load the cookie's user; lookup failures count as signed out."""

        try:
            async with self._session_factory() as session:
                user = await session.scalar(
                    select(AuthUser)
                    .options(selectinload(AuthUser.profile))
                    .where(AuthUser.id == payload.id)
                )
        except SQLAlchemyError:
            logger.exception("Failed to load session user %s", payload.id)
            return None
        if user is None or user.email != payload.email:
            return None
        return SessionUser(
            id=user.id,
            email=user.email,
            name=user.profile.display_name if user.profile else None,
        )

    async def db_stats(self, user_id: str) -> DbStats:
        async with self._session_factory() as session:
            titles = await session.scalar(select(func.count(Title.id)))
            reviews = await session.scalar(
                select(func.count(Review.id)).where(Review.user_id == user_id)
            )
            lists = await session.scalar(
                select(func.count(UserList.id)).where(UserList.user_id == user_id)
            )
        return DbStats(
            titles=int(titles or 0), reviews=int(reviews or 0), lists=int(lists or 0)
        )
