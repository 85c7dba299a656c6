"""User storage for shopfront."""

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import UserTable
from .errors import AuthenticationError, DuplicateError, UserNotFoundError
from .models import User, _generate_id, _utc_now


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _to_user(row: UserTable) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        phone=row.phone,
        address=dict(row.address or {}),
        created_at=row.created_at,
    )


class UserStore:
    """Manages registered users."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session = session_factory

    async def list_users(self) -> list[User]:
        async with self._session() as session:
            rows = (await session.execute(select(UserTable).order_by(UserTable.created_at))).scalars().all()
            return [_to_user(r) for r in rows]

    async def get_user(self, user_id: str) -> User:
        """
        Get a user by ID.

        Raises:
            UserNotFoundError: If user doesn't exist.
        """
        async with self._session() as session:
            row = await session.get(UserTable, user_id)
            if row is None:
                raise UserNotFoundError(user_id)
            return _to_user(row)

    async def find_by_email(self, email: str) -> User | None:
        async with self._session() as session:
            row = (
                await session.execute(select(UserTable).where(UserTable.email == email.strip().lower()))
            ).scalar_one_or_none()
            return _to_user(row) if row else None

    async def count_users(self, role: str | None = None) -> int:
        stmt = select(func.count(UserTable.id))
        if role:
            stmt = stmt.where(UserTable.role == role)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        phone: str | None = None,
        role: str = "customer",
    ) -> User:
        """
        Register a user with a bcrypt-hashed password.

        Raises:
            DuplicateError: If the email is already registered.
        """
        row = UserTable(
            id=_generate_id(),
            name=name,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            phone=phone,
            role=role,
            address={},
            created_at=_utc_now(),
        )
        try:
            async with self._session() as session, session.begin():
                session.add(row)
        except IntegrityError:
            raise DuplicateError("Email already registered")
        return _to_user(row)

    async def authenticate(self, email: str, password: str) -> User:
        """
        Verify credentials.

        Raises:
            AuthenticationError: If the email is unknown or the password doesn't match.
        """
        async with self._session() as session:
            row = (
                await session.execute(select(UserTable).where(UserTable.email == email.strip().lower()))
            ).scalar_one_or_none()
            if row is None or not check_password(password, row.password_hash):
                raise AuthenticationError()
            return _to_user(row)
