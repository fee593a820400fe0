"""
Service layer for users. This is the user directory: it resolves IDs and
user names to identities for display, and is never mutated by the friend
or group services.
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from studyhub.core.errors import ConflictError, NotFoundError
from studyhub.core.user import UserData
from studyhub.core.uuid import UUID
from studyhub.core.validation import validate_user_name
from studyhub.database.user import User


class UserNotFound(NotFoundError):
    pass


class UserExistsError(ConflictError):
    pass


async def create(
    user_name: str,
    email: str | None,
    full_name: str | None,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    """
    Creates a user, if they do not exist.

    Raises
    ------
    ValidationError
        If the user name is blank or too long.
    UserExistsError
        If a user with this name already exists.
    """

    user_name = validate_user_name(user_name)

    log = log.bind(user_name=user_name, email=email)

    user = User(
        user_name=user_name,
        email=email,
        full_name=full_name,
        created_at=datetime.now(timezone.utc),
    )

    try:
        async with conn.begin_nested():
            conn.add(user)
    except IntegrityError as e:
        await log.ainfo("user.create.exists", error=str(e))
        raise UserExistsError(f"User with user name {user_name} already exists")

    log = log.bind(user_id=user.user_id)
    await log.ainfo("user.created")

    return user


async def read_by_id(user_id: UUID, conn: AsyncSession) -> User:
    res = await conn.get(User, user_id)

    if res is None:
        raise UserNotFound(f"User with ID {user_id} not found in the database")

    return res


async def read_by_name(user_name: str, conn: AsyncSession) -> User:
    user_name = user_name.strip()

    query = select(User).filter(User.user_name == user_name)
    res = (await conn.execute(query)).unique().scalar_one_or_none()

    if res is None:
        raise UserNotFound(f"User with name {user_name} not found in the database")

    return res


async def get_user_list(conn: AsyncSession) -> list[UserData]:
    """
    Get a list of all users registered to the system.
    """
    query = select(User).order_by(User.user_name)
    res = (await conn.execute(query)).unique().scalars().all()
    return [u.to_core() for u in res]


async def delete(user_name: str, conn: AsyncSession, log: FilteringBoundLogger):
    """
    Deletes the user. Their friend relationships, memberships, join requests
    and any groups they own go with them through the foreign key cascades.
    """
    user = await read_by_name(user_name=user_name, conn=conn)

    log = log.bind(user_id=user.user_id, user_name=user.user_name)

    await conn.delete(user)
    await conn.flush()

    await log.ainfo("user.deleted")
