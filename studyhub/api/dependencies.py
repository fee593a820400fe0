"""
Dependencies used by the API.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger
from structlog.typing import FilteringBoundLogger

from studyhub.config.settings import Settings
from studyhub.core.uuid import UUID
from studyhub.database.user import User
from studyhub.service import user as user_service
from studyhub.service.notifier import DatabaseNotifier, LogNotifier, Notifier


@lru_cache
def SETTINGS():
    return Settings()


DATABASE_MANAGER = SETTINGS().async_manager()


async def get_async_session():
    async with DATABASE_MANAGER.transaction() as session:
        yield session


def logger():
    return get_logger()


@lru_cache
def get_notifier() -> Notifier:
    match SETTINGS().notifier:
        case "database":
            return DatabaseNotifier(manager=DATABASE_MANAGER)
        case _:
            return LogNotifier()


SettingsDependency = Annotated[Settings, Depends(SETTINGS)]
DatabaseDependency = Annotated[AsyncSession, Depends(get_async_session)]
LoggerDependency = Annotated[FilteringBoundLogger, Depends(logger)]
NotifierDependency = Annotated[Notifier, Depends(get_notifier)]


async def get_actor(
    request: Request,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> User:
    """
    The user making the request. Authentication happens upstream; the
    gateway passes the authenticated user's ID in a header.
    """
    raw_user_id = request.headers.get(settings.actor_header)

    if raw_user_id is None:
        await log.ainfo("actor.missing")
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = UUID(raw_user_id)
    except ValueError:
        await log.ainfo("actor.malformed", raw_user_id=raw_user_id)
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return await user_service.read_by_id(user_id=user_id, conn=conn)
    except user_service.UserNotFound:
        await log.ainfo("actor.unknown", user_id=user_id)
        raise HTTPException(status_code=401, detail="Not authenticated")


ActorDependency = Annotated[User, Depends(get_actor)]
