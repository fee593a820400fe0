"""
Configuration variables and fixtures for the service layer tests.
"""

import pytest_asyncio

from studyhub.service import user as user_service
from studyhub.service.notifier import MockNotifier


async def create_user(session_manager, logger, user_name: str, full_name: str):
    async with session_manager.session() as conn:
        async with conn.begin():
            user = await user_service.create(
                user_name=user_name,
                email=f"{user_name}@studyhub.example",
                full_name=full_name,
                conn=conn,
                log=logger,
            )

            USER_ID = user.user_id

    return USER_ID


@pytest_asyncio.fixture
async def alice(session_manager, logger):
    yield await create_user(session_manager, logger, "alice", "Alice Adams")


@pytest_asyncio.fixture
async def bob(session_manager, logger):
    yield await create_user(session_manager, logger, "bob", "Bob Brown")


@pytest_asyncio.fixture
async def carol(session_manager, logger):
    yield await create_user(session_manager, logger, "carol", "Carol Clark")


@pytest_asyncio.fixture
async def notifier():
    notifier = MockNotifier()

    yield notifier

    await notifier.flush()


@pytest_asyncio.fixture
async def dave(session_manager, logger):
    yield await create_user(session_manager, logger, "dave", "Dave Davies")


@pytest_asyncio.fixture
async def erin(session_manager, logger):
    yield await create_user(session_manager, logger, "erin", "Erin Evans")
