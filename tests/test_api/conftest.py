"""
Fixtures for the HTTP API tests. The app's session and notifier
dependencies are pointed at the per-test database and a mock notifier.
"""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studyhub.service import user as user_service
from studyhub.service.notifier import MockNotifier


@pytest_asyncio.fixture
async def notifier():
    notifier = MockNotifier()

    yield notifier

    await notifier.flush()


@pytest_asyncio.fixture
async def client(session_manager, notifier):
    from studyhub.api import dependencies
    from studyhub.api.app import app

    async def get_test_session():
        async with session_manager.transaction() as session:
            yield session

    app.dependency_overrides[dependencies.get_async_session] = get_test_session
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def users(session_manager, logger):
    """
    Request headers acting as each of alice, bob and carol, keyed by name,
    alongside their IDs.
    """
    USERS = {}

    async with session_manager.session() as conn:
        async with conn.begin():
            for user_name in ("alice", "bob", "carol"):
                user = await user_service.create(
                    user_name=user_name,
                    email=None,
                    full_name=user_name.title(),
                    conn=conn,
                    log=logger,
                )

                USERS[user_name] = (
                    str(user.user_id),
                    {"studyhub-user-id": str(user.user_id)},
                )

    yield USERS
