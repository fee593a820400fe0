"""
Tests that database failures surface as StorageError, and that the
transaction is rolled back when they do.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from studyhub.core.errors import StorageError
from studyhub.database.user import User
from studyhub.service import user as user_service


@pytest.mark.asyncio(loop_scope="session")
async def test_database_errors_become_storage_errors(session_manager, logger, alice):
    with pytest.raises(StorageError) as exc_info:
        async with session_manager.transaction() as conn:
            await user_service.create(
                user_name="bob", email=None, full_name=None, conn=conn, log=logger
            )

            # Bypasses the service, so the duplicate reaches the database.
            conn.add(User(user_name="alice"))
            await conn.flush()

    assert isinstance(exc_info.value.__cause__, IntegrityError)

    async with session_manager.transaction() as conn:
        users = await user_service.get_user_list(conn=conn)
        assert [x.user_name for x in users] == ["alice"]


@pytest.mark.asyncio(loop_scope="session")
async def test_service_errors_pass_through(session_manager, logger, alice):
    with pytest.raises(user_service.UserExistsError):
        async with session_manager.transaction() as conn:
            await user_service.create(
                user_name="alice", email=None, full_name=None, conn=conn, log=logger
            )
