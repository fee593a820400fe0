"""
Tests the user service
"""

import pytest

from studyhub.core.errors import ValidationError
from studyhub.service import friends as friends_service
from studyhub.service import groups as groups_service
from studyhub.service import user as user_service


@pytest.mark.asyncio(loop_scope="session")
async def test_create_user(session_manager, logger):
    async with session_manager.session() as conn:
        async with conn.begin():
            user = await user_service.create(
                user_name=" test_user ",
                email="test_user@email.com",
                full_name="Test User",
                conn=conn,
                log=logger,
            )

            USER_ID = user.user_id
            assert user.user_name == "test_user"
            assert user.display_name == "Test User (test_user)"

    with pytest.raises(user_service.UserExistsError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.create(
                    user_name="test_user",
                    email=None,
                    full_name=None,
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(ValidationError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.create(
                    user_name="  ", email=None, full_name=None, conn=conn, log=logger
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            user = await user_service.read_by_name(user_name="test_user", conn=conn)
            assert user.user_id == USER_ID

            users = await user_service.get_user_list(conn=conn)
            assert [x.user_name for x in users] == ["test_user"]

    async with session_manager.session() as conn:
        async with conn.begin():
            await user_service.delete(user_name="test_user", conn=conn, log=logger)

    with pytest.raises(user_service.UserNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.read_by_id(user_id=USER_ID, conn=conn)


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_user_cascades(session_manager, logger, notifier, alice, bob):
    async with session_manager.session() as conn:
        async with conn.begin():
            await friends_service.send_request(
                subject_id=alice, object_id=bob, notifier=notifier, conn=conn, log=logger
            )
            await friends_service.accept(
                subject_id=bob, object_id=alice, notifier=notifier, conn=conn, log=logger
            )

            group = await groups_service.create(
                group_name="Bob's Group",
                description="Owned by bob",
                require_approval=False,
                owner_user_id=bob,
                conn=conn,
                log=logger,
            )
            BOB_GROUP_ID = group.group_id

            group = await groups_service.create(
                group_name="Alice's Group",
                description="Owned by alice",
                require_approval=False,
                owner_user_id=alice,
                conn=conn,
                log=logger,
            )
            ALICE_GROUP_ID = group.group_id

            await groups_service.add_member(
                group_id=ALICE_GROUP_ID,
                actor_user_id=alice,
                user_id=bob,
                conn=conn,
                log=logger,
            )

    async with session_manager.session() as conn:
        async with conn.begin():
            await user_service.delete(user_name="bob", conn=conn, log=logger)

    async with session_manager.session() as conn:
        async with conn.begin():
            friends = await friends_service.list_friends(
                user_id=alice, conn=conn, log=logger
            )
            assert friends == []

            group = await groups_service.read_by_id(
                group_id=ALICE_GROUP_ID, conn=conn, log=logger
            )
            assert [x.user_id for x in group.members] == [alice]

    with pytest.raises(groups_service.GroupNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.read_by_id(
                    group_id=BOB_GROUP_ID, conn=conn, log=logger
                )
