"""
Tests the group service layer: settings, membership and roles, and the
join request workflow.
"""

import asyncio
import os

import pytest
from sqlalchemy.exc import IntegrityError

from studyhub.core.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from studyhub.core.group import GroupRole, JoinRequestStatus
from studyhub.database.group import JoinRequest
from studyhub.service import groups as groups_service


async def create_group(
    session_manager,
    logger,
    owner,
    group_name: str = "Calculus Study",
    require_approval: bool = False,
):
    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.create(
                group_name=group_name,
                description="Weekly problem sets",
                require_approval=require_approval,
                owner_user_id=owner,
                conn=conn,
                log=logger,
            )

            GROUP_ID = group.group_id

    return GROUP_ID


@pytest.mark.asyncio(loop_scope="session")
async def test_create_group(session_manager, logger, alice):
    GROUP_ID = await create_group(session_manager, logger, alice)

    # Try to create it again
    with pytest.raises(ConflictError):
        await create_group(session_manager, logger, alice)

    with pytest.raises(groups_service.GroupExistsError):
        await create_group(session_manager, logger, alice, group_name=" Calculus Study ")

    # Read by ID
    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )

            assert group.group_name == "Calculus Study"
            assert group.owner_user_id == alice
            assert not group.require_approval
            assert len(group.members) == 1
            assert group.members[0].user_id == alice
            assert group.members[0].role == GroupRole.ADMIN

            core = group.to_core()
            assert core.members[0].user_name == "alice"

    # Read by name
    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_name(
                group_name="Calculus Study", conn=conn, log=logger
            )
            assert group.group_id == GROUP_ID

            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=alice, conn=conn, log=logger
                )
                == GroupRole.ADMIN
            )

    with pytest.raises(groups_service.GroupNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.read_by_name(
                    group_name="Linear Algebra", conn=conn, log=logger
                )


@pytest.mark.asyncio(loop_scope="session")
@pytest.mark.parametrize(
    "group_name,description",
    [
        ("A" * 51, "Too long a name"),
        ("   ", "Blank name"),
        ("Study <script>", "Bad characters"),
        ("Physics", "   "),
        ("Physics", "x" * 201),
    ],
)
async def test_create_group_invalid(
    session_manager, logger, alice, group_name, description
):
    with pytest.raises(ValidationError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.create(
                    group_name=group_name,
                    description=description,
                    require_approval=False,
                    owner_user_id=alice,
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            assert await groups_service.get_group_list(conn=conn, log=logger) == []


@pytest.mark.asyncio(loop_scope="session")
async def test_open_group_join(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(session_manager, logger, alice)

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )

            assert join_request is None

    async with session_manager.session() as conn:
        async with conn.begin():
            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )
                == GroupRole.MEMBER
            )

            requests = await groups_service.get_pending_requests(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )
            assert requests == []

            # Joining again does nothing
            assert (
                await groups_service.request_join(
                    group_id=GROUP_ID,
                    user_id=bob,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )
                is None
            )

            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )
            assert [x.user_id for x in group.members] == [alice, bob]

    await notifier.flush()
    assert notifier.sent == []


@pytest.mark.asyncio(loop_scope="session")
async def test_gated_group_join_is_idempotent(
    session_manager, logger, notifier, alice, bob
):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )

            assert join_request.status == JoinRequestStatus.PENDING
            REQUEST_ID = join_request.request_id

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )

            assert join_request.request_id == REQUEST_ID

    async with session_manager.session() as conn:
        async with conn.begin():
            requests = await groups_service.get_pending_requests(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )
            assert [x.request_id for x in requests] == [REQUEST_ID]

            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )
                is None
            )

    await notifier.flush()
    assert notifier.messages_for(alice) == [
        "Bob Brown (bob) requested to join group: Physics Circle"
    ]


@pytest.mark.asyncio(loop_scope="session")
async def test_process_join_request_requires_admin(
    session_manager, logger, notifier, alice, bob, carol
):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            REQUEST_ID = join_request.request_id

            await groups_service.add_member(
                group_id=GROUP_ID,
                actor_user_id=alice,
                user_id=carol,
                conn=conn,
                log=logger,
            )

    # Carol is a member, but not an admin.
    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.process_join_request(
                    request_id=REQUEST_ID,
                    approve=True,
                    actor_user_id=carol,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.get_pending_requests(
                    group_id=GROUP_ID, actor_user_id=carol, conn=conn, log=logger
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.read_join_request(
                request_id=REQUEST_ID, conn=conn, log=logger
            )
            assert join_request.status == JoinRequestStatus.PENDING

            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )
                is None
            )


@pytest.mark.asyncio(loop_scope="session")
async def test_approve_join_request(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            REQUEST_ID = join_request.request_id

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.process_join_request(
                request_id=REQUEST_ID,
                approve=True,
                actor_user_id=alice,
                notifier=notifier,
                conn=conn,
                log=logger,
            )

            assert join_request.status == JoinRequestStatus.APPROVED

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.read_join_request(
                request_id=REQUEST_ID, conn=conn, log=logger
            )
            assert join_request.status == JoinRequestStatus.APPROVED
            assert join_request.processed_by_user_id == alice
            assert join_request.processed_at is not None

            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )
                == GroupRole.MEMBER
            )

    # Once processed, a request is finished.
    with pytest.raises(InvalidStateTransition):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.process_join_request(
                    request_id=REQUEST_ID,
                    approve=False,
                    actor_user_id=alice,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )

    await notifier.flush()
    assert notifier.messages_for(bob) == [
        "Your request to join group Physics Circle has been approved"
    ]


@pytest.mark.asyncio(loop_scope="session")
async def test_reject_join_request(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            REQUEST_ID = join_request.request_id

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.process_join_request(
                request_id=REQUEST_ID,
                approve=False,
                actor_user_id=alice,
                notifier=notifier,
                conn=conn,
                log=logger,
            )
            assert join_request.status == JoinRequestStatus.REJECTED

    # After a rejection the user may ask again.
    async with session_manager.session() as conn:
        async with conn.begin():
            assert (
                await groups_service.get_role(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )
                is None
            )

            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            assert join_request.request_id != REQUEST_ID
            assert join_request.status == JoinRequestStatus.PENDING

    await notifier.flush()
    assert notifier.messages_for(bob) == [
        "Your request to join group Physics Circle has been denied"
    ]

    with pytest.raises(groups_service.JoinRequestNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.process_join_request(
                    request_id=GROUP_ID,
                    approve=True,
                    actor_user_id=alice,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )


@pytest.mark.asyncio(loop_scope="session")
async def test_promote_then_demote(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(session_manager, logger, alice)

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )

    async with session_manager.session() as conn:
        async with conn.begin():
            member = await groups_service.promote(
                group_id=GROUP_ID,
                actor_user_id=alice,
                target_user_id=bob,
                conn=conn,
                log=logger,
            )
            assert member.role == GroupRole.ADMIN

    async with session_manager.session() as conn:
        async with conn.begin():
            member = await groups_service.demote(
                group_id=GROUP_ID,
                actor_user_id=alice,
                target_user_id=bob,
                conn=conn,
                log=logger,
            )
            assert member.role == GroupRole.MEMBER

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )
            assert [(x.user_id, x.role) for x in group.members] == [
                (alice, GroupRole.ADMIN),
                (bob, GroupRole.MEMBER),
            ]

    # Plain members can't promote themselves.
    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.promote(
                    group_id=GROUP_ID,
                    actor_user_id=bob,
                    target_user_id=bob,
                    conn=conn,
                    log=logger,
                )


@pytest.mark.asyncio(loop_scope="session")
async def test_owner_is_protected(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(session_manager, logger, alice)

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.add_member(
                group_id=GROUP_ID, actor_user_id=alice, user_id=bob, conn=conn, log=logger
            )
            await groups_service.promote(
                group_id=GROUP_ID,
                actor_user_id=alice,
                target_user_id=bob,
                conn=conn,
                log=logger,
            )

    for operation in (groups_service.kick, groups_service.demote):
        for actor in (bob, alice):
            with pytest.raises(PermissionDenied):
                async with session_manager.session() as conn:
                    async with conn.begin():
                        await operation(
                            group_id=GROUP_ID,
                            actor_user_id=actor,
                            target_user_id=alice,
                            conn=conn,
                            log=logger,
                        )

    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.leave(
                    group_id=GROUP_ID, user_id=alice, conn=conn, log=logger
                )

    # Only the owner may delete the group, even if others are admins.
    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.delete_group(
                    group_id=GROUP_ID, actor_user_id=bob, conn=conn, log=logger
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )
            assert group.members[0].user_id == alice
            assert group.members[0].role == GroupRole.ADMIN


@pytest.mark.asyncio(loop_scope="session")
async def test_kick_and_leave(session_manager, logger, alice, bob, carol):
    GROUP_ID = await create_group(session_manager, logger, alice)

    async with session_manager.session() as conn:
        async with conn.begin():
            for user in (bob, carol):
                await groups_service.add_member(
                    group_id=GROUP_ID,
                    actor_user_id=alice,
                    user_id=user,
                    conn=conn,
                    log=logger,
                )

    # A plain member can't add or kick.
    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.kick(
                    group_id=GROUP_ID,
                    actor_user_id=bob,
                    target_user_id=carol,
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.add_member(
                    group_id=GROUP_ID,
                    actor_user_id=bob,
                    user_id=carol,
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.kick(
                group_id=GROUP_ID,
                actor_user_id=alice,
                target_user_id=carol,
                conn=conn,
                log=logger,
            )
            assert [x.user_id for x in group.members] == [alice, bob]

            group = await groups_service.leave(
                group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
            )
            assert [x.user_id for x in group.members] == [alice]

    with pytest.raises(groups_service.MemberNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.leave(
                    group_id=GROUP_ID, user_id=bob, conn=conn, log=logger
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )
            assert len(group.members) == 1


@pytest.mark.asyncio(loop_scope="session")
async def test_update_group(session_manager, logger, alice, bob):
    GROUP_ID = await create_group(session_manager, logger, alice)
    await create_group(session_manager, logger, alice, group_name="Chemistry Lab")

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.update_details(
                group_id=GROUP_ID,
                actor_user_id=alice,
                group_name="Calculus II",
                description="Integrals",
                conn=conn,
                log=logger,
            )
            assert group.group_name == "Calculus II"

            group = await groups_service.set_require_approval(
                group_id=GROUP_ID,
                actor_user_id=alice,
                require_approval=True,
                conn=conn,
                log=logger,
            )
            assert group.require_approval

    with pytest.raises(ConflictError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.update_details(
                    group_id=GROUP_ID,
                    actor_user_id=alice,
                    group_name="Chemistry Lab",
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(PermissionDenied):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.set_require_approval(
                    group_id=GROUP_ID,
                    actor_user_id=bob,
                    require_approval=False,
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        async with conn.begin():
            group = await groups_service.read_by_id(
                group_id=GROUP_ID, conn=conn, log=logger
            )
            assert group.group_name == "Calculus II"
            assert group.description == "Integrals"
            assert group.require_approval

            found = await groups_service.search_by_name(
                fragment="calc", conn=conn, log=logger
            )
            assert [x.group_id for x in found] == [GROUP_ID]

            mine = await groups_service.get_group_list(
                conn=conn, log=logger, for_user=alice
            )
            assert [x.group_name for x in mine] == ["Calculus II", "Chemistry Lab"]

            theirs = await groups_service.get_group_list(
                conn=conn, log=logger, for_user=bob
            )
            assert theirs == []


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_group(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            REQUEST_ID = join_request.request_id

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.delete_group(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )

    with pytest.raises(groups_service.GroupNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.read_by_id(
                    group_id=GROUP_ID, conn=conn, log=logger
                )

    with pytest.raises(NotFoundError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.read_join_request(
                    request_id=REQUEST_ID, conn=conn, log=logger
                )


@pytest.mark.asyncio(loop_scope="session")
async def test_one_pending_request_per_user(
    session_manager, logger, notifier, alice, bob
):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )

    # The database refuses a second pending row, however it is written.
    with pytest.raises(IntegrityError):
        async with session_manager.session() as conn:
            async with conn.begin():
                conn.add(
                    JoinRequest(
                        group_id=GROUP_ID,
                        user_id=bob,
                        status=JoinRequestStatus.PENDING,
                    )
                )
                await conn.flush()

    # Finished requests don't count.
    async with session_manager.session() as conn:
        async with conn.begin():
            conn.add(
                JoinRequest(
                    group_id=GROUP_ID,
                    user_id=bob,
                    status=JoinRequestStatus.REJECTED,
                )
            )
            await conn.flush()

    async with session_manager.session() as conn:
        async with conn.begin():
            requests = await groups_service.get_pending_requests(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )
            assert len(requests) == 1


@pytest.mark.skipif(
    not os.environ.get("STUDYHUB_TEST_POSTGRES"),
    reason="SQLite only ever has one writer",
)
@pytest.mark.asyncio(loop_scope="session")
async def test_simultaneous_join_requests(session_manager, logger, notifier, alice, bob):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async def join():
        async with session_manager.transaction() as conn:
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            return join_request.request_id

    first, second = await asyncio.gather(join(), join())
    assert first == second

    async with session_manager.session() as conn:
        async with conn.begin():
            requests = await groups_service.get_pending_requests(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )
            assert [x.request_id for x in requests] == [first]

    await notifier.flush()
    assert len(notifier.messages_for(alice)) == 1


@pytest.mark.asyncio(loop_scope="session")
async def test_joining_settles_pending_request(
    session_manager, logger, notifier, alice, bob, carol
):
    GROUP_ID = await create_group(
        session_manager, logger, alice, group_name="Physics Circle", require_approval=True
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            join_request = await groups_service.request_join(
                group_id=GROUP_ID, user_id=bob, notifier=notifier, conn=conn, log=logger
            )
            BOB_REQUEST_ID = join_request.request_id

            join_request = await groups_service.request_join(
                group_id=GROUP_ID,
                user_id=carol,
                notifier=notifier,
                conn=conn,
                log=logger,
            )
            CAROL_REQUEST_ID = join_request.request_id

    # Bob joins once the group opens up; Carol is added directly.
    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.set_require_approval(
                group_id=GROUP_ID,
                actor_user_id=alice,
                require_approval=False,
                conn=conn,
                log=logger,
            )
            assert (
                await groups_service.request_join(
                    group_id=GROUP_ID,
                    user_id=bob,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )
                is None
            )
            await groups_service.add_member(
                group_id=GROUP_ID,
                actor_user_id=alice,
                user_id=carol,
                conn=conn,
                log=logger,
            )

    async with session_manager.session() as conn:
        async with conn.begin():
            requests = await groups_service.get_pending_requests(
                group_id=GROUP_ID, actor_user_id=alice, conn=conn, log=logger
            )
            assert requests == []

            join_request = await groups_service.read_join_request(
                request_id=BOB_REQUEST_ID, conn=conn, log=logger
            )
            assert join_request.status == JoinRequestStatus.APPROVED
            assert join_request.processed_by_user_id is None

            join_request = await groups_service.read_join_request(
                request_id=CAROL_REQUEST_ID, conn=conn, log=logger
            )
            assert join_request.status == JoinRequestStatus.APPROVED
            assert join_request.processed_by_user_id == alice

    # A settled request can't be rejected after the fact.
    with pytest.raises(groups_service.RequestAlreadyProcessed):
        async with session_manager.session() as conn:
            async with conn.begin():
                await groups_service.process_join_request(
                    request_id=CAROL_REQUEST_ID,
                    approve=False,
                    actor_user_id=alice,
                    notifier=notifier,
                    conn=conn,
                    log=logger,
                )
