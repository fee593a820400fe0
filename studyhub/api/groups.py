"""
Group management: groups, members and roles, and join requests.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from studyhub.api.dependencies import (
    ActorDependency,
    DatabaseDependency,
    LoggerDependency,
    NotifierDependency,
)
from studyhub.core.group import GroupData, GroupMemberData, JoinRequestData
from studyhub.core.uuid import UUID
from studyhub.service import groups as groups_service

group_app = APIRouter(tags=["Group Management"])


@group_app.get(
    "/list",
    summary="List your groups",
    description="Retrieve the groups you are a member of, ordered by name.",
)
async def list_groups(
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[GroupData]:
    log = log.bind(user_id=actor.user_id)
    groups = await groups_service.get_group_list(
        conn=conn, log=log, for_user=actor.user_id
    )
    return [g.to_core() for g in groups]


@group_app.get(
    "/search",
    summary="Search groups by name",
    description="Groups whose name contains `name`, ignoring case.",
)
async def search_groups(
    name: str,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[GroupData]:
    groups = await groups_service.search_by_name(fragment=name, conn=conn, log=log)
    return [g.to_core() for g in groups]


class GroupCreationRequest(BaseModel):
    """
    Request model for creating a new group.
    """

    group_name: str
    description: str
    require_approval: bool = False


@group_app.put(
    "",
    summary="Create a new group",
    description=(
        "Create a new group. The creator owns the group and is added as its "
        "first admin."
    ),
    responses={
        200: {"description": "Group created successfully."},
        400: {"description": "Invalid name or description."},
        409: {"description": "A group with this name already exists."},
    },
)
async def create_group(
    content: GroupCreationRequest,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    group = await groups_service.create(
        group_name=content.group_name,
        description=content.description,
        require_approval=content.require_approval,
        owner_user_id=actor.user_id,
        conn=conn,
        log=log,
    )
    return group.to_core()


class ProcessJoinRequest(BaseModel):
    approve: bool


@group_app.post(
    "/requests/{request_id}",
    summary="Approve or reject a join request",
    responses={
        200: {"description": "Request processed."},
        403: {"description": "Only admins can process join requests."},
        404: {"description": "Request not found."},
        409: {"description": "Request already processed."},
    },
)
async def process_join_request(
    request_id: UUID,
    content: ProcessJoinRequest,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    notifier: NotifierDependency,
) -> JoinRequestData:
    join_request = await groups_service.process_join_request(
        request_id=request_id,
        approve=content.approve,
        actor_user_id=actor.user_id,
        notifier=notifier,
        conn=conn,
        log=log,
    )
    return join_request.to_core()


@group_app.get(
    "/{group_id}",
    summary="Get group by ID",
    description="Retrieve a group by its ID, with information about its members.",
    responses={
        200: {"description": "Group details with members."},
        404: {"description": "Group not found."},
    },
)
async def get_group_by_id(
    group_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    group = await groups_service.read_by_id(group_id=group_id, conn=conn, log=log)
    return group.to_core()


class GroupUpdateRequest(BaseModel):
    group_name: str | None = None
    description: str | None = None
    require_approval: bool | None = None


@group_app.patch(
    "/{group_id}",
    summary="Change group details or settings",
    responses={
        200: {"description": "Group updated."},
        400: {"description": "Invalid name or description."},
        403: {"description": "Only admins can change groups."},
        409: {"description": "A group with this name already exists."},
    },
)
async def update_group(
    group_id: UUID,
    content: GroupUpdateRequest,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    if content.group_name is not None or content.description is not None:
        await groups_service.update_details(
            group_id=group_id,
            actor_user_id=actor.user_id,
            group_name=content.group_name,
            description=content.description,
            conn=conn,
            log=log,
        )

    if content.require_approval is not None:
        await groups_service.set_require_approval(
            group_id=group_id,
            actor_user_id=actor.user_id,
            require_approval=content.require_approval,
            conn=conn,
            log=log,
        )

    group = await groups_service.read_by_id(group_id=group_id, conn=conn, log=log)
    return group.to_core()


@group_app.delete(
    "/{group_id}",
    summary="Delete a group",
    description="Only the owner of the group can delete it.",
    responses={
        200: {"description": "Group deleted."},
        403: {"description": "Only the owner can delete the group."},
        404: {"description": "Group not found."},
    },
)
async def delete_group(
    group_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> None:
    await groups_service.delete_group(
        group_id=group_id, actor_user_id=actor.user_id, conn=conn, log=log
    )


class JoinResponse(BaseModel):
    member: bool
    request: JoinRequestData | None = None


@group_app.post(
    "/{group_id}/join",
    summary="Join a group, or ask to",
    description=(
        "Open groups are joined immediately. Groups that require approval "
        "get a join request, which an admin must approve."
    ),
)
async def join_group(
    group_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    notifier: NotifierDependency,
) -> JoinResponse:
    join_request = await groups_service.request_join(
        group_id=group_id,
        user_id=actor.user_id,
        notifier=notifier,
        conn=conn,
        log=log,
    )

    if join_request is not None:
        return JoinResponse(member=False, request=join_request.to_core())

    return JoinResponse(member=True)


@group_app.post(
    "/{group_id}/leave",
    summary="Leave a group",
)
async def leave_group(
    group_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> None:
    await groups_service.leave(
        group_id=group_id, user_id=actor.user_id, conn=conn, log=log
    )


@group_app.get(
    "/{group_id}/requests",
    summary="List pending join requests",
    responses={403: {"description": "Only admins can view join requests."}},
)
async def list_join_requests(
    group_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[JoinRequestData]:
    requests = await groups_service.get_pending_requests(
        group_id=group_id, actor_user_id=actor.user_id, conn=conn, log=log
    )
    return [r.to_core() for r in requests]


class AddMemberRequest(BaseModel):
    user_id: UUID


@group_app.post(
    "/{group_id}/members",
    summary="Add a member directly",
    responses={403: {"description": "Only admins can add members."}},
)
async def add_member(
    group_id: UUID,
    content: AddMemberRequest,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    group = await groups_service.add_member(
        group_id=group_id,
        actor_user_id=actor.user_id,
        user_id=content.user_id,
        conn=conn,
        log=log,
    )
    return group.to_core()


@group_app.delete(
    "/{group_id}/members/{user_id}",
    summary="Kick a member",
    responses={403: {"description": "Only admins can kick, and never the owner."}},
)
async def kick_member(
    group_id: UUID,
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    group = await groups_service.kick(
        group_id=group_id,
        actor_user_id=actor.user_id,
        target_user_id=user_id,
        conn=conn,
        log=log,
    )
    return group.to_core()


@group_app.post(
    "/{group_id}/members/{user_id}/promote",
    summary="Make a member an admin",
)
async def promote_member(
    group_id: UUID,
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupMemberData:
    member = await groups_service.promote(
        group_id=group_id,
        actor_user_id=actor.user_id,
        target_user_id=user_id,
        conn=conn,
        log=log,
    )
    return member.to_core()


@group_app.post(
    "/{group_id}/members/{user_id}/demote",
    summary="Return an admin to member",
)
async def demote_member(
    group_id: UUID,
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupMemberData:
    member = await groups_service.demote(
        group_id=group_id,
        actor_user_id=actor.user_id,
        target_user_id=user_id,
        conn=conn,
        log=log,
    )
    return member.to_core()
