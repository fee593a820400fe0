"""
Friend relationships.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from studyhub.api.dependencies import (
    ActorDependency,
    DatabaseDependency,
    LoggerDependency,
    NotifierDependency,
)
from studyhub.core.friend import FriendRelationshipData
from studyhub.core.uuid import UUID
from studyhub.service import friends as friends_service

friend_app = APIRouter(tags=["Friends"])


@friend_app.get(
    "",
    summary="List your relationships",
    description=(
        "All of your relationships, whatever their status, ordered by status "
        "and then by the other user's ID."
    ),
)
async def list_friends(
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[FriendRelationshipData]:
    edges = await friends_service.list_friends(
        user_id=actor.user_id, conn=conn, log=log
    )
    return [edge.to_core() for edge in edges]


@friend_app.get(
    "/requests",
    summary="List incoming friend requests",
    description="Pending friend requests sent to you, oldest first.",
)
async def list_incoming_requests(
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[FriendRelationshipData]:
    edges = await friends_service.list_incoming_requests(
        user_id=actor.user_id, conn=conn, log=log
    )
    return [edge.to_core() for edge in edges]


@friend_app.get(
    "/blocked",
    summary="List blocked users",
)
async def list_blocked(
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[FriendRelationshipData]:
    edges = await friends_service.list_blocked(
        user_id=actor.user_id, conn=conn, log=log
    )
    return [edge.to_core() for edge in edges]


class RelationshipSummary(BaseModel):
    user_id: UUID
    are_friends: bool
    blocked: bool


@friend_app.get(
    "/{user_id}",
    summary="Your relationship with another user",
)
async def get_relationship(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
) -> RelationshipSummary:
    return RelationshipSummary(
        user_id=user_id,
        are_friends=await friends_service.are_friends(actor.user_id, user_id, conn),
        blocked=await friends_service.is_blocked(actor.user_id, user_id, conn),
    )


@friend_app.put(
    "/{user_id}",
    summary="Send a friend request",
    responses={
        200: {"description": "Request sent."},
        400: {"description": "You can't befriend yourself."},
        403: {"description": "One of you has blocked the other."},
        404: {"description": "User not found."},
        409: {"description": "A relationship already exists."},
    },
)
async def send_request(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    notifier: NotifierDependency,
) -> FriendRelationshipData:
    edge = await friends_service.send_request(
        subject_id=actor.user_id,
        object_id=user_id,
        notifier=notifier,
        conn=conn,
        log=log,
    )
    return edge.to_core()


@friend_app.post(
    "/{user_id}/accept",
    summary="Accept a friend request",
    responses={
        200: {"description": "You are now friends."},
        403: {"description": "You have blocked this user."},
        404: {"description": "No pending request from this user."},
    },
)
async def accept_request(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    notifier: NotifierDependency,
) -> FriendRelationshipData:
    edge = await friends_service.accept(
        subject_id=actor.user_id,
        object_id=user_id,
        notifier=notifier,
        conn=conn,
        log=log,
    )
    return edge.to_core()


@friend_app.post(
    "/{user_id}/deny",
    summary="Deny a friend request",
    responses={
        200: {"description": "Request denied."},
        404: {"description": "No request from this user."},
        409: {"description": "The request was already accepted."},
    },
)
async def deny_request(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> FriendRelationshipData:
    edge = await friends_service.deny(
        subject_id=actor.user_id, object_id=user_id, conn=conn, log=log
    )
    return edge.to_core()


@friend_app.delete(
    "/{user_id}",
    summary="Remove a friend",
    description="Removes the relationship in both directions. Blocks are kept.",
)
async def remove_friend(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> None:
    await friends_service.remove(
        subject_id=actor.user_id, object_id=user_id, conn=conn, log=log
    )


@friend_app.put(
    "/{user_id}/block",
    summary="Block a user",
)
async def block_user(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> FriendRelationshipData:
    edge = await friends_service.block(
        subject_id=actor.user_id, object_id=user_id, conn=conn, log=log
    )
    return edge.to_core()


@friend_app.delete(
    "/{user_id}/block",
    summary="Unblock a user",
)
async def unblock_user(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> None:
    await friends_service.unblock(
        subject_id=actor.user_id, object_id=user_id, conn=conn, log=log
    )
