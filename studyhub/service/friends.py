"""
Service layer for friend relationships.

Each relationship is stored as directed edges (subject -> object). A
friendship is a pair of ACCEPTED edges, one in each direction. A BLOCKED
edge only ever belongs to the user who did the blocking, and prevents any
new relationship between the pair until it is removed with `unblock`.

In every function the first user argument (`subject_id`) is the acting user.
"""

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from studyhub.core import permissions
from studyhub.core.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from studyhub.core.friend import FriendStatus
from studyhub.core.uuid import UUID
from studyhub.database.friend import FriendRelationship
from studyhub.database.user import User

from . import user as user_service
from .notifier import Notifier


class SelfRelationshipError(ValidationError):
    pass


class RelationshipExistsError(ConflictError):
    pass


class RelationshipBlocked(PermissionDenied):
    pass


class RelationshipNotFound(NotFoundError):
    pass


async def _read_edge(
    subject_id: UUID, object_id: UUID, conn: AsyncSession
) -> FriendRelationship | None:
    return await conn.get(FriendRelationship, (subject_id, object_id))


async def _lock_pair(user_a: UUID, user_b: UUID, conn: AsyncSession):
    """
    Lock both users' rows, always in the same order, so that operations on
    the same pair are serialised whichever direction they run in. SQLite
    ignores FOR UPDATE; it only ever has one writer.
    """
    await conn.execute(
        select(User.user_id)
        .where(User.user_id.in_([user_a, user_b]))
        .order_by(User.user_id)
        .with_for_update()
    )


async def _upsert_edge(
    subject_id: UUID, object_id: UUID, status: FriendStatus, conn: AsyncSession
) -> FriendRelationship:
    """
    Set the edge subject -> object to `status`, creating it if needed.
    """
    edge = await _read_edge(subject_id, object_id, conn)
    current_time = datetime.now(timezone.utc)

    if edge is None:
        edge = FriendRelationship(
            subject_id=subject_id,
            object_id=object_id,
            status=status,
            created_at=current_time,
        )
        conn.add(edge)
    else:
        edge.status = status
        edge.updated_at = current_time

    await conn.flush()

    return edge


async def send_request(
    subject_id: UUID,
    object_id: UUID,
    notifier: Notifier,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> FriendRelationship:
    """
    Send a friend request from `subject_id` to `object_id`, creating a
    PENDING edge and notifying the recipient.

    Raises
    ------
    SelfRelationshipError
        If the two users are the same.
    user_service.UserNotFound
        If either user does not exist.
    RelationshipBlocked
        If either user has blocked the other.
    RelationshipExistsError
        If there is already an edge between the two users, in either direction.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    if subject_id == object_id:
        await log.ainfo("friend.request.self")
        raise SelfRelationshipError("You can't send a friend request to yourself")

    sender = await user_service.read_by_id(user_id=subject_id, conn=conn)
    await user_service.read_by_id(user_id=object_id, conn=conn)

    await _lock_pair(subject_id, object_id, conn)

    forward = await _read_edge(subject_id, object_id, conn)
    backward = await _read_edge(object_id, subject_id, conn)

    if any(
        edge is not None and edge.status == FriendStatus.BLOCKED
        for edge in (forward, backward)
    ):
        await log.ainfo("friend.request.blocked")
        raise RelationshipBlocked("A friend request can't be sent to this user")

    if forward is not None or backward is not None:
        log = log.bind(
            forward=forward.status if forward else None,
            backward=backward.status if backward else None,
        )
        await log.ainfo("friend.request.exists")
        raise RelationshipExistsError("A relationship with this user already exists")

    edge = FriendRelationship(
        subject_id=subject_id,
        object_id=object_id,
        status=FriendStatus.PENDING,
        created_at=datetime.now(timezone.utc),
    )

    try:
        async with conn.begin_nested():
            conn.add(edge)
    except IntegrityError as e:
        await log.ainfo("friend.request.exists", error=str(e))
        raise RelationshipExistsError("A relationship with this user already exists")

    await log.ainfo("friend.request.sent")

    notifier.dispatch_on_commit(
        recipient=object_id,
        message=f"{sender.display_name} has sent you a friend request!",
        conn=conn,
        log=log,
    )

    return edge


async def accept(
    subject_id: UUID,
    object_id: UUID,
    notifier: Notifier,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> FriendRelationship:
    """
    Accept the pending friend request sent by `object_id` to `subject_id`.
    Both directions are set to ACCEPTED in the same transaction, whether or
    not the reverse edge existed beforehand.

    Returns the accepting user's edge (subject -> object).

    Raises
    ------
    RelationshipNotFound
        If there is no pending request from `object_id` to `subject_id`.
    RelationshipBlocked
        If `subject_id` has blocked `object_id` since the request was sent.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    await _lock_pair(subject_id, object_id, conn)

    incoming = await _read_edge(object_id, subject_id, conn)

    if not permissions.can_respond(incoming, subject_id):
        await log.ainfo(
            "friend.accept.no_pending_request",
            status=incoming.status if incoming else None,
        )
        raise RelationshipNotFound("No pending friend request from this user")

    outgoing = await _read_edge(subject_id, object_id, conn)

    if outgoing is not None and outgoing.status == FriendStatus.BLOCKED:
        await log.ainfo("friend.accept.blocked")
        raise RelationshipBlocked("You have blocked this user")

    await _upsert_edge(object_id, subject_id, FriendStatus.ACCEPTED, conn)
    edge = await _upsert_edge(subject_id, object_id, FriendStatus.ACCEPTED, conn)

    await log.ainfo("friend.request.accepted")

    accepter = await user_service.read_by_id(user_id=subject_id, conn=conn)
    notifier.dispatch_on_commit(
        recipient=object_id,
        message=f"{accepter.display_name} accepted your friend request!",
        conn=conn,
        log=log,
    )

    return edge


async def deny(
    subject_id: UUID,
    object_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> FriendRelationship:
    """
    Deny the friend request sent by `object_id` to `subject_id`. Denying an
    already denied request does nothing.

    Raises
    ------
    RelationshipNotFound
        If `object_id` never sent a request to `subject_id`.
    InvalidStateTransition
        If the request has already been accepted, or the edge is a block.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    incoming = await _read_edge(object_id, subject_id, conn)

    if incoming is None:
        await log.ainfo("friend.deny.not_found")
        raise RelationshipNotFound("No friend request from this user")

    if incoming.status == FriendStatus.DENIED:
        await log.adebug("friend.deny.already_denied")
        return incoming

    if not permissions.can_respond(incoming, subject_id):
        await log.ainfo("friend.deny.invalid_state", status=incoming.status)
        raise InvalidStateTransition(
            f"A relationship that is {incoming.status.value} can't be denied"
        )

    incoming.status = FriendStatus.DENIED
    incoming.updated_at = datetime.now(timezone.utc)
    await conn.flush()

    await log.ainfo("friend.request.denied")

    return incoming


async def block(
    subject_id: UUID,
    object_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> FriendRelationship:
    """
    Block `object_id`. Whatever `subject_id`'s edge to them was, it becomes
    BLOCKED; `object_id`'s edge (if any) is left alone.

    Raises
    ------
    SelfRelationshipError
        If the two users are the same.
    user_service.UserNotFound
        If the user to block does not exist.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    if subject_id == object_id:
        await log.ainfo("friend.block.self")
        raise SelfRelationshipError("You can't block yourself")

    await user_service.read_by_id(user_id=object_id, conn=conn)
    await _lock_pair(subject_id, object_id, conn)

    edge = await _upsert_edge(subject_id, object_id, FriendStatus.BLOCKED, conn)

    await log.ainfo("friend.blocked")

    return edge


async def unblock(
    subject_id: UUID,
    object_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Remove `subject_id`'s block on `object_id`, if there is one.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    edge = await _read_edge(subject_id, object_id, conn)

    if edge is None or edge.status != FriendStatus.BLOCKED:
        await log.adebug("friend.unblock.not_blocked")
        return

    await conn.delete(edge)
    await conn.flush()

    await log.ainfo("friend.unblocked")


async def remove(
    subject_id: UUID,
    object_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Remove the relationship between the two users in both directions
    (unfriend, cancel a request, or clear a denial). Blocks are not
    removed; use `unblock` for those.
    """
    log = log.bind(subject_id=subject_id, object_id=object_id)

    removed = 0

    for pair in ((subject_id, object_id), (object_id, subject_id)):
        edge = await _read_edge(*pair, conn)

        if edge is None or edge.status == FriendStatus.BLOCKED:
            continue

        await conn.delete(edge)
        removed += 1

    await conn.flush()

    await log.ainfo("friend.removed", number_of_edges=removed)


async def list_friends(
    user_id: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> list[FriendRelationship]:
    """
    All of the user's own edges, whatever their status, ordered by status
    and then by the other user's ID.
    """
    log = log.bind(user_id=user_id)

    result = await conn.execute(
        select(FriendRelationship)
        .where(FriendRelationship.subject_id == user_id)
        .order_by(FriendRelationship.status, FriendRelationship.object_id)
    )

    edges = list(result.scalars().all())
    await log.adebug("friend.listed", number_of_edges=len(edges))

    return edges


async def list_blocked(
    user_id: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> list[FriendRelationship]:
    """
    The users that `user_id` has blocked.
    """
    log = log.bind(user_id=user_id)

    result = await conn.execute(
        select(FriendRelationship)
        .where(FriendRelationship.subject_id == user_id)
        .where(FriendRelationship.status == FriendStatus.BLOCKED)
        .order_by(FriendRelationship.object_id)
    )

    edges = list(result.scalars().all())
    await log.adebug("friend.blocked_listed", number_of_edges=len(edges))

    return edges


async def list_incoming_requests(
    user_id: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> list[FriendRelationship]:
    """
    Pending friend requests addressed to `user_id`, oldest first.
    """
    log = log.bind(user_id=user_id)

    result = await conn.execute(
        select(FriendRelationship)
        .where(FriendRelationship.object_id == user_id)
        .where(FriendRelationship.status == FriendStatus.PENDING)
        .order_by(FriendRelationship.created_at, FriendRelationship.subject_id)
    )

    edges = list(result.scalars().all())
    await log.adebug("friend.incoming_listed", number_of_edges=len(edges))

    return edges


async def is_blocked(subject_id: UUID, object_id: UUID, conn: AsyncSession) -> bool:
    edge = await _read_edge(subject_id, object_id, conn)
    return edge is not None and edge.status == FriendStatus.BLOCKED


async def are_friends(user_a: UUID, user_b: UUID, conn: AsyncSession) -> bool:
    result = await conn.execute(
        select(FriendRelationship)
        .where(
            or_(
                (FriendRelationship.subject_id == user_a)
                & (FriendRelationship.object_id == user_b),
                (FriendRelationship.subject_id == user_b)
                & (FriendRelationship.object_id == user_a),
            )
        )
        .where(FriendRelationship.status == FriendStatus.ACCEPTED)
    )

    return len(result.scalars().all()) == 2
