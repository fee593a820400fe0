"""
Service layer for groups: creation and settings, membership and roles, and
the join request workflow for groups that require approval.

Every permission decision goes through `studyhub.core.permissions`.
"""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from studyhub.core import permissions
from studyhub.core.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
)
from studyhub.core.group import GroupRole, JoinRequestStatus
from studyhub.core.uuid import UUID
from studyhub.core.validation import validate_group_description, validate_group_name
from studyhub.database.group import Group, GroupMember, JoinRequest

from . import user as user_service
from .notifier import Notifier


class GroupNotFound(NotFoundError):
    pass


class GroupExistsError(ConflictError):
    pass


class MemberNotFound(NotFoundError):
    pass


class JoinRequestNotFound(NotFoundError):
    pass


class RequestAlreadyProcessed(InvalidStateTransition):
    pass


async def _name_taken(
    group_name: str, conn: AsyncSession, excluding: UUID | None = None
) -> bool:
    query = select(Group.group_id).where(Group.group_name == group_name)

    if excluding is not None:
        query = query.where(Group.group_id != excluding)

    return (await conn.execute(query)).first() is not None


async def create(
    group_name: str,
    description: str,
    require_approval: bool,
    owner_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Create a new group.

    Parameters
    ----------
    group_name: str
        The new group's name. Must be unique.
    description: str
        A short description of the group.
    require_approval: bool
        Whether users must have requests to join approved by an admin.
    owner_user_id: UUID
        The user that created and owns this group. They are added as its
        first member, with the admin role.

    Raises
    ------
    ValidationError
        If the name or description are blank, too long, or (for the name)
        contain disallowed characters.
    user_service.UserNotFound
        If the owner does not exist.
    GroupExistsError
        If a group with this name already exists.
    """

    group_name = validate_group_name(group_name)
    description = validate_group_description(description)

    log = log.bind(
        group_name=group_name,
        user_id=owner_user_id,
        require_approval=require_approval,
    )

    owner = await user_service.read_by_id(user_id=owner_user_id, conn=conn)

    if await _name_taken(group_name, conn):
        await log.ainfo("group.exists")
        raise GroupExistsError(f"Group {group_name} already exists")

    current_time = datetime.now(timezone.utc)

    group = Group(
        group_name=group_name,
        description=description,
        require_approval=require_approval,
        owner_user_id=owner_user_id,
        created_at=current_time,
        members=[
            GroupMember(
                user_id=owner_user_id,
                user=owner,
                role=GroupRole.ADMIN,
                joined_at=current_time,
            )
        ],
    )

    try:
        async with conn.begin_nested():
            conn.add(group)
    except IntegrityError as e:
        log = log.bind(error=str(e))
        await log.ainfo("group.exists")
        raise GroupExistsError(f"Group {group_name} already exists")

    await log.ainfo("group.created", group_id=group.group_id)

    return group


async def get_group_list(
    conn: AsyncSession,
    log: FilteringBoundLogger,
    for_user: UUID | None = None,
) -> list[Group]:
    """
    Get a list of all groups, or only those `for_user` is a member of,
    ordered by name.
    """
    log = log.bind(for_user=for_user)

    query = select(Group).order_by(Group.group_name)

    if for_user:
        query = query.join(Group.members).where(GroupMember.user_id == for_user)

    result = await conn.execute(query)

    groups = list(result.unique().scalars().all())
    await log.adebug("group.listed", number_of_groups=len(groups))
    return groups


async def search_by_name(
    fragment: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> list[Group]:
    """
    Groups whose name contains `fragment`, ignoring case.
    """
    fragment = fragment.strip().lower()
    log = log.bind(fragment=fragment)

    result = await conn.execute(
        select(Group)
        .where(Group.group_name.icontains(fragment, autoescape=True))
        .order_by(Group.group_name)
    )

    groups = list(result.unique().scalars().all())
    await log.adebug("group.searched", number_of_groups=len(groups))
    return groups


async def read_by_id(
    group_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Read a group by its ID.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    log = log.bind(group_id=group_id)
    result = await conn.execute(select(Group).where(Group.group_id == group_id))
    group = result.unique().scalar_one_or_none()
    if not group:
        await log.ainfo("group.not_found")
        raise GroupNotFound(f"Group with id {group_id} not found")
    await log.adebug("group.found")
    return group


async def read_by_name(
    group_name: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Read a group by its name.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    group_name = group_name.strip()
    log = log.bind(group_name=group_name)
    result = await conn.execute(select(Group).where(Group.group_name == group_name))
    group = result.unique().scalar_one_or_none()
    if not group:
        await log.ainfo("group.not_found")
        raise GroupNotFound(f"Group with name {group_name} not found")
    await log.adebug("group.found")
    return group


async def get_role(
    group_id: UUID,
    user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupRole | None:
    group = await read_by_id(group_id=group_id, conn=conn, log=log)
    return permissions.role_of(group, user_id)


async def update_details(
    group_id: UUID,
    actor_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    group_name: str | None = None,
    description: str | None = None,
) -> Group:
    """
    Rename a group and/or change its description. Admin only.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group.
    ValidationError
        If the new name or description is invalid.
    GroupExistsError
        If another group already has the new name.
    """
    log = log.bind(group_id=group_id, actor_user_id=actor_user_id)
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_modify_settings(group, actor_user_id):
        await log.awarning("group.update.access_denied")
        raise PermissionDenied("Only admins can change group details")

    if group_name is not None:
        group_name = validate_group_name(group_name)

        if await _name_taken(group_name, conn, excluding=group.group_id):
            await log.ainfo("group.update.name_exists", group_name=group_name)
            raise GroupExistsError(f"Group {group_name} already exists")

    if description is not None:
        description = validate_group_description(description)

    if group_name is not None:
        group.group_name = group_name

    if description is not None:
        group.description = description

    try:
        async with conn.begin_nested():
            conn.add(group)
    except IntegrityError as e:
        await log.ainfo("group.update.name_exists", error=str(e))
        raise GroupExistsError(f"Group {group_name} already exists")

    await log.ainfo("group.updated", group_name=group.group_name)

    return group


async def set_require_approval(
    group_id: UUID,
    actor_user_id: UUID,
    require_approval: bool,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Switch a group between open joining and approval-gated joining. Admin
    only. Existing members and pending requests are unaffected.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group.
    """
    log = log.bind(
        group_id=group_id,
        actor_user_id=actor_user_id,
        require_approval=require_approval,
    )
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_modify_settings(group, actor_user_id):
        await log.awarning("group.require_approval.access_denied")
        raise PermissionDenied("Only admins can change group settings")

    group.require_approval = require_approval
    await conn.flush()

    await log.ainfo("group.require_approval.set")

    return group


async def _pending_request(
    group_id: UUID, user_id: UUID, conn: AsyncSession
) -> JoinRequest | None:
    result = await conn.execute(
        select(JoinRequest)
        .where(JoinRequest.group_id == group_id)
        .where(JoinRequest.user_id == user_id)
        .where(JoinRequest.status == JoinRequestStatus.PENDING)
    )
    return result.unique().scalar_one_or_none()


async def _settle_pending_request(
    group_id: UUID,
    user_id: UUID,
    processed_by_user_id: UUID | None,
    conn: AsyncSession,
) -> int:
    """
    Mark the user's pending request to join (if any) as approved, for when
    they become a member some other way.
    """
    result = await conn.execute(
        update(JoinRequest)
        .where(JoinRequest.group_id == group_id)
        .where(JoinRequest.user_id == user_id)
        .where(JoinRequest.status == JoinRequestStatus.PENDING)
        .values(
            status=JoinRequestStatus.APPROVED,
            processed_at=datetime.now(timezone.utc),
            processed_by_user_id=processed_by_user_id,
        )
    )
    return result.rowcount


async def request_join(
    group_id: UUID,
    user_id: UUID,
    notifier: Notifier,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> JoinRequest | None:
    """
    Ask to join a group.

    If the group does not require approval the user becomes a member
    straight away and `None` is returned. A request they left pending while
    the group was gated is marked approved. Otherwise a pending join request
    is created and returned, and the group's admins are notified.

    Asking again while already a member, or while a request is still
    pending, does nothing: the existing request (or `None`) is returned.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    user_service.UserNotFound
        If the user does not exist.
    """
    log = log.bind(group_id=group_id, user_id=user_id)

    group = await read_by_id(group_id=group_id, conn=conn, log=log)
    user = await user_service.read_by_id(user_id=user_id, conn=conn)

    if permissions.is_member(group, user_id):
        await log.ainfo("group.join.already_member")
        return None

    current_time = datetime.now(timezone.utc)

    if not group.require_approval:
        group.members.append(
            GroupMember(
                user_id=user_id, user=user, role=GroupRole.MEMBER, joined_at=current_time
            )
        )
        await conn.flush()
        settled = await _settle_pending_request(group_id, user_id, None, conn)
        await log.ainfo("group.join.joined", settled_requests=settled)
        return None

    existing = await _pending_request(group_id, user_id, conn)

    if existing is not None:
        await log.ainfo("group.join.already_requested", request_id=existing.request_id)
        return existing

    join_request = JoinRequest(
        group_id=group_id,
        user_id=user_id,
        user=user,
        status=JoinRequestStatus.PENDING,
        requested_at=current_time,
    )

    try:
        async with conn.begin_nested():
            conn.add(join_request)
    except IntegrityError as e:
        # Lost a race with an identical request; theirs stands.
        await log.ainfo("group.join.already_requested", error=str(e))
        return await _pending_request(group_id, user_id, conn)

    log = log.bind(request_id=join_request.request_id)
    await log.ainfo("group.join.requested")

    message = f"{user.display_name} requested to join group: {group.group_name}"

    for admin_id in group.admin_ids():
        notifier.dispatch_on_commit(
            recipient=admin_id, message=message, conn=conn, log=log
        )

    return join_request


async def read_join_request(
    request_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> JoinRequest:
    """
    Raises
    ------
    JoinRequestNotFound
        If the request does not exist.
    """
    log = log.bind(request_id=request_id)
    result = await conn.execute(
        select(JoinRequest).where(JoinRequest.request_id == request_id)
    )
    join_request = result.unique().scalar_one_or_none()
    if join_request is None:
        await log.ainfo("join_request.not_found")
        raise JoinRequestNotFound(f"Join request {request_id} not found")
    return join_request


async def get_pending_requests(
    group_id: UUID,
    actor_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> list[JoinRequest]:
    """
    Pending requests to join the group, oldest first. Admin only.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group.
    """
    log = log.bind(group_id=group_id, actor_user_id=actor_user_id)
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_process_requests(group, actor_user_id):
        await log.awarning("join_request.list.access_denied")
        raise PermissionDenied("Only admins can view join requests")

    result = await conn.execute(
        select(JoinRequest)
        .where(JoinRequest.group_id == group_id)
        .where(JoinRequest.status == JoinRequestStatus.PENDING)
        .order_by(JoinRequest.requested_at)
    )

    requests = list(result.unique().scalars().all())
    await log.adebug("join_request.listed", number_of_requests=len(requests))
    return requests


async def process_join_request(
    request_id: UUID,
    approve: bool,
    actor_user_id: UUID,
    notifier: Notifier,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> JoinRequest:
    """
    Approve or reject a pending join request. Approval makes the requester a
    member; rejection leaves them outside the group. Either way the request
    is finished and can't be processed again.

    Raises
    ------
    JoinRequestNotFound
        If the request does not exist.
    PermissionDenied
        If the actor is not an admin of the request's group. The request is
        left pending.
    RequestAlreadyProcessed
        If the request has already been approved or rejected.
    """
    log = log.bind(request_id=request_id, actor_user_id=actor_user_id, approve=approve)

    join_request = await read_join_request(request_id=request_id, conn=conn, log=log)
    group = await read_by_id(group_id=join_request.group_id, conn=conn, log=log)

    log = log.bind(group_id=group.group_id, user_id=join_request.user_id)

    if not permissions.can_process_requests(group, actor_user_id):
        await log.awarning("join_request.process.access_denied")
        raise PermissionDenied("Only admins can process join requests")

    if join_request.status != JoinRequestStatus.PENDING:
        await log.ainfo("join_request.process.already_processed")
        raise RequestAlreadyProcessed(
            f"Join request has already been {join_request.status.value}"
        )

    new_status = JoinRequestStatus.APPROVED if approve else JoinRequestStatus.REJECTED

    # Compare-and-set, so that two admins processing the same request
    # concurrently can't both succeed.
    result = await conn.execute(
        update(JoinRequest)
        .where(JoinRequest.request_id == request_id)
        .where(JoinRequest.status == JoinRequestStatus.PENDING)
        .values(
            status=new_status,
            processed_at=datetime.now(timezone.utc),
            processed_by_user_id=actor_user_id,
        )
    )

    if result.rowcount == 0:
        await log.ainfo("join_request.process.already_processed")
        raise RequestAlreadyProcessed("Join request has already been processed")

    if approve and not permissions.is_member(group, join_request.user_id):
        group.members.append(
            GroupMember(
                user_id=join_request.user_id,
                user=join_request.user,
                role=GroupRole.MEMBER,
                joined_at=datetime.now(timezone.utc),
            )
        )

    await conn.flush()

    await log.ainfo("join_request.processed", status=new_status.value)

    outcome = "approved" if approve else "denied"
    notifier.dispatch_on_commit(
        recipient=join_request.user_id,
        message=f"Your request to join group {group.group_name} has been {outcome}",
        conn=conn,
        log=log,
    )

    return join_request


async def _read_target_member(
    group: Group, target_user_id: UUID, log: FilteringBoundLogger
) -> GroupMember:
    member = group.member(target_user_id)

    if member is None:
        await log.ainfo("group.member.not_found")
        raise MemberNotFound(
            f"User {target_user_id} is not a member of {group.group_name}"
        )

    return member


async def add_member(
    group_id: UUID,
    actor_user_id: UUID,
    user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Add a user to a group directly, skipping the join request workflow.
    Admin only. Adding an existing member does nothing. A pending request
    from the user is marked approved.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group.
    user_service.UserNotFound
        If the user does not exist.
    """
    log = log.bind(group_id=group_id, actor_user_id=actor_user_id, user_id=user_id)
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_add_members(group, actor_user_id):
        await log.awarning("group.add_member.access_denied")
        raise PermissionDenied("Only admins can add members")

    user = await user_service.read_by_id(user_id=user_id, conn=conn)

    if permissions.is_member(group, user_id):
        await log.ainfo("group.user_already_member")
        return group

    group.members.append(
        GroupMember(
            user_id=user_id,
            user=user,
            role=GroupRole.MEMBER,
            joined_at=datetime.now(timezone.utc),
        )
    )
    await conn.flush()

    settled = await _settle_pending_request(group_id, user_id, actor_user_id, conn)
    await log.ainfo("group.user_added", settled_requests=settled)

    return group


async def promote(
    group_id: UUID,
    actor_user_id: UUID,
    target_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Give a member the admin role. Admin only; promoting an admin does nothing.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group.
    MemberNotFound
        If the target is not a member of the group.
    """
    log = log.bind(
        group_id=group_id, actor_user_id=actor_user_id, target_user_id=target_user_id
    )
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_promote(group, actor_user_id, target_user_id):
        await log.awarning("group.promote.access_denied")
        raise PermissionDenied("Only admins can promote members to admin")

    member = await _read_target_member(group, target_user_id, log)

    if member.role == GroupRole.ADMIN:
        await log.adebug("group.promote.already_admin")
        return member

    member.role = GroupRole.ADMIN
    await conn.flush()

    await log.ainfo("group.promoted")

    return member


async def demote(
    group_id: UUID,
    actor_user_id: UUID,
    target_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Return an admin to the member role. Admin only; the owner can never be
    demoted. Demoting a plain member does nothing.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group, or the target is the owner.
    MemberNotFound
        If the target is not a member of the group.
    """
    log = log.bind(
        group_id=group_id, actor_user_id=actor_user_id, target_user_id=target_user_id
    )
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_demote(group, actor_user_id, target_user_id):
        await log.awarning("group.demote.access_denied")
        if permissions.is_owner(group, target_user_id):
            raise PermissionDenied("Cannot demote the group owner")
        raise PermissionDenied("Only admins can demote other admins")

    member = await _read_target_member(group, target_user_id, log)

    if member.role == GroupRole.MEMBER:
        await log.adebug("group.demote.already_member")
        return member

    member.role = GroupRole.MEMBER
    await conn.flush()

    await log.ainfo("group.demoted")

    return member


async def kick(
    group_id: UUID,
    actor_user_id: UUID,
    target_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Remove a member from a group. Admin only; the owner can never be kicked.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not an admin of the group, or the target is the owner.
    MemberNotFound
        If the target is not a member of the group.
    """
    log = log.bind(
        group_id=group_id, actor_user_id=actor_user_id, target_user_id=target_user_id
    )
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_kick(group, actor_user_id, target_user_id):
        await log.awarning("group.kick.access_denied")
        if permissions.is_owner(group, target_user_id):
            raise PermissionDenied("Cannot kick the group owner")
        raise PermissionDenied("Only admins can kick members")

    member = await _read_target_member(group, target_user_id, log)

    group.members.remove(member)
    await conn.flush()

    await log.ainfo("group.user_kicked")

    return group


async def leave(
    group_id: UUID,
    user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Leave a group. The owner can't leave; they must delete the group instead.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the user is the owner.
    MemberNotFound
        If the user is not a member of the group.
    """
    log = log.bind(group_id=group_id, user_id=user_id)
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if permissions.is_owner(group, user_id):
        await log.awarning("group.leave.owner")
        raise PermissionDenied("The group owner can't leave; delete the group instead")

    member = await _read_target_member(group, user_id, log)

    group.members.remove(member)
    await conn.flush()

    await log.ainfo("group.user_left")

    return group


async def delete_group(
    group_id: UUID,
    actor_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Delete a group, along with its memberships and join requests. Only the
    owner may do this.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    PermissionDenied
        If the actor is not the owner.
    """
    log = log.bind(group_id=group_id, actor_user_id=actor_user_id)
    group = await read_by_id(group_id=group_id, conn=conn, log=log)

    if not permissions.can_delete_group(group, actor_user_id):
        await log.awarning("group.delete.access_denied")
        raise PermissionDenied("Only the group owner can delete the group")

    await conn.delete(group)
    await conn.flush()

    await log.ainfo("group.deleted")
