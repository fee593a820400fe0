"""
Permission checks for groups and friend relationships.

These are pure predicates: they never touch the database. The group
arguments may be either `studyhub.database.group.Group` rows (with their
members loaded) or `studyhub.core.group.GroupData` models; all that is
required is an `owner_user_id` and a `members` sequence whose items carry
`user_id` and `role`.
"""

from typing import Any

from studyhub.core.friend import FriendStatus
from studyhub.core.group import GroupRole
from studyhub.core.uuid import UUID


def role_of(group: Any, user_id: UUID) -> GroupRole | None:
    """
    The role `user_id` holds in `group`, or `None` if they are not a member.
    """
    for member in group.members:
        if member.user_id == user_id:
            return GroupRole(member.role)

    return None


def is_owner(group: Any, user_id: UUID) -> bool:
    return group.owner_user_id == user_id


def is_member(group: Any, user_id: UUID) -> bool:
    return is_owner(group, user_id) or role_of(group, user_id) is not None


def is_admin(group: Any, user_id: UUID) -> bool:
    """
    The owner is always an admin, whatever their stored role says.
    """
    return is_owner(group, user_id) or role_of(group, user_id) == GroupRole.ADMIN


def can_view(group: Any, actor: UUID) -> bool:
    return is_member(group, actor)


def can_modify_settings(group: Any, actor: UUID) -> bool:
    return is_admin(group, actor)


def can_process_requests(group: Any, actor: UUID) -> bool:
    return is_admin(group, actor)


def can_add_members(group: Any, actor: UUID) -> bool:
    return is_admin(group, actor)


def can_promote(group: Any, actor: UUID, target: UUID) -> bool:
    return is_admin(group, actor)


def can_demote(group: Any, actor: UUID, target: UUID) -> bool:
    return is_admin(group, actor) and not is_owner(group, target)


def can_kick(group: Any, actor: UUID, target: UUID) -> bool:
    return is_admin(group, actor) and not is_owner(group, target)


def can_delete_group(group: Any, actor: UUID) -> bool:
    return is_owner(group, actor)


def can_leave(group: Any, actor: UUID) -> bool:
    return is_member(group, actor) and not is_owner(group, actor)


def can_respond(edge: Any, actor: UUID) -> bool:
    """
    Only the recipient of a pending friend request may accept or deny it.
    """
    return (
        edge is not None
        and edge.object_id == actor
        and FriendStatus(edge.status) == FriendStatus.PENDING
    )
