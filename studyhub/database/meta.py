"""
Meta functionality for the database.
"""

from .friend import FriendRelationship
from .group import Group, GroupMember, JoinRequest
from .notification import Notification
from .user import User

ALL_TABLES = (
    User,
    FriendRelationship,
    Group,
    GroupMember,
    JoinRequest,
    Notification,
)
