"""
Core group data models.
"""

import enum
from datetime import datetime

from pydantic import BaseModel

from studyhub.core.uuid import UUID


class GroupRole(str, enum.Enum):
    MEMBER = "member"
    ADMIN = "admin"


class JoinRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GroupMemberData(BaseModel):
    group_id: UUID
    user_id: UUID
    user_name: str | None = None
    role: GroupRole
    joined_at: datetime


class GroupData(BaseModel):
    group_id: UUID
    group_name: str
    description: str
    require_approval: bool
    owner_user_id: UUID
    created_at: datetime
    members: list[GroupMemberData]


class JoinRequestData(BaseModel):
    request_id: UUID
    group_id: UUID
    user_id: UUID
    status: JoinRequestStatus
    requested_at: datetime
    processed_at: datetime | None = None
    processed_by_user_id: UUID | None = None
