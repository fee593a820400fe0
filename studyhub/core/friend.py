"""
Core friend relationship data models.
"""

import enum
from datetime import datetime

from pydantic import BaseModel

from studyhub.core.uuid import UUID


class FriendStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DENIED = "denied"
    BLOCKED = "blocked"


class FriendRelationshipData(BaseModel):
    """
    A directed edge from `subject_id` to `object_id`.
    """

    subject_id: UUID
    object_id: UUID
    status: FriendStatus
    created_at: datetime
    updated_at: datetime | None = None
