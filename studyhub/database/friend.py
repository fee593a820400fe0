"""
Friend relationship ORM. Each row is one directed edge; the composite primary
key means there can only ever be one edge per ordered pair of users.
"""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel

from studyhub.core.friend import FriendRelationshipData, FriendStatus
from studyhub.core.uuid import UUID

from .columns import enum_column, timestamp_column


class FriendRelationship(SQLModel, table=True):
    __tablename__ = "friend_relationship"

    subject_id: UUID = Field(
        primary_key=True, foreign_key="user.user_id", ondelete="CASCADE"
    )
    object_id: UUID = Field(
        primary_key=True, foreign_key="user.user_id", ondelete="CASCADE"
    )

    status: FriendStatus = Field(sa_column=enum_column(FriendStatus))

    created_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime | None = Field(
        sa_column=timestamp_column(nullable=True), default=None
    )

    def to_core(self) -> FriendRelationshipData:
        return FriendRelationshipData(
            subject_id=self.subject_id,
            object_id=self.object_id,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
