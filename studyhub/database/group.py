"""
Group ORM: groups, their members (with roles) and requests to join them.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Index, text
from sqlmodel import Field, Relationship, SQLModel

from studyhub.core.group import (
    GroupData,
    GroupMemberData,
    GroupRole,
    JoinRequestData,
    JoinRequestStatus,
)
from studyhub.core.uuid import UUID, uuid7

from .columns import enum_column, timestamp_column

if TYPE_CHECKING:
    from .user import User


class GroupMember(SQLModel, table=True):
    """
    A record of a user's membership of a group, and the role they hold there.
    """

    __tablename__ = "group_member"

    group_id: Optional[UUID] = Field(
        default=None, primary_key=True, foreign_key="group.group_id", ondelete="CASCADE"
    )
    user_id: Optional[UUID] = Field(
        default=None, primary_key=True, foreign_key="user.user_id", ondelete="CASCADE"
    )

    role: GroupRole = Field(sa_column=enum_column(GroupRole))
    joined_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )

    group: "Group" = Relationship(back_populates="members")
    user: "User" = Relationship(sa_relationship_kwargs=dict(lazy="joined"))

    def to_core(self) -> GroupMemberData:
        return GroupMemberData(
            group_id=self.group_id,
            user_id=self.user_id,
            user_name=self.user.user_name if self.user is not None else None,
            role=self.role,
            joined_at=self.joined_at,
        )


class Group(SQLModel, table=True):
    group_id: UUID = Field(primary_key=True, default_factory=uuid7)

    group_name: str = Field(unique=True)
    description: str = Field(default="")
    require_approval: bool = Field(default=False)

    owner_user_id: UUID = Field(foreign_key="user.user_id", ondelete="CASCADE")
    created_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )

    members: list[GroupMember] = Relationship(
        back_populates="group",
        sa_relationship_kwargs=dict(
            lazy="selectin",
            cascade="all, delete-orphan",
            order_by="GroupMember.joined_at",
        ),
    )

    def member(self, user_id: UUID) -> GroupMember | None:
        for member in self.members:
            if member.user_id == user_id:
                return member

        return None

    def admin_ids(self) -> list[UUID]:
        admins = [x.user_id for x in self.members if x.role == GroupRole.ADMIN]

        if self.owner_user_id not in admins:
            admins.insert(0, self.owner_user_id)

        return admins

    def to_core(self) -> GroupData:
        """
        Convert this Group ORM object to a GroupData core object.
        """
        return GroupData(
            group_id=self.group_id,
            group_name=self.group_name,
            description=self.description,
            require_approval=self.require_approval,
            owner_user_id=self.owner_user_id,
            created_at=self.created_at,
            members=[member.to_core() for member in self.members],
        )


class JoinRequest(SQLModel, table=True):
    """
    A request to join a group that requires approval. At most one request per
    (group, user) may be pending at a time; the partial unique index enforces
    this in the database rather than relying on a read-then-write check.

    Requests are removed with their group by the foreign key cascade.
    """

    __tablename__ = "join_request"
    __table_args__ = (
        Index(
            "uq_join_request_pending",
            "group_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    request_id: UUID = Field(primary_key=True, default_factory=uuid7)

    group_id: UUID = Field(foreign_key="group.group_id", ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="user.user_id", ondelete="CASCADE")

    status: JoinRequestStatus = Field(sa_column=enum_column(JoinRequestStatus))

    requested_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )
    processed_at: datetime | None = Field(
        sa_column=timestamp_column(nullable=True), default=None
    )
    processed_by_user_id: UUID | None = Field(
        default=None, foreign_key="user.user_id", ondelete="SET NULL"
    )

    user: "User" = Relationship(
        sa_relationship_kwargs=dict(
            lazy="joined", foreign_keys="[JoinRequest.user_id]"
        )
    )

    def to_core(self) -> JoinRequestData:
        return JoinRequestData(
            request_id=self.request_id,
            group_id=self.group_id,
            user_id=self.user_id,
            status=self.status,
            requested_at=self.requested_at,
            processed_at=self.processed_at,
            processed_by_user_id=self.processed_by_user_id,
        )
