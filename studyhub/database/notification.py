"""
Stored notifications, written by the database notifier.
"""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel

from studyhub.core.uuid import UUID, uuid7

from .columns import timestamp_column


class Notification(SQLModel, table=True):
    notification_id: UUID = Field(primary_key=True, default_factory=uuid7)

    recipient_user_id: UUID = Field(
        foreign_key="user.user_id", ondelete="CASCADE", index=True
    )
    message: str

    created_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )
    read: bool = False
