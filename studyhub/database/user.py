"""
ORM for user information.
"""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel

from studyhub.core.user import UserData
from studyhub.core.uuid import UUID, uuid7

from .columns import timestamp_column


class User(SQLModel, table=True):
    user_id: UUID = Field(primary_key=True, default_factory=uuid7)

    user_name: str = Field(unique=True)
    full_name: str | None = None
    email: str | None = None

    created_at: datetime = Field(
        sa_column=timestamp_column(),
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def display_name(self) -> str:
        return f"{self.full_name or self.user_name} ({self.user_name})"

    def to_core(self) -> UserData:
        return UserData(
            user_id=self.user_id,
            user_name=self.user_name,
            full_name=self.full_name,
            email=self.email,
            created_at=self.created_at,
        )
