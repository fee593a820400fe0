"""
A shared user object that is serialized.
"""

from datetime import datetime

from pydantic import BaseModel

from studyhub.core.uuid import UUID


class UserData(BaseModel):
    user_id: UUID
    user_name: str
    full_name: str | None
    email: str | None
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.full_name or self.user_name} ({self.user_name})"
