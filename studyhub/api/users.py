"""
The user directory, for resolving IDs to names.
"""

from fastapi import APIRouter

from studyhub.api.dependencies import ActorDependency, DatabaseDependency
from studyhub.core.user import UserData
from studyhub.core.uuid import UUID
from studyhub.service import user as user_service

user_app = APIRouter(tags=["Users"])


@user_app.get("", summary="List all users")
async def list_users(
    actor: ActorDependency,
    conn: DatabaseDependency,
) -> list[UserData]:
    return await user_service.get_user_list(conn=conn)


@user_app.get("/me", summary="The acting user")
async def read_me(actor: ActorDependency) -> UserData:
    return actor.to_core()


@user_app.get(
    "/{user_id}",
    summary="Get user by ID",
    responses={404: {"description": "User not found."}},
)
async def read_user(
    user_id: UUID,
    actor: ActorDependency,
    conn: DatabaseDependency,
) -> UserData:
    user = await user_service.read_by_id(user_id=user_id, conn=conn)
    return user.to_core()
