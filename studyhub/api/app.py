"""
FastAPI app
"""

from importlib.metadata import version

from fastapi import FastAPI

from .dependencies import DATABASE_MANAGER, get_notifier, logger
from .errors import add_exception_handlers
from .friends import friend_app
from .groups import group_app
from .users import user_app


async def lifespan(app: FastAPI):
    await DATABASE_MANAGER.create_all()
    await logger().ainfo("api.started")

    yield

    await get_notifier().flush()
    await DATABASE_MANAGER.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="studyhub API",
    summary="Friends, study groups, and the requests that connect them.",
    version=version("studyhub"),
)

app = add_exception_handlers(app)

app.include_router(friend_app, prefix="/friends")
app.include_router(group_app, prefix="/groups")
app.include_router(user_app, prefix="/users")
