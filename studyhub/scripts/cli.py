"""
A simple CLI for running a sample server and managing the database.
"""

import asyncio
import os
import sys

import uvicorn

USAGE = (
    "Supported commands are studyhub run dev, studyhub run prod, studyhub setup, "
    "or studyhub adduser {username} [full name]"
)


def run_server(**kwargs):
    for k, v in kwargs.items():
        os.environ[k] = v

    from studyhub.config.settings import Settings

    settings = Settings()

    uvicorn.run("studyhub.api.app:app", host=settings.api_host, port=settings.api_port)


def setup():
    from studyhub.config.settings import Settings

    settings = Settings()
    settings.sync_manager().create_all()


async def add_user(user_name: str, full_name: str | None):
    import structlog

    from studyhub.config.settings import Settings
    from studyhub.service import user as user_service

    manager = Settings().async_manager()
    log = structlog.get_logger()

    await manager.create_all()

    async with manager.transaction() as conn:
        user = await user_service.create(
            user_name=user_name, email=None, full_name=full_name, conn=conn, log=log
        )
        USER_ID = user.user_id

    await manager.dispose()

    return USER_ID


def main():
    try:
        command = sys.argv[1]
    except IndexError:
        print(USAGE)
        exit(1)

    if command == "run":
        try:
            dev = sys.argv[2] == "dev"
            prod = sys.argv[2] == "prod"
        except IndexError:
            print(USAGE)
            exit(1)

        if dev:
            from testcontainers.postgres import PostgresContainer

            with PostgresContainer() as container:
                print(
                    f"Container details: username={container.username}, password={container.password}, port={container.get_exposed_port(container.port)}"
                )

                run_server(
                    STUDYHUB_DATABASE_TYPE="postgres",
                    STUDYHUB_DATABASE_USER=container.username,
                    STUDYHUB_DATABASE_PASSWORD=container.password,
                    STUDYHUB_DATABASE_PORT=str(
                        container.get_exposed_port(container.port)
                    ),
                    STUDYHUB_DATABASE_HOST="localhost",
                    STUDYHUB_DATABASE_DB=container.dbname,
                    STUDYHUB_DATABASE_ECHO="False",
                )

            exit(0)

        if prod:
            setup()
            run_server()
            exit(0)

        print(USAGE)
        exit(1)

    if command == "setup":
        setup()
        print("Setup complete, please restart the container or application")
        exit(0)

    if command == "adduser":
        try:
            user_name = sys.argv[2]
        except IndexError:
            print(USAGE)
            exit(1)

        full_name = " ".join(sys.argv[3:]) or None

        from studyhub.core.errors import StudyhubError

        try:
            user_id = asyncio.run(add_user(user_name=user_name, full_name=full_name))
        except StudyhubError as e:
            print(e)
            exit(1)

        print(f"Created user {user_name} with ID {user_id}")
        exit(0)

    print(USAGE)
    exit(1)
