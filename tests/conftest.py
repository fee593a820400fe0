"""
Core configuration. Tests run against a fresh SQLite database each; set
STUDYHUB_TEST_POSTGRES=1 to run them against a PostgreSQL container instead.
"""

import os

import pytest_asyncio

from studyhub.config.settings import Settings


@pytest_asyncio.fixture(scope="session")
def database_container():
    if not os.environ.get("STUDYHUB_TEST_POSTGRES"):
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer() as container:
        yield {
            "database_type": "postgres",
            "database_user": container.username,
            "database_password": container.password,
            "database_port": container.get_exposed_port(container.port),
            "database_host": "localhost",
            "database_db": container.dbname,
        }


@pytest_asyncio.fixture
def server_settings(database_container, tmp_path):
    if database_container is None:
        yield Settings(database_type="sqlite", database_db=str(tmp_path / "test.db"))
    else:
        yield Settings(**database_container)


@pytest_asyncio.fixture
async def session_manager(server_settings: Settings):
    manager = server_settings.async_manager()

    # The PostgreSQL container is shared between tests.
    await manager.drop_all()
    await manager.create_all()

    yield manager

    await manager.dispose()


@pytest_asyncio.fixture(scope="session")
def logger():
    import structlog

    yield structlog.get_logger()
