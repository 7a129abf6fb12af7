from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from sqla_slimloads import slim_cache_clear
from sqla_slimloads.catalog import Catalog, get_catalog, init_catalog

from .models import (
    Author,
    Base,
    Comment,
    Document,
    Image,
    Post,
    Profile,
    Tag,
)
from .query_counter import QueryCounter


pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "mariadb", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _init_catalog() -> None:
    """Initialize the Catalog singleton with model associations.

    Needs no database, so unit tests get it too.
    """
    Catalog.reset()
    init_catalog(get_catalog(Base))


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "mysql" | "mariadb":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0" if db_backend == "mysql" else "mariadb:latest")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+asyncmy://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


@pytest.fixture
def queries(engine: AsyncEngine) -> Iterator[QueryCounter]:
    """Count SELECT statements emitted inside ``with queries: ...`` blocks."""
    counter = QueryCounter(engine.sync_engine)
    yield counter
    counter.stop()


@pytest.fixture
async def seed_data(session: AsyncSession) -> dict[str, list[Base]]:
    jane = Author(id=1, name="Jane Author", bio="A great author bio", email="jane@example.com")
    john = Author(id=2, name="John Writer", bio="Writes a lot", email=None)
    session.add_all([jane, john])
    await session.flush()

    post = Post(id=1, title="Test Post", body="Post body", author_id=1)
    second = Post(id=2, title="Second Post", body="Second body", author_id=2)
    orphan = Post(id=3, title="Orphan Post", body="No author", author_id=None)
    empty = Post(id=4, title="Empty Post", body="No comments", author_id=1)
    session.add_all([post, second, orphan, empty])
    await session.flush()

    # Five comments on the first post, the first three published.
    comments = [
        Comment(
            id=i + 1,
            post_id=1,
            author_id=1,
            body=f"Comment body {i}",
            upvotes=i * 10,
            published=i < 3,
        )
        for i in range(5)
    ]
    comments += [
        Comment(id=6, post_id=2, author_id=2, body="Reply", upvotes=1, published=True),
        Comment(id=7, post_id=2, author_id=None, body="Anonymous", upvotes=2, published=False),
    ]
    session.add_all(comments)
    await session.flush()

    tags = [Tag(id=i + 1, post_id=1, name=f"Tag {i}", color=f"Color {i}") for i in range(3)]
    session.add_all(tags)
    await session.flush()

    profile = Profile(id=1, author_id=1, website="https://example.com", preferences="Dark mode")
    session.add(profile)
    await session.flush()

    attachments = [
        Image(id=1, post_id=1, url="https://example.com/1.png", caption="First", width=640),
        Document(id=2, post_id=1, url="https://example.com/2.pdf", caption="Spec", reviewer_id=2),
        Image(id=3, post_id=2, url="https://example.com/3.png", caption="Third", width=320),
        Document(id=4, post_id=2, url="https://example.com/4.pdf", caption="Draft", reviewer_id=None),
    ]
    session.add_all(attachments)
    await session.flush()

    session.expunge_all()

    return {
        "authors": [jane, john],
        "posts": [post, second, orphan, empty],
        "comments": comments,
        "tags": tags,
        "profiles": [profile],
        "attachments": attachments,
    }


@pytest.fixture
async def many_posts(session: AsyncSession, seed_data: dict[str, list[Base]]) -> int:
    """Add 1000 extra posts, each with one comment; return the number of posts added."""
    count = 1000
    await session.execute(
        sa.insert(Post),
        [{"id": 100 + i, "title": f"Bulk {i}", "body": "", "author_id": 1} for i in range(count)],
    )
    await session.execute(
        sa.insert(Comment),
        [
            {"id": 100 + i, "post_id": 100 + i, "author_id": 2, "body": f"Bulk comment {i}", "upvotes": 0}
            for i in range(count)
        ],
    )
    session.expunge_all()

    return count


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    slim_cache_clear()


@pytest.fixture
def reset_catalog_singleton() -> Iterator[None]:
    saved = Catalog._Catalog__instance  # type: ignore[attr-defined]
    yield
    Catalog._Catalog__instance = saved  # type: ignore[attr-defined]

