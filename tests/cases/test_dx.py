from __future__ import annotations

import logging

import pytest
import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import AsyncSession

from sqla_slimloads import (
    Catalog,
    SlimSelect,
    aexecute,
    execute,
    get_catalog,
    loaded_columns,
    strip_preloads,
    unique_scalars,
    with_columns,
    without_columns,
)

from ..models import Base, Comment, Post
from ..query_counter import QueryCounter

pytestmark = pytest.mark.anyio


class TestUniqueScalars:
    async def test_unique_scalars(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        posts = unique_scalars(await session.execute(sa.select(Post).options(orm.joinedload(Post.comments))))

        assert len(posts) == 4

    async def test_unique_scalars_empty_result(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        assert unique_scalars(await session.execute(sa.select(Post).where(Post.id == -1))) == []


class TestSlimSelect:
    def test_accepts_model_select_and_slim_select(self) -> None:
        from_model = with_columns(Post, {"comments": ["body"]})
        from_select = with_columns(sa.select(Post), {"comments": ["body"]})
        from_slim = with_columns(from_model, {"tags": ["name"]})

        assert isinstance(from_model, SlimSelect)
        assert from_model.model is Post
        assert from_select.spec == from_model.spec
        assert set(from_slim.spec) == {"comments", "tags"}

    def test_input_is_not_mutated(self) -> None:
        statement = sa.select(Post)
        first = with_columns(statement, {"comments": ["body"]})
        second = first.with_columns({"tags": ["name"]})

        assert set(first.spec) == {"comments"}
        assert set(second.spec) == {"comments", "tags"}
        assert second.statement is statement

    def test_later_entry_replaces_earlier(self) -> None:
        query = with_columns(Post, {"comments": ["body"]}).without_columns({"comments": ["body"]})

        assert query.spec["comments"].selector.is_exclude

    def test_chaining_keeps_spec(self) -> None:
        query = with_columns(Post, {"comments": ["body"]}).where(Post.id == 1).order_by(Post.id).limit(1)

        assert set(query.spec) == {"comments"}
        sql = str(query.statement.compile(compile_kwargs={"literal_binds": True}))
        assert "WHERE posts.id = 1" in sql
        assert "LIMIT 1" in sql

    def test_explicit_catalog(self) -> None:
        catalog = Catalog.standalone(get_catalog(Base))
        query = with_columns(Post, {"comments": ["body"]}, catalog=catalog)

        assert query.catalog is catalog

    async def test_chained_query_runs(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = with_columns(Post, {"comments": ["body"]}).where(Post.id > 1).order_by(Post.id.desc())
        posts = await aexecute(session, query)

        assert [p.id for p in posts] == [4, 3, 2]
        assert len(posts[-1].comments) == 2

    async def test_sync_execute(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = without_columns(sa.select(Post).where(Post.id == 1), {"tags": ["color"]})
        posts = await session.run_sync(execute, query)

        assert [t.name for t in sorted(posts[0].tags, key=lambda t: t.id)] == ["Tag 0", "Tag 1", "Tag 2"]

    async def test_plain_select_is_default_fetch(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        posts = await aexecute(session, sa.select(Post).order_by(Post.id))

        assert [p.id for p in posts] == [1, 2, 3, 4]


class TestPreloads:
    def test_strip_matching_option(self) -> None:
        statement = sa.select(Post).options(orm.selectinload(Post.comments), orm.selectinload(Post.tags))
        stripped = strip_preloads(statement, {"comments"})

        assert len(stripped._with_options) == 1  # noqa: SLF001
        assert len(statement._with_options) == 2  # noqa: SLF001

    def test_strip_chained_option(self) -> None:
        statement = sa.select(Post).options(orm.joinedload(Post.comments).joinedload(Comment.author))

        assert strip_preloads(statement, {"comments"})._with_options == ()  # noqa: SLF001

    def test_nothing_to_strip_returns_same_statement(self) -> None:
        statement = sa.select(Post).options(orm.selectinload(Post.tags))

        assert strip_preloads(statement, {"comments"}) is statement

    async def test_preload_does_not_fetch_twice(
        self, session: AsyncSession, seed_data: dict[str, list[Base]], queries: QueryCounter
    ) -> None:
        statement = sa.select(Post).options(orm.selectinload(Post.comments))
        with queries:
            posts = await aexecute(session, with_columns(statement, {"comments": ["body"]}))

        assert len(queries.selects) == 2
        comment = next(p for p in posts if p.id == 1).comments[0]
        assert loaded_columns(comment) == {"id", "post_id", "body"}

    async def test_other_preloads_are_kept(
        self, session: AsyncSession, seed_data: dict[str, list[Base]], queries: QueryCounter
    ) -> None:
        statement = sa.select(Post).options(orm.selectinload(Post.tags))
        with queries:
            posts = await aexecute(session, with_columns(statement, {"comments": ["body"]}))

        assert len(queries.selects) == 3
        post = next(p for p in posts if p.id == 1)
        assert loaded_columns(post.tags[0]) == {"id", "post_id", "name", "color"}


class TestLogging:
    async def test_execute_logs_depth(
        self, session: AsyncSession, seed_data: dict[str, list[Base]], caplog: pytest.LogCaptureFixture
    ) -> None:
        query = with_columns(Post, {"comments": {"columns": ["body"], "include": {"author": ["name"]}}, "tags": []})

        with caplog.at_level(logging.DEBUG, logger="sqla_slimloads"):
            await aexecute(session, query)

        assert "Post: batch-loading ['comments', 'tags'] onto 4 records, 2 level(s) deep" in caplog.messages
