"""Basic sqla-slimloads usage examples.

Demonstrates initialization, column whitelists and blacklists, nesting,
scoped associations and loading onto records you already have.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from sqla_slimloads import aexecute, aload_columns, get_catalog, init_catalog, with_columns, without_columns

from .models import Base, Comment, Post, User


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Call once: reflects every association of every mapped class
    init_catalog(get_catalog(Base))

    # One DEBUG record per batch query
    logging.getLogger("sqla_slimloads").setLevel(logging.DEBUG)


# ── 2. Whitelist columns ─────────────────────────────────────────────


async def get_posts_with_comment_text(session: AsyncSession) -> Sequence[Post]:
    # comments come back with id, post_id and text only
    query = with_columns(Post, {"comments": ["text"]})
    return await aexecute(session, query)


async def get_posts_with_comment_ids(session: AsyncSession) -> Sequence[Post]:
    # an empty list still fetches the keys
    return await aexecute(session, with_columns(Post, {"comments": []}))


# ── 3. Blacklist columns ─────────────────────────────────────────────


async def get_posts_without_avatars(session: AsyncSession) -> Sequence[Post]:
    return await aexecute(session, without_columns(Post, {"author": ["avatar"]}))


# ── 4. Nesting ───────────────────────────────────────────────────────


async def get_posts_with_commenters(session: AsyncSession) -> Sequence[Post]:
    # comments.user_id is fetched automatically for the nested user
    query = with_columns(
        Post,
        {
            "author": ["name"],
            Post.comments: {"columns": [Comment.text], "include": {"user": ["name"]}},
        },
    )
    return await aexecute(session, query)


# ── 5. Scoped associations ───────────────────────────────────────────


async def get_posts_with_approved_comments(session: AsyncSession) -> Sequence[Post]:
    return await aexecute(session, with_columns(Post, {"approved_comments": ["text"]}))


# ── 6. Extending an existing query ──────────────────────────────────


async def get_recent_posts(session: AsyncSession) -> Sequence[Post]:
    query = (
        with_columns(sa.select(Post).where(Post.title != ""), {"comments": ["text"]})
        .order_by(Post.id.desc())
        .limit(10)
    )
    return await aexecute(session, query)


# ── 7. Already-fetched records ──────────────────────────────────────


async def attach_profiles(session: AsyncSession, users: Sequence[User]) -> Sequence[User]:
    return await aload_columns(session, users, {"profile": ["bio"]})
