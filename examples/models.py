"""Minimal models for sqla-slimloads examples."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    email: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    avatar: orm.Mapped[bytes | None] = orm.mapped_column(sa.LargeBinary, nullable=True)

    posts: orm.Mapped[list[Post]] = orm.relationship(back_populates="author", lazy="raise")
    profile: orm.Mapped[Profile | None] = orm.relationship(
        uselist=False, back_populates="user", lazy="raise"
    )


class Post(Base):
    __tablename__ = "posts"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    body: orm.Mapped[str] = orm.mapped_column(sa.Text)
    author_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))

    author: orm.Mapped[User] = orm.relationship(back_populates="posts", lazy="raise")
    comments: orm.Mapped[list[Comment]] = orm.relationship(
        back_populates="post", order_by="Comment.id", lazy="raise"
    )
    approved_comments: orm.Mapped[list[Comment]] = orm.relationship(
        primaryjoin="and_(Post.id == Comment.post_id, Comment.approved.is_(True))",
        viewonly=True,
        lazy="raise",
    )


class Comment(Base):
    __tablename__ = "comments"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    text: orm.Mapped[str] = orm.mapped_column(sa.Text)
    approved: orm.Mapped[bool] = orm.mapped_column(default=False)
    post_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("posts.id"))
    user_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))

    post: orm.Mapped[Post] = orm.relationship(back_populates="comments", lazy="raise")
    user: orm.Mapped[User] = orm.relationship(lazy="raise")


class Profile(Base):
    __tablename__ = "profiles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    bio: orm.Mapped[str] = orm.mapped_column(sa.Text, default="")
    user_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"), unique=True)

    user: orm.Mapped[User] = orm.relationship(back_populates="profile", lazy="raise")
