from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy import orm


_R = TypeVar("_R")


def unique_scalars(result: sa.Result[tuple[_R]]) -> Sequence[_R]:
    """Shorthand for ``result.unique().scalars().all()``.

    Example (async)::

        posts = unique_scalars(await session.execute(sa.select(Post)))
    """
    return result.unique().scalars().all()


@lru_cache
def _get_primary_key(model: type[Any]) -> str:
    """Return the attribute key of the single primary key of *model* (cached)."""
    mapper = sa.inspect(model)
    if len(mapper.primary_key) != 1:
        raise ValueError(f"{model.__name__} must have exactly one primary key column")

    return mapper.get_property_by_column(mapper.primary_key[0]).key


@lru_cache
def _get_discriminator_key(model: type[Any]) -> str | None:
    mapper = sa.inspect(model)
    if mapper.polymorphic_on is None:
        return None

    return mapper.get_property_by_column(mapper.polymorphic_on).key


@lru_cache
def _get_column_keys(model: type[Any]) -> tuple[str, ...]:
    """Return the keys of every column attribute of *model* (cached)."""
    return tuple(prop.key for prop in sa.inspect(model).column_attrs)


def get_primary_key(model: type[Any]) -> str:
    """Get the primary key attribute key of a mapped class.

    Args:
        model: SQLAlchemy model class.

    Returns:
        The attribute key, e.g. ``"id"``.

    Raises:
        ValueError: If the primary key is composite.
    """
    return _get_primary_key(model)


def get_discriminator_key(model: type[Any]) -> str | None:
    """Key of the polymorphic discriminator column of *model*, if it has one.

    Rows of a polymorphic hierarchy cannot be built without it.
    """
    return _get_discriminator_key(model)


def get_column_keys(model: type[Any]) -> tuple[str, ...]:
    """Get the keys of every mapped column attribute of *model*, in mapper order."""
    return _get_column_keys(model)


def get_root_entity(statement: sa.Select[Any]) -> type[Any]:
    """Return the mapped class a ``select(Model)`` statement loads.

    Raises:
        ValueError: If the first column description is not a mapped entity.
    """
    descriptions = statement.column_descriptions
    entity = descriptions[0].get("entity") if descriptions else None
    if entity is None or descriptions[0].get("type") is not entity:
        raise ValueError("Statement must select a mapped entity, e.g. sa.select(Post)")

    return entity


def loaded_columns(instance: object) -> frozenset[str]:
    """Return the column keys currently loaded on *instance*.

    Columns left out of a selective load are reported as missing, which
    makes this the set of fields an instance actually exposes.
    """
    state = sa.inspect(instance)
    unloaded = state.unloaded
    return frozenset(
        prop.key for prop in state.mapper.column_attrs if prop.key not in unloaded
    )


def is_loaded(instance: object, key: str) -> bool:
    """Whether attribute *key* (column or relationship) is loaded on *instance*."""
    return key not in sa.inspect(instance).unloaded


def attribute_key(attribute: str | orm.QueryableAttribute[Any]) -> str:
    """Normalise a string or a mapped attribute (``Post.comments``) to its key."""
    if isinstance(attribute, str):
        return attribute
    if isinstance(attribute, orm.QueryableAttribute):
        return attribute.key

    raise TypeError(f"Expected an attribute name or a mapped attribute, got {attribute!r}")


def slim_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {fn.__name__: fn.cache_info() for fn in (_get_primary_key, _get_discriminator_key, _get_column_keys)}


def slim_cache_clear() -> None:
    """Clear all internal LRU caches."""
    for fn in (_get_primary_key, _get_discriminator_key, _get_column_keys):
        fn.cache_clear()
