"""Column specifications: parsing user input and resolving the columns to fetch.

A specification for one association is either a *shorthand* column list::

    {"comments": ["body", "upvotes"]}

or the *explicit* form with nested associations::

    {"comments": {"columns": ["body"], "include": {"author": ["name"]}}}

Both forms can be mixed at any depth. Parsing never looks at the catalog;
association names are checked when the load is resolved.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa
from sqlalchemy import orm

from .catalog import AssociationDescriptor, Catalog
from .datastructures import ColumnSelector, SelectorMode, SpecNode, frozendict
from .exc import UnknownAssociationError
from .tools import attribute_key, get_column_keys, get_discriminator_key, get_primary_key


COLUMNS_KEY = "columns"
INCLUDE_KEY = "include"
_EXPLICIT_KEYS = frozenset({COLUMNS_KEY, INCLUDE_KEY})

RawColumns = str | orm.QueryableAttribute[Any] | Iterable[str | orm.QueryableAttribute[Any]] | None
RawSpec = RawColumns | Mapping[str, Any]
RawSpecMap = Mapping[str | orm.QueryableAttribute[Any], RawSpec]


def _parse_columns(raw: RawColumns) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, (str, orm.QueryableAttribute)):
        return frozenset((attribute_key(raw),))

    return frozenset(attribute_key(column) for column in raw)


def _parse(raw: RawSpec, mode: SelectorMode, path: tuple[int, ...]) -> SpecNode:
    if not isinstance(raw, Mapping):
        return SpecNode(selector=ColumnSelector.of(_parse_columns(raw), mode))

    if id(raw) in path:
        raise ValueError("Column specification contains itself")
    if unexpected := set(raw) - _EXPLICIT_KEYS:
        raise ValueError(
            f"Unexpected keys {sorted(map(str, unexpected))} in column specification; "
            f"expected {COLUMNS_KEY!r} and/or {INCLUDE_KEY!r}"
        )

    return SpecNode(
        selector=ColumnSelector.of(_parse_columns(raw.get(COLUMNS_KEY)), mode),
        nested=_parse_map(raw.get(INCLUDE_KEY) or {}, mode, (*path, id(raw))),
    )


def _parse_map(raw: RawSpecMap, mode: SelectorMode, path: tuple[int, ...]) -> frozendict[str, SpecNode]:
    if id(raw) in path:
        raise ValueError("Column specification contains itself")

    path = (*path, id(raw))
    return frozendict({attribute_key(name): _parse(spec, mode, path) for name, spec in raw.items()})


def parse_spec(raw: RawSpec, mode: SelectorMode = SelectorMode.INCLUDE) -> SpecNode:
    """Normalise the specification of one association into a :class:`SpecNode`.

    Args:
        raw: ``None``, a column name, a mapped column attribute, an iterable of
            those, or a mapping with ``columns`` and/or ``include`` keys.
        mode: Applied to every selector in the tree.

    Raises:
        ValueError: On unexpected keys in the explicit form, or when the
            specification refers to itself.
    """
    return _parse(raw, mode, ())


def parse_spec_map(raw: RawSpecMap, mode: SelectorMode = SelectorMode.INCLUDE) -> frozendict[str, SpecNode]:
    """Parse a whole ``{association: specification}`` mapping."""
    return _parse_map(raw, mode, ())


def find_descriptor(catalog: Catalog, model: type[Any], name: str) -> AssociationDescriptor:
    """Look *name* up on *model*, falling back to its mapped subclasses.

    Subclasses are consulted so that a batch typed as a polymorphic base can
    carry associations declared only on some of its subclasses.

    Raises:
        UnknownAssociationError: No class in the hierarchy has *name*.
    """
    for mapper in sa.inspect(model).self_and_descendants:
        if (descriptor := catalog.get(mapper.class_).get(name)) is not None:
            return descriptor

    raise UnknownAssociationError(name, model)


def nested_keys(catalog: Catalog, target: type[Any], nested: Mapping[str, SpecNode]) -> frozenset[str]:
    """Keys *target* rows must carry so that each nested association can be loaded.

    For a nested many-to-one this is the foreign key on *target*; for nested
    one-to-many / one-to-one it is *target*'s own key.

    Raises:
        UnknownAssociationError: A nested name is not an association of *target*.
    """
    own_columns = set(get_column_keys(target))
    keys = (find_descriptor(catalog, target, name).source_key for name in nested)
    return frozenset(key for key in keys if key in own_columns)


def resolve_columns(
    selector: ColumnSelector,
    descriptor: AssociationDescriptor,
    needed_keys: Iterable[str] = (),
) -> frozenset[str]:
    """Compute the concrete column keys to fetch for one association.

    ``EXCLUDE`` selectors start from every column of the target, ``INCLUDE``
    selectors from their own columns. The target primary key, the polymorphic
    discriminator, the target-side join key and *needed_keys* are always
    added, even when the selector excludes them. The join key is the foreign
    key for one-to-many / one-to-one, and the referenced column (usually the
    primary key) for many-to-one.
    """
    target = descriptor.target
    if selector.is_exclude:
        columns = {key for key in get_column_keys(target) if key not in selector.columns}
    else:
        columns = set(selector.columns)

    columns.add(get_primary_key(target))
    if (discriminator := get_discriminator_key(target)) is not None:
        columns.add(discriminator)
    # the foreign key on one-to-many / one-to-one, the referenced key on many-to-one
    columns.add(descriptor.target_key)
    columns.update(needed_keys)

    return frozenset(columns)


@dataclass(slots=True, frozen=True)
class LoadPlan:
    """What to fetch for one association at one level."""

    descriptor: AssociationDescriptor
    columns: frozenset[str]
    node: SpecNode

    @classmethod
    def build(cls, catalog: Catalog, descriptor: AssociationDescriptor, node: SpecNode) -> LoadPlan:
        needed = nested_keys(catalog, descriptor.target, node.nested)
        return cls(
            descriptor=descriptor,
            columns=resolve_columns(node.selector, descriptor, needed),
            node=node,
        )


def supports(catalog: Catalog, model: type[Any], name: str) -> bool:
    """Whether *model* or one of its mapped subclasses has association *name*."""
    return any(catalog.has(mapper.class_, name) for mapper in sa.inspect(model).self_and_descendants)
