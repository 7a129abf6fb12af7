from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, final

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.sql import operators, visitors
from sqlalchemy.sql.elements import BooleanClauseList

from .datastructures import frozendict
from .exc import UnknownAssociationError


class AssociationKind(enum.Enum):
    """The three relation shapes the loader knows how to batch."""

    ONE_TO_MANY = "one-to-many"
    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"


@dataclass(slots=True, frozen=True, eq=False)
class Scope:
    """Association-level filter and ordering, applied to every batch query.

    ``criteria`` are plain SQL expressions on the target entity and
    ``order_by`` plain ordering expressions; nothing is evaluated lazily.
    """

    criteria: tuple[sa.ColumnElement[bool], ...] = ()
    order_by: tuple[sa.ColumnElement[Any], ...] = ()

    def apply(self, query: sa.Select[Any]) -> sa.Select[Any]:
        if self.criteria:
            query = query.where(*self.criteria)
        if self.order_by:
            query = query.order_by(*self.order_by)
        return query


@dataclass(slots=True, frozen=True, eq=False)
class AssociationDescriptor:
    """Read-only description of one association, as the loader needs it.

    For ``ONE_TO_MANY`` / ``ONE_TO_ONE``, ``source_key`` is the parent's key
    attribute and ``target_key`` the foreign key attribute on the target.
    For ``MANY_TO_ONE``, ``source_key`` is the foreign key attribute on the
    parent and ``target_key`` the attribute it references on the target,
    usually the primary key but possibly any unique column.
    """

    name: str
    kind: AssociationKind
    owner: type[Any]
    target: type[Any]
    source_key: str
    target_key: str
    scope: Scope | None = None

    def __repr__(self) -> str:
        return (
            f"<AssociationDescriptor {self.owner.__name__}.{self.name} "
            f"{self.kind.value} -> {self.target.__name__}>"
        )


_CatalogMapping = Mapping[type[Any], Mapping[str, AssociationDescriptor]]


@final
class Catalog:
    """Singleton holding the association descriptors of every mapped class.

    Initialise it once at application startup with :func:`init_catalog`;
    the loader consults it for association existence, kind, keys, target
    class and scope. A separate instance can still be handed to the entry
    points through their ``catalog=`` argument.
    """

    __instance: ClassVar[Catalog | None] = None
    _catalog: _CatalogMapping

    def __new__(cls, catalog: _CatalogMapping | None = None) -> Catalog:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if catalog is not None:
                instance.set_catalog(catalog)

            cls.__instance = instance

        if not getattr(cls.__instance, "_catalog", None):
            raise RuntimeError("Catalog is not initialized or empty")

        return cls.__instance

    def get(self, model: type[Any]) -> Mapping[str, AssociationDescriptor]:
        """Descriptors of *model* by association name; empty when unknown."""
        return self.catalog.get(model, frozendict())

    def __getitem__(self, model: type[Any]) -> Mapping[str, AssociationDescriptor]:
        return self.catalog[model]

    def __contains__(self, model: object) -> bool:
        return model in self.catalog

    def __iter__(self) -> Iterator[type[Any]]:
        return iter(self.catalog)

    def has(self, model: type[Any], name: str) -> bool:
        return name in self.get(model)

    def lookup(self, model: type[Any], name: str) -> AssociationDescriptor:
        """Return the descriptor of ``model.name``.

        Raises:
            UnknownAssociationError: *model* has no supported association *name*.
        """
        try:
            return self.get(model)[name]
        except KeyError:
            raise UnknownAssociationError(name, model) from None

    @property
    def catalog(self) -> _CatalogMapping:
        """The underlying model-to-descriptors mapping (read-only)."""
        return self._catalog

    def set_catalog(self, catalog: _CatalogMapping) -> None:
        self._catalog = catalog

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._catalog = frozendict()
        cls.__instance = None

    @classmethod
    def standalone(cls, catalog: _CatalogMapping) -> Catalog:
        """Build an instance that is not registered as the singleton."""
        instance = object.__new__(cls)
        instance.set_catalog(catalog)
        return instance


def _conjuncts(clause: sa.ColumnElement[Any]) -> Iterator[sa.ColumnElement[Any]]:
    if isinstance(clause, BooleanClauseList) and clause.operator is operators.and_:
        for sub in clause.clauses:
            yield from _conjuncts(sub)
    else:
        yield clause


def _touches_parent(clause: sa.ColumnElement[Any]) -> bool:
    # JoinCondition annotates parent-side columns of ``primaryjoin`` as "local".
    return any(
        "local" in getattr(element, "_annotations", ())
        for element in visitors.iterate(clause)
    )


def get_scope(relationship: orm.RelationshipProperty[Any]) -> Scope | None:
    """Extract the scope of *relationship* as a value.

    Every ``primaryjoin`` conjunct that only involves the target side becomes
    a criterion (e.g. ``Comment.published.is_(True)``); ``order_by=`` of the
    relationship becomes the ordering. Returns ``None`` when there is neither.
    """
    criteria = tuple(
        clause for clause in _conjuncts(relationship.primaryjoin) if not _touches_parent(clause)
    )
    order_by = tuple(relationship.order_by or ())
    if not criteria and not order_by:
        return None

    return Scope(criteria=criteria, order_by=order_by)


def describe(relationship: orm.RelationshipProperty[Any]) -> AssociationDescriptor | None:
    """Build the descriptor of one relationship.

    Returns ``None`` for relationships the loader does not batch:
    many-to-many (``secondary=``) and composite-key joins.
    """
    if relationship.secondary is not None or len(relationship.local_remote_pairs) != 1:
        return None

    local, remote = relationship.local_remote_pairs[0]

    match relationship.direction:
        case orm.MANYTOONE:
            kind = AssociationKind.MANY_TO_ONE
        case orm.ONETOMANY:
            kind = AssociationKind.ONE_TO_MANY if relationship.uselist else AssociationKind.ONE_TO_ONE
        case _:
            return None

    return AssociationDescriptor(
        name=relationship.key,
        kind=kind,
        owner=relationship.parent.class_,
        target=relationship.mapper.class_,
        source_key=relationship.parent.get_property_by_column(local).key,
        target_key=relationship.mapper.get_property_by_column(remote).key,
        scope=get_scope(relationship),
    )


def get_catalog(base: type[orm.DeclarativeBase]) -> _CatalogMapping:
    """Reflect the association descriptors of every mapper in *base*'s registry.

    Args:
        base: SQLAlchemy declarative base class.

    Returns:
        Frozen mapping of model class to ``{association name: descriptor}``.

    Raises:
        AssertionError: If base is not a subclass of orm.DeclarativeBase.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    base.registry.configure()

    catalog: dict[type[Any], frozendict[str, AssociationDescriptor]] = {}
    for mapper in base.registry.mappers:
        descriptors = (describe(rel) for rel in mapper.relationships)
        catalog[mapper.class_] = frozendict(
            {descriptor.name: descriptor for descriptor in descriptors if descriptor is not None}
        )

    return frozendict(catalog)


def init_catalog(catalog: _CatalogMapping) -> None:
    """Initialize the global Catalog singleton.

    Call once during application startup.

    Example:
        >>> from myapp.models import Base
        >>> init_catalog(get_catalog(Base))
    """
    Catalog(catalog)
