from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Collection, Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Final

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.orm.attributes import set_committed_value

from .catalog import AssociationKind, Catalog
from .columns import LoadPlan, RawSpecMap, find_descriptor, parse_spec_map, supports
from .datastructures import SelectorMode, SpecNode, frozendict
from .exc import UnknownAssociationError
from .tools import get_root_entity, unique_scalars


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)

_Grouped = Mapping[Hashable, Sequence[Any]]
_Indexed = Mapping[Hashable, Any]
_NO_SPEC: Final[frozendict[str, SpecNode]] = frozendict()


def _group_by_class(records: Iterable[Any]) -> dict[type[Any], list[Any]]:
    groups: dict[type[Any], list[Any]] = {}
    for record in records:
        groups.setdefault(type(record), []).append(record)
    return groups


def _unique_keys(records: Iterable[Any], key: str) -> list[Any]:
    # dict keeps first-seen order, which keeps the generated IN (...) stable
    return list(dict.fromkeys(value for record in records if (value := getattr(record, key)) is not None))


def _fetched(kind: AssociationKind, results: _Grouped | _Indexed) -> Iterable[Any]:
    if kind is AssociationKind.MANY_TO_ONE:
        return results.values()
    return (child for children in results.values() for child in children)


class BatchLoader:
    """Load column-restricted associations onto a batch of records.

    One query is issued per (association, level, concrete parent class),
    whatever the number of parents. Fetched rows only carry the resolved
    columns; the remaining columns are set to raise on access instead of
    lazy loading, and every association slot that was handled is marked as
    loaded so that touching it never emits SQL.
    """

    __slots__ = ("catalog", "session")

    def __init__(self, session: orm.Session, catalog: Catalog | None = None) -> None:
        self.session = session
        self.catalog = catalog if catalog is not None else Catalog()

    def load(self, parents: Sequence[Any], spec: Mapping[str, SpecNode]) -> None:
        """Load every association of *spec* onto *parents*, then recurse.

        Parents are grouped by concrete class; each group is resolved against
        its own associations. A level is all or nothing: every plan is built
        and every query of the level runs before any parent is written, so a
        failure leaves the parents untouched. Nested levels are visited only
        once the whole level is assigned.

        Raises:
            UnknownAssociationError: A name in *spec* exists on none of the
                parent classes.
        """
        if not parents or not spec:
            return

        groups = _group_by_class(parents)
        for name in spec:
            if not any(supports(self.catalog, model, name) for model in groups):
                raise UnknownAssociationError(name, next(iter(groups)))

        plans: list[tuple[LoadPlan, list[Any]]] = []
        for name, node in spec.items():
            for model, records in groups.items():
                descriptor = self.catalog.get(model).get(name)
                if descriptor is not None:
                    plans.append((LoadPlan.build(self.catalog, descriptor, node), records))

        fetched = [(plan, records, self.load_level(records, plan)) for plan, records in plans]

        next_level: dict[str, dict[int, Any]] = {}
        for plan, records, results in fetched:
            self.assign(records, plan, results)
            if not plan.node.is_leaf:
                children = next_level.setdefault(plan.descriptor.name, {})
                for child in _fetched(plan.descriptor.kind, results):
                    children.setdefault(id(child), child)

        for name, children in next_level.items():
            self.load(list(children.values()), spec[name].nested)

    def load_level(self, parents: Collection[Any], plan: LoadPlan) -> _Grouped | _Indexed:
        """Fetch one association for all *parents* with a single query.

        Returns rows grouped by foreign key (one-to-many, one-to-one) or
        indexed by the referenced key (many-to-one). No query is issued when there
        is no key to look for.
        """
        descriptor = plan.descriptor
        target = descriptor.target
        keys = _unique_keys(parents, descriptor.source_key)
        if not keys:
            return {}

        target_key = getattr(target, descriptor.target_key)
        query = (
            sa.select(target)
            .where(target_key.in_(keys))
            .options(
                orm.load_only(*(getattr(target, column) for column in sorted(plan.columns)), raiseload=True)
            )
        )
        if descriptor.scope is not None:
            query = descriptor.scope.apply(query)

        rows = unique_scalars(self.session.execute(query))
        logger.debug(
            "%s.%s: loaded %d %s rows for %d parents (%d keys), columns=%s",
            descriptor.owner.__name__,
            descriptor.name,
            len(rows),
            target.__name__,
            len(parents),
            len(keys),
            sorted(plan.columns),
        )

        if descriptor.kind is AssociationKind.MANY_TO_ONE:
            return {getattr(row, descriptor.target_key): row for row in rows}

        grouped: defaultdict[Hashable, list[Any]] = defaultdict(list)
        for row in rows:
            grouped[getattr(row, descriptor.target_key)].append(row)
        return grouped

    @staticmethod
    def assign(parents: Iterable[Any], plan: LoadPlan, results: _Grouped | _Indexed) -> None:
        """Write fetched rows into each parent's association slot.

        One-to-many slots get a list (possibly empty), one-to-one and
        many-to-one slots the matching row or ``None``. Null and dangling
        keys resolve to ``None``. Slots are set as committed state, so they
        count as loaded and carry no pending change.
        """
        descriptor = plan.descriptor
        for parent in parents:
            key = getattr(parent, descriptor.source_key)
            value: Any
            match descriptor.kind:
                case AssociationKind.ONE_TO_MANY:
                    value = list(results.get(key, ())) if key is not None else []
                case AssociationKind.ONE_TO_ONE:
                    value = next(iter(results.get(key, ())), None) if key is not None else None
                case AssociationKind.MANY_TO_ONE:
                    value = results.get(key) if key is not None else None

            set_committed_value(parent, descriptor.name, value)


@dataclass(slots=True, frozen=True)
class SlimSelect:
    """A ``select(Model)`` statement plus the associations to load selectively.

    Values are immutable: every generative method returns a new instance.
    Run it with :func:`execute` or :func:`aexecute`.
    """

    statement: sa.Select[Any]
    spec: frozendict[str, SpecNode] = field(default=_NO_SPEC)
    catalog: Catalog | None = None

    @property
    def model(self) -> type[Any]:
        return get_root_entity(self.statement)

    def with_columns(self, spec: RawSpecMap) -> SlimSelect:
        return with_columns(self, spec)

    def without_columns(self, spec: RawSpecMap) -> SlimSelect:
        return without_columns(self, spec)

    def where(self, *criteria: sa.ColumnExpressionArgument[bool]) -> SlimSelect:
        return replace(self, statement=self.statement.where(*criteria))

    def order_by(self, *clauses: Any) -> SlimSelect:
        return replace(self, statement=self.statement.order_by(*clauses))

    def limit(self, limit: int | None) -> SlimSelect:
        return replace(self, statement=self.statement.limit(limit))

    def options(self, *options: Any) -> SlimSelect:
        return replace(self, statement=self.statement.options(*options))

    def root_statement(self) -> sa.Select[Any]:
        """The statement that fetches the root records, without duplicate preloads."""
        return strip_preloads(self.statement, self.spec)


def _first_hops(option: Any) -> set[str]:
    hops: set[str] = set()
    for element in getattr(option, "context", ()):
        path = element.path
        if len(path) > 1 and isinstance(prop := path[1], orm.RelationshipProperty):
            hops.add(prop.key)
    return hops


def strip_preloads(statement: sa.Select[Any], names: Iterable[str]) -> sa.Select[Any]:
    """Remove eager-load options whose first hop is one of *names*.

    ``selectinload(Post.comments)``, ``joinedload(Post.comments).joinedload(...)``
    and the like would otherwise fetch the association again with every
    column. Options on other relationships are kept untouched.
    """
    names = set(names)
    options = statement._with_options  # noqa: SLF001
    kept = tuple(option for option in options if not (_first_hops(option) & names))
    if len(kept) == len(options):
        return statement

    logger.debug("Stripped %d eager-load option(s) for %s", len(options) - len(kept), sorted(names))
    stripped = statement._generate()  # noqa: SLF001
    stripped._with_options = kept  # noqa: SLF001
    return stripped


def _attach(
    query: SlimSelect | sa.Select[Any] | type[Any],
    raw: RawSpecMap,
    mode: SelectorMode,
    catalog: Catalog | None,
) -> SlimSelect:
    if isinstance(query, SlimSelect):
        current = query
    elif isinstance(query, sa.Select):
        current = SlimSelect(statement=query)
    else:
        current = SlimSelect(statement=sa.select(query))

    if catalog is not None:
        current = replace(current, catalog=catalog)

    parsed = parse_spec_map(raw, mode)
    model = current.model
    resolved_catalog = current.catalog if current.catalog is not None else Catalog()
    for name in parsed:
        find_descriptor(resolved_catalog, model, name)

    return replace(current, spec=current.spec.copy(**parsed))


def with_columns(
    query: SlimSelect | sa.Select[Any] | type[Any],
    spec: RawSpecMap,
    *,
    catalog: Catalog | None = None,
) -> SlimSelect:
    """Load associations of the root entity with only the listed columns.

    Primary keys, foreign keys and the keys needed by nested associations are
    always fetched as well. Top-level association names are validated now;
    nested ones when the query runs.

    Args:
        query: A mapped class, a ``select(Model)`` statement or a ``SlimSelect``.
        spec: ``{association: columns}`` or
            ``{association: {"columns": [...], "include": {...}}}``, mixable
            at any depth.
        catalog: Catalog to use instead of the initialised singleton.

    Returns:
        A new ``SlimSelect``; *query* is left untouched. Entries for
        associations already present on a ``SlimSelect`` are replaced.

    Raises:
        UnknownAssociationError: A top-level name is not an association of
            the root entity.

    Example::

        query = with_columns(
            Post,
            {"comments": {"columns": ["body"], "include": {"author": ["name"]}}},
        )
        posts = await aexecute(session, query)
    """
    return _attach(query, spec, SelectorMode.INCLUDE, catalog)


def without_columns(
    query: SlimSelect | sa.Select[Any] | type[Any],
    spec: RawSpecMap,
    *,
    catalog: Catalog | None = None,
) -> SlimSelect:
    """Like :func:`with_columns`, but every listed column is excluded instead.

    Keys are re-added even when they are listed.
    """
    return _attach(query, spec, SelectorMode.EXCLUDE, catalog)


def execute(session: orm.Session, query: SlimSelect | sa.Select[Any]) -> Sequence[Any]:
    """Fetch the root records, then batch-load the selected associations."""
    if not isinstance(query, SlimSelect):
        return unique_scalars(session.execute(query))
    if not query.spec:
        return unique_scalars(session.execute(query.statement))

    records = unique_scalars(session.execute(query.root_statement()))
    logger.debug(
        "%s: batch-loading %s onto %d records, %d level(s) deep",
        query.model.__name__,
        sorted(query.spec),
        len(records),
        max(node.depth() for node in query.spec.values()),
    )
    BatchLoader(session, query.catalog).load(records, query.spec)
    return records


async def aexecute(session: AsyncSession, query: SlimSelect | sa.Select[Any]) -> Sequence[Any]:
    """Async counterpart of :func:`execute`; the loading runs through ``run_sync``."""
    return await session.run_sync(execute, query)


def load_columns(
    session: orm.Session,
    records: Sequence[Any],
    spec: RawSpecMap,
    *,
    exclude: bool = False,
    catalog: Catalog | None = None,
) -> Sequence[Any]:
    """Batch-load associations onto records that were already fetched.

    Returns *records* for convenience.
    """
    parsed = parse_spec_map(spec, SelectorMode.EXCLUDE if exclude else SelectorMode.INCLUDE)
    BatchLoader(session, catalog).load(records, parsed)
    return records


async def aload_columns(
    session: AsyncSession,
    records: Sequence[Any],
    spec: RawSpecMap,
    *,
    exclude: bool = False,
    catalog: Catalog | None = None,
) -> Sequence[Any]:
    """Async counterpart of :func:`load_columns`."""

    def _load(sync_session: orm.Session) -> Sequence[Any]:
        return load_columns(sync_session, records, spec, exclude=exclude, catalog=catalog)

    return await session.run_sync(_load)
