"""Selective-column association loading for SQLAlchemy.

sqla_slimloads batch-loads relationships with only the columns you ask
for, one query per association level, whatever the number of parent
rows. Initialize the ``Catalog`` singleton at startup with your
declarative base, then wrap a query with ``with_columns`` or
``without_columns`` and run it with ``execute`` / ``aexecute``.
"""

from ._version import __version__, __version_tuple__
from .catalog import (
    AssociationDescriptor,
    AssociationKind,
    Catalog,
    Scope,
    describe,
    get_catalog,
    init_catalog,
)
from .columns import LoadPlan, nested_keys, parse_spec, parse_spec_map, resolve_columns
from .core import (
    BatchLoader,
    SlimSelect,
    aexecute,
    aload_columns,
    execute,
    load_columns,
    strip_preloads,
    with_columns,
    without_columns,
)
from .datastructures import ColumnSelector, SelectorMode, SpecNode, frozendict
from .exc import UnknownAssociationError
from .tools import (
    get_column_keys,
    get_discriminator_key,
    get_primary_key,
    get_root_entity,
    is_loaded,
    loaded_columns,
    slim_cache_clear,
    slim_cache_info,
    unique_scalars,
)


__all__ = (
    "AssociationDescriptor",
    "AssociationKind",
    "BatchLoader",
    "Catalog",
    "ColumnSelector",
    "LoadPlan",
    "Scope",
    "SelectorMode",
    "SlimSelect",
    "SpecNode",
    "UnknownAssociationError",
    "__version__",
    "__version_tuple__",
    "aexecute",
    "aload_columns",
    "describe",
    "execute",
    "frozendict",
    "get_catalog",
    "get_column_keys",
    "get_discriminator_key",
    "get_primary_key",
    "get_root_entity",
    "init_catalog",
    "is_loaded",
    "load_columns",
    "loaded_columns",
    "nested_keys",
    "parse_spec",
    "parse_spec_map",
    "resolve_columns",
    "slim_cache_clear",
    "slim_cache_info",
    "strip_preloads",
    "unique_scalars",
    "with_columns",
    "without_columns",
)
