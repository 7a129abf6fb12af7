from __future__ import annotations

import enum
import sys
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping.

    Used for the ``nested`` part of a :class:`SpecNode` and for catalog
    entries, so that parsed specifications and descriptors can be shared,
    compared and cached without defensive copies.

    Example:
        >>> fd = frozendict({"comments": 1})
        >>> fd.copy(tags=2)
        <frozendict {'comments': 1, 'tags': 2}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def copy(self, **add_or_replace: Any) -> Self:
        """Return a new frozendict with *add_or_replace* merged in."""
        return type(self)(self, **add_or_replace)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Lazily computed: values such as SQLAlchemy columns are only hashed on demand.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash


class SelectorMode(enum.Enum):
    """How the column names of a :class:`ColumnSelector` are interpreted."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(slots=True, frozen=True)
class ColumnSelector:
    """A set of column keys plus a whitelist / blacklist flag.

    An empty ``INCLUDE`` selector means "only the forced keys".
    """

    columns: frozenset[str] = frozenset()
    mode: SelectorMode = SelectorMode.INCLUDE

    @classmethod
    def of(cls, columns: Iterable[str], mode: SelectorMode = SelectorMode.INCLUDE) -> ColumnSelector:
        return cls(columns=frozenset(columns), mode=mode)

    @property
    def is_exclude(self) -> bool:
        return self.mode is SelectorMode.EXCLUDE


@dataclass(slots=True, frozen=True)
class SpecNode:
    """One parsed association specification.

    ``nested`` maps association names on the *target* entity of the owning
    association to their own ``SpecNode``; leaves have an empty mapping.
    """

    selector: ColumnSelector = field(default_factory=ColumnSelector)
    nested: frozendict[str, SpecNode] = field(default_factory=frozendict)

    @property
    def is_leaf(self) -> bool:
        return not self.nested

    def depth(self) -> int:
        """Number of association levels below and including this node."""
        return 1 + max((child.depth() for child in self.nested.values()), default=0)
