"""In-memory bulk collection used to express EM as relational operators.

``DataSet`` is an eager, immutable sequence of records. The operators mirror
the batch primitives a distributed dataflow engine offers (map, cross,
grouped reduce, broadcast join, bounded iterate) and make the same promises
the EM pipeline relies on:

- grouped reductions must be given an associative and commutative function,
  so the result does not depend on element order;
- ``join_with_tiny`` treats the right side as the broadcast side: its keys
  must be unique, so every left record matches at most one right record;
- every operator returns a new, fully materialized DataSet.
"""

from __future__ import annotations

import dataclasses
import functools
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

import pandas as pd

T = TypeVar("T")
U = TypeVar("U")
K = TypeVar("K", bound=Hashable)


class DataSet(Generic[T]):
    """Unordered, immutable bag of records."""

    __slots__ = ("_elements",)

    def __init__(self, elements: Iterable[T] = ()) -> None:
        self._elements: Tuple[T, ...] = tuple(elements)

    @classmethod
    def from_elements(cls, *elements: T) -> "DataSet[T]":
        return cls(elements)

    def __iter__(self) -> Iterator[T]:
        return iter(self._elements)

    def __len__(self) -> int:
        return len(self._elements)

    def __repr__(self) -> str:
        return f"DataSet(n={len(self._elements)})"

    # -----------------------
    # Element-wise
    # -----------------------

    def map(self, fn: Callable[[T], U]) -> "DataSet[U]":
        return DataSet(fn(x) for x in self._elements)

    # -----------------------
    # Binary operators
    # -----------------------

    def cross(self, other: "DataSet[U]") -> "DataSet[Tuple[T, U]]":
        """Cartesian product; output size len(self) * len(other)."""
        right = tuple(other)
        return DataSet((a, b) for a in self._elements for b in right)

    def join_with_tiny(
        self,
        other: "DataSet[U]",
        where: Callable[[T], K],
        equal_to: Callable[[U], K],
    ) -> "DataSet[Tuple[T, U]]":
        """Inner equi-join with ``other`` as the broadcast side.

        Left records without a partner are dropped. Duplicate keys on the
        broadcast side raise ValueError.
        """
        table: Dict[Any, U] = {}
        for r in other:
            k = equal_to(r)
            if k in table:
                raise ValueError(f"broadcast side of join has duplicate key {k!r}")
            table[k] = r
        out = []
        for l in self._elements:
            k = where(l)
            if k in table:
                out.append((l, table[k]))
        return DataSet(out)

    # -----------------------
    # Aggregation
    # -----------------------

    def group_by(self, key: Callable[[T], K]) -> "GroupedDataSet[T, K]":
        return GroupedDataSet(self, key)

    def reduce(self, fn: Callable[[T, T], T]) -> "DataSet[T]":
        """Reduce the whole set to a single record (empty stays empty)."""
        if not self._elements:
            return DataSet()
        return DataSet((functools.reduce(fn, self._elements),))

    # -----------------------
    # Iteration
    # -----------------------

    def iterate(self, n: int, step: Callable[["DataSet[T]"], "DataSet[T]"]) -> "DataSet[T]":
        """Apply ``step`` n times, each time feeding the previous result."""
        if n < 0:
            raise ValueError(f"iteration count must be >= 0, got {n}")
        current: DataSet[T] = self
        for _ in range(n):
            current = step(current)
        return current

    # -----------------------
    # Materialization
    # -----------------------

    def count(self) -> int:
        return len(self._elements)

    def first(self) -> T:
        if not self._elements:
            raise ValueError("first() on an empty DataSet")
        return self._elements[0]

    def collect(self) -> List[T]:
        return list(self._elements)

    def to_frame(self, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Tabulate the records; dataclass records give their field names as columns."""
        rows = []
        for x in self._elements:
            if dataclasses.is_dataclass(x):
                rows.append({f.name: getattr(x, f.name) for f in dataclasses.fields(x)})
            else:
                rows.append(x)
        if columns is None:
            return pd.DataFrame(rows)
        if rows and isinstance(rows[0], dict):
            return pd.DataFrame(rows, columns=list(columns))
        return pd.DataFrame([list(r) for r in rows], columns=list(columns))


class GroupedDataSet(Generic[T, K]):
    """Result of ``DataSet.group_by``; only usable through ``reduce``/``reduce_group``."""

    def __init__(self, data: DataSet[T], key: Callable[[T], K]) -> None:
        self._data = data
        self._key = key

    def _groups(self) -> Dict[Any, List[T]]:
        groups: Dict[Any, List[T]] = {}
        for x in self._data:
            groups.setdefault(self._key(x), []).append(x)
        return groups

    def reduce(self, fn: Callable[[T, T], T]) -> DataSet[T]:
        """Pairwise reduction per key; ``fn`` must be associative and commutative."""
        return DataSet(functools.reduce(fn, members) for members in self._groups().values())

    def reduce_group(self, fn: Callable[[K, List[T]], U]) -> DataSet[U]:
        return DataSet(fn(k, members) for k, members in self._groups().items())
