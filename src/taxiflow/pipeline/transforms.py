# ========================
# src/taxiflow/pipeline/transforms.py
# ========================

"""
Chunk Transforms

Pure per-chunk row/column mappings. A transform receives the rows of one
chunk and a read-only context, and returns new rows; it never modifies its
inputs, never changes the number or order of rows, and declares up front how
it changes the schema.
"""

import csv
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .dataset import Row, RowPredicate
from .schema import Column, Schema

logger = logging.getLogger(__name__)


class TransformContext(Mapping):
    """
    Read-only bag of auxiliary objects (lookup tables, fitted models, ...)
    handed to every transform call.
    """

    def __init__(self, objects: Optional[Dict[str, Any]] = None, **kwargs):
        data = dict(objects or {})
        data.update(kwargs)
        self._objects = MappingProxyType(data)

    def __getitem__(self, key: str) -> Any:
        try:
            return self._objects[key]
        except KeyError:
            raise KeyError(f"Transform context has no object named '{key}'") from None

    def __iter__(self):
        return iter(self._objects)

    def __len__(self) -> int:
        return len(self._objects)


class Transform:
    """Base class for chunk transforms."""

    name = "transform"

    def apply(self, rows: List[Row], context: Mapping[str, Any]) -> List[Row]:
        raise NotImplementedError

    def output_schema(self, schema: Schema) -> Schema:
        return schema

    def __call__(self, rows: List[Row], context: Mapping[str, Any]) -> List[Row]:
        return self.apply(rows, context)

    def __rshift__(self, other: 'Transform') -> 'Compose':
        return Compose(self, other)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


class Identity(Transform):
    name = "identity"

    def apply(self, rows, context):
        return [row.copy() for row in rows]


class AddColumn(Transform):
    """
    Derive a column from each row. If the column already exists its values are
    recomputed, so applying the transform again yields the same dataset.
    """

    def __init__(self, column: Column, func: Callable[[Row, Mapping[str, Any]], Any]):
        """
        Args:
            column (Column): Declared type of the derived column
            func (callable): ``func(row, context) -> value``; must handle nulls itself
        """
        self.column = column
        self.func = func
        self.name = column.name

    def apply(self, rows, context):
        result = []
        for row in rows:
            new_row = row.copy()
            new_row[self.column.name] = self.func(row, context)
            result.append(new_row)
        return result

    def output_schema(self, schema):
        return schema.with_column(self.column)


class MapColumn(Transform):
    """Replace the values of an existing column with ``func(value)``."""

    def __init__(self, name: str, func: Callable[[Any], Any], column: Optional[Column] = None):
        self.name = name
        self.func = func
        self.column = column

    def apply(self, rows, context):
        result = []
        for row in rows:
            new_row = row.copy()
            new_row[self.name] = self.func(row[self.name])
            result.append(new_row)
        return result

    def output_schema(self, schema):
        schema.column(self.name)
        return schema.with_column(self.column) if self.column is not None else schema


class DropColumns(Transform):
    def __init__(self, names: Iterable[str]):
        self.names = tuple(names)
        self.name = ",".join(self.names)

    def apply(self, rows, context):
        drop = set(self.names)
        return [{k: v for k, v in row.items() if k not in drop} for row in rows]

    def output_schema(self, schema):
        return schema.without_columns(self.names)


class RenameColumn(Transform):
    def __init__(self, old: str, new: str):
        self.old = old
        self.new = new
        self.name = f"{old}->{new}"

    def apply(self, rows, context):
        return [{(self.new if k == self.old else k): v for k, v in row.items()} for row in rows]

    def output_schema(self, schema):
        return schema.renamed(self.old, self.new)


class FillNulls(Transform):
    """
    Replace null values with caller-chosen sentinels, e.g.
    ``FillNulls({'payment_type': 'Unknown', 'pickup_longitude': 0.0})``.
    """

    def __init__(self, policy: Dict[str, Any]):
        self.policy = dict(policy)
        self.name = ",".join(self.policy)

    def apply(self, rows, context):
        result = []
        for row in rows:
            new_row = row.copy()
            for column, sentinel in self.policy.items():
                if new_row.get(column) is None:
                    new_row[column] = sentinel
            result.append(new_row)
        return result

    def output_schema(self, schema):
        for column, sentinel in self.policy.items():
            try:
                schema.column(column).check(sentinel)
            except ValueError as e:
                raise ValueError(f"Null sentinel for '{column}' does not fit its type: {e}") from e
        return schema


class LookupColumn(AddColumn):
    """
    Enrich rows from a reference object in the context. The reference must
    provide ``lookup(key) -> value or None``; absent keys (and rows whose key
    is None) get ``default``.
    """

    def __init__(self,
                 column: Column,
                 key_func: Callable[[Row], Any],
                 lookup_name: str,
                 default: Any = None):
        self.key_func = key_func
        self.lookup_name = lookup_name
        self.default = default
        super().__init__(column, self._lookup)

    def _lookup(self, row, context):
        key = self.key_func(row)
        if key is None:
            return self.default
        value = context[self.lookup_name].lookup(key)
        return self.default if value is None else value


class PredictColumn(Transform):
    """
    Add the predictions of an opaque fitted model held in the context.
    The model must provide ``predict(rows) -> sequence`` with one value per row.
    """

    def __init__(self, column: Column, model_name: str):
        self.column = column
        self.model_name = model_name
        self.name = column.name

    def apply(self, rows, context):
        predictions = list(context[self.model_name].predict(rows))
        if len(predictions) != len(rows):
            raise ValueError(f"Model '{self.model_name}' returned {len(predictions)} predictions "
                             f"for {len(rows)} rows")
        result = []
        for row, prediction in zip(rows, predictions):
            new_row = row.copy()
            new_row[self.column.name] = prediction
            result.append(new_row)
        return result

    def output_schema(self, schema):
        return schema.with_column(self.column)


class Compose(Transform):
    """Apply transforms left to right."""

    def __init__(self, *transforms: Transform):
        flat = []
        for t in transforms:
            flat.extend(t.transforms if isinstance(t, Compose) else [t])
        self.transforms = tuple(flat)
        self.name = " >> ".join(t.name for t in self.transforms)

    def apply(self, rows, context):
        if not self.transforms:
            return [row.copy() for row in rows]
        for t in self.transforms:
            rows = t.apply(rows, context)
        return rows

    def output_schema(self, schema):
        for t in self.transforms:
            schema = t.output_schema(schema)
        return schema


def compose(*transforms: Transform) -> Transform:
    return Compose(*transforms)


class LookupTable:
    """Dict-backed reference table exposing ``lookup(key)``."""

    def __init__(self, mapping: Optional[Mapping[Any, Any]] = None):
        self._mapping = MappingProxyType(dict(mapping or {}))

    def lookup(self, key: Any) -> Any:
        return self._mapping.get(key)

    def __len__(self) -> int:
        return len(self._mapping)

    @classmethod
    def from_csv(cls,
                 file_path: str,
                 key_column: str,
                 value_column: str,
                 key_type: Callable[[str], Any] = str) -> 'LookupTable':
        """
        Load a two-column reference table (e.g. taxi zone id -> borough).

        Args:
            file_path (str): Delimited file with a header row
            key_column (str): Column holding the keys
            value_column (str): Column holding the values
            key_type (callable): Conversion applied to keys
        """
        mapping = {}
        with open(file_path, 'r', newline='', encoding='utf-8') as f:
            for row in csv.DictReader(f):
                mapping[key_type(row[key_column])] = row[value_column]
        logger.info(f"Loaded lookup table with {len(mapping)} entries from {file_path}")
        return cls(mapping)


# Row-selection helpers. Each returns False for null values instead of raising.

def not_null(*columns: str) -> RowPredicate:
    return lambda row: all(row.get(c) is not None for c in columns)


def column_greater_than(column: str, threshold: float) -> RowPredicate:
    def predicate(row):
        value = row.get(column)
        return value is not None and value > threshold
    return predicate


def column_between(column: str, low: Any, high: Any) -> RowPredicate:
    """Inclusive range check."""
    def predicate(row):
        value = row.get(column)
        return value is not None and low <= value <= high
    return predicate


def column_in(column: str, values: Sequence[Any]) -> RowPredicate:
    allowed = frozenset(values)
    return lambda row: row.get(column) in allowed


def all_of(*predicates: RowPredicate) -> RowPredicate:
    return lambda row: all(p(row) for p in predicates)
