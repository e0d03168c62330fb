# ========================
# src/taxiflow/pipeline/schema.py
# ========================

"""
Column Schema Module

Declares column types for a dataset and converts raw text values to typed
values (and back). Types are always declared by the caller, never inferred
from sampled data.
"""

import json
import math
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..utils.exceptions import SchemaMismatch

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_NULL_VALUES = ("", "NA", "NULL")


class ColumnType(str, Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    TEXT = "text"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class Column:
    """A single declared column."""

    name: str
    type: ColumnType
    levels: Tuple[str, ...] = ()
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT

    def __post_init__(self):
        object.__setattr__(self, 'type', ColumnType(self.type))
        object.__setattr__(self, 'levels', tuple(self.levels))
        if self.type == ColumnType.CATEGORICAL and not self.levels:
            raise ValueError(f"Categorical column '{self.name}' must declare its levels")
        if len(set(self.levels)) != len(self.levels):
            raise ValueError(f"Categorical column '{self.name}' has duplicate levels")

    def parse(self, raw: str) -> Any:
        """Convert a non-null text value to this column's type, or raise ValueError."""
        value = raw.strip()
        if self.type == ColumnType.NUMERIC:
            try:
                return int(value)
            except ValueError:
                number = float(value)
                if not math.isfinite(number):
                    raise ValueError(f"non-finite number {raw!r}")
                return number
        if self.type == ColumnType.CATEGORICAL:
            if value not in self.levels:
                raise ValueError(f"{raw!r} is not one of the levels {list(self.levels)}")
            return value
        if self.type == ColumnType.TIMESTAMP:
            return datetime.strptime(value, self.timestamp_format)
        return raw

    def check(self, value: Any) -> None:
        """Check that an in-memory value conforms to this column, or raise ValueError."""
        if value is None:
            return
        if self.type == ColumnType.NUMERIC:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"expected a number, got {type(value).__name__}")
            if not math.isfinite(value):
                raise ValueError(f"non-finite number {value!r}")
        elif self.type == ColumnType.CATEGORICAL:
            if value not in self.levels:
                raise ValueError(f"{value!r} is not one of the levels {list(self.levels)}")
        elif self.type == ColumnType.TIMESTAMP:
            if not isinstance(value, datetime):
                raise ValueError(f"expected a timestamp, got {type(value).__name__}")
        elif not isinstance(value, str):
            raise ValueError(f"expected text, got {type(value).__name__}")

    def format(self, value: Any) -> str:
        if value is None:
            return ""
        if self.type == ColumnType.TIMESTAMP:
            return value.strftime(self.timestamp_format)
        return str(value)

    def to_dict(self) -> Dict[str, Any]:
        data = {'name': self.name, 'type': self.type.value}
        if self.levels:
            data['levels'] = list(self.levels)
        if self.type == ColumnType.TIMESTAMP:
            data['timestamp_format'] = self.timestamp_format
        return data


@dataclass(frozen=True)
class Schema:
    """
    Ordered, immutable set of declared columns.

    Schema changes always return a new Schema so that a run can compute its
    output schema once, before any chunk is written.
    """

    columns: Tuple[Column, ...]
    null_values: Tuple[str, ...] = field(default=DEFAULT_NULL_VALUES)

    def __post_init__(self):
        object.__setattr__(self, 'columns', tuple(self.columns))
        object.__setattr__(self, 'null_values', tuple(self.null_values))
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate column names in schema: {names}")

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Column:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(name)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def with_column(self, column: Column) -> 'Schema':
        """Return a schema with ``column`` replaced in place, or appended if new."""
        if column.name in self:
            columns = [column if c.name == column.name else c for c in self.columns]
        else:
            columns = list(self.columns) + [column]
        return Schema(tuple(columns), self.null_values)

    def without_columns(self, names: Iterable[str]) -> 'Schema':
        drop = set(names)
        missing = drop - set(self.names)
        if missing:
            raise KeyError(f"Cannot drop unknown columns: {sorted(missing)}")
        return Schema(tuple(c for c in self.columns if c.name not in drop), self.null_values)

    def renamed(self, old: str, new: str) -> 'Schema':
        col = self.column(old)
        if new in self and new != old:
            raise ValueError(f"Column '{new}' already exists")
        renamed = Column(new, col.type, col.levels, col.timestamp_format)
        return Schema(tuple(renamed if c.name == old else c for c in self.columns), self.null_values)

    def validate_header(self, header: Optional[Sequence[str]], source: str = "") -> None:
        """Raise SchemaMismatch unless the header lists exactly the declared columns, in order."""
        header = list(header or [])
        if header != self.names:
            raise SchemaMismatch(
                f"Header of {source or 'dataset'} does not match the declared schema: "
                f"expected {self.names}, found {header}"
            )

    def coerce_row(self, raw: Dict[str, Any], row_number: Optional[int] = None) -> Dict[str, Any]:
        """
        Convert a row of raw text values to typed values.

        Args:
            raw (dict): Column name to text value, as read from a delimited file
            row_number (int): 0-based row position used in error reports

        Returns:
            dict: Column name to typed value (None for null tokens)
        """
        if None in raw:
            raise SchemaMismatch(f"Row has more fields than the {len(self.columns)} declared columns",
                                 row_offset=row_number)
        row = {}
        for col in self.columns:
            value = raw.get(col.name)
            if value is None:
                raise SchemaMismatch("Row is missing a declared column", row_offset=row_number, column=col.name)
            if value in self.null_values:
                row[col.name] = None
                continue
            try:
                row[col.name] = col.parse(value)
            except ValueError as e:
                raise SchemaMismatch(f"Value {value!r} is not a valid {col.type.value}: {e}",
                                     row_offset=row_number, column=col.name) from e
        return row

    def format_row(self, row: Dict[str, Any], row_number: Optional[int] = None) -> List[str]:
        """Check a typed row against the schema and render it as text fields."""
        if len(row) != len(self.columns) or any(name not in row for name in self.names):
            raise SchemaMismatch(
                f"Row columns {sorted(row)} do not match the declared columns {self.names}",
                row_offset=row_number
            )
        fields = []
        for col in self.columns:
            value = row[col.name]
            try:
                col.check(value)
            except ValueError as e:
                raise SchemaMismatch(f"Value does not conform to {col.type.value}: {e}",
                                     row_offset=row_number, column=col.name) from e
            fields.append(col.format(value))
        return fields

    def to_dict(self) -> Dict[str, Any]:
        return {
            'columns': [c.to_dict() for c in self.columns],
            'null_values': list(self.null_values)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schema':
        columns = tuple(
            Column(
                name=spec['name'],
                type=ColumnType(spec['type']),
                levels=tuple(spec.get('levels', ())),
                timestamp_format=spec.get('timestamp_format', DEFAULT_TIMESTAMP_FORMAT)
            )
            for spec in data['columns']
        )
        return cls(columns, tuple(data.get('null_values', DEFAULT_NULL_VALUES)))

    @classmethod
    def from_json_file(cls, file_path: str) -> 'Schema':
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        schema = cls.from_dict(data)
        logger.info(f"Loaded schema with {len(schema.columns)} columns from {file_path}")
        return schema

    def save_to_file(self, file_path: str) -> None:
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)


def numeric(name: str) -> Column:
    return Column(name, ColumnType.NUMERIC)


def categorical(name: str, levels: Sequence[str]) -> Column:
    return Column(name, ColumnType.CATEGORICAL, tuple(levels))


def text(name: str) -> Column:
    return Column(name, ColumnType.TEXT)


def timestamp(name: str, fmt: str = DEFAULT_TIMESTAMP_FORMAT) -> Column:
    return Column(name, ColumnType.TIMESTAMP, timestamp_format=fmt)
