# ========================
# src/taxiflow/pipeline/dataset.py
# ========================

"""
Dataset and Chunk Types

A Dataset is a named delimited file with a declared schema. A Chunk is a
bounded, contiguous slice of its rows held in memory by one pipeline step.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .schema import Schema

Row = Dict[str, Any]
RowPredicate = Callable[[Row], bool]


@dataclass(frozen=True)
class Dataset:
    """A persistent typed table identified by its storage location."""

    location: Path
    schema: Schema
    name: str = ""
    delimiter: str = ","

    def __post_init__(self):
        object.__setattr__(self, 'location', Path(self.location))
        if not self.name:
            object.__setattr__(self, 'name', self.location.stem)

    def exists(self) -> bool:
        return self.location.is_file()

    def size_bytes(self) -> int:
        return self.location.stat().st_size if self.exists() else 0

    def with_schema(self, schema: Schema) -> 'Dataset':
        return Dataset(self.location, schema, self.name, self.delimiter)


@dataclass
class Chunk:
    """
    Rows of one contiguous slice of a dataset.

    ``row_offset`` is the position of the first row of the slice in the
    source dataset, counted before any row selection.
    """

    index: int
    row_offset: int
    rows: List[Row] = field(default_factory=list)
    rows_scanned: int = 0

    def __len__(self) -> int:
        return len(self.rows)

    def select(self, predicate: Optional[RowPredicate]) -> 'Chunk':
        if predicate is None:
            return self
        return Chunk(self.index, self.row_offset, [row for row in self.rows if predicate(row)], self.rows_scanned)
