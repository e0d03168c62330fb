# ========================
# src/taxiflow/pipeline/aggregation.py
# ========================

"""
Aggregation Module

Mergeable per-chunk accumulators (counts, sums, min/max, category tallies,
cross-tabulations, per-date groups) and the Aggregator that folds chunks into
them. Merging is associative and commutative, so the finalized summary does
not depend on how rows were split into chunks or in what order chunks were
processed.
"""

import math
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .dataset import Row
from .schema import ColumnType, Schema

logger = logging.getLogger(__name__)


class ExactSum:
    """
    Float sum kept as non-overlapping partials (Shewchuk's algorithm), so the
    total is exact and independent of the order values were added in.
    """

    __slots__ = ('partials',)

    def __init__(self, partials: Optional[Iterable[float]] = None):
        self.partials: List[float] = list(partials or [])

    def add(self, x: float) -> None:
        x = float(x)
        partials = self.partials
        i = 0
        for y in partials:
            if abs(x) < abs(y):
                x, y = y, x
            hi = x + y
            lo = y - (hi - x)
            if lo:
                partials[i] = lo
                i += 1
            x = hi
        partials[i:] = [x]

    def merge(self, other: 'ExactSum') -> 'ExactSum':
        merged = ExactSum(self.partials)
        for p in other.partials:
            merged.add(p)
        return merged

    def value(self) -> float:
        return math.fsum(self.partials)


class PartialStatistic:
    """Base class for mergeable accumulators."""

    kind = "statistic"

    def __init__(self, name: str):
        self.name = name

    def fresh(self) -> 'PartialStatistic':
        """Return an empty accumulator with the same configuration."""
        raise NotImplementedError

    def update(self, rows: Iterable[Row]) -> None:
        """Fold rows into this accumulator in place."""
        raise NotImplementedError

    def merge(self, other: 'PartialStatistic') -> 'PartialStatistic':
        raise NotImplementedError

    def finalize(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _check_compatible(self, other: 'PartialStatistic') -> None:
        if type(other) is not type(self) or other.name != self.name:
            raise ValueError(f"Cannot merge {type(other).__name__}('{other.name}') "
                             f"into {type(self).__name__}('{self.name}')")


class NumericSummary(PartialStatistic):
    """count, nulls, sum, sum of squares, min and max of a numeric column."""

    kind = "numeric"

    def __init__(self, column: str, name: Optional[str] = None):
        super().__init__(name or column)
        self.column = column
        self.count = 0
        self.nulls = 0
        self.total = ExactSum()
        self.total_sq = ExactSum()
        self.min: Optional[float] = None
        self.max: Optional[float] = None

    def fresh(self) -> 'NumericSummary':
        return NumericSummary(self.column, self.name)

    def update(self, rows):
        for row in rows:
            value = row.get(self.column)
            if value is None:
                self.nulls += 1
                continue
            self.count += 1
            self.total.add(value)
            self.total_sq.add(value * value)
            self.min = value if self.min is None else min(self.min, value)
            self.max = value if self.max is None else max(self.max, value)

    def merge(self, other):
        self._check_compatible(other)
        merged = self.fresh()
        merged.count = self.count + other.count
        merged.nulls = self.nulls + other.nulls
        merged.total = self.total.merge(other.total)
        merged.total_sq = self.total_sq.merge(other.total_sq)
        merged.min = _pick(min, self.min, other.min)
        merged.max = _pick(max, self.max, other.max)
        return merged

    def finalize(self):
        total = self.total.value()
        mean = total / self.count if self.count else None
        variance = None
        if self.count > 1:
            # sample variance from the sums; clamp rounding noise below zero
            variance = max(math.fsum([self.total_sq.value(), -total * total / self.count]) / (self.count - 1), 0.0)
        return {
            'kind': self.kind,
            'column': self.column,
            'count': self.count,
            'nulls': self.nulls,
            'sum': total,
            'mean': mean,
            'variance': variance,
            'std': math.sqrt(variance) if variance is not None else None,
            'min': self.min,
            'max': self.max
        }


class CategoryCounts(PartialStatistic):
    """Per-level counts of a categorical column. Declared levels never seen report 0."""

    kind = "categorical"

    def __init__(self, column: str, levels: Sequence[str] = (), name: Optional[str] = None):
        super().__init__(name or column)
        self.column = column
        self.levels = tuple(levels)
        self.counts: Counter = Counter()
        self.nulls = 0

    def fresh(self):
        return CategoryCounts(self.column, self.levels, self.name)

    def update(self, rows):
        for row in rows:
            value = row.get(self.column)
            if value is None:
                self.nulls += 1
            else:
                self.counts[value] += 1

    def merge(self, other):
        self._check_compatible(other)
        merged = self.fresh()
        merged.counts = self.counts + other.counts
        merged.nulls = self.nulls + other.nulls
        return merged

    def finalize(self):
        levels = _ordered_levels(self.levels, self.counts)
        total = sum(self.counts.values())
        counts = {level: self.counts.get(level, 0) for level in levels}
        return {
            'kind': self.kind,
            'column': self.column,
            'total': total,
            'nulls': self.nulls,
            'counts': counts,
            'proportions': {level: (n / total if total else 0.0) for level, n in counts.items()}
        }


class CrossTab(PartialStatistic):
    """
    Counts of (row level, column level) pairs for two categorical columns.
    Rows with a null in either column are counted separately as ``skipped``.
    """

    kind = "crosstab"

    def __init__(self,
                 row_column: str,
                 col_column: str,
                 row_levels: Sequence[str] = (),
                 col_levels: Sequence[str] = (),
                 name: Optional[str] = None):
        super().__init__(name or f"{row_column}_by_{col_column}")
        self.row_column = row_column
        self.col_column = col_column
        self.row_levels = tuple(row_levels)
        self.col_levels = tuple(col_levels)
        self.counts: Counter = Counter()
        self.skipped = 0

    def fresh(self):
        return CrossTab(self.row_column, self.col_column, self.row_levels, self.col_levels, self.name)

    def update(self, rows):
        for row in rows:
            u = row.get(self.row_column)
            v = row.get(self.col_column)
            if u is None or v is None:
                self.skipped += 1
            else:
                self.counts[(u, v)] += 1

    def merge(self, other):
        self._check_compatible(other)
        merged = self.fresh()
        merged.counts = self.counts + other.counts
        merged.skipped = self.skipped + other.skipped
        return merged

    def finalize(self):
        row_levels = _ordered_levels(self.row_levels, (u for u, _ in self.counts))
        col_levels = _ordered_levels(self.col_levels, (v for _, v in self.counts))
        table = {u: {v: self.counts.get((u, v), 0) for v in col_levels} for u in row_levels}
        return {
            'kind': self.kind,
            'row_column': self.row_column,
            'col_column': self.col_column,
            'row_levels': list(row_levels),
            'col_levels': list(col_levels),
            'table': table,
            'row_totals': {u: sum(table[u].values()) for u in row_levels},
            'col_totals': {v: sum(table[u][v] for u in row_levels) for v in col_levels},
            'total': sum(self.counts.values()),
            'skipped': self.skipped
        }


class DateGroupSummary(PartialStatistic):
    """
    Per calendar date count, sum and mean of a value column, keyed by the date
    of a timestamp column. Without a value column only counts are kept.
    """

    kind = "date_groups"

    def __init__(self, timestamp_column: str, value_column: Optional[str] = None, name: Optional[str] = None):
        super().__init__(name or f"{value_column or 'rows'}_by_{timestamp_column}_date")
        self.timestamp_column = timestamp_column
        self.value_column = value_column
        self.counts: Counter = Counter()
        self.sums: Dict[str, ExactSum] = {}
        self.skipped = 0

    def fresh(self):
        return DateGroupSummary(self.timestamp_column, self.value_column, self.name)

    def update(self, rows):
        for row in rows:
            stamp: Optional[datetime] = row.get(self.timestamp_column)
            value = row.get(self.value_column) if self.value_column else 0
            if stamp is None or value is None:
                self.skipped += 1
                continue
            day = stamp.date().isoformat()
            self.counts[day] += 1
            self.sums.setdefault(day, ExactSum()).add(value)

    def merge(self, other):
        self._check_compatible(other)
        merged = self.fresh()
        merged.counts = self.counts + other.counts
        for day in set(self.sums) | set(other.sums):
            merged.sums[day] = self.sums.get(day, ExactSum()).merge(other.sums.get(day, ExactSum()))
        merged.skipped = self.skipped + other.skipped
        return merged

    def finalize(self):
        groups = {}
        for day in sorted(self.counts):
            total = self.sums[day].value()
            groups[day] = {'count': self.counts[day], 'sum': total, 'mean': total / self.counts[day]}
        return {
            'kind': self.kind,
            'timestamp_column': self.timestamp_column,
            'value_column': self.value_column,
            'groups': groups,
            'skipped': self.skipped
        }


class Aggregator:
    """
    Folds chunks into a set of named partial statistics.

    The state passed between calls is a plain dict of accumulators; update()
    and merge() never modify their arguments, so partial states produced by
    different workers can be combined in any order.
    """

    def __init__(self, statistics: Iterable[PartialStatistic]):
        self.statistics: Dict[str, PartialStatistic] = {}
        for stat in statistics:
            if stat.name in self.statistics:
                raise ValueError(f"Duplicate statistic name '{stat.name}'")
            self.statistics[stat.name] = stat.fresh()
        logger.info(f"Aggregator initialized with statistics: {list(self.statistics)}")

    @classmethod
    def from_schema(cls, schema: Schema, columns: Optional[Sequence[str]] = None,
                    extra: Iterable[PartialStatistic] = ()) -> 'Aggregator':
        """
        Build a column-by-column summary: NumericSummary for numeric columns and
        CategoryCounts for categorical ones.

        Args:
            schema (Schema): Schema of the rows to summarize
            columns (list): Optional subset of columns (default: all)
            extra (iterable): Additional statistics, e.g. cross-tabs
        """
        wanted = set(columns) if columns is not None else None
        stats: List[PartialStatistic] = []
        for col in schema.columns:
            if wanted is not None and col.name not in wanted:
                continue
            if col.type == ColumnType.NUMERIC:
                stats.append(NumericSummary(col.name))
            elif col.type == ColumnType.CATEGORICAL:
                stats.append(CategoryCounts(col.name, col.levels))
        stats.extend(extra)
        return cls(stats)

    def empty(self) -> Dict[str, PartialStatistic]:
        return {name: stat.fresh() for name, stat in self.statistics.items()}

    def update(self, state: Mapping[str, PartialStatistic], rows: List[Row]) -> Dict[str, PartialStatistic]:
        """Return a new state with ``rows`` folded in."""
        chunk_state = self.empty()
        for stat in chunk_state.values():
            stat.update(rows)
        return self.merge(state, chunk_state)

    def merge(self, a: Mapping[str, PartialStatistic], b: Mapping[str, PartialStatistic]) -> Dict[str, PartialStatistic]:
        if set(a) != set(b):
            raise ValueError(f"Cannot merge states with different statistics: {sorted(a)} vs {sorted(b)}")
        return {name: a[name].merge(b[name]) for name in a}

    def finalize(self, state: Mapping[str, PartialStatistic]) -> Dict[str, Dict[str, Any]]:
        summary = {name: stat.finalize() for name, stat in state.items()}
        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: Dict[str, Dict[str, Any]]) -> None:
        for name, result in summary.items():
            if result['kind'] == 'numeric' and result['count']:
                logger.info(f"{name}: n={result['count']:,} mean={result['mean']:.3f} "
                            f"min={result['min']} max={result['max']} nulls={result['nulls']}")
            elif result['kind'] == 'categorical':
                logger.info(f"{name}: {len(result['counts'])} levels, {result['total']:,} values")
            elif result['kind'] == 'crosstab':
                logger.info(f"{name}: {len(result['row_levels'])}x{len(result['col_levels'])} table, "
                            f"{result['total']:,} pairs")
            elif result['kind'] == 'date_groups':
                logger.info(f"{name}: {len(result['groups'])} dates")


def _pick(func, a, b):
    if a is None:
        return b
    if b is None:
        return a
    return func(a, b)


def _ordered_levels(declared: Sequence[Any], observed: Iterable[Any]) -> List[Any]:
    """Declared levels first, in order, then any undeclared observed levels sorted."""
    levels = list(declared)
    known = set(levels)
    extra = sorted({v for v in observed if v not in known}, key=str)
    return levels + extra
