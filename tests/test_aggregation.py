# ========================
# tests/test_aggregation.py
# ========================

import unittest
import os
import sys
import random
import statistics
from datetime import datetime
from fractions import Fraction

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from taxiflow.pipeline.aggregation import (
    Aggregator, CategoryCounts, CrossTab, DateGroupSummary, ExactSum, NumericSummary,
)
from taxiflow.pipeline.schema import Schema, categorical, numeric, text


def _rows(n, seed=7):
    rng = random.Random(seed)
    days = ["Mon", "Tue", "Wed"]
    rows = []
    for i in range(n):
        rows.append({
            "amount": None if i % 11 == 0 else rng.uniform(-1e6, 1e6),
            "day": rng.choice(days),
            "kind": rng.choice(["a", "b"]),
            "at": datetime(2016, 1, 1 + i % 5, i % 24),
        })
    return rows


class TestExactSum(unittest.TestCase):

    def test_exact_and_order_independent(self):
        values = [1e16, 1.0, -1e16, 0.1, 0.2, 0.3] * 50
        forward = ExactSum()
        for v in values:
            forward.add(v)
        backward = ExactSum()
        for v in reversed(values):
            backward.add(v)
        self.assertEqual(forward.value(), backward.value())
        self.assertEqual(forward.value(), float(sum(Fraction(v) for v in values)))


class TestAggregator(unittest.TestCase):
    """Test mergeable summaries."""

    def setUp(self):
        self.aggregator = Aggregator([
            NumericSummary("amount"),
            CategoryCounts("day", ["Mon", "Tue", "Wed", "Sun"]),
            CrossTab("day", "kind", ["Mon", "Tue", "Wed"], ["a", "b"]),
            DateGroupSummary("at", "amount", name="daily_amount"),
        ])
        self.rows = _rows(500)

    def _fold(self, chunks):
        state = self.aggregator.empty()
        for chunk in chunks:
            state = self.aggregator.update(state, chunk)
        return self.aggregator.finalize(state)

    def test_chunking_and_order_do_not_change_the_summary(self):
        whole = self._fold([self.rows])
        for size in (1, 7, 64, 499):
            chunks = [self.rows[i:i + size] for i in range(0, len(self.rows), size)]
            self.assertEqual(self._fold(chunks), whole)
            random.Random(size).shuffle(chunks)
            self.assertEqual(self._fold(chunks), whole)

    def test_merge_is_associative_and_commutative(self):
        a, b, c = (self.aggregator.update(self.aggregator.empty(), part)
                   for part in (self.rows[:100], self.rows[100:300], self.rows[300:]))
        left = self.aggregator.merge(self.aggregator.merge(a, b), c)
        right = self.aggregator.merge(a, self.aggregator.merge(c, b))
        self.assertEqual(self.aggregator.finalize(left), self.aggregator.finalize(right))

    def test_update_does_not_modify_state(self):
        state = self.aggregator.empty()
        self.aggregator.update(state, self.rows)
        self.assertEqual(self.aggregator.finalize(state)["amount"]["count"], 0)

    def test_numeric_summary_values(self):
        summary = self._fold([self.rows])["amount"]
        values = [r["amount"] for r in self.rows if r["amount"] is not None]

        self.assertEqual(summary["count"], len(values))
        self.assertEqual(summary["nulls"], len(self.rows) - len(values))
        self.assertEqual(summary["min"], min(values))
        self.assertEqual(summary["max"], max(values))
        self.assertAlmostEqual(summary["mean"], statistics.mean(values), places=6)
        self.assertAlmostEqual(summary["variance"] / statistics.variance(values), 1.0, places=9)

    def test_numeric_summary_empty(self):
        summary = self._fold([])["amount"]
        self.assertEqual(summary["count"], 0)
        self.assertIsNone(summary["mean"])
        self.assertIsNone(summary["variance"])
        self.assertIsNone(summary["min"])

    def test_category_counts_include_unseen_levels(self):
        counts = self._fold([self.rows])["day"]["counts"]
        self.assertEqual(list(counts), ["Mon", "Tue", "Wed", "Sun"])
        self.assertEqual(counts["Sun"], 0)
        self.assertEqual(sum(counts.values()), len(self.rows))

    def test_crosstab_has_every_cell(self):
        rows = [{"day": "Mon", "kind": "a"}, {"day": "Mon", "kind": "a"}, {"day": None, "kind": "b"}]
        tab = CrossTab("day", "kind", ["Mon", "Tue"], ["a", "b"])
        tab.update(rows)
        result = tab.finalize()

        self.assertEqual(result["table"], {"Mon": {"a": 2, "b": 0}, "Tue": {"a": 0, "b": 0}})
        self.assertEqual(result["row_totals"], {"Mon": 2, "Tue": 0})
        self.assertEqual(result["col_totals"], {"a": 2, "b": 0})
        self.assertEqual(result["skipped"], 1)

    def test_date_groups(self):
        rows = [
            {"at": datetime(2016, 1, 2, 23, 59), "fare": 10},
            {"at": datetime(2016, 1, 2, 0, 1), "fare": 20},
            {"at": datetime(2016, 1, 3, 12), "fare": 5},
            {"at": None, "fare": 5},
        ]
        groups = DateGroupSummary("at", "fare")
        groups.update(rows)
        result = groups.finalize()

        self.assertEqual(result["groups"]["2016-01-02"], {"count": 2, "sum": 30.0, "mean": 15.0})
        self.assertEqual(list(result["groups"]), ["2016-01-02", "2016-01-03"])
        self.assertEqual(result["skipped"], 1)

    def test_incompatible_merge(self):
        with self.assertRaises(ValueError):
            NumericSummary("a").merge(NumericSummary("b"))
        with self.assertRaises(ValueError):
            Aggregator([NumericSummary("a"), NumericSummary("a")])

    def test_from_schema(self):
        schema = Schema((numeric("amount"), categorical("day", ["Mon"]), text("note")))
        aggregator = Aggregator.from_schema(schema)
        self.assertEqual(list(aggregator.statistics), ["amount", "day"])
        self.assertEqual(list(Aggregator.from_schema(schema, columns=["day"]).statistics), ["day"])


if __name__ == '__main__':
    unittest.main()
